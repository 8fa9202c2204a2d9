"""
Encrypted document storage on the local filesystem

Structure Map for reference:
==============================
 - <upload_dir>/
      - {user_id}_{timestamp_ms}_{original_file_name}   (ciphertext || tag)
==============================
> Only ciphertext touches the disk. The IV and the plaintext SHA-256 go back to
> the caller and are stored on the owning database record, never in the name.
> Names are relative to upload_dir; that relative name is what gets persisted.
"""

import logging
import time
from pathlib import Path
from typing import Optional

from ..security.codecs import decrypt_file, encrypt_file
from .config import DEFAULT_MAX_UPLOAD_BYTES, Settings
from .exceptions import FileTooLargeError, RecordNotFoundError, StorageError
from .models import StoredFile


logger = logging.getLogger(__name__)


def _safe_name(original_file_name: str) -> str:
    # keep only the final path component so a crafted name can't escape upload_dir
    name = original_file_name.replace("\\", "/").rsplit("/", 1)[-1].strip()
    if name in ("", ".", ".."):
        return "file"
    return name


class EncryptedFileStorage:
    """Writes and reads per-user encrypted documents"""

    def __init__(self, upload_dir, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES):
        self.root = Path(upload_dir).expanduser()
        self.max_bytes = max_bytes

    @classmethod
    def from_settings(cls, settings: Settings) -> "EncryptedFileStorage":
        return cls(settings.upload_dir, max_bytes=settings.max_upload_bytes)

    def ensure_root(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def path_for(self, file_name: str) -> Path:
        path = (self.root / file_name).resolve()
        if path.parent != self.root.resolve():
            raise StorageError(f"Invalid stored file name: {file_name!r}")
        return path

    def save_encrypted_file(
        self,
        data: bytes,
        user_id: str,
        user_key: bytes,
        original_file_name: str,
    ) -> StoredFile:
        """Encrypt ``data`` with the user's key and write it under a fresh name."""
        if len(data) > self.max_bytes:
            raise FileTooLargeError(
                f"File is {len(data)} bytes; the limit is {self.max_bytes} bytes"
            )

        encrypted = encrypt_file(data, user_key)
        self.ensure_root()

        name = _safe_name(original_file_name)
        timestamp = int(time.time() * 1000)
        while True:
            file_name = f"{user_id}_{timestamp}_{name}"
            path = self.path_for(file_name)
            try:
                with open(path, "xb") as f:
                    f.write(encrypted.ciphertext)
                break
            except FileExistsError:
                # same user, same name, same millisecond
                timestamp += 1
            except OSError as e:
                self._discard_partial(path)
                raise StorageError(f"Failed to write {file_name}: {e}") from e

        logger.debug("Stored encrypted file %s (%d bytes)", file_name, len(data))
        return StoredFile(
            file_name=file_name,
            iv=encrypted.iv,
            file_hash=encrypted.sha256,
            size=len(data),
        )

    @staticmethod
    def _discard_partial(path: Path) -> None:
        # drop whatever part of the ciphertext reached the disk
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove partially written file %s: %s", path.name, e)

    def read_encrypted_file(
        self,
        file_name: str,
        iv_b64: str,
        user_key: bytes,
        expected_hash: Optional[str] = None,
    ) -> bytes:
        """Read and decrypt a stored file.

        With ``expected_hash`` the plaintext is re-hashed and compared, which
        catches corruption independently of the GCM tag.
        """
        path = self.path_for(file_name)
        try:
            ciphertext = path.read_bytes()
        except FileNotFoundError as e:
            raise RecordNotFoundError(f"Stored file not found: {file_name}") from e
        except OSError as e:
            raise StorageError(f"Failed to read {file_name}: {e}") from e
        return decrypt_file(ciphertext, iv_b64, user_key, expected_hash=expected_hash)

    def delete_file(self, file_name: str) -> None:
        path = self.path_for(file_name)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise RecordNotFoundError(f"Stored file not found: {file_name}") from e
        except OSError as e:
            raise StorageError(f"Failed to delete {file_name}: {e}") from e
        logger.debug("Deleted stored file %s", file_name)

    def exists(self, file_name: str) -> bool:
        return self.path_for(file_name).exists()
