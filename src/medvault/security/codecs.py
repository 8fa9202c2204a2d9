"""Field and file codecs built on the AES-GCM primitive.

Fields (notes, raw exam JSON) are strings stored as two base64 columns:
``ciphertext`` (ciphertext || tag) and ``iv``. Files are raw bytes written to
disk with the same layout; their IV and the SHA-256 of the *plaintext* live on
the owning record.

All functions take the already-unwrapped user key. They never see the master
key.
"""
import base64
import binascii
import logging
from typing import Optional

from medvault.core.exceptions import DecryptionError, EncodingError, IntegrityCheckFailedError
from medvault.core.hashing import calculate_sha256_bytes, sha256_matches
from medvault.core.models import EncryptedField, EncryptedFile

from . import crypto


logger = logging.getLogger(__name__)


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(value: str, what: str) -> bytes:
    if not value:
        raise DecryptionError(f"{what} is empty")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise DecryptionError(f"{what} is not valid base64") from exc


# ----------------------------------------------------------------------
# Fields
# ----------------------------------------------------------------------

def encrypt_field(plaintext: str, user_key: bytes) -> EncryptedField:
    ciphertext, iv = crypto.encrypt(plaintext.encode("utf-8"), user_key)
    return EncryptedField(ciphertext=_b64encode(ciphertext), iv=_b64encode(iv))


def decrypt_field(ciphertext_b64: str, iv_b64: str, user_key: bytes) -> str:
    """Inverse of :func:`encrypt_field`.

    Raises :class:`DecryptionError` on any authentication or format problem and
    :class:`EncodingError` if the authenticated bytes are not UTF-8.
    """
    ciphertext = _b64decode(ciphertext_b64, "ciphertext")
    iv = _b64decode(iv_b64, "iv")
    raw = crypto.decrypt(ciphertext, iv, user_key)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise EncodingError("decrypted field is not valid UTF-8") from exc


def decrypt_optional_field(
    ciphertext_b64: Optional[str],
    iv_b64: Optional[str],
    user_key: bytes,
    label: str = "field",
) -> Optional[str]:
    """Decrypt an optional column pair, substituting None on absence or failure.

    Only for fields whose loss must not fail the request (notes and the like).
    """
    if not ciphertext_b64 or not iv_b64:
        return None
    try:
        return decrypt_field(ciphertext_b64, iv_b64, user_key)
    except DecryptionError as exc:
        logger.warning("Could not decrypt optional %s: %s", label, exc)
        return None


# ----------------------------------------------------------------------
# Files
# ----------------------------------------------------------------------

def encrypt_file(data: bytes, user_key: bytes) -> EncryptedFile:
    # hash first: the digest covers the plaintext
    digest = calculate_sha256_bytes(data)
    ciphertext, iv = crypto.encrypt(data, user_key)
    return EncryptedFile(ciphertext=ciphertext, iv=_b64encode(iv), sha256=digest)


def decrypt_file(
    ciphertext: bytes,
    iv_b64: str,
    user_key: bytes,
    expected_hash: Optional[str] = None,
) -> bytes:
    """Decrypt file bytes, optionally re-checking the stored plaintext hash."""
    iv = _b64decode(iv_b64, "iv")
    data = crypto.decrypt(ciphertext, iv, user_key)
    if expected_hash is not None:
        verify_file_hash(data, expected_hash)
    return data


def verify_file_hash(data: bytes, expected_hash: str) -> None:
    if not sha256_matches(data, expected_hash):
        raise IntegrityCheckFailedError("decrypted file does not match its stored SHA-256")
