"""SHA-256 helpers for uploaded documents.

The digest always covers the *plaintext*; it is stored next to the encrypted
record and lets callers detect storage-layer corruption independently of the
AEAD tag.
"""

import hashlib
import hmac
from pathlib import Path


CHUNK_SIZE = 65536  # 64KB


def calculate_sha256(file_path: Path) -> str:
    """Return the hex SHA-256 of a file on disk, read in chunks."""
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for block in iter(lambda: f.read(CHUNK_SIZE), b""):
            sha256.update(block)
    return sha256.hexdigest()


def calculate_sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_matches(data: bytes, expected_hex: str) -> bool:
    """Constant-time comparison of ``sha256(data)`` against a stored hex digest."""
    actual = calculate_sha256_bytes(data)
    expected = expected_hex.strip().lower().encode("utf-8")
    return hmac.compare_digest(actual.encode("ascii"), expected)
