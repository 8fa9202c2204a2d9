"""AES-256-GCM primitive shared by the envelope and the field/file codecs.

Layout conventions:
- ciphertext blobs are ``ciphertext || tag`` (the tag is the trailing 16 bytes),
  which is exactly what :class:`AESGCM` produces
- every call to :func:`encrypt` draws a fresh 16-byte IV from ``os.urandom``

The IV is 16 bytes rather than the usual 12 so that records written by earlier
deployments keep decrypting bit-for-bit. GCM accepts both; non-96-bit IVs are
run through GHASH first.

Nothing in this module ever returns plaintext without the tag having been
verified: :meth:`AESGCM.decrypt` authenticates before it releases any output.
"""
import os
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from medvault.core.exceptions import DecryptionError


KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16


def generate_key() -> bytes:
    return os.urandom(KEY_LENGTH)


def generate_iv() -> bytes:
    return os.urandom(IV_LENGTH)


def _aead(key: bytes) -> AESGCM:
    if len(key) != KEY_LENGTH:
        raise ValueError(f"AES-256-GCM needs a {KEY_LENGTH}-byte key, got {len(key)}")
    return AESGCM(key)


def encrypt(plaintext: bytes, key: bytes) -> Tuple[bytes, bytes]:
    """Encrypt ``plaintext`` under ``key``.

    Returns ``(ciphertext_with_tag, iv)``. The IV is never supplied by the
    caller, so it can't be reused by accident.
    """
    aead = _aead(key)
    iv = generate_iv()
    return aead.encrypt(iv, plaintext, None), iv


def decrypt(ciphertext_with_tag: bytes, iv: bytes, key: bytes) -> bytes:
    """Verify the trailing tag and return the plaintext.

    Raises :class:`DecryptionError` on a malformed IV, a blob too short to hold a
    tag, or any authentication failure (tampering, truncation, wrong key).
    """
    if len(iv) != IV_LENGTH:
        raise DecryptionError(f"IV must be {IV_LENGTH} bytes, got {len(iv)}")
    if len(ciphertext_with_tag) < TAG_LENGTH:
        raise DecryptionError("Ciphertext too short to contain authentication tag")

    aead = _aead(key)
    try:
        return aead.decrypt(iv, ciphertext_with_tag, None)
    except InvalidTag as exc:
        raise DecryptionError("authentication failed (tag mismatch)") from exc


def split_tag(ciphertext_with_tag: bytes) -> Tuple[bytes, bytes]:
    """Split ``ciphertext || tag`` into ``(ciphertext, tag)``."""
    if len(ciphertext_with_tag) < TAG_LENGTH:
        raise DecryptionError("Ciphertext too short to contain authentication tag")
    return ciphertext_with_tag[:-TAG_LENGTH], ciphertext_with_tag[-TAG_LENGTH:]
