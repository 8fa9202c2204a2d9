"""Per-user key envelopes.

Each user gets a random 32-byte data key at registration. The key is encrypted
under the master key and stored on the user record as::

    base64( IV(16) || tag(16) || ciphertext(32) )

The master key is only ever used here, to wrap and unwrap these envelopes; it
never encrypts a field or a file directly.
"""
from __future__ import annotations

import base64
import binascii

from medvault.core.exceptions import DecryptionError, KeyUnwrapError

from . import crypto
from .provider import MasterKeyProvider


ENVELOPE_LENGTH = crypto.IV_LENGTH + crypto.TAG_LENGTH + crypto.KEY_LENGTH


class KeyEnvelope:
    """Wraps and unwraps user data keys with the master key."""

    __slots__ = ("_provider",)

    def __init__(self, provider: MasterKeyProvider):
        self._provider = provider

    def wrap_user_key(self, user_key: bytes) -> str:
        """Encrypt an existing 32-byte user key into envelope form."""
        if len(user_key) != crypto.KEY_LENGTH:
            raise ValueError(f"user key must be {crypto.KEY_LENGTH} bytes, got {len(user_key)}")
        sealed, iv = crypto.encrypt(user_key, self._provider.get_master_key())
        ciphertext, tag = crypto.split_tag(sealed)
        return base64.b64encode(iv + tag + ciphertext).decode("ascii")

    def generate_user_key(self) -> str:
        """Draw a fresh user key and return its envelope.

        The raw key is not returned; callers go through :meth:`unwrap_user_key`
        whenever they need it.
        """
        return self.wrap_user_key(crypto.generate_key())

    def unwrap_user_key(self, envelope: str) -> bytes:
        """Recover the user key, or raise :class:`KeyUnwrapError`.

        There is no fallback: a bad envelope means the dependent operation must
        be aborted.
        """
        if not envelope:
            raise KeyUnwrapError("user key envelope is empty")
        try:
            raw = base64.b64decode(envelope, validate=True)
        except (binascii.Error, ValueError, TypeError) as exc:
            raise KeyUnwrapError("user key envelope is not valid base64") from exc

        if len(raw) != ENVELOPE_LENGTH:
            raise KeyUnwrapError(
                f"user key envelope must be {ENVELOPE_LENGTH} bytes, got {len(raw)}"
            )

        iv = raw[: crypto.IV_LENGTH]
        tag = raw[crypto.IV_LENGTH : crypto.IV_LENGTH + crypto.TAG_LENGTH]
        ciphertext = raw[crypto.IV_LENGTH + crypto.TAG_LENGTH :]
        try:
            return crypto.decrypt(ciphertext + tag, iv, self._provider.get_master_key())
        except DecryptionError as exc:
            raise KeyUnwrapError("user key envelope failed authentication") from exc
