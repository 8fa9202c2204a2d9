"""Master key resolution.

The master secret is a single configuration string. If it base64-decodes to
exactly 32 bytes (standard or URL-safe alphabet, padding optional) those
bytes are the key; anything else (a passphrase, a hex
string, a short key) is hashed with SHA-256 into a 32-byte key. There is no
default: a missing secret is a :class:`ConfigurationError`.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
from typing import Mapping, Optional

from medvault.core.exceptions import ConfigurationError

from .crypto import KEY_LENGTH
from .keystore import load_secret


logger = logging.getLogger(__name__)

MASTER_KEY_ENV_VAR = "MASTER_ENCRYPTION_KEY"


def _decode_base64_secret(secret: str) -> bytes:
    # accept both alphabets and missing padding
    normalized = secret.strip().replace("-", "+").replace("_", "/").rstrip("=")
    normalized += "=" * (-len(normalized) % 4)
    return base64.b64decode(normalized)


def resolve_master_key(secret: str) -> bytes:
    """Turn the configured secret into 32 bytes of key material (pure, deterministic)."""
    try:
        decoded = _decode_base64_secret(secret)
    except (binascii.Error, ValueError):
        decoded = b""
    if len(decoded) == KEY_LENGTH:
        return decoded
    return hashlib.sha256(secret.encode("utf-8")).digest()


class MasterKeyProvider:
    """Holds the process master key.

    Construct one at startup and pass it to :class:`~medvault.security.envelope.KeyEnvelope`.
    Tests build their own with a synthetic secret; nothing here is global.
    """

    __slots__ = ("_master_key",)

    def __init__(self, secret: Optional[str]):
        if not secret:
            raise ConfigurationError(
                f"{MASTER_KEY_ENV_VAR} is not configured; refusing to run without a master key"
            )
        self._master_key = resolve_master_key(secret)

    @classmethod
    def from_env(
        cls,
        env_var: str = MASTER_KEY_ENV_VAR,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "MasterKeyProvider":
        env = os.environ if environ is None else environ
        return cls(env.get(env_var))

    @classmethod
    def from_keyring(cls, service: str, account: str) -> "MasterKeyProvider":
        secret = load_secret(service, account)
        if secret is None:
            raise ConfigurationError(f"No master secret in the OS keystore for {service}/{account}")
        logger.info("Loaded master secret from OS keystore (%s/%s)", service, account)
        return cls(secret)

    @classmethod
    def from_key(cls, key: bytes) -> "MasterKeyProvider":
        """Build a provider around raw 32-byte key material."""
        if len(key) != KEY_LENGTH:
            raise ConfigurationError(f"Master key must be {KEY_LENGTH} bytes, got {len(key)}")
        return cls(base64.b64encode(key).decode("ascii"))

    def get_master_key(self) -> bytes:
        return self._master_key

    def __repr__(self) -> str:
        return "MasterKeyProvider(<redacted>)"
