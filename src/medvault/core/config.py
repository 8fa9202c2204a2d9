"""
Runtime settings for MedVault.

Values come from the environment (optionally seeded from a ``.env`` file).
The master secret is *not* part of Settings; it is resolved separately by
:class:`medvault.security.provider.MasterKeyProvider` so it never sits in a
plain config object.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from .exceptions import ConfigurationError


DEFAULT_UPLOAD_DIR = "uploads"
DEFAULT_DB_PATH = "medvault.db"
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MB


@dataclass(frozen=True)
class Settings:
    upload_dir: Path = Path(DEFAULT_UPLOAD_DIR)
    db_path: Path = Path(DEFAULT_DB_PATH)
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        dotenv: bool = False,
    ) -> "Settings":
        """Build settings from environment variables.

        ``dotenv=True`` loads a ``.env`` file from the working directory first
        (existing variables win).
        """
        if dotenv:
            load_dotenv(find_dotenv(usecwd=True))
        env = os.environ if environ is None else environ

        raw_max = env.get("MEDVAULT_MAX_UPLOAD_BYTES")
        try:
            max_bytes = int(raw_max) if raw_max else DEFAULT_MAX_UPLOAD_BYTES
        except ValueError as exc:
            raise ConfigurationError(
                f"MEDVAULT_MAX_UPLOAD_BYTES must be an integer, got {raw_max!r}"
            ) from exc
        if max_bytes <= 0:
            raise ConfigurationError("MEDVAULT_MAX_UPLOAD_BYTES must be positive")

        return cls(
            upload_dir=Path(env.get("MEDVAULT_UPLOAD_DIR") or DEFAULT_UPLOAD_DIR).expanduser(),
            db_path=Path(env.get("MEDVAULT_DB_PATH") or DEFAULT_DB_PATH).expanduser(),
            max_upload_bytes=max_bytes,
        )
