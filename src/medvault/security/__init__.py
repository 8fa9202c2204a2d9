"""Per-user envelope encryption for MedVault.

- a master key resolved once from configuration (:mod:`.provider`)
- one random data key per user, stored wrapped under the master key (:mod:`.envelope`)
- AES-256-GCM for every field, file and metadata blob (:mod:`.crypto`, :mod:`.codecs`, :mod:`.metadata`)

Callers outside this package use the codecs; the raw cipher is an implementation detail.
"""

from .provider import MasterKeyProvider, resolve_master_key, MASTER_KEY_ENV_VAR
from .envelope import KeyEnvelope
from .codecs import (
    encrypt_field,
    decrypt_field,
    decrypt_optional_field,
    encrypt_file,
    decrypt_file,
    verify_file_hash,
)
from .metadata import (
    encrypt_metadata,
    decrypt_metadata,
    get_metadata_with_fallback,
    resolve_metadata,
    migrate_to_encrypted_metadata,
)
from .passwords import hash_password, verify_password

__all__ = [
    "MasterKeyProvider",
    "resolve_master_key",
    "MASTER_KEY_ENV_VAR",
    "KeyEnvelope",
    "encrypt_field",
    "decrypt_field",
    "decrypt_optional_field",
    "encrypt_file",
    "decrypt_file",
    "verify_file_hash",
    "encrypt_metadata",
    "decrypt_metadata",
    "get_metadata_with_fallback",
    "resolve_metadata",
    "migrate_to_encrypted_metadata",
    "hash_password",
    "verify_password",
]
