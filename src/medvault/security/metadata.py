"""Encrypted JSON metadata with a legacy-plaintext read path.

Records keep their old plaintext columns (doctor name, location, ...) until a
migration writes the encrypted pair next to them. Reads go through
:func:`get_metadata_with_fallback`, which prefers the encrypted pair and
quietly falls back to the legacy columns, so callers always get the same type
whichever source served it.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional, Type, Union

from medvault.core.exceptions import DecryptionError, EncodingError
from medvault.core.models import (
    EncryptedField,
    M,
    MetadataSource,
    ResolvedMetadata,
    StructuredMetadata,
)

from .codecs import decrypt_field, encrypt_field


logger = logging.getLogger(__name__)

ENCRYPTED_COLUMN = "encrypted_metadata"
IV_COLUMN = "metadata_iv"


def _filter_empty(obj: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in obj.items() if v is not None and v != ""}


def encrypt_metadata(
    obj: Union[Mapping[str, Any], StructuredMetadata],
    user_key: bytes,
) -> Optional[EncryptedField]:
    """Serialize and encrypt a metadata object.

    Null and empty-string values are dropped. If nothing is left, returns None:
    empty metadata is stored as absent, never as an encrypted ``{}``.
    """
    data = obj.to_dict() if isinstance(obj, StructuredMetadata) else _filter_empty(obj)
    if not data:
        return None
    return encrypt_field(json.dumps(data, ensure_ascii=False), user_key)


def decrypt_metadata(
    ciphertext_b64: str,
    iv_b64: str,
    user_key: bytes,
    metadata_type: Optional[Type[M]] = None,
):
    """Decrypt and parse a metadata blob.

    Returns the raw dict, or an instance of ``metadata_type`` when given.
    Malformed JSON raises :class:`EncodingError` (a :class:`DecryptionError`).
    """
    text = decrypt_field(ciphertext_b64, iv_b64, user_key)
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, RecursionError) as exc:
        raise EncodingError("decrypted metadata is not valid JSON") from exc
    if metadata_type is None:
        return data
    return metadata_type.from_dict(data)


def resolve_metadata(
    entity: Mapping[str, Any],
    metadata_type: Type[M],
    user_key: bytes,
    legacy_fields: Optional[Mapping[str, Any]] = None,
) -> ResolvedMetadata[M]:
    """Read metadata from the encrypted pair if possible, else from legacy columns.

    Never raises for a missing or undecryptable pair.
    """
    ciphertext = entity.get(ENCRYPTED_COLUMN)
    iv = entity.get(IV_COLUMN)
    if ciphertext and iv:
        try:
            data = decrypt_metadata(ciphertext, iv, user_key, metadata_type)
            return ResolvedMetadata(MetadataSource.ENCRYPTED, data)
        except DecryptionError as exc:
            logger.warning(
                "Falling back to legacy %s columns: %s", metadata_type.__name__, exc
            )

    legacy = entity if legacy_fields is None else legacy_fields
    return ResolvedMetadata(MetadataSource.LEGACY, metadata_type.from_legacy(legacy))


def get_metadata_with_fallback(
    entity: Mapping[str, Any],
    metadata_type: Type[M],
    user_key: bytes,
    legacy_fields: Optional[Mapping[str, Any]] = None,
) -> M:
    return resolve_metadata(entity, metadata_type, user_key, legacy_fields).data


def migrate_to_encrypted_metadata(
    entity: Mapping[str, Any],
    metadata_type: Type[StructuredMetadata],
    user_key: bytes,
) -> Optional[EncryptedField]:
    """Encrypt whatever the legacy columns hold; None when they are all empty."""
    return encrypt_metadata(metadata_type.legacy_values(entity), user_key)
