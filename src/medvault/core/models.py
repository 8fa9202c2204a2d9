"""
Value types shared by the codecs, the storage layer and the record service
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Dict, Generic, Mapping, Optional, Tuple, TypeVar

from .exceptions import EncodingError


UNKNOWN = "Desconocido"


@dataclass(frozen=True)
class EncryptedField:
    # two adjacent persisted columns: base64(ciphertext || tag) and base64(iv)
    ciphertext: str
    iv: str


@dataclass(frozen=True)
class EncryptedFile:
    # raw ciphertext || tag for disk, iv (base64) and plaintext sha256 for the record
    ciphertext: bytes = field(repr=False)
    iv: str
    sha256: str


@dataclass(frozen=True)
class StoredFile:
    """What the owning record keeps about a file written by the storage layer."""

    file_name: str
    iv: str
    file_hash: str
    size: int


class MetadataSource(Enum):
    # where a piece of structured metadata was read from
    ENCRYPTED = "encrypted"
    LEGACY = "legacy"


@dataclass
class StructuredMetadata:
    """Base for the small metadata objects stored as one encrypted JSON blob.

    ``JSON_KEYS`` maps attribute names to the keys used inside the encrypted
    JSON payload (camelCase, as already stored). Legacy plaintext columns use
    the attribute names directly.
    """

    JSON_KEYS: ClassVar[Dict[str, str]] = {}
    REQUIRED: ClassVar[str] = ""

    def to_dict(self) -> Dict[str, Any]:
        """JSON form, with None/empty values left out."""
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or value == "":
                continue
            out[self.JSON_KEYS.get(f.name, f.name)] = value
        return out

    @classmethod
    def from_dict(cls, data: Any):
        if not isinstance(data, dict):
            raise EncodingError(f"{cls.__name__} payload must be a JSON object")
        kwargs = {f.name: data.get(cls.JSON_KEYS.get(f.name, f.name)) for f in fields(cls)}
        if not kwargs.get(cls.REQUIRED):
            kwargs[cls.REQUIRED] = UNKNOWN
        return cls(**kwargs)

    @classmethod
    def legacy_columns(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def legacy_values(cls, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Non-empty legacy column values, keyed by JSON key (no defaults applied)."""
        out = {}
        for name in cls.legacy_columns():
            value = row.get(name)
            if value is None or value == "":
                continue
            out[cls.JSON_KEYS.get(name, name)] = value
        return out

    @classmethod
    def from_legacy(cls, row: Mapping[str, Any]):
        kwargs = {name: (row.get(name) or None) for name in cls.legacy_columns()}
        if not kwargs.get(cls.REQUIRED):
            kwargs[cls.REQUIRED] = UNKNOWN
        return cls(**kwargs)


@dataclass
class ExamMetadata(StructuredMetadata):
    JSON_KEYS: ClassVar[Dict[str, str]] = {"exam_type": "examType"}
    REQUIRED: ClassVar[str] = "exam_type"

    exam_type: str = UNKNOWN
    institution: Optional[str] = None
    laboratory: Optional[str] = None


@dataclass
class AppointmentMetadata(StructuredMetadata):
    JSON_KEYS: ClassVar[Dict[str, str]] = {"doctor_name": "doctorName"}
    REQUIRED: ClassVar[str] = "doctor_name"

    doctor_name: str = UNKNOWN
    location: Optional[str] = None
    institution: Optional[str] = None


@dataclass
class DocumentMetadata(StructuredMetadata):
    JSON_KEYS: ClassVar[Dict[str, str]] = {
        "file_name": "fileName",
        "document_type": "documentType",
    }
    REQUIRED: ClassVar[str] = "file_name"

    file_name: str = UNKNOWN
    document_type: Optional[str] = None


M = TypeVar("M", bound=StructuredMetadata)


@dataclass(frozen=True)
class ResolvedMetadata(Generic[M]):
    # tagged result of the encrypted-or-legacy read; callers only see .data
    source: MetadataSource
    data: M
