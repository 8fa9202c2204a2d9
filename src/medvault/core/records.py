"""
Record service: the application-facing side of MedVault.

Every operation looks up the user's key envelope, unwraps it for the duration
of the call and goes through the field/file/metadata codecs. Unwrapped keys
are never cached or stored.

Failure policy:
- a bad envelope (KeyUnwrapError) aborts the operation
- primary payloads (exam results, document bytes) raise DecryptionError
- optional values (notes) come back as None and metadata falls back to the
  legacy plaintext columns
"""

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..database.connection import DatabaseConnection
from ..database.models import AppointmentModel, DocumentModel, ExamModel, UserModel
from ..security.codecs import decrypt_field, decrypt_optional_field, encrypt_field
from ..security.envelope import KeyEnvelope
from ..security.metadata import encrypt_metadata, get_metadata_with_fallback
from ..security.passwords import hash_password, verify_password
from ..security.provider import MasterKeyProvider
from .config import Settings
from .exceptions import EncodingError, RecordNotFoundError, UserNotFoundError
from .models import AppointmentMetadata, DocumentMetadata, ExamMetadata
from .storage import EncryptedFileStorage


logger = logging.getLogger(__name__)

# "leave this column alone" marker for partial updates (None means clear)
_KEEP = object()


@dataclass
class ExamRecord:
    exam_id: str
    user_id: str
    exam_date: Optional[str]
    status: str
    results: Optional[Dict[str, Any]]
    notes: Optional[str]
    metadata: ExamMetadata


@dataclass
class AppointmentRecord:
    appointment_id: str
    user_id: str
    appointment_date: Optional[str]
    specialty: Optional[str]
    status: str
    notes: Optional[str]
    metadata: AppointmentMetadata


@dataclass
class DocumentRecord:
    document_id: str
    user_id: str
    exam_id: Optional[str]
    file_path: str
    file_size: int
    mime_type: Optional[str]
    file_hash: str
    metadata: DocumentMetadata


def _pair(encrypted, ciphertext_column, iv_column):
    if encrypted is None:
        return {ciphertext_column: None, iv_column: None}
    return {ciphertext_column: encrypted.ciphertext, iv_column: encrypted.iv}


class MedicalRecordService:
    """CRUD over exams, appointments and documents with per-user encryption."""

    def __init__(
        self,
        db: DatabaseConnection,
        envelope: KeyEnvelope,
        storage: EncryptedFileStorage,
    ):
        self.db = db
        self.envelope = envelope
        self.storage = storage
        self.users = UserModel(db)
        self.exams = ExamModel(db)
        self.appointments = AppointmentModel(db)
        self.documents = DocumentModel(db)

    @classmethod
    def from_settings(cls, settings: Settings, provider: MasterKeyProvider) -> "MedicalRecordService":
        """Open the configured database and upload directory."""
        db = DatabaseConnection(settings.db_path)
        db.initialize()
        return cls(db, KeyEnvelope(provider), EncryptedFileStorage.from_settings(settings))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def register_user(self, email: str, password: str, name: Optional[str] = None):
        """Create an account with a fresh key envelope. Returns the user row."""
        user_id = uuid.uuid4().hex
        user = self.users.create(
            user_id=user_id,
            email=email.strip().lower(),
            password_hash=hash_password(password),
            encryption_key=self.envelope.generate_user_key(),
            name=name,
        )
        logger.info("Registered user %s", user_id)
        return user

    def authenticate(self, email: str, password: str):
        """Return the user row if the credentials match, else None."""
        user = self.users.get_by_email(email.strip().lower())
        if user is None or not verify_password(password, user["password_hash"]):
            return None
        return user

    def _user_key(self, user_id: str) -> bytes:
        user = self.users.get(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return self.envelope.unwrap_user_key(user["encryption_key"])

    def _owned(self, model, record_id: str, user_id: str):
        # rows owned by someone else look exactly like missing rows
        row = model.get_for_user(record_id, user_id)
        if row is None:
            raise RecordNotFoundError(f"{model.TABLE} record {record_id} not found")
        return row

    @staticmethod
    def _notes_columns(notes: Optional[str], user_key: bytes):
        encrypted = encrypt_field(notes, user_key) if notes else None
        return _pair(encrypted, "encrypted_notes", "notes_iv")

    @staticmethod
    def _metadata_columns(metadata, user_key: bytes):
        return _pair(encrypt_metadata(metadata, user_key), "encrypted_metadata", "metadata_iv")

    # ------------------------------------------------------------------
    # Exams
    # ------------------------------------------------------------------

    def create_exam(
        self,
        user_id: str,
        results: Dict[str, Any],
        metadata: ExamMetadata,
        notes: Optional[str] = None,
        exam_date: Optional[str] = None,
        status: str = "completed",
    ) -> ExamRecord:
        key = self._user_key(user_id)
        values = {"exam_date": exam_date, "status": status}
        values.update(
            _pair(
                encrypt_field(json.dumps(results, ensure_ascii=False), key),
                "encrypted_data",
                "data_iv",
            )
        )
        values.update(self._notes_columns(notes, key))
        values.update(self._metadata_columns(metadata, key))

        exam_id = uuid.uuid4().hex
        row = self.exams.insert(exam_id, user_id, values)
        return self._exam_view(row, key)

    def _exam_view(self, row, key: bytes) -> ExamRecord:
        results = None
        if row.get("encrypted_data") and row.get("data_iv"):
            raw = decrypt_field(row["encrypted_data"], row["data_iv"], key)
            try:
                results = json.loads(raw)
            except (json.JSONDecodeError, RecursionError) as e:
                raise EncodingError(f"Exam {row['exam_id']} results are not valid JSON") from e

        return ExamRecord(
            exam_id=row["exam_id"],
            user_id=row["user_id"],
            exam_date=row.get("exam_date"),
            status=row.get("status") or "completed",
            results=results,
            notes=decrypt_optional_field(
                row.get("encrypted_notes"), row.get("notes_iv"), key, label="exam notes"
            ),
            metadata=get_metadata_with_fallback(row, ExamMetadata, key),
        )

    def get_exam(self, user_id: str, exam_id: str) -> ExamRecord:
        row = self._owned(self.exams, exam_id, user_id)
        return self._exam_view(row, self._user_key(user_id))

    def list_exams(self, user_id: str) -> List[ExamRecord]:
        key = self._user_key(user_id)
        return [self._exam_view(row, key) for row in self.exams.list_by_user(user_id)]

    def update_exam(
        self,
        user_id: str,
        exam_id: str,
        results=_KEEP,
        metadata=_KEEP,
        notes=_KEEP,
        status=_KEEP,
    ) -> ExamRecord:
        """Replace the given parts of an exam; each new value gets a fresh IV."""
        self._owned(self.exams, exam_id, user_id)
        key = self._user_key(user_id)
        values = {}
        if results is not _KEEP:
            encrypted = (
                encrypt_field(json.dumps(results, ensure_ascii=False), key)
                if results is not None
                else None
            )
            values.update(_pair(encrypted, "encrypted_data", "data_iv"))
        if metadata is not _KEEP:
            values.update(self._metadata_columns(metadata or {}, key))
        if notes is not _KEEP:
            values.update(self._notes_columns(notes, key))
        if status is not _KEEP:
            values["status"] = status
        self.exams.update(exam_id, values)
        return self._exam_view(self.exams.get(exam_id), key)

    def update_exam_notes(self, user_id: str, exam_id: str, notes: Optional[str]) -> ExamRecord:
        return self.update_exam(user_id, exam_id, notes=notes)

    def delete_exam(self, user_id: str, exam_id: str) -> None:
        """Delete an exam together with its documents and their encrypted files."""
        self._owned(self.exams, exam_id, user_id)
        for document in self.documents.list_by_exam(exam_id):
            self._remove_document(document)
        self.exams.delete(exam_id)
        logger.info("Deleted exam %s", exam_id)

    # ------------------------------------------------------------------
    # Appointments
    # ------------------------------------------------------------------

    def create_appointment(
        self,
        user_id: str,
        metadata: AppointmentMetadata,
        appointment_date: Optional[str] = None,
        notes: Optional[str] = None,
        specialty: Optional[str] = None,
        status: str = "scheduled",
    ) -> AppointmentRecord:
        key = self._user_key(user_id)
        values = {
            "appointment_date": appointment_date,
            "specialty": specialty,
            "status": status,
        }
        values.update(self._notes_columns(notes, key))
        values.update(self._metadata_columns(metadata, key))

        appointment_id = uuid.uuid4().hex
        row = self.appointments.insert(appointment_id, user_id, values)
        return self._appointment_view(row, key)

    def _appointment_view(self, row, key: bytes) -> AppointmentRecord:
        return AppointmentRecord(
            appointment_id=row["appointment_id"],
            user_id=row["user_id"],
            appointment_date=row.get("appointment_date"),
            specialty=row.get("specialty"),
            status=row.get("status") or "scheduled",
            notes=decrypt_optional_field(
                row.get("encrypted_notes"), row.get("notes_iv"), key, label="appointment notes"
            ),
            metadata=get_metadata_with_fallback(row, AppointmentMetadata, key),
        )

    def get_appointment(self, user_id: str, appointment_id: str) -> AppointmentRecord:
        row = self._owned(self.appointments, appointment_id, user_id)
        return self._appointment_view(row, self._user_key(user_id))

    def list_appointments(self, user_id: str) -> List[AppointmentRecord]:
        key = self._user_key(user_id)
        return [self._appointment_view(row, key) for row in self.appointments.list_by_user(user_id)]

    def update_appointment(
        self,
        user_id: str,
        appointment_id: str,
        metadata=_KEEP,
        notes=_KEEP,
        appointment_date=_KEEP,
        status=_KEEP,
    ) -> AppointmentRecord:
        self._owned(self.appointments, appointment_id, user_id)
        key = self._user_key(user_id)
        values = {}
        if metadata is not _KEEP:
            values.update(self._metadata_columns(metadata or {}, key))
        if notes is not _KEEP:
            values.update(self._notes_columns(notes, key))
        if appointment_date is not _KEEP:
            values["appointment_date"] = appointment_date
        if status is not _KEEP:
            values["status"] = status
        self.appointments.update(appointment_id, values)
        return self._appointment_view(self.appointments.get(appointment_id), key)

    def delete_appointment(self, user_id: str, appointment_id: str) -> None:
        self._owned(self.appointments, appointment_id, user_id)
        self.appointments.delete(appointment_id)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def upload_document(
        self,
        user_id: str,
        data: bytes,
        file_name: str,
        mime_type: Optional[str] = None,
        exam_id: Optional[str] = None,
        document_type: Optional[str] = None,
    ) -> DocumentRecord:
        """Encrypt and store an uploaded file, then record it."""
        if exam_id is not None:
            self._owned(self.exams, exam_id, user_id)
        key = self._user_key(user_id)

        stored = self.storage.save_encrypted_file(data, user_id, key, file_name)
        values = {
            "exam_id": exam_id,
            "file_path": stored.file_name,
            "file_size": stored.size,
            "mime_type": mime_type,
            "encryption_iv": stored.iv,
            "file_hash": stored.file_hash,
        }
        values.update(
            self._metadata_columns(
                DocumentMetadata(file_name=file_name, document_type=document_type), key
            )
        )

        document_id = uuid.uuid4().hex
        try:
            row = self.documents.insert(document_id, user_id, values)
        except Exception:
            # don't leave an orphaned ciphertext file behind
            self.storage.delete_file(stored.file_name)
            raise
        return self._document_view(row, key)

    def _document_view(self, row, key: bytes) -> DocumentRecord:
        return DocumentRecord(
            document_id=row["document_id"],
            user_id=row["user_id"],
            exam_id=row.get("exam_id"),
            file_path=row["file_path"],
            file_size=row["file_size"],
            mime_type=row.get("mime_type"),
            file_hash=row["file_hash"],
            metadata=get_metadata_with_fallback(row, DocumentMetadata, key),
        )

    def get_document(self, user_id: str, document_id: str) -> DocumentRecord:
        row = self._owned(self.documents, document_id, user_id)
        return self._document_view(row, self._user_key(user_id))

    def list_documents(self, user_id: str) -> List[DocumentRecord]:
        key = self._user_key(user_id)
        return [self._document_view(row, key) for row in self.documents.list_by_user(user_id)]

    def read_document(self, user_id: str, document_id: str) -> Tuple[DocumentRecord, bytes]:
        """Return the document record and its decrypted, hash-verified bytes."""
        row = self._owned(self.documents, document_id, user_id)
        key = self._user_key(user_id)
        data = self.storage.read_encrypted_file(
            row["file_path"], row["encryption_iv"], key, expected_hash=row["file_hash"]
        )
        return self._document_view(row, key), data

    def _remove_document(self, row) -> None:
        try:
            self.storage.delete_file(row["file_path"])
        except RecordNotFoundError:
            logger.warning(
                "Encrypted file for document %s was already gone", row["document_id"]
            )
        self.documents.delete(row["document_id"])

    def delete_document(self, user_id: str, document_id: str) -> None:
        row = self._owned(self.documents, document_id, user_id)
        self._remove_document(row)
