"""Row-level helpers for the MedVault tables.

Rows come back as plain dicts. These helpers never encrypt or decrypt
anything; they store and return the column pairs exactly as given.
"""

import sqlite3
from datetime import datetime, timezone

from .connection import DatabaseConnection
from ..core.exceptions import StorageError, UserExistsError


def _now():
    return datetime.now(timezone.utc).isoformat()


class BaseModel:
    """Base class for DB models."""

    __slots__ = ("db",)

    def __init__(self, db: DatabaseConnection):
        self.db = db


class UserModel(BaseModel):
    """DB model for users."""

    def create(self, user_id, email, password_hash, encryption_key, name=None):
        query = """
            INSERT INTO users (user_id, email, name, password_hash, encryption_key)
            VALUES (?, ?, ?, ?, ?)
        """
        try:
            self.db.execute(query, (user_id, email, name, password_hash, encryption_key))
        except sqlite3.IntegrityError as e:
            raise UserExistsError(f"A user with email {email!r} already exists") from e
        return self.get(user_id)

    def get(self, user_id):
        return self.db.fetch_one("SELECT * FROM users WHERE user_id = ?", (user_id,))

    def get_by_email(self, email):
        return self.db.fetch_one("SELECT * FROM users WHERE email = ?", (email,))

    def delete(self, user_id):
        return self.db.execute("DELETE FROM users WHERE user_id = ?", (user_id,)) > 0


class RecordModel(BaseModel):
    """Shared CRUD for the per-user record tables.

    Subclasses name their table, primary key and writable columns. Column names
    are checked against ``COLUMNS`` before being put into SQL.
    """

    TABLE = ""
    KEY = ""
    COLUMNS = ()
    ORDER_BY = "created_at DESC"

    def _check_columns(self, values):
        unknown = set(values) - set(self.COLUMNS)
        if unknown:
            raise StorageError(f"Unknown {self.TABLE} columns: {sorted(unknown)}")

    def insert(self, record_id, user_id, values):
        self._check_columns(values)
        columns = [self.KEY, "user_id"] + list(values)
        placeholders = ", ".join("?" for _ in columns)
        query = f"INSERT INTO {self.TABLE} ({', '.join(columns)}) VALUES ({placeholders})"
        try:
            self.db.execute(query, (record_id, user_id, *values.values()))
        except sqlite3.IntegrityError as e:
            raise StorageError(f"Failed to insert into {self.TABLE}: {e}") from e
        return self.get(record_id)

    def get(self, record_id):
        query = f"SELECT * FROM {self.TABLE} WHERE {self.KEY} = ?"
        return self.db.fetch_one(query, (record_id,))

    def get_for_user(self, record_id, user_id):
        query = f"SELECT * FROM {self.TABLE} WHERE {self.KEY} = ? AND user_id = ?"
        return self.db.fetch_one(query, (record_id, user_id))

    def list_by_user(self, user_id):
        query = f"SELECT * FROM {self.TABLE} WHERE user_id = ? ORDER BY {self.ORDER_BY}"
        return self.db.fetch_all(query, (user_id,))

    def update(self, record_id, values, touch=True):
        """Overwrite the given columns. Encrypted pairs are replaced, never merged."""
        if not values:
            return False
        self._check_columns(values)
        values = dict(values)
        if touch and "updated_at" in self.COLUMNS:
            values["updated_at"] = _now()
        assignments = ", ".join(f"{column} = ?" for column in values)
        query = f"UPDATE {self.TABLE} SET {assignments} WHERE {self.KEY} = ?"
        return self.db.execute(query, (*values.values(), record_id)) > 0

    def delete(self, record_id):
        query = f"DELETE FROM {self.TABLE} WHERE {self.KEY} = ?"
        return self.db.execute(query, (record_id,)) > 0

    def list_pending_metadata(self):
        """Rows that still have no encrypted metadata, joined with their owner's envelope."""
        query = f"""
            SELECT r.*, u.encryption_key AS owner_encryption_key
            FROM {self.TABLE} r JOIN users u ON u.user_id = r.user_id
            WHERE r.encrypted_metadata IS NULL
        """
        return self.db.fetch_all(query)


class ExamModel(RecordModel):
    TABLE = "medical_exams"
    KEY = "exam_id"
    COLUMNS = (
        "exam_type",
        "institution",
        "laboratory",
        "exam_date",
        "encrypted_data",
        "data_iv",
        "encrypted_notes",
        "notes_iv",
        "encrypted_metadata",
        "metadata_iv",
        "status",
        "updated_at",
    )
    ORDER_BY = "exam_date DESC, created_at DESC"


class AppointmentModel(RecordModel):
    TABLE = "appointments"
    KEY = "appointment_id"
    COLUMNS = (
        "doctor_name",
        "specialty",
        "location",
        "institution",
        "appointment_date",
        "encrypted_notes",
        "notes_iv",
        "encrypted_metadata",
        "metadata_iv",
        "status",
        "updated_at",
    )
    ORDER_BY = "appointment_date ASC, created_at ASC"


class DocumentModel(RecordModel):
    TABLE = "documents"
    KEY = "document_id"
    COLUMNS = (
        "exam_id",
        "file_name",
        "document_type",
        "file_path",
        "file_size",
        "mime_type",
        "encryption_iv",
        "file_hash",
        "encrypted_metadata",
        "metadata_iv",
    )

    def list_by_exam(self, exam_id):
        return self.db.fetch_all(
            "SELECT * FROM documents WHERE exam_id = ? ORDER BY created_at", (exam_id,)
        )
