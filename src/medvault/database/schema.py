"""SQLite schema definitions for MedVault.

Every encrypted value is a pair of adjacent TEXT columns: the base64
``ciphertext || tag`` and the base64 IV. The plain columns next to
``encrypted_metadata`` (exam_type, doctor_name, file_name, ...) are the legacy
plaintext copies; they are only read as a fallback.
"""

SCHEMA_VERSION = 1

CREATE_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # encryption_key holds the user's key envelope (wrapped under the master key)
    """
    CREATE TABLE IF NOT EXISTS users (
        user_id TEXT PRIMARY KEY,
        email TEXT UNIQUE NOT NULL,
        name TEXT,
        password_hash TEXT NOT NULL,
        encryption_key TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS medical_exams (
        exam_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        exam_type TEXT,
        institution TEXT,
        laboratory TEXT,
        exam_date TEXT,
        encrypted_data TEXT,
        data_iv TEXT,
        encrypted_notes TEXT,
        notes_iv TEXT,
        encrypted_metadata TEXT,
        metadata_iv TEXT,
        status TEXT DEFAULT 'completed',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS appointments (
        appointment_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        doctor_name TEXT,
        specialty TEXT,
        location TEXT,
        institution TEXT,
        appointment_date TEXT,
        encrypted_notes TEXT,
        notes_iv TEXT,
        encrypted_metadata TEXT,
        metadata_iv TEXT,
        status TEXT DEFAULT 'scheduled',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS documents (
        document_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        exam_id TEXT,
        file_name TEXT,
        document_type TEXT,
        file_path TEXT NOT NULL,
        file_size INTEGER NOT NULL,
        mime_type TEXT,
        encryption_iv TEXT NOT NULL,
        file_hash TEXT NOT NULL,
        encrypted_metadata TEXT,
        metadata_iv TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
        FOREIGN KEY (exam_id) REFERENCES medical_exams(exam_id) ON DELETE SET NULL
    )
    """,
]

CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_exams_user ON medical_exams(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_appointments_user ON appointments(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_documents_user ON documents(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_documents_exam ON documents(exam_id)",
]


def get_init_schema():
    """Return all statements needed to initialize the schema."""
    return CREATE_TABLES + CREATE_INDEXES
