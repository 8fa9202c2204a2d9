"""SQLite connection handling for MedVault."""

import sqlite3
import threading
from pathlib import Path

from .schema import get_init_schema, SCHEMA_VERSION
from ..core.exceptions import StorageError


class DatabaseConnection:
    """Thread-local SQLite connections plus schema initialization."""

    __slots__ = ("db_path", "_local", "_lock", "_initialized")

    def __init__(self, db_path="./medvault.db"):
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._lock = threading.Lock()
        self._initialized = False

    def initialize(self):
        """Create tables if needed (idempotent)."""
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = self._get_connection()
                for statement in get_init_schema():
                    conn.execute(statement)
                conn.execute(
                    "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
                    (SCHEMA_VERSION,),
                )
                conn.commit()
                self._initialized = True
            except sqlite3.Error as e:
                raise StorageError(f"Failed to initialize database: {e}") from e

    def _get_connection(self):
        conn = getattr(self._local, "connection", None)
        if conn is None:
            conn = sqlite3.connect(
                str(self.db_path), check_same_thread=False, isolation_level=None
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self._local.connection = conn
        return conn

    def transaction(self):
        """Return a BEGIN/COMMIT/ROLLBACK context manager yielding a cursor."""
        return TransactionContext(self._get_connection())

    def execute(self, query, params=()):
        """Execute one statement; returns the number of affected rows."""
        cursor = self._get_connection().cursor()
        try:
            cursor.execute(query, params)
            return cursor.rowcount
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            raise StorageError(f"Query failed: {e}") from e
        finally:
            cursor.close()

    def fetch_one(self, query, params=()):
        """Fetch a single row as a dict or None."""
        cursor = self._get_connection().cursor()
        try:
            cursor.execute(query, params)
            row = cursor.fetchone()
            return dict(row) if row else None
        except sqlite3.Error as e:
            raise StorageError(f"Query failed: {e}") from e
        finally:
            cursor.close()

    def fetch_all(self, query, params=()):
        """Fetch all rows as a list of dicts."""
        cursor = self._get_connection().cursor()
        try:
            cursor.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise StorageError(f"Query failed: {e}") from e
        finally:
            cursor.close()

    def get_version(self):
        try:
            result = self.fetch_one("SELECT MAX(version) AS version FROM schema_version")
        except StorageError:
            return 0
        return result["version"] if result and result["version"] else 0

    def close(self):
        conn = getattr(self._local, "connection", None)
        if conn is not None:
            conn.close()
            self._local.connection = None


class TransactionContext:
    """Context manager for transactions (BEGIN/COMMIT/ROLLBACK)."""

    __slots__ = ("connection", "cursor")

    def __init__(self, connection):
        self.connection = connection
        self.cursor = None

    def __enter__(self):
        self.cursor = self.connection.cursor()
        self.cursor.execute("BEGIN")
        return self.cursor

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self.connection.commit()
            else:
                self.connection.rollback()
        finally:
            if self.cursor:
                self.cursor.close()
