import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from echelon.config import settings
from echelon.exceptions import DataSourceError


class Database:
    """
    Thin wrapper over sqlite3 for Echelon persistence.
    Keeps schema creation and transaction handling in one place.
    """

    def __init__(self, db_path: Path, timeout: Optional[float] = None):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout if timeout is not None else settings.security.sqlite_timeout_seconds
        self._ensure_schema()

    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, detect_types=sqlite3.PARSE_DECLTYPES)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _ensure_schema(self):
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS units (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    parent_id INTEGER,
                    unit_level TEXT NOT NULL,
                    referral_code TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    is_deleted INTEGER NOT NULL DEFAULT 0,
                    deleted_at TEXT
                );
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    rank TEXT NOT NULL DEFAULT '',
                    role TEXT NOT NULL,
                    unit_id INTEGER,
                    bio TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    is_deleted INTEGER NOT NULL DEFAULT 0,
                    deleted_at TEXT
                );
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS unit_assignments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id),
                    unit_id INTEGER NOT NULL REFERENCES units(id),
                    assignment_type TEXT NOT NULL,
                    leadership_role TEXT,
                    assigned_by INTEGER REFERENCES users(id),
                    start_date TEXT NOT NULL,
                    end_date TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS audit_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER,
                    action TEXT NOT NULL,
                    details_json TEXT,
                    created_at TEXT NOT NULL
                );
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_units_parent ON units (parent_id);")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_users_unit ON users (unit_id);")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_assign_user_active ON unit_assignments (user_id, end_date);"
            )
            # One active assignment per (user, unit) at the storage level as well.
            cur.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS uq_assign_active_user_unit
                ON unit_assignments (user_id, unit_id) WHERE end_date IS NULL;
                """
            )
            conn.commit()
        conn.close()

    @contextmanager
    def transaction(self, write: bool = False) -> Iterator[sqlite3.Connection]:
        """
        One connection, one transaction. Write transactions take the database
        write lock up front (BEGIN IMMEDIATE) so validation and writes are not
        interleaved with another writer; read transactions see one consistent
        snapshot.
        """
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise DataSourceError(f"Cannot open database {self.db_path}: {exc}") from exc
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise DataSourceError(str(exc)) from exc
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()
