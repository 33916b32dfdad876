from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Iterable, Iterator, Optional

from echelon.data.storage import Database
from echelon.domain.models import AssignmentType, Unit, UnitAssignment, User
from echelon.exceptions import DataSourceError


@dataclass(frozen=True)
class HierarchySnapshot:
    units: list[Unit]
    users: list[User]
    assignments: list[UnitAssignment]


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class StoreSession:
    """
    Row-level reads and writes bound to one open transaction.
    Obtained from HierarchyRepository.session(); never outlives it.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # ----- units -------------------------------------------------------------
    def fetch_unit(self, unit_id: int) -> Optional[Unit]:
        row = self.conn.execute(
            "SELECT * FROM units WHERE id = ? AND is_deleted = 0", (unit_id,)
        ).fetchone()
        return self._unit(row) if row else None

    def fetch_all_units(self) -> list[Unit]:
        rows = self.conn.execute("SELECT * FROM units WHERE is_deleted = 0 ORDER BY id").fetchall()
        return [self._unit(r) for r in rows]

    def fetch_unit_by_referral_code(self, code: str) -> Optional[Unit]:
        row = self.conn.execute(
            "SELECT * FROM units WHERE referral_code = ? AND is_deleted = 0", (code,)
        ).fetchone()
        return self._unit(row) if row else None

    def referral_code_exists(self, code: str) -> bool:
        # Tombstoned units keep their code reserved.
        return self.conn.execute("SELECT 1 FROM units WHERE referral_code = ?", (code,)).fetchone() is not None

    def insert_unit(self, name: str, unit_level: str, parent_id: Optional[int], referral_code: str) -> Unit:
        now = _now()
        cur = self.conn.execute(
            """
            INSERT INTO units (name, parent_id, unit_level, referral_code, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (name, parent_id, unit_level, referral_code, now, now),
        )
        return self.fetch_unit(cur.lastrowid)

    def write_unit(self, unit: Unit) -> Unit:
        cur = self.conn.execute(
            """
            UPDATE units SET name = ?, unit_level = ?, parent_id = ?, updated_at = ?
            WHERE id = ? AND is_deleted = 0
            """,
            (unit.name, unit.unit_level, unit.parent_id, _now(), unit.id),
        )
        if cur.rowcount != 1:
            raise DataSourceError(f"Unit {unit.id} was not updated")
        return self.fetch_unit(unit.id)

    def tombstone_unit(self, unit_id: int) -> bool:
        now = _now()
        cur = self.conn.execute(
            "UPDATE units SET is_deleted = 1, deleted_at = ?, updated_at = ? WHERE id = ? AND is_deleted = 0",
            (now, now, unit_id),
        )
        return cur.rowcount == 1

    # ----- users -------------------------------------------------------------
    def fetch_user(self, user_id: int) -> Optional[User]:
        row = self.conn.execute(
            "SELECT * FROM users WHERE id = ? AND is_deleted = 0", (user_id,)
        ).fetchone()
        return self._user(row) if row else None

    def fetch_user_by_username(self, username: str) -> Optional[User]:
        row = self.conn.execute(
            "SELECT * FROM users WHERE username = ? AND is_deleted = 0", (username,)
        ).fetchone()
        return self._user(row) if row else None

    def fetch_all_users(self) -> list[User]:
        rows = self.conn.execute("SELECT * FROM users WHERE is_deleted = 0 ORDER BY id").fetchall()
        return [self._user(r) for r in rows]

    def fetch_users_by_unit_ids(self, unit_ids: Iterable[int]) -> list[User]:
        """Users whose legacy unit_id, or any active assignment, is in unit_ids."""
        ids = sorted(set(unit_ids))
        if not ids:
            return []
        marks = ",".join("?" for _ in ids)
        rows = self.conn.execute(
            f"""
            SELECT * FROM users
            WHERE is_deleted = 0 AND (
                unit_id IN ({marks})
                OR id IN (
                    SELECT user_id FROM unit_assignments
                    WHERE end_date IS NULL AND unit_id IN ({marks})
                )
            )
            ORDER BY id
            """,
            ids + ids,
        ).fetchall()
        return [self._user(r) for r in rows]

    def insert_user(
        self,
        username: str,
        name: str,
        rank: str,
        role: str,
        unit_id: Optional[int],
        bio: Optional[str] = None,
    ) -> User:
        now = _now()
        cur = self.conn.execute(
            """
            INSERT INTO users (username, name, rank, role, unit_id, bio, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (username, name, rank, role, unit_id, bio, now, now),
        )
        return self.fetch_user(cur.lastrowid)

    def update_user_unit(self, user_id: int, unit_id: int) -> None:
        self.conn.execute(
            "UPDATE users SET unit_id = ?, updated_at = ? WHERE id = ?",
            (unit_id, _now(), user_id),
        )

    def write_user_profile(self, user: User) -> User:
        cur = self.conn.execute(
            "UPDATE users SET name = ?, rank = ?, bio = ?, updated_at = ? WHERE id = ? AND is_deleted = 0",
            (user.name, user.rank, user.bio, _now(), user.id),
        )
        if cur.rowcount != 1:
            raise DataSourceError(f"User {user.id} was not updated")
        return self.fetch_user(user.id)

    # ----- assignments -------------------------------------------------------
    def fetch_active_assignments(self, user_id: int) -> list[UnitAssignment]:
        rows = self.conn.execute(
            "SELECT * FROM unit_assignments WHERE user_id = ? AND end_date IS NULL ORDER BY id",
            (user_id,),
        ).fetchall()
        return [self._assignment(r) for r in rows]

    def fetch_all_active_assignments(self) -> list[UnitAssignment]:
        rows = self.conn.execute(
            "SELECT * FROM unit_assignments WHERE end_date IS NULL ORDER BY id"
        ).fetchall()
        return [self._assignment(r) for r in rows]

    def fetch_assignment_history(self, user_id: int) -> list[UnitAssignment]:
        rows = self.conn.execute(
            "SELECT * FROM unit_assignments WHERE user_id = ? ORDER BY start_date, id",
            (user_id,),
        ).fetchall()
        return [self._assignment(r) for r in rows]

    def write_assignment(self, assignment: UnitAssignment) -> UnitAssignment:
        now = _now()
        if assignment.id is None:
            cur = self.conn.execute(
                """
                INSERT INTO unit_assignments
                    (user_id, unit_id, assignment_type, leadership_role, assigned_by,
                     start_date, end_date, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    assignment.user_id,
                    assignment.unit_id,
                    assignment.assignment_type.value,
                    assignment.leadership_role,
                    assignment.assigned_by,
                    _iso(assignment.start_date),
                    _iso(assignment.end_date),
                    now,
                    now,
                ),
            )
            return assignment.model_copy(update={"id": cur.lastrowid})

        cur = self.conn.execute(
            """
            UPDATE unit_assignments
            SET assignment_type = ?, leadership_role = ?, end_date = ?, updated_at = ?
            WHERE id = ? AND user_id = ?
            """,
            (
                assignment.assignment_type.value,
                assignment.leadership_role,
                _iso(assignment.end_date),
                now,
                assignment.id,
                assignment.user_id,
            ),
        )
        if cur.rowcount != 1:
            raise DataSourceError(f"Assignment {assignment.id} was not updated")
        return assignment

    def end_assignment(self, assignment_id: int, end_date: Optional[datetime] = None) -> bool:
        cur = self.conn.execute(
            "UPDATE unit_assignments SET end_date = ?, updated_at = ? WHERE id = ? AND end_date IS NULL",
            (_iso(end_date or datetime.now(UTC)), _now(), assignment_id),
        )
        return cur.rowcount == 1

    # ----- audit -------------------------------------------------------------
    def record_audit(self, user_id: Optional[int], action: str, details: dict[str, Any]) -> None:
        self.conn.execute(
            "INSERT INTO audit_logs (user_id, action, details_json, created_at) VALUES (?, ?, ?, ?)",
            (user_id, action, json.dumps(details, ensure_ascii=False, default=str), _now()),
        )

    def fetch_audit(self, limit: int = 100) -> list[dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT id, user_id, action, details_json, created_at FROM audit_logs ORDER BY id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [
            {
                "id": r["id"],
                "user_id": r["user_id"],
                "action": r["action"],
                "details": self._safe_json(r["details_json"], {}),
                "created_at": r["created_at"],
            }
            for r in rows
        ]

    # ----- snapshot ----------------------------------------------------------
    def load_snapshot(self) -> HierarchySnapshot:
        return HierarchySnapshot(
            units=self.fetch_all_units(),
            users=self.fetch_all_users(),
            assignments=self.fetch_all_active_assignments(),
        )

    # ----- row mapping -------------------------------------------------------
    @staticmethod
    def _unit(row: sqlite3.Row) -> Unit:
        return Unit(
            id=row["id"],
            name=row["name"],
            unit_level=row["unit_level"],
            parent_id=row["parent_id"],
            referral_code=row["referral_code"],
            is_deleted=bool(row["is_deleted"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            username=row["username"],
            name=row["name"],
            rank=row["rank"] or "",
            role=row["role"],
            unit_id=row["unit_id"],
            bio=row["bio"],
            is_deleted=bool(row["is_deleted"]),
        )

    @staticmethod
    def _assignment(row: sqlite3.Row) -> UnitAssignment:
        return UnitAssignment(
            id=row["id"],
            user_id=row["user_id"],
            unit_id=row["unit_id"],
            assignment_type=AssignmentType(row["assignment_type"]),
            leadership_role=row["leadership_role"],
            assigned_by=row["assigned_by"],
            start_date=row["start_date"],
            end_date=row["end_date"],
        )

    @staticmethod
    def _safe_json(raw: Optional[str], fallback: Any) -> Any:
        try:
            return json.loads(raw) if raw else fallback
        except ValueError:
            return fallback


class HierarchyRepository:
    """
    Persistence collaborator for the hierarchy engine.
    Each session() is one SQLite transaction; write sessions serialize writers.
    """

    def __init__(self, db: Database):
        self.db = db

    @contextmanager
    def session(self, write: bool = False) -> Iterator[StoreSession]:
        with self.db.transaction(write=write) as conn:
            yield StoreSession(conn)

    def load_snapshot(self) -> HierarchySnapshot:
        with self.session() as s:
            return s.load_snapshot()
