"""
Overlay Plans — SQLite storage.

Users, projects, project membership, time slots and chat sessions persist in
a single SQLite file. Each call opens its own connection; every multi-row
write happens inside one transaction so readers never observe half of it.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

from src.core.colors import color_for_user
from src.data.models import (
    NewTimeSlot,
    Project,
    SlotStatus,
    TimeSlot,
    User,
    format_timestamp,
    parse_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    external_handle  TEXT    NOT NULL UNIQUE,
    first_name       TEXT    NOT NULL DEFAULT '',
    last_name        TEXT    NOT NULL DEFAULT '',
    username         TEXT    NOT NULL DEFAULT '',
    avatar_url       TEXT    NOT NULL DEFAULT '',
    language         TEXT    NOT NULL DEFAULT 'en',
    created_at       TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    name         TEXT NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    created_at   TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS project_members (
    project_id  INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    user_id     INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    joined_at   TEXT    NOT NULL,
    PRIMARY KEY (project_id, user_id)
);

CREATE TABLE IF NOT EXISTS timeslots (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id     INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    user_id        INTEGER NOT NULL REFERENCES users(id),
    created_by_id  INTEGER NOT NULL REFERENCES users(id),
    start_time     TEXT    NOT NULL,
    end_time       TEXT    NOT NULL,
    status         TEXT    NOT NULL DEFAULT 'available',
    notes          TEXT    NOT NULL DEFAULT '',
    label          TEXT    NOT NULL DEFAULT '',
    color          TEXT    NOT NULL DEFAULT '',
    is_locked      INTEGER NOT NULL DEFAULT 0,
    created_at     TEXT    NOT NULL,
    updated_at     TEXT
);

CREATE INDEX IF NOT EXISTS idx_timeslots_project_user
    ON timeslots (project_id, user_id, start_time);

CREATE TABLE IF NOT EXISTS chat_sessions (
    session_key  TEXT PRIMARY KEY,
    payload      TEXT NOT NULL,
    updated_at   TEXT NOT NULL
);
"""


class _Database:
    """Shared connection handling and schema setup."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create all tables if they don't exist, and migrate schema."""
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
            # Databases created before avatar_url existed
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(users)").fetchall()
            }
            if "avatar_url" not in existing_cols:
                conn.execute("ALTER TABLE users ADD COLUMN avatar_url TEXT NOT NULL DEFAULT ''")
        logger.debug("Schema initialized at %s", self._db_path)


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        external_handle=row["external_handle"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        username=row["username"],
        avatar_url=row["avatar_url"],
        language=row["language"],
        created_at=row["created_at"],
    )


def _row_to_timeslot(row: sqlite3.Row) -> TimeSlot:
    return TimeSlot(
        id=row["id"],
        project_id=row["project_id"],
        user_id=row["user_id"],
        created_by_id=row["created_by_id"],
        start_time=parse_timestamp(row["start_time"]),
        end_time=parse_timestamp(row["end_time"]),
        status=SlotStatus(row["status"]),
        notes=row["notes"],
        label=row["label"],
        color=row["color"],
        is_locked=bool(row["is_locked"]),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]) if row["updated_at"] else None,
    )


class UserDB(_Database):
    """SQLite-backed storage for users, keyed by their external handle."""

    def get_or_create(
        self,
        external_handle: str,
        first_name: str = "",
        last_name: str = "",
        username: str = "",
        language: str = "en",
    ) -> tuple[User, bool]:
        """Return (user, created). Safe against concurrent first contact.

        `language` only applies to a newly created user.
        """
        now = format_timestamp(utc_now())
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO users
                    (external_handle, first_name, last_name, username, language, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (external_handle, first_name, last_name, username, language, now),
            )
            created = cursor.rowcount > 0
            row = conn.execute(
                "SELECT * FROM users WHERE external_handle = ?", (external_handle,),
            ).fetchone()
        user = _row_to_user(row)
        if created:
            logger.info("User registered: #%d handle=%s", user.id, external_handle)
        return user, created

    def get_user(self, user_id: int) -> User | None:
        """Fetch a user by internal id."""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return _row_to_user(row)

    def get_by_handle(self, external_handle: str) -> User | None:
        """Fetch a user by external handle."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE external_handle = ?", (external_handle,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_user(row)

    def update_profile(
        self,
        user_id: int,
        first_name: str | None = None,
        last_name: str | None = None,
        username: str | None = None,
        avatar_url: str | None = None,
    ) -> None:
        """Refresh display fields. None leaves a field unchanged."""
        fields = {
            "first_name": first_name,
            "last_name": last_name,
            "username": username,
            "avatar_url": avatar_url,
        }
        updates = {k: v for k, v in fields.items() if v is not None}
        if not updates:
            return
        assignments = ", ".join(f"{col} = ?" for col in updates)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE users SET {assignments} WHERE id = ?",
                (*updates.values(), user_id),
            )

    def set_language(self, user_id: int, language: str) -> None:
        """Store a user's preferred language tag."""
        with self._connect() as conn:
            conn.execute("UPDATE users SET language = ? WHERE id = ?", (language, user_id))
        logger.info("Language for user #%d set to %s", user_id, language)


class ProjectDB(_Database):
    """SQLite-backed storage for projects and their members."""

    def _load_member_ids(self, conn: sqlite3.Connection, project_id: int) -> list[int]:
        rows = conn.execute(
            "SELECT user_id FROM project_members WHERE project_id = ? ORDER BY joined_at, user_id",
            (project_id,),
        ).fetchall()
        return [row["user_id"] for row in rows]

    def create_project(
        self, name: str, description: str = "", member_ids: Iterable[int] = (),
    ) -> Project:
        """Insert a project and its initial members in one transaction."""
        now = format_timestamp(utc_now())
        members = list(dict.fromkeys(member_ids))
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO projects (name, description, created_at) VALUES (?, ?, ?)",
                (name, description, now),
            )
            project_id = cursor.lastrowid
            conn.executemany(
                "INSERT OR IGNORE INTO project_members (project_id, user_id, joined_at) VALUES (?, ?, ?)",
                [(project_id, uid, now) for uid in members],
            )
        logger.info("Project created: #%d '%s' with %d member(s)", project_id, name, len(members))
        return Project(
            id=project_id, name=name, description=description,
            created_at=now, member_ids=members,
        )

    def get_project(self, project_id: int) -> Project | None:
        """Fetch a project with its member ids."""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
            if row is None:
                return None
            members = self._load_member_ids(conn, project_id)
        return Project(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            created_at=row["created_at"],
            member_ids=members,
        )

    def add_member(self, project_id: int, user_id: int) -> bool:
        """Add a user to a project. Returns False if already a member."""
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO project_members (project_id, user_id, joined_at) VALUES (?, ?, ?)",
                (project_id, user_id, format_timestamp(utc_now())),
            )
        added = cursor.rowcount > 0
        if added:
            logger.info("User #%d joined project #%d", user_id, project_id)
        return added

    def list_for_user(self, user_id: int) -> list[Project]:
        """Projects the user is a member of, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT p.* FROM projects p
                JOIN project_members m ON m.project_id = p.id
                WHERE m.user_id = ?
                ORDER BY p.id
                """,
                (user_id,),
            ).fetchall()
            projects = [
                Project(
                    id=row["id"],
                    name=row["name"],
                    description=row["description"],
                    created_at=row["created_at"],
                    member_ids=self._load_member_ids(conn, row["id"]),
                )
                for row in rows
            ]
        return projects

    def list_members(self, project_id: int) -> list[User]:
        """Users belonging to a project, in join order."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT u.* FROM users u
                JOIN project_members m ON m.user_id = u.id
                WHERE m.project_id = ?
                ORDER BY m.joined_at, u.id
                """,
                (project_id,),
            ).fetchall()
        return [_row_to_user(r) for r in rows]


class TimeSlotDB(_Database):
    """SQLite-backed storage for time slots.

    Empty colors are replaced by the owning user's palette color on every
    insert and save.
    """

    @staticmethod
    def _insert(conn: sqlite3.Connection, slot: NewTimeSlot, now: str) -> int:
        cursor = conn.execute(
            """
            INSERT INTO timeslots
                (project_id, user_id, created_by_id, start_time, end_time,
                 status, notes, label, color, is_locked, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                slot.project_id, slot.user_id, slot.created_by_id,
                format_timestamp(slot.start_time), format_timestamp(slot.end_time),
                slot.status.value, slot.notes or "", slot.label or "",
                slot.color or color_for_user(slot.user_id),
                int(slot.is_locked), now,
            ),
        )
        return cursor.lastrowid

    @staticmethod
    def _fetch(conn: sqlite3.Connection, ids: list[int]) -> list[TimeSlot]:
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        rows = conn.execute(
            f"SELECT * FROM timeslots WHERE id IN ({placeholders}) ORDER BY id", ids,
        ).fetchall()
        return [_row_to_timeslot(r) for r in rows]

    def insert_many(self, slots: list[NewTimeSlot]) -> list[TimeSlot]:
        """Insert all slots in one transaction and return them as stored."""
        now = format_timestamp(utc_now())
        with self._connect() as conn:
            ids = [self._insert(conn, slot, now) for slot in slots]
            stored = self._fetch(conn, ids)
        logger.info("Inserted %d time slot(s): %s", len(stored), ids)
        return stored

    def get_many(self, slot_ids: Iterable[int]) -> list[TimeSlot]:
        """Fetch the slots that exist among `slot_ids`, ordered by id."""
        with self._connect() as conn:
            return self._fetch(conn, list(set(slot_ids)))

    def get(self, slot_id: int) -> TimeSlot | None:
        found = self.get_many([slot_id])
        return found[0] if found else None

    def save_many(self, slots: list[TimeSlot]) -> list[TimeSlot]:
        """Write every mutable field of each slot in one transaction."""
        with self._connect() as conn:
            for slot in slots:
                if not slot.color:
                    slot.color = color_for_user(slot.user_id)
                conn.execute(
                    """
                    UPDATE timeslots SET
                        start_time = ?, end_time = ?, status = ?, notes = ?,
                        label = ?, color = ?, is_locked = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        format_timestamp(slot.start_time), format_timestamp(slot.end_time),
                        slot.status.value, slot.notes, slot.label, slot.color,
                        int(slot.is_locked),
                        format_timestamp(slot.updated_at) if slot.updated_at else None,
                        slot.id,
                    ),
                )
            stored = self._fetch(conn, [s.id for s in slots])
        logger.info("Updated %d time slot(s): %s", len(stored), [s.id for s in stored])
        return stored

    def delete_many(self, slot_ids: Iterable[int]) -> int:
        """Delete slots by id. Returns the number of rows removed."""
        ids = list(set(slot_ids))
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self._connect() as conn:
            cursor = conn.execute(
                f"DELETE FROM timeslots WHERE id IN ({placeholders})", ids,
            )
        logger.info("Deleted %d time slot(s): %s", cursor.rowcount, sorted(ids))
        return cursor.rowcount

    def replace_slots(self, delete_ids: Iterable[int], new_slot: NewTimeSlot) -> TimeSlot:
        """Insert `new_slot` and delete `delete_ids` as a single commit."""
        ids = list(set(delete_ids))
        placeholders = ", ".join("?" for _ in ids)
        now = format_timestamp(utc_now())
        with self._connect() as conn:
            new_id = self._insert(conn, new_slot, now)
            if ids:
                conn.execute(f"DELETE FROM timeslots WHERE id IN ({placeholders})", ids)
            stored = self._fetch(conn, [new_id])[0]
        logger.info("Replaced time slots %s with #%d", sorted(ids), new_id)
        return stored

    def list_for_user(self, project_id: int, user_id: int) -> list[TimeSlot]:
        """A user's slots in a project, ascending by start time."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM timeslots
                WHERE project_id = ? AND user_id = ?
                ORDER BY start_time, id
                """,
                (project_id, user_id),
            ).fetchall()
        return [_row_to_timeslot(r) for r in rows]

    def list_for_project(self, project_id: int) -> list[TimeSlot]:
        """All slots in a project, ascending by start time."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM timeslots WHERE project_id = ? ORDER BY start_time, id",
                (project_id,),
            ).fetchall()
        return [_row_to_timeslot(r) for r in rows]


class SessionDB(_Database):
    """Key/value storage for serialized chat session contexts."""

    def get(self, session_key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload FROM chat_sessions WHERE session_key = ?", (session_key,),
            ).fetchone()
        return row["payload"] if row else None

    def set(self, session_key: str, payload: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO chat_sessions (session_key, payload, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(session_key) DO UPDATE SET
                    payload = excluded.payload, updated_at = excluded.updated_at
                """,
                (session_key, payload, format_timestamp(utc_now())),
            )

    def delete(self, session_key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM chat_sessions WHERE session_key = ?", (session_key,))
