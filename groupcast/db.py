"""SQLite persistence layer."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator

from groupcast.models import Group, Message, MessageType, SenderModel, User
from groupcast.storage import is_object_key

SCHEMA_VERSION = 1

_MESSAGE_COLUMNS = (
    "id, message_type, sender_id, sender_model, receiver_id, group_id, group_name, "
    "message, file, timestamp, scheduled_time, is_sent"
)


class Database:
    """Small SQLite wrapper with explicit schema management."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
                user_id TEXT PRIMARY KEY,
                name TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS groups (
                group_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                created_by TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS group_members (
                group_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                joined_at TEXT NOT NULL,
                PRIMARY KEY (group_id, user_id),
                FOREIGN KEY(group_id) REFERENCES groups(group_id)
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                message_type TEXT NOT NULL CHECK (message_type IN ('admin', 'user')),
                sender_id TEXT NOT NULL,
                sender_model TEXT NOT NULL CHECK (sender_model IN ('User', 'Admin')),
                receiver_id TEXT,
                group_id TEXT,
                group_name TEXT,
                message TEXT NOT NULL,
                file TEXT,
                timestamp TEXT NOT NULL,
                scheduled_time TEXT,
                is_sent INTEGER NOT NULL,
                CHECK (receiver_id IS NULL OR group_id IS NULL)
            );

            CREATE INDEX IF NOT EXISTS idx_messages_due
                ON messages(is_sent, scheduled_time);
            CREATE INDEX IF NOT EXISTS idx_messages_group
                ON messages(group_id, timestamp);
            """
        )

    # Directory

    def upsert_user(self, user_id: str, name: str = "") -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users(user_id, name, created_at)
                VALUES(?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET name=excluded.name
                """,
                (user_id, name, _utc_now_iso()),
            )

    def user_exists(self, user_id: str) -> bool:
        with self._connect() as conn:
            row = conn.execute("SELECT 1 FROM users WHERE user_id = ?", (user_id,)).fetchone()
        return row is not None

    def get_users(self, user_ids: Iterable[str]) -> list[User]:
        """Return the users whose id is in ``user_ids``, preserving the given order."""

        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT user_id, name FROM users WHERE user_id IN ({placeholders})",
                ids,
            ).fetchall()
        found = {row["user_id"]: User(id=row["user_id"], name=row["name"]) for row in rows}
        return [found[user_id] for user_id in ids if user_id in found]

    def create_group(self, group_id: str, name: str, created_by: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO groups(group_id, name, created_by, created_at) VALUES (?, ?, ?, ?)",
                (group_id, name, created_by, _utc_now_iso()),
            )

    def add_group_member(self, group_id: str, user_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO group_members(group_id, user_id, joined_at)
                VALUES (?, ?, ?)
                ON CONFLICT(group_id, user_id) DO NOTHING
                """,
                (group_id, user_id, _utc_now_iso()),
            )

    def delete_group(self, group_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM group_members WHERE group_id = ?", (group_id,))
            conn.execute("DELETE FROM groups WHERE group_id = ?", (group_id,))

    def get_group(self, group_id: str) -> Group | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT group_id, name, created_by FROM groups WHERE group_id = ?",
                (group_id,),
            ).fetchone()
            if row is None:
                return None
            members = conn.execute(
                "SELECT user_id FROM group_members WHERE group_id = ? ORDER BY joined_at, rowid",
                (group_id,),
            ).fetchall()
        return Group(
            id=row["group_id"],
            name=row["name"],
            created_by=row["created_by"],
            members=[member["user_id"] for member in members],
        )

    def list_groups_created_by(self, admin_id: str) -> list[Group]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT group_id FROM groups WHERE created_by = ? ORDER BY created_at, rowid",
                (admin_id,),
            ).fetchall()
        groups = [self.get_group(row["group_id"]) for row in rows]
        return [group for group in groups if group is not None]

    def list_member_group_ids(self, user_id: str) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT group_id FROM group_members WHERE user_id = ? ORDER BY joined_at, rowid",
                (user_id,),
            ).fetchall()
        return [row["group_id"] for row in rows]

    # Messages

    def create_message(
        self,
        message_type: MessageType,
        sender_id: str,
        sender_model: SenderModel,
        text: str,
        receiver_id: str | None = None,
        group_id: str | None = None,
        group_name: str | None = None,
        file: str | None = None,
        scheduled_time: datetime | None = None,
        is_sent: bool = True,
    ) -> Message:
        """Persist a message and return it with its assigned id and timestamp."""

        if (group_id is None) == (receiver_id is None):
            raise ValueError("A message needs exactly one of group_id or receiver_id")
        if file and not is_object_key(file):
            raise ValueError(f"file must be a storage key, not a URL: {file!r}")

        timestamp = datetime.now(timezone.utc)
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO messages(
                    message_type, sender_id, sender_model, receiver_id, group_id, group_name,
                    message, file, timestamp, scheduled_time, is_sent
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message_type,
                    sender_id,
                    sender_model,
                    receiver_id,
                    group_id,
                    group_name,
                    text,
                    file or None,
                    _to_iso(timestamp),
                    _to_iso(scheduled_time) if scheduled_time is not None else None,
                    int(is_sent),
                ),
            )
            message_id = int(cur.lastrowid)
        return Message(
            id=message_id,
            message_type=message_type,
            sender_id=sender_id,
            sender_model=sender_model,
            text=text,
            timestamp=timestamp,
            receiver_id=receiver_id,
            group_id=group_id,
            group_name=group_name,
            file=file or None,
            scheduled_time=_as_utc(scheduled_time) if scheduled_time is not None else None,
            is_sent=is_sent,
        )

    def get_message(self, message_id: int) -> Message | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", (message_id,)
            ).fetchone()
        return _row_to_message(row) if row else None

    def find_due_unsent(self, now: datetime) -> list[Message]:
        """Return scheduled messages whose time has come and that are not yet sent."""

        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages
                WHERE is_sent = 0 AND scheduled_time IS NOT NULL AND scheduled_time <= ?
                ORDER BY scheduled_time ASC, id ASC
                """,
                (_to_iso(now),),
            ).fetchall()
        return [_row_to_message(row) for row in rows]

    def mark_sent(self, message_id: int) -> bool:
        """Flip is_sent to true. Returns False if it was already sent or does not exist."""

        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE messages SET is_sent = 1 WHERE id = ? AND is_sent = 0",
                (message_id,),
            )
            return cur.rowcount > 0

    def list_admin_messages(self, admin_id: str, group_id: str | None = None) -> list[Message]:
        query = (
            f"SELECT {_MESSAGE_COLUMNS} FROM messages "
            "WHERE sender_id = ? AND message_type = 'admin' AND group_id IS NOT NULL"
        )
        params: list[Any] = [admin_id]
        if group_id is not None:
            query += " AND group_id = ?"
            params.append(group_id)
        query += " ORDER BY timestamp ASC, id ASC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_message(row) for row in rows]

    def list_visible_group_messages(self, group_ids: Iterable[str], now: datetime) -> list[Message]:
        """Admin messages for the groups, hiding scheduled ones that are not yet due."""

        ids = list(group_ids)
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages
                WHERE group_id IN ({placeholders})
                  AND message_type = 'admin'
                  AND (scheduled_time IS NULL OR scheduled_time <= ?)
                ORDER BY timestamp DESC, id DESC
                """,
                (*ids, _to_iso(now)),
            ).fetchall()
        return [_row_to_message(row) for row in rows]

    def list_conversation(self, user_id: str, other_user_id: str | None = None) -> list[Message]:
        """Direct messages involving ``user_id``, optionally only with ``other_user_id``."""

        if other_user_id is None:
            where = "(sender_id = ? OR receiver_id = ?)"
            params: tuple[Any, ...] = (user_id, user_id)
        else:
            where = "((sender_id = ? AND receiver_id = ?) OR (sender_id = ? AND receiver_id = ?))"
            params = (user_id, other_user_id, other_user_id, user_id)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages
                WHERE message_type = 'user' AND receiver_id IS NOT NULL AND {where}
                ORDER BY timestamp ASC, id ASC
                """,
                params,
            ).fetchall()
        return [_row_to_message(row) for row in rows]


def _row_to_message(row: sqlite3.Row) -> Message:
    scheduled = row["scheduled_time"]
    return Message(
        id=int(row["id"]),
        message_type=row["message_type"],
        sender_id=row["sender_id"],
        sender_model=row["sender_model"],
        text=row["message"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        receiver_id=row["receiver_id"],
        group_id=row["group_id"],
        group_name=row["group_name"],
        file=row["file"],
        scheduled_time=datetime.fromisoformat(scheduled) if scheduled else None,
        is_sent=bool(row["is_sent"]),
    )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_iso(value: datetime) -> str:
    # Fixed-width UTC form keeps lexical and chronological order identical.
    return _as_utc(value).isoformat(timespec="microseconds")


def _utc_now_iso() -> str:
    return _to_iso(datetime.now(timezone.utc))
