"""SQLite-backed repository for conversations, messages, and feedback."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

MessageRecord = dict[str, Any]
ConversationRecord = dict[str, Any]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_db_timestamp(value: str | None) -> str | None:
    """Convert SQLite timestamp strings to ISO8601 in UTC."""

    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.isoformat()


def _decode_image_urls(value: str | None) -> list[str] | None:
    if not value:
        return None
    try:
        decoded = json.loads(value)
    except json.JSONDecodeError:
        return None
    if not isinstance(decoded, list):
        return None
    urls = [item for item in decoded if isinstance(item, str) and item]
    return urls or None


def _message_from_row(row: aiosqlite.Row) -> MessageRecord:
    return {
        "id": int(row["id"]),
        "conversation_id": row["conversation_id"],
        "content": row["content"] or "",
        "is_ai": bool(row["is_ai"]),
        "image_urls": _decode_image_urls(row["image_urls"]),
        "turn_id": row["turn_id"],
        "created_at": _normalize_db_timestamp(row["created_at"]),
    }


def _conversation_from_row(row: aiosqlite.Row) -> ConversationRecord:
    return {
        "id": row["id"],
        "user_id": row["user_id"],
        "title": row["title"],
        "created_at": _normalize_db_timestamp(row["created_at"]),
        "updated_at": _normalize_db_timestamp(row["updated_at"]),
    }


_MESSAGE_COLUMNS = "id, conversation_id, content, is_ai, image_urls, turn_id, created_at"


class ChatRepository:
    """Persist conversations, their messages, and message feedback."""

    def __init__(self, database_path: Path):
        self._path = database_path
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the SQLite connection and ensure tables exist."""

        if self._connection is not None:
            return

        if str(self._path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA foreign_keys=ON;")
        await self._create_schema()

    async def _create_schema(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                title TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
                content TEXT NOT NULL,
                is_ai INTEGER NOT NULL DEFAULT 0,
                image_urls TEXT,
                turn_id TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS message_feedback (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                message_id INTEGER NOT NULL REFERENCES messages(id) ON DELETE CASCADE,
                user_id TEXT NOT NULL,
                feedback_type TEXT NOT NULL,
                feedback_text TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conversation_id ON messages(conversation_id);
            CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_turn_id
                ON messages(turn_id) WHERE turn_id IS NOT NULL;
            CREATE INDEX IF NOT EXISTS idx_feedback_message_id ON message_feedback(message_id);
            """
        )
        await self._connection.commit()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def create_conversation(
        self,
        *,
        user_id: str | None = None,
        title: str | None = None,
        conversation_id: str | None = None,
    ) -> ConversationRecord:
        assert self._connection is not None
        identifier = conversation_id or uuid.uuid4().hex
        now = _utc_now()
        await self._connection.execute(
            """
            INSERT INTO conversations(id, user_id, title, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (identifier, user_id, title, now, now),
        )
        await self._connection.commit()
        return {
            "id": identifier,
            "user_id": user_id,
            "title": title,
            "created_at": now,
            "updated_at": now,
        }

    async def get_conversation(self, conversation_id: str) -> ConversationRecord | None:
        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            SELECT id, user_id, title, created_at, updated_at
            FROM conversations
            WHERE id = ?
            LIMIT 1
            """,
            (conversation_id,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            return None
        return _conversation_from_row(row)

    async def touch_conversation(
        self, conversation_id: str, *, title: str | None = None
    ) -> None:
        """Bump ``updated_at`` and optionally set a new title."""

        assert self._connection is not None
        if title:
            await self._connection.execute(
                "UPDATE conversations SET title = ?, updated_at = ? WHERE id = ?",
                (title, _utc_now(), conversation_id),
            )
        else:
            await self._connection.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (_utc_now(), conversation_id),
            )
        await self._connection.commit()

    async def add_message(
        self,
        conversation_id: str,
        content: str,
        *,
        is_ai: bool,
        image_urls: list[str] | None = None,
        turn_id: str | None = None,
    ) -> MessageRecord:
        """Persist a single chat message and return the stored record."""

        assert self._connection is not None
        created_at = _utc_now()
        encoded_urls = json.dumps(image_urls) if image_urls else None
        cursor = await self._connection.execute(
            """
            INSERT INTO messages(conversation_id, content, is_ai, image_urls, turn_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (conversation_id, content, int(is_ai), encoded_urls, turn_id, created_at),
        )
        await self._connection.commit()
        try:
            inserted_id = cursor.lastrowid
        finally:
            await cursor.close()
        if inserted_id is None:  # pragma: no cover
            raise RuntimeError("Insert failed: lastrowid is None")
        return {
            "id": int(inserted_id),
            "conversation_id": conversation_id,
            "content": content,
            "is_ai": is_ai,
            "image_urls": list(image_urls) if image_urls else None,
            "turn_id": turn_id,
            "created_at": created_at,
        }

    async def get_messages(self, conversation_id: str) -> list[MessageRecord]:
        """Return conversation messages ordered by insertion."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages
            WHERE conversation_id = ?
            ORDER BY id ASC
            """,
            (conversation_id,),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [_message_from_row(row) for row in rows]

    async def get_recent_messages(
        self, conversation_id: str, limit: int
    ) -> list[MessageRecord]:
        """Return the newest ``limit`` messages in chronological order."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages
            WHERE conversation_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (conversation_id, limit),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [_message_from_row(row) for row in reversed(rows)]

    async def get_message(self, message_id: int) -> MessageRecord | None:
        assert self._connection is not None
        cursor = await self._connection.execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ? LIMIT 1",
            (message_id,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return _message_from_row(row) if row is not None else None

    async def get_message_by_turn(self, turn_id: str) -> MessageRecord | None:
        """Return the assistant message persisted for ``turn_id``, if any."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE turn_id = ? LIMIT 1",
            (turn_id,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return _message_from_row(row) if row is not None else None

    async def add_feedback(
        self,
        message_id: int,
        user_id: str,
        feedback_type: str,
        feedback_text: str | None = None,
    ) -> int:
        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            INSERT INTO message_feedback(message_id, user_id, feedback_type, feedback_text, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (message_id, user_id, feedback_type, feedback_text, _utc_now()),
        )
        await self._connection.commit()
        try:
            inserted_id = cursor.lastrowid
        finally:
            await cursor.close()
        if inserted_id is None:  # pragma: no cover
            raise RuntimeError("Insert failed: lastrowid is None")
        return int(inserted_id)


__all__ = ["ChatRepository", "ConversationRecord", "MessageRecord"]
