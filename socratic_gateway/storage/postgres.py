"""Postgres-backed conversation and insight store (psycopg, parameterised SQL)."""

import json
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from socratic_gateway.storage.base import ConversationRecord, MessageRecord, StorageError

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    title TEXT NOT NULL,
    user_id TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS conversations_user_updated_idx
    ON conversations (user_id, updated_at DESC);
CREATE TABLE IF NOT EXISTS messages (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    conversation_id UUID NOT NULL REFERENCES conversations (id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE TABLE IF NOT EXISTS insights (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    insight TEXT NOT NULL,
    topic TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""


class PostgresStore:
    def __init__(self, dsn: str):
        self._dsn = dsn

    def ensure_schema(self) -> None:
        self._execute(SCHEMA_SQL, None)

    def list_conversations(self, user_id: str, limit: int) -> list[ConversationRecord]:
        rows = self._fetch(
            "SELECT id, title, user_id, created_at, updated_at FROM conversations "
            "WHERE user_id = %s ORDER BY updated_at DESC LIMIT %s",
            [user_id, limit],
        )
        return [self._conversation(row) for row in rows]

    def create_conversation(self, user_id: str, title: str) -> ConversationRecord:
        rows = self._fetch(
            "INSERT INTO conversations (title, user_id) VALUES (%s, %s) "
            "RETURNING id, title, user_id, created_at, updated_at",
            [title, user_id],
        )
        return self._conversation(rows[0])

    def get_conversation(self, conversation_id: str, user_id: str) -> ConversationRecord | None:
        rows = self._fetch(
            "SELECT id, title, user_id, created_at, updated_at FROM conversations "
            "WHERE id = %s AND user_id = %s",
            [conversation_id, user_id],
        )
        return self._conversation(rows[0]) if rows else None

    def list_messages(self, conversation_id: str) -> list[MessageRecord]:
        rows = self._fetch(
            "SELECT id, conversation_id, role, content, created_at FROM messages "
            "WHERE conversation_id = %s ORDER BY created_at ASC",
            [conversation_id],
        )
        return [self._message(row) for row in rows]

    def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        rows = self._fetch(
            "DELETE FROM conversations WHERE id = %s AND user_id = %s RETURNING id",
            [conversation_id, user_id],
        )
        return bool(rows)

    def save_message(self, conversation_id: str, role: str, content: list[Any]) -> MessageRecord:
        try:
            with psycopg.connect(self._dsn, row_factory=dict_row) as conn:
                with conn.cursor() as cursor:
                    cursor.execute(
                        "INSERT INTO messages (conversation_id, role, content) "
                        "VALUES (%s, %s, %s) "
                        "RETURNING id, conversation_id, role, content, created_at",
                        [conversation_id, role, Jsonb(content)],
                    )
                    row = cursor.fetchone()
                    cursor.execute(
                        "UPDATE conversations SET updated_at = now() WHERE id = %s",
                        [conversation_id],
                    )
        except psycopg.Error as exc:
            raise StorageError(f"save_message failed: {type(exc).__name__}") from exc
        if row is None:
            raise StorageError("save_message returned no row")
        return self._message(row)

    def count_messages(self, conversation_id: str, role: str) -> int:
        rows = self._fetch(
            "SELECT COUNT(*) AS cnt FROM messages WHERE conversation_id = %s AND role = %s",
            [conversation_id, role],
        )
        return int(rows[0]["cnt"]) if rows else 0

    def update_title(self, conversation_id: str, title: str) -> None:
        self._execute("UPDATE conversations SET title = %s WHERE id = %s", [title, conversation_id])

    def save_insight(self, insight: str, topic: str | None) -> None:
        self._execute("INSERT INTO insights (insight, topic) VALUES (%s, %s)", [insight, topic])

    def _fetch(self, sql: str, params: list[Any]) -> list[dict[str, Any]]:
        try:
            with psycopg.connect(self._dsn, row_factory=dict_row) as conn:
                with conn.cursor() as cursor:
                    cursor.execute(sql, params)
                    return list(cursor.fetchall())
        except psycopg.Error as exc:
            raise StorageError(f"query failed: {type(exc).__name__}") from exc

    def _execute(self, sql: str, params: list[Any] | None) -> None:
        try:
            with psycopg.connect(self._dsn) as conn:
                conn.execute(sql, params)
        except psycopg.Error as exc:
            raise StorageError(f"statement failed: {type(exc).__name__}") from exc

    @staticmethod
    def _conversation(row: dict[str, Any]) -> ConversationRecord:
        return ConversationRecord(
            id=str(row["id"]),
            title=str(row["title"]),
            user_id=str(row["user_id"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _message(row: dict[str, Any]) -> MessageRecord:
        content = row.get("content")
        if isinstance(content, str):
            content = json.loads(content)
        return MessageRecord(
            id=str(row["id"]),
            conversation_id=str(row["conversation_id"]),
            role=str(row["role"]),
            content=content if isinstance(content, list) else [],
            created_at=row.get("created_at"),
        )
