"""In-process store for development and tests. Data is lost on restart."""

import threading
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from socratic_gateway.storage.base import ConversationRecord, MessageRecord


class MemoryStore:
    def __init__(self) -> None:
        self._conversations: dict[str, ConversationRecord] = {}
        self._messages: dict[str, list[MessageRecord]] = {}
        self._insights: list[dict[str, str | None]] = []
        self._lock = threading.Lock()

    @property
    def insights(self) -> list[dict[str, str | None]]:
        with self._lock:
            return list(self._insights)

    def list_conversations(self, user_id: str, limit: int) -> list[ConversationRecord]:
        with self._lock:
            owned = [c for c in self._conversations.values() if c.user_id == user_id]
        owned.sort(key=lambda c: c.updated_at, reverse=True)
        return owned[:limit]

    def create_conversation(self, user_id: str, title: str) -> ConversationRecord:
        now = datetime.now(tz=UTC)
        record = ConversationRecord(
            id=str(uuid4()), title=title, user_id=user_id, created_at=now, updated_at=now
        )
        with self._lock:
            self._conversations[record.id] = record
            self._messages[record.id] = []
        return record

    def get_conversation(self, conversation_id: str, user_id: str) -> ConversationRecord | None:
        with self._lock:
            record = self._conversations.get(conversation_id)
        if record is None or record.user_id != user_id:
            return None
        return record

    def list_messages(self, conversation_id: str) -> list[MessageRecord]:
        with self._lock:
            return list(self._messages.get(conversation_id, []))

    def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        with self._lock:
            record = self._conversations.get(conversation_id)
            if record is None or record.user_id != user_id:
                return False
            del self._conversations[conversation_id]
            self._messages.pop(conversation_id, None)
            return True

    def save_message(self, conversation_id: str, role: str, content: list[Any]) -> MessageRecord:
        now = datetime.now(tz=UTC)
        message = MessageRecord(
            id=str(uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=list(content),
            created_at=now,
        )
        with self._lock:
            self._messages.setdefault(conversation_id, []).append(message)
            record = self._conversations.get(conversation_id)
            if record is not None:
                record.updated_at = now
        return message

    def count_messages(self, conversation_id: str, role: str) -> int:
        with self._lock:
            return sum(1 for m in self._messages.get(conversation_id, []) if m.role == role)

    def update_title(self, conversation_id: str, title: str) -> None:
        with self._lock:
            record = self._conversations.get(conversation_id)
            if record is not None:
                record.title = title

    def save_insight(self, insight: str, topic: str | None) -> None:
        with self._lock:
            self._insights.append({"insight": insight, "topic": topic})
