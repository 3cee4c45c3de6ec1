from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol


class StorageError(Exception):
    """Raised when the backing store cannot complete an operation."""


@dataclass
class ConversationRecord:
    id: str
    title: str
    user_id: str
    created_at: datetime
    updated_at: datetime


@dataclass
class MessageRecord:
    id: str
    conversation_id: str
    role: str
    content: list[Any] = field(default_factory=list)
    created_at: datetime | None = None


class ConversationStore(Protocol):
    def list_conversations(self, user_id: str, limit: int) -> list[ConversationRecord]:
        """Most recently updated first."""

    def create_conversation(self, user_id: str, title: str) -> ConversationRecord: ...

    def get_conversation(self, conversation_id: str, user_id: str) -> ConversationRecord | None:
        """Return the conversation only if *user_id* owns it."""

    def list_messages(self, conversation_id: str) -> list[MessageRecord]: ...

    def delete_conversation(self, conversation_id: str, user_id: str) -> bool: ...

    def save_message(
        self, conversation_id: str, role: str, content: list[Any]
    ) -> MessageRecord:
        """Persist a message and bump the conversation's ``updated_at``."""

    def count_messages(self, conversation_id: str, role: str) -> int: ...

    def update_title(self, conversation_id: str, title: str) -> None: ...


class InsightStore(Protocol):
    def save_insight(self, insight: str, topic: str | None) -> None: ...
