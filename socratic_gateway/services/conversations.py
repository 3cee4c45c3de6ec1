"""Conversation CRUD on top of a ``ConversationStore``.

Stores are synchronous (psycopg or in-memory), so every call is pushed to the
threadpool. Ownership is enforced here: a conversation that exists but belongs
to another principal is reported exactly like one that does not exist.
"""

import logging
from typing import Any
from uuid import UUID

from starlette.concurrency import run_in_threadpool

from socratic_gateway.core.errors import AppError
from socratic_gateway.guards.payload import Invalid, PayloadValidator
from socratic_gateway.models.conversations import (
    ConversationDetail,
    ConversationSummary,
    MessageOut,
)
from socratic_gateway.models.messages import first_text
from socratic_gateway.storage.base import ConversationRecord, ConversationStore, MessageRecord

logger = logging.getLogger("socratic.conversations")

DEFAULT_LIMIT = 50
MAX_LIMIT = 100
TITLE_LENGTH = 50
DEFAULT_TITLE = "New conversation"
MESSAGE_ROLES = {"user", "assistant"}

NOT_FOUND_MESSAGE = "Conversation not found"


def clamp_limit(raw: str | None) -> int:
    if raw is None or not raw.strip():
        return DEFAULT_LIMIT
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_LIMIT
    return max(1, min(value, MAX_LIMIT))


def normalize_conversation_id(conversation_id: str) -> str:
    try:
        return str(UUID(conversation_id))
    except ValueError:
        raise AppError(404, "conversation_not_found", NOT_FOUND_MESSAGE) from None


def summary_of(record: ConversationRecord) -> ConversationSummary:
    return ConversationSummary(
        id=record.id,
        title=record.title,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def message_of(record: MessageRecord) -> MessageOut:
    return MessageOut(
        id=record.id,
        role=record.role,
        content=record.content,
        created_at=record.created_at,
    )


class ConversationService:
    def __init__(self, store: ConversationStore, validator: PayloadValidator):
        self._store = store
        self._validator = validator

    async def list_conversations(self, principal_id: str, limit: int) -> list[ConversationSummary]:
        records = await run_in_threadpool(self._store.list_conversations, principal_id, limit)
        return [summary_of(record) for record in records]

    async def create_conversation(
        self, principal_id: str, title: str | None
    ) -> ConversationSummary:
        title = (title or "").strip() or DEFAULT_TITLE
        record = await run_in_threadpool(self._store.create_conversation, principal_id, title)
        logger.info(
            "conversation_created",
            extra={"principal_id": principal_id, "conversation_id": record.id},
        )
        return summary_of(record)

    async def get_conversation(
        self, principal_id: str, conversation_id: str
    ) -> ConversationDetail:
        record = await self._owned(principal_id, conversation_id)
        messages = await run_in_threadpool(self._store.list_messages, record.id)
        return ConversationDetail(
            **summary_of(record).model_dump(),
            messages=[message_of(message) for message in messages],
        )

    async def delete_conversation(self, principal_id: str, conversation_id: str) -> None:
        key = normalize_conversation_id(conversation_id)
        deleted = await run_in_threadpool(self._store.delete_conversation, key, principal_id)
        if not deleted:
            raise AppError(404, "conversation_not_found", NOT_FOUND_MESSAGE)
        logger.info(
            "conversation_deleted",
            extra={"principal_id": principal_id, "conversation_id": key},
        )

    async def save_message(
        self, principal_id: str, conversation_id: str, role: Any, content: Any
    ) -> MessageOut:
        if not role or not content:
            raise AppError(400, "invalid_message", "role and content are required")
        if not isinstance(role, str) or role not in MESSAGE_ROLES:
            raise AppError(400, "invalid_message", "role must be 'user' or 'assistant'")
        verdict = self._validator.validate_parts(content)
        if isinstance(verdict, Invalid):
            raise AppError(400, "invalid_message", verdict.message)

        record = await self._owned(principal_id, conversation_id)
        message = await run_in_threadpool(self._store.save_message, record.id, role, content)

        if role == "user":
            user_count = await run_in_threadpool(self._store.count_messages, record.id, "user")
            if user_count == 1:
                title = (first_text(content) or DEFAULT_TITLE)[:TITLE_LENGTH]
                await run_in_threadpool(self._store.update_title, record.id, title)
        return message_of(message)

    async def _owned(self, principal_id: str, conversation_id: str) -> ConversationRecord:
        key = normalize_conversation_id(conversation_id)
        record = await run_in_threadpool(self._store.get_conversation, key, principal_id)
        if record is None:
            raise AppError(404, "conversation_not_found", NOT_FOUND_MESSAGE)
        return record
