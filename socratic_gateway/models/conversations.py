from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class CreateConversationRequest(BaseModel):
    title: str | None = Field(default=None, max_length=200)


class SaveMessageRequest(BaseModel):
    role: str | None = None
    content: Any = None


class ConversationSummary(BaseModel):
    id: str
    title: str
    created_at: datetime
    updated_at: datetime


class ConversationList(BaseModel):
    conversations: list[ConversationSummary]


class MessageOut(BaseModel):
    id: str
    role: str
    content: list[Any]
    created_at: datetime | None = None


class ConversationDetail(ConversationSummary):
    messages: list[MessageOut]


class DeleteResult(BaseModel):
    deleted: bool


class ModelInfo(BaseModel):
    id: str
    name: str
    provider: str
