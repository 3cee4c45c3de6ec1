"""Structural and size limits for chat payloads.

Every rejection carries one of the fixed ``ValidationError`` messages, with the
configured cap filled in for the limit errors; nothing from the payload is ever
echoed back.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

MAX_BODY_SIZE = 5 * 1024 * 1024
MAX_MESSAGE_COUNT = 100
MAX_TEXT_LENGTH = 10_000
MAX_FILES_PER_MESSAGE = 4
MAX_FILE_DATA_SIZE = 5 * 1024 * 1024
ALLOWED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})


class ValidationError(Enum):
    BODY_TOO_LARGE = "Request body too large"
    INVALID_JSON = "Invalid JSON"
    MESSAGES_REQUIRED = "messages is required"
    TOO_MANY_MESSAGES = f"Too many messages (max {MAX_MESSAGE_COUNT})"
    PARTS_NOT_ARRAY = "parts must be an array"
    TEXT_TOO_LONG = f"Text too long (max {MAX_TEXT_LENGTH} chars)"
    FILE_TYPE_NOT_ALLOWED = "File type not allowed"
    FILE_TOO_LARGE = "File data too large"
    TOO_MANY_FILES = f"Too many files per message (max {MAX_FILES_PER_MESSAGE})"


LIMIT_TEMPLATES = {
    ValidationError.TOO_MANY_MESSAGES: "Too many messages (max {limit})",
    ValidationError.TEXT_TOO_LONG: "Text too long (max {limit} chars)",
    ValidationError.TOO_MANY_FILES: "Too many files per message (max {limit})",
}


@dataclass(frozen=True)
class Valid:
    ok: bool = True


@dataclass(frozen=True)
class Invalid:
    error: ValidationError
    ok: bool = False
    detail: str | None = field(default=None, compare=False)

    @property
    def message(self) -> str:
        return self.detail or self.error.value

    @classmethod
    def over_limit(cls, error: ValidationError, limit: int) -> "Invalid":
        return cls(error, detail=LIMIT_TEMPLATES[error].format(limit=limit))


ValidationVerdict = Valid | Invalid

VALID = Valid()


@dataclass(frozen=True)
class PayloadLimits:
    max_body_size: int = MAX_BODY_SIZE
    max_message_count: int = MAX_MESSAGE_COUNT
    max_text_length: int = MAX_TEXT_LENGTH
    max_files_per_message: int = MAX_FILES_PER_MESSAGE
    max_file_data_size: int = MAX_FILE_DATA_SIZE
    allowed_media_types: frozenset[str] = ALLOWED_IMAGE_TYPES


@dataclass(frozen=True)
class ChatPayload:
    messages: list[Any]
    model_id: str


class PayloadValidator:
    def __init__(self, limits: PayloadLimits | None = None) -> None:
        self._limits = limits or PayloadLimits()

    @property
    def limits(self) -> PayloadLimits:
        return self._limits

    def check_declared_size(self, content_length: str | None) -> ValidationVerdict:
        if not content_length:
            return VALID
        try:
            declared = int(content_length.strip())
        except ValueError:
            # Unparseable; the capped body read still enforces the limit.
            return VALID
        if declared > self._limits.max_body_size:
            return Invalid(ValidationError.BODY_TOO_LARGE)
        return VALID

    def parse_body(self, raw: bytes) -> tuple[ValidationVerdict, Any]:
        try:
            return VALID, json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, RecursionError):
            return Invalid(ValidationError.INVALID_JSON), None

    def validate_request(self, body: Any) -> tuple[ValidationVerdict, ChatPayload | None]:
        if not isinstance(body, dict):
            return Invalid(ValidationError.MESSAGES_REQUIRED), None
        messages = body.get("messages")
        if not isinstance(messages, list):
            return Invalid(ValidationError.MESSAGES_REQUIRED), None

        verdict = self.validate_messages(messages)
        if isinstance(verdict, Invalid):
            return verdict, None

        model_id = body.get("modelId")
        return VALID, ChatPayload(
            messages=messages,
            model_id=model_id if isinstance(model_id, str) else "",
        )

    def validate_messages(self, messages: list[Any]) -> ValidationVerdict:
        if len(messages) > self._limits.max_message_count:
            return Invalid.over_limit(
                ValidationError.TOO_MANY_MESSAGES, self._limits.max_message_count
            )

        for message in messages:
            if not isinstance(message, dict):
                continue
            parts = message.get("parts")
            if not isinstance(parts, list):
                continue
            verdict = self.validate_parts(parts)
            if isinstance(verdict, Invalid):
                return verdict
        return VALID

    def validate_parts(self, parts: Any) -> ValidationVerdict:
        if not isinstance(parts, list):
            return Invalid(ValidationError.PARTS_NOT_ARRAY)

        file_count = 0
        for part in parts:
            if not isinstance(part, dict):
                continue
            part_type = part.get("type")
            if part_type == "text":
                text = part.get("text")
                if isinstance(text, str) and len(text) > self._limits.max_text_length:
                    return Invalid.over_limit(
                        ValidationError.TEXT_TOO_LONG, self._limits.max_text_length
                    )
            elif part_type == "file":
                file_count += 1
                media_type = part.get("mediaType")
                if (
                    not isinstance(media_type, str)
                    or media_type not in self._limits.allowed_media_types
                ):
                    return Invalid(ValidationError.FILE_TYPE_NOT_ALLOWED)
                data = part.get("data", part.get("url"))
                if isinstance(data, str) and len(data) > self._limits.max_file_data_size:
                    return Invalid(ValidationError.FILE_TOO_LARGE)
            # Other part types pass through.

        if file_count > self._limits.max_files_per_message:
            return Invalid.over_limit(
                ValidationError.TOO_MANY_FILES, self._limits.max_files_per_message
            )
        return VALID
