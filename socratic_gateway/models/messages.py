"""UI message parts and their conversion to provider-neutral model messages.

Parts arriving from the browser are a tagged union on ``type``: ``text``,
``file`` and ``tool-invocation``. Unknown part types are skipped so newer
clients keep working against an older gateway.

The neutral model-message shape consumed by providers::

    {"role": "user", "content": [{"type": "text", "text": ...},
                                 {"type": "image", "media_type": ..., "data": ...}]}
    {"role": "assistant", "content": [{"type": "text", "text": ...},
                                      {"type": "tool_call", "id": ..., "name": ...,
                                       "input": {...}}]}
    {"role": "tool", "content": [{"type": "tool_result", "id": ..., "name": ...,
                                  "output": ..., "is_error": False}]}
"""

from dataclasses import dataclass
from typing import Any

ModelMessage = dict[str, Any]

_OUTPUT_STATES = {"output-available", "result"}


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class FilePart:
    media_type: str
    data: str
    filename: str | None = None


@dataclass(frozen=True)
class ToolInvocationPart:
    tool_call_id: str
    tool_name: str
    input: dict[str, Any]
    output: Any = None
    state: str = "input-available"

    @property
    def has_output(self) -> bool:
        return self.state in _OUTPUT_STATES or self.output is not None


MessagePart = TextPart | FilePart | ToolInvocationPart


@dataclass(frozen=True)
class UIMessage:
    role: str
    parts: tuple[MessagePart, ...]


def parse_part(raw: Any) -> MessagePart | None:
    if not isinstance(raw, dict):
        return None
    part_type = raw.get("type")

    if part_type == "text":
        text = raw.get("text")
        return TextPart(text=text) if isinstance(text, str) else None

    if part_type == "file":
        media_type = raw.get("mediaType")
        data = raw.get("data", raw.get("url"))
        if not isinstance(media_type, str) or not isinstance(data, str):
            return None
        filename = raw.get("filename")
        return FilePart(
            media_type=media_type,
            data=data,
            filename=filename if isinstance(filename, str) else None,
        )

    if part_type == "tool-invocation":
        call_id = raw.get("toolCallId")
        name = raw.get("toolName")
        if not isinstance(call_id, str) or not isinstance(name, str):
            return None
        tool_input = raw.get("input", raw.get("args"))
        state = raw.get("state")
        return ToolInvocationPart(
            tool_call_id=call_id,
            tool_name=name,
            input=tool_input if isinstance(tool_input, dict) else {},
            output=raw.get("output", raw.get("result")),
            state=state if isinstance(state, str) else "input-available",
        )

    return None


def parse_message(raw: Any) -> UIMessage | None:
    if not isinstance(raw, dict):
        return None
    role = raw.get("role")
    if not isinstance(role, str):
        return None

    raw_parts = raw.get("parts")
    if isinstance(raw_parts, list):
        parts = tuple(part for part in map(parse_part, raw_parts) if part is not None)
    elif isinstance(raw.get("content"), str):
        parts = (TextPart(text=raw["content"]),)
    else:
        parts = ()
    return UIMessage(role=role, parts=parts)


def parse_messages(raw_messages: list[Any]) -> list[UIMessage]:
    return [message for message in map(parse_message, raw_messages) if message is not None]


def first_text(parts: list[Any]) -> str | None:
    """Text of the first text part in a raw parts array."""
    for raw in parts:
        part = parse_part(raw)
        if isinstance(part, TextPart) and part.text:
            return part.text
    return None


def to_model_messages(messages: list[UIMessage]) -> list[ModelMessage]:
    """Convert UI messages to neutral model messages.

    Only ``user`` and ``assistant`` roles are forwarded; the system prompt is
    owned by the server.
    """
    converted: list[ModelMessage] = []
    for message in messages:
        if message.role == "user":
            content = _user_content(message.parts)
            if content:
                converted.append({"role": "user", "content": content})
        elif message.role == "assistant":
            converted.extend(_assistant_messages(message.parts))
    return converted


def _user_content(parts: tuple[MessagePart, ...]) -> list[dict[str, Any]]:
    content: list[dict[str, Any]] = []
    for part in parts:
        if isinstance(part, TextPart):
            if part.text:
                content.append({"type": "text", "text": part.text})
        elif isinstance(part, FilePart):
            content.append(image_block(part))
    return content


def _assistant_messages(parts: tuple[MessagePart, ...]) -> list[ModelMessage]:
    messages: list[ModelMessage] = []
    content: list[dict[str, Any]] = []
    results: list[dict[str, Any]] = []

    def flush() -> None:
        if content:
            messages.append({"role": "assistant", "content": list(content)})
        if results:
            messages.append({"role": "tool", "content": list(results)})
        content.clear()
        results.clear()

    for part in parts:
        if isinstance(part, TextPart):
            # Text after tool results belongs to the next model step.
            if results:
                flush()
            if part.text:
                content.append({"type": "text", "text": part.text})
        elif isinstance(part, ToolInvocationPart) and part.has_output:
            content.append(
                {
                    "type": "tool_call",
                    "id": part.tool_call_id,
                    "name": part.tool_name,
                    "input": part.input,
                }
            )
            results.append(
                {
                    "type": "tool_result",
                    "id": part.tool_call_id,
                    "name": part.tool_name,
                    "output": part.output,
                    "is_error": False,
                }
            )
    flush()
    return messages


def image_block(part: FilePart) -> dict[str, Any]:
    data = part.data
    if data.startswith(("http://", "https://")):
        return {"type": "image", "media_type": part.media_type, "url": data}
    if data.startswith("data:"):
        _, _, data = data.partition(",")
    return {"type": "image", "media_type": part.media_type, "data": data}
