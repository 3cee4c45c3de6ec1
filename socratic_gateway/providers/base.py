import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx


class ProviderError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        error_type: str = "provider",
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.error_type = error_type


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass(frozen=True)
class CompletionRequest:
    """One model step: system prompt, history so far, and the tools on offer."""

    model: str
    system: str
    messages: list[dict[str, Any]]
    tools: list[ToolDefinition] = field(default_factory=list)
    max_output_tokens: int = 2048


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCall:
    call_id: str
    name: str
    arguments: dict[str, Any]


@dataclass(frozen=True)
class StepFinish:
    finish_reason: str
    input_tokens: int = 0
    output_tokens: int = 0


ProviderEvent = TextDelta | ToolCall | StepFinish


class ChatProvider(Protocol):
    def stream(self, request: CompletionRequest) -> AsyncIterator[ProviderEvent]:
        """Yield text deltas and tool calls for one step, ending with StepFinish."""


def raise_for_status(resp: httpx.Response) -> None:
    if resp.status_code == 429:
        raise ProviderError(
            status_code=429,
            code="provider_rate_limited",
            message="Provider rate limit exceeded",
            error_type="rate_limit",
        )
    if resp.status_code in {502, 503, 529}:
        raise ProviderError(
            status_code=resp.status_code,
            code="provider_upstream_error",
            message=f"Provider returned {resp.status_code}",
        )
    if resp.status_code >= 400:
        raise ProviderError(
            status_code=resp.status_code,
            code="provider_error",
            message=f"Provider returned {resp.status_code}",
        )


async def sse_json_events(resp: httpx.Response) -> AsyncIterator[dict[str, Any]]:
    """Yield JSON objects from ``data:`` lines of a server-sent event stream."""
    async for line in resp.aiter_lines():
        if not line or not line.startswith("data:"):
            continue
        data = line.removeprefix("data:").strip()
        if data == "[DONE]":
            break
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            yield parsed


def parse_tool_arguments(raw: str) -> dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProviderError(
            status_code=502,
            code="provider_bad_tool_arguments",
            message="Provider emitted malformed tool arguments",
        ) from exc
    return parsed if isinstance(parsed, dict) else {}
