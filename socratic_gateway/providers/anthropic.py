"""Anthropic Messages API adapter (streaming, tool use)."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx

from socratic_gateway.providers.base import (
    CompletionRequest,
    ProviderError,
    ProviderEvent,
    StepFinish,
    TextDelta,
    ToolCall,
    parse_tool_arguments,
    raise_for_status,
    sse_json_events,
)


class AnthropicProvider:
    """Streams one Messages API step and normalizes it to provider events."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.anthropic.com",
        anthropic_version: str = "2023-06-01",
        timeout_s: float = 60.0,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._anthropic_version = anthropic_version
        self._timeout = timeout_s

    def stream(self, request: CompletionRequest) -> AsyncIterator[ProviderEvent]:
        return self._stream_post("/v1/messages", self.build_body(request))

    def build_body(self, request: CompletionRequest) -> dict[str, object]:
        body: dict[str, object] = {
            "model": request.model,
            "system": request.system,
            "messages": self._normalize_messages(request.messages),
            "max_tokens": request.max_output_tokens,
            "stream": True,
        }
        if request.tools:
            body["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.input_schema,
                }
                for tool in request.tools
            ]
        return body

    def _normalize_messages(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        normalized: list[dict[str, Any]] = []
        for message in messages:
            role = message.get("role")
            blocks: list[dict[str, Any]] = []
            for item in message.get("content", []):
                block = self._content_block(item)
                if block is not None:
                    blocks.append(block)
            if not blocks:
                continue
            # Tool results travel back to Anthropic as user turns.
            anthropic_role = "assistant" if role == "assistant" else "user"
            normalized.append({"role": anthropic_role, "content": blocks})

        if not normalized:
            normalized = [{"role": "user", "content": [{"type": "text", "text": "Continue."}]}]
        return normalized

    @staticmethod
    def _content_block(item: dict[str, Any]) -> dict[str, Any] | None:
        item_type = item.get("type")
        if item_type == "text":
            return {"type": "text", "text": item["text"]}
        if item_type == "image":
            if "url" in item:
                return {"type": "image", "source": {"type": "url", "url": item["url"]}}
            return {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": item["media_type"],
                    "data": item["data"],
                },
            }
        if item_type == "tool_call":
            return {
                "type": "tool_use",
                "id": item["id"],
                "name": item["name"],
                "input": item.get("input", {}),
            }
        if item_type == "tool_result":
            return {
                "type": "tool_result",
                "tool_use_id": item["id"],
                "content": json.dumps(item.get("output"), ensure_ascii=False, default=str),
                "is_error": bool(item.get("is_error", False)),
            }
        return None

    async def _stream_post(
        self, path: str, body: dict[str, object]
    ) -> AsyncIterator[ProviderEvent]:
        url = f"{self._base_url}{path}"
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": self._anthropic_version,
            "content-type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                async with client.stream("POST", url, json=body, headers=headers) as resp:
                    raise_for_status(resp)
                    async for event in self.parse_events(sse_json_events(resp)):
                        yield event
        except httpx.TimeoutException as exc:
            raise ProviderError(
                status_code=503,
                code="provider_timeout",
                message=f"Provider request timed out: {exc}",
            ) from exc
        except httpx.ConnectError as exc:
            raise ProviderError(
                status_code=502,
                code="provider_connection_error",
                message=f"Cannot connect to provider: {exc}",
            ) from exc

    @staticmethod
    async def parse_events(
        payloads: AsyncIterator[dict[str, Any]],
    ) -> AsyncIterator[ProviderEvent]:
        tool_blocks: dict[int, dict[str, Any]] = {}
        stop_reason = "end_turn"
        input_tokens = 0
        output_tokens = 0

        async for payload in payloads:
            event_type = payload.get("type")
            if event_type == "message_start":
                usage = payload.get("message", {}).get("usage", {})
                input_tokens = int(usage.get("input_tokens", 0))
            elif event_type == "content_block_start":
                block = payload.get("content_block", {})
                if block.get("type") == "tool_use":
                    tool_blocks[int(payload.get("index", 0))] = {
                        "id": str(block.get("id", "")),
                        "name": str(block.get("name", "")),
                        "json": "",
                    }
            elif event_type == "content_block_delta":
                delta = payload.get("delta", {})
                if delta.get("type") == "text_delta":
                    text = delta.get("text", "")
                    if text:
                        yield TextDelta(text=text)
                elif delta.get("type") == "input_json_delta":
                    pending = tool_blocks.get(int(payload.get("index", 0)))
                    if pending is not None:
                        pending["json"] += delta.get("partial_json", "")
            elif event_type == "content_block_stop":
                pending = tool_blocks.pop(int(payload.get("index", 0)), None)
                if pending is not None:
                    yield ToolCall(
                        call_id=pending["id"],
                        name=pending["name"],
                        arguments=parse_tool_arguments(pending["json"]),
                    )
            elif event_type == "message_delta":
                stop_reason = payload.get("delta", {}).get("stop_reason") or stop_reason
                output_tokens = int(payload.get("usage", {}).get("output_tokens", output_tokens))
            elif event_type == "error":
                error = payload.get("error", {})
                raise ProviderError(
                    status_code=502,
                    code="provider_stream_error",
                    message=f"Provider stream error: {error.get('type', 'unknown')}",
                )
            elif event_type == "message_stop":
                break

        yield StepFinish(
            finish_reason=stop_reason,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
