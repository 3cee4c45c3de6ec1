"""HTTP provider for OpenAI-compatible chat completion endpoints."""

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


class HTTPOpenAIProvider:
    """Provider that streams from any OpenAI-compatible chat endpoint with function tools."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_s: float = 60.0,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout_s

    def stream(self, request: CompletionRequest) -> AsyncIterator[ProviderEvent]:
        return self._stream_post("/v1/chat/completions", self.build_body(request))

    def build_body(self, request: CompletionRequest) -> dict[str, object]:
        body: dict[str, object] = {
            "model": request.model,
            "messages": [
                {"role": "system", "content": request.system},
                *self._normalize_messages(request.messages),
            ],
            "max_tokens": request.max_output_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if request.tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.input_schema,
                    },
                }
                for tool in request.tools
            ]
        return body

    @staticmethod
    def _normalize_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        normalized: list[dict[str, Any]] = []
        for message in messages:
            role = message.get("role")
            content = message.get("content", [])
            if role == "tool":
                for item in content:
                    normalized.append(
                        {
                            "role": "tool",
                            "tool_call_id": item["id"],
                            "content": json.dumps(item.get("output"), default=str),
                        }
                    )
            elif role == "assistant":
                text = "".join(item["text"] for item in content if item.get("type") == "text")
                tool_calls = [
                    {
                        "id": item["id"],
                        "type": "function",
                        "function": {
                            "name": item["name"],
                            "arguments": json.dumps(item.get("input", {})),
                        },
                    }
                    for item in content
                    if item.get("type") == "tool_call"
                ]
                entry: dict[str, Any] = {"role": "assistant", "content": text or None}
                if tool_calls:
                    entry["tool_calls"] = tool_calls
                normalized.append(entry)
            else:
                parts: list[dict[str, Any]] = []
                for item in content:
                    if item.get("type") == "text":
                        parts.append({"type": "text", "text": item["text"]})
                    elif item.get("type") == "image":
                        url = item.get("url") or f"data:{item['media_type']};base64,{item['data']}"
                        parts.append({"type": "image_url", "image_url": {"url": url}})
                if parts:
                    normalized.append({"role": "user", "content": parts})
        return normalized

    async def _stream_post(
        self,
        path: str,
        body: dict[str, object],
    ) -> AsyncIterator[ProviderEvent]:
        url = f"{self._base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                async with client.stream("POST", url, json=body, headers=headers) as resp:
                    raise_for_status(resp)
                    async for event in self.parse_chunks(sse_json_events(resp)):
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
    async def parse_chunks(
        chunks: AsyncIterator[dict[str, Any]],
    ) -> AsyncIterator[ProviderEvent]:
        pending_calls: dict[int, dict[str, str]] = {}
        finish_reason = "stop"
        prompt_tokens = 0
        completion_tokens = 0

        async for chunk in chunks:
            usage = chunk.get("usage")
            if isinstance(usage, dict):
                prompt_tokens = int(usage.get("prompt_tokens") or 0)
                completion_tokens = int(usage.get("completion_tokens") or 0)

            choices = chunk.get("choices")
            if not isinstance(choices, list) or not choices:
                continue
            choice = choices[0]
            delta = choice.get("delta") or {}

            content = delta.get("content")
            if isinstance(content, str) and content:
                yield TextDelta(text=content)

            for call in delta.get("tool_calls") or []:
                slot = pending_calls.setdefault(
                    int(call.get("index", 0)), {"id": "", "name": "", "arguments": ""}
                )
                if call.get("id"):
                    slot["id"] = call["id"]
                function = call.get("function") or {}
                if function.get("name"):
                    slot["name"] = function["name"]
                slot["arguments"] += function.get("arguments") or ""

            if choice.get("finish_reason"):
                finish_reason = str(choice["finish_reason"])

        for index in sorted(pending_calls):
            slot = pending_calls[index]
            yield ToolCall(
                call_id=slot["id"],
                name=slot["name"],
                arguments=parse_tool_arguments(slot["arguments"]),
            )

        yield StepFinish(
            finish_reason=finish_reason,
            input_tokens=prompt_tokens,
            output_tokens=completion_tokens,
        )
