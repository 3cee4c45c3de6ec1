import asyncio
from collections.abc import AsyncIterator
from typing import Any

import httpx
import pytest

from socratic_gateway.config.settings import Settings
from socratic_gateway.providers.anthropic import AnthropicProvider
from socratic_gateway.providers.base import (
    CompletionRequest,
    ProviderError,
    StepFinish,
    TextDelta,
    ToolCall,
    ToolDefinition,
    parse_tool_arguments,
    raise_for_status,
)
from socratic_gateway.providers.http_openai import HTTPOpenAIProvider
from socratic_gateway.providers.registry import ProviderRegistry, build_provider_registry
from socratic_gateway.providers.stub import StubProvider


async def _aiter(items: list[dict[str, Any]]) -> AsyncIterator[dict[str, Any]]:
    for item in items:
        yield item


async def _collect(stream: AsyncIterator[Any]) -> list[Any]:
    return [event async for event in stream]


def _request(messages: list[dict[str, Any]], tools: bool = False) -> CompletionRequest:
    return CompletionRequest(
        model="test-model",
        system="Be Socratic.",
        messages=messages,
        tools=[ToolDefinition("webSearch", "Search", {"type": "object"})] if tools else [],
        max_output_tokens=256,
    )


def _user(text: str) -> dict[str, Any]:
    return {"role": "user", "content": [{"type": "text", "text": text}]}


TOOL_CALL = {"type": "tool_call", "id": "c1", "name": "webSearch", "input": {}}
TOOL_RESULT = {"type": "tool_result", "id": "c1", "name": "webSearch", "output": []}


def test_anthropic_parse_events_yields_text_tool_and_usage() -> None:
    payloads = [
        {"type": "message_start", "message": {"usage": {"input_tokens": 12}}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text"}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Why"}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "?"}},
        {"type": "content_block_stop", "index": 0},
        {
            "type": "content_block_start",
            "index": 1,
            "content_block": {"type": "tool_use", "id": "toolu_1", "name": "webSearch"},
        },
        {
            "type": "content_block_delta",
            "index": 1,
            "delta": {"type": "input_json_delta", "partial_json": '{"query": '},
        },
        {
            "type": "content_block_delta",
            "index": 1,
            "delta": {"type": "input_json_delta", "partial_json": '"stoicism"}'},
        },
        {"type": "content_block_stop", "index": 1},
        {
            "type": "message_delta",
            "delta": {"stop_reason": "tool_use"},
            "usage": {"output_tokens": 7},
        },
        {"type": "message_stop"},
    ]
    events = asyncio.run(_collect(AnthropicProvider.parse_events(_aiter(payloads))))
    assert events == [
        TextDelta("Why"),
        TextDelta("?"),
        ToolCall(call_id="toolu_1", name="webSearch", arguments={"query": "stoicism"}),
        StepFinish(finish_reason="tool_use", input_tokens=12, output_tokens=7),
    ]


def test_anthropic_stream_error_event_raises() -> None:
    payloads = [{"type": "error", "error": {"type": "overloaded_error"}}]
    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(_collect(AnthropicProvider.parse_events(_aiter(payloads))))
    assert excinfo.value.code == "provider_stream_error"


def test_anthropic_body_maps_tool_results_to_user_turns() -> None:
    provider = AnthropicProvider(api_key="k")
    body = provider.build_body(
        _request(
            [
                _user("hi"),
                {
                    "role": "assistant",
                    "content": [TOOL_CALL],
                },
                {
                    "role": "tool",
                    "content": [TOOL_RESULT],
                },
            ],
            tools=True,
        )
    )
    assert body["system"] == "Be Socratic."
    assert body["max_tokens"] == 256
    messages = body["messages"]
    assert [m["role"] for m in messages] == ["user", "assistant", "user"]
    assert messages[2]["content"][0]["tool_use_id"] == "c1"
    assert body["tools"][0]["input_schema"] == {"type": "object"}


def test_anthropic_body_never_sends_empty_history() -> None:
    body = AnthropicProvider(api_key="k").build_body(_request([]))
    assert body["messages"] == [_user("Continue.")]
    assert "tools" not in body


def test_openai_parse_chunks_accumulates_tool_call_fragments() -> None:
    chunks = [
        {"choices": [{"delta": {"content": "Consider"}}]},
        {
            "choices": [
                {
                    "delta": {
                        "tool_calls": [
                            {
                                "index": 0,
                                "id": "call_a",
                                "function": {"name": "webSearch", "arguments": '{"qu'},
                            }
                        ]
                    }
                }
            ]
        },
        {
            "choices": [
                {
                    "delta": {
                        "tool_calls": [{"index": 0, "function": {"arguments": 'ery": "x"}'}}]
                    },
                    "finish_reason": "tool_calls",
                }
            ]
        },
        {"choices": [], "usage": {"prompt_tokens": 20, "completion_tokens": 4}},
    ]
    events = asyncio.run(_collect(HTTPOpenAIProvider.parse_chunks(_aiter(chunks))))
    assert events == [
        TextDelta("Consider"),
        ToolCall(call_id="call_a", name="webSearch", arguments={"query": "x"}),
        StepFinish(finish_reason="tool_calls", input_tokens=20, output_tokens=4),
    ]


def test_openai_body_prepends_system_and_flattens_tool_messages() -> None:
    provider = HTTPOpenAIProvider(base_url="https://api.openai.com/", api_key="k")
    body = provider.build_body(
        _request(
            [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "Look"},
                        {"type": "image", "media_type": "image/png", "data": "QUJD"},
                    ],
                },
                {
                    "role": "tool",
                    "content": [{**TOOL_RESULT, "output": {"a": 1}}],
                },
            ],
            tools=True,
        )
    )
    messages = body["messages"]
    assert messages[0] == {"role": "system", "content": "Be Socratic."}
    assert messages[1]["content"][1] == {
        "type": "image_url",
        "image_url": {"url": "data:image/png;base64,QUJD"},
    }
    assert messages[2] == {"role": "tool", "tool_call_id": "c1", "content": '{"a": 1}'}
    assert body["tools"][0]["function"]["parameters"] == {"type": "object"}


def test_parse_tool_arguments() -> None:
    assert parse_tool_arguments("") == {}
    assert parse_tool_arguments("[1, 2]") == {}
    assert parse_tool_arguments('{"a": 1}') == {"a": 1}
    with pytest.raises(ProviderError) as excinfo:
        parse_tool_arguments("{broken")
    assert excinfo.value.status_code == 502


@pytest.mark.parametrize(
    ("status", "code"),
    [
        (429, "provider_rate_limited"),
        (503, "provider_upstream_error"),
        (400, "provider_error"),
    ],
)
def test_raise_for_status(status: int, code: str) -> None:
    with pytest.raises(ProviderError) as excinfo:
        raise_for_status(httpx.Response(status))
    assert excinfo.value.code == code
    raise_for_status(httpx.Response(200))


def test_stub_provider_asks_a_question_in_chunks() -> None:
    events = asyncio.run(_collect(StubProvider(chunk_size=8).stream(_request([_user("justice")]))))
    text = "".join(event.text for event in events if isinstance(event, TextDelta))
    assert text == "What do you mean when you say: justice?"
    assert all(len(event.text) <= 8 for event in events if isinstance(event, TextDelta))
    assert isinstance(events[-1], StepFinish)
    assert events[-1].finish_reason == "stop"


def test_stub_provider_emits_tool_call_then_answers_tool_results() -> None:
    provider = StubProvider()
    first = asyncio.run(
        _collect(provider.stream(_request([_user('tool:webSearch {"query": "logic"}')])))
    )
    call = first[0]
    assert isinstance(call, ToolCall)
    assert call.name == "webSearch"
    assert call.arguments == {"query": "logic"}
    assert first[-1] == StepFinish(finish_reason="tool_use")

    tool_message = {
        "role": "tool",
        "content": [{"type": "tool_result", "id": call.call_id, "name": "webSearch", "output": []}],
    }
    second = asyncio.run(_collect(provider.stream(_request([_user("x"), tool_message]))))
    text = "".join(event.text for event in second if isinstance(event, TextDelta))
    assert text.startswith("Tool results received: webSearch=")


def test_stub_provider_failure_triggers() -> None:
    provider = StubProvider()
    with pytest.raises(ProviderError):
        asyncio.run(_collect(provider.stream(_request([_user("error-connect")]))))

    received: list[Any] = []

    async def consume() -> None:
        async for event in provider.stream(_request([_user("error-stream please")])):
            received.append(event)

    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(consume())
    assert excinfo.value.code == "provider_stream_interrupted"
    assert len(received) == 1
    assert isinstance(received[0], TextDelta)


def test_provider_registry_registers_configured_providers() -> None:
    registry = build_provider_registry(
        Settings(anthropic_api_key="a", openai_api_key=None, stub_provider_enabled=True)
    )
    assert registry.names() == ["anthropic", "stub"]

    with pytest.raises(ProviderError) as excinfo:
        ProviderRegistry().get("openai")
    assert excinfo.value.code == "provider_not_registered"
