import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import pytest

from socratic_gateway import metrics
from socratic_gateway.providers.base import (
    CompletionRequest,
    ProviderError,
    ProviderEvent,
    StepFinish,
    TextDelta,
    ToolCall,
)
from socratic_gateway.providers.catalog import ModelBinding
from socratic_gateway.services.chat_pipeline import (
    SSE_DONE,
    ChatRun,
    read_capped_body,
    retry_after_seconds,
    sse_event,
)
from socratic_gateway.storage.memory import MemoryStore
from socratic_gateway.tools.builtin import build_default_registry
from socratic_gateway.tools.search import SearchResult

BINDING = ModelBinding(model_id="stub", provider="stub", provider_model="stub")
USER = [{"role": "user", "content": [{"type": "text", "text": "What is justice?"}]}]


class ScriptedProvider:
    """Plays one scripted list of events per step; an Exception entry is raised.

    ``closed`` gets one entry per torn-down stream: True if it ran to the end.
    """

    def __init__(self, *steps: list[Any]) -> None:
        self.steps = list(steps)
        self.requests: list[CompletionRequest] = []
        self.closed: list[bool] = []

    async def stream(self, request: CompletionRequest) -> AsyncIterator[ProviderEvent]:
        self.requests.append(request)
        script = self.steps.pop(0) if self.steps else [StepFinish("stop")]
        exhausted = False
        try:
            for item in script:
                if isinstance(item, Exception):
                    raise item
                yield item
            exhausted = True
        finally:
            self.closed.append(exhausted)


class FakeSearchClient:
    async def search(
        self, query: str, max_results: int = 5, days: int | None = None
    ) -> list[SearchResult]:
        return [SearchResult("Republic", "https://example.com/republic", "Book I")]


@pytest.fixture(autouse=True)
def _fresh_metrics() -> None:
    metrics.reset_metrics()


def _run(provider: ScriptedProvider, max_steps: int = 5) -> ChatRun:
    return ChatRun(
        provider=provider,
        binding=BINDING,
        messages=list(USER),
        tools=build_default_registry(FakeSearchClient(), MemoryStore()),
        system_prompt="Ask questions.",
        max_steps=max_steps,
        log_fields={"request_id": "req-1"},
    )


def _frames(run: ChatRun) -> list[Any]:
    async def collect() -> list[str]:
        await run.prime()
        return [frame async for frame in run.events()]

    frames = asyncio.run(collect())
    assert frames[-1] == SSE_DONE
    return [json.loads(frame.removeprefix("data: ")) for frame in frames[:-1]]


def _types(events: list[dict[str, Any]]) -> list[str]:
    return [event["type"] for event in events]


def test_text_only_stream_frames_in_order() -> None:
    provider = ScriptedProvider(
        [TextDelta("Wha"), TextDelta("t do you think?"), StepFinish("stop", 3, 5)]
    )
    run = _run(provider)
    events = _frames(run)

    assert _types(events) == [
        "start",
        "start-step",
        "text-start",
        "text-delta",
        "text-delta",
        "text-end",
        "finish-step",
        "finish",
    ]
    deltas = [e for e in events if e["type"] == "text-delta"]
    assert "".join(e["delta"] for e in deltas) == "What do you think?"
    assert len({e["id"] for e in deltas}) == 1
    assert (run.tokens_in, run.tokens_out, run.steps) == (3, 5, 1)
    assert provider.requests[0].system == "Ask questions."
    assert len(provider.requests) == 1


def test_tool_call_is_executed_and_fed_back_to_the_model() -> None:
    provider = ScriptedProvider(
        [ToolCall("call_1", "webSearch", {"query": "justice"}), StepFinish("tool_use")],
        [TextDelta("Plato says... what do you say?"), StepFinish("stop")],
    )
    run = _run(provider)
    events = _frames(run)

    assert _types(events) == [
        "start",
        "start-step",
        "tool-input-available",
        "finish-step",
        "tool-output-available",
        "start-step",
        "text-start",
        "text-delta",
        "text-end",
        "finish-step",
        "finish",
    ]
    output = events[4]
    assert output["toolCallId"] == "call_1"
    assert output["output"]["results"][0]["title"] == "Republic"

    second_request = provider.requests[1].messages
    assert [m["role"] for m in second_request] == ["user", "assistant", "tool"]
    assert second_request[1]["content"][0]["type"] == "tool_call"
    assert second_request[2]["content"][0]["is_error"] is False
    labels = {"tool": "webSearch", "status": "ok"}
    assert metrics.counter_value("socratic_tool_calls_total", labels) == 1


def test_invalid_tool_input_becomes_tool_output_error() -> None:
    provider = ScriptedProvider(
        [ToolCall("call_1", "drawDiagram", {"title": "x"}), StepFinish("tool_use")],
        [TextDelta("Let us try again."), StepFinish("stop")],
    )
    events = _frames(_run(provider))

    error = next(e for e in events if e["type"] == "tool-output-error")
    assert error == {
        "type": "tool-output-error",
        "toolCallId": "call_1",
        "errorText": "Invalid input for drawDiagram at <root>",
    }
    assert _types(events)[-1] == "finish"
    assert provider.requests[1].messages[-1]["content"][0]["is_error"] is True


def test_unknown_tool_becomes_tool_output_error() -> None:
    provider = ScriptedProvider(
        [ToolCall("call_9", "launchMissiles", {}), StepFinish("tool_use")],
        [StepFinish("stop")],
    )
    events = _frames(_run(provider))
    error = next(e for e in events if e["type"] == "tool-output-error")
    assert error["errorText"] == "Unknown tool: launchMissiles"


def test_tool_loop_stops_at_max_steps() -> None:
    looping = [ToolCall("call_x", "webSearch", {"query": "again"}), StepFinish("tool_use")]
    provider = ScriptedProvider(*[list(looping) for _ in range(10)])
    run = _run(provider, max_steps=2)
    events = _frames(run)

    assert len(provider.requests) == 2
    assert run.steps == 2
    assert _types(events).count("start-step") == 2
    assert _types(events)[-1] == "finish"


def test_failure_after_first_event_is_an_error_event() -> None:
    provider = ScriptedProvider(
        [
            TextDelta("Partial"),
            ProviderError(503, "provider_stream_interrupted", "upstream detail sk-123"),
        ]
    )
    events = _frames(_run(provider))

    assert _types(events)[-1] == "error"
    assert events[-1]["errorText"] == "Internal server error"
    assert "sk-123" not in json.dumps(events)
    assert "finish" not in _types(events)


def test_prime_propagates_connection_failures() -> None:
    provider = ScriptedProvider([ProviderError(502, "provider_bad_gateway", "down")])
    with pytest.raises(ProviderError):
        asyncio.run(_run(provider).prime())


def test_stream_completion_is_recorded_in_metrics() -> None:
    _frames(_run(ScriptedProvider([TextDelta("Hm?"), StepFinish("stop", 2, 1)])))
    rendered = metrics.render_metrics()
    assert (
        "socratic_chat_stream_duration_seconds_count"
        '{model="stub",provider="stub",status="completed"} 1'
    ) in rendered
    tokens = {"direction": "input", "model": "stub", "provider": "stub"}
    assert metrics.counter_value("socratic_tokens_total", tokens) == 2


def _disconnect_after(run: ChatRun, count: int) -> list[Any]:
    """Pull *count* frames, then close the stream the way a dropped client does."""

    async def pull() -> list[str]:
        await run.prime()
        events = run.events()
        frames = [await anext(events) for _ in range(count)]
        await events.aclose()
        return frames

    return [json.loads(frame.removeprefix("data: ")) for frame in asyncio.run(pull())]


def test_client_disconnect_closes_the_provider_stream() -> None:
    provider = ScriptedProvider(
        [TextDelta("What"), TextDelta(" is"), TextDelta(" virtue?"), StepFinish("stop")]
    )
    events = _disconnect_after(_run(provider), 4)

    assert _types(events) == ["start", "start-step", "text-start", "text-delta"]
    assert provider.closed == [False]
    assert (
        "socratic_chat_stream_duration_seconds_count"
        '{model="stub",provider="stub",status="cancelled"} 1'
    ) in metrics.render_metrics()


def test_disconnect_during_tool_step_closes_the_second_stream() -> None:
    provider = ScriptedProvider(
        [ToolCall("call_1", "webSearch", {"query": "justice"}), StepFinish("tool_use")],
        [TextDelta("Plato"), TextDelta(" disagrees."), StepFinish("stop")],
    )
    events = _disconnect_after(_run(provider), 8)

    assert _types(events)[-3:] == ["start-step", "text-start", "text-delta"]
    assert len(provider.requests) == 2
    assert provider.closed == [True, False]


def test_primed_stream_is_closed_when_the_run_never_starts() -> None:
    provider = ScriptedProvider([TextDelta("Hm?"), StepFinish("stop")])
    run = _run(provider)

    async def abandon() -> None:
        await run.prime()
        assert provider.closed == []
        await run.aclose()
        await run.aclose()

    asyncio.run(abandon())
    assert provider.closed == [False]


def test_primed_stream_is_closed_when_only_start_was_sent() -> None:
    provider = ScriptedProvider([TextDelta("Hm?"), StepFinish("stop")])
    events = _disconnect_after(_run(provider), 1)

    assert _types(events) == ["start"]
    assert provider.closed == [False]


def test_sse_helpers() -> None:
    assert sse_event({"type": "finish"}) == 'data: {"type":"finish"}\n\n'
    assert retry_after_seconds(None) == 1
    assert retry_after_seconds(0.2) == 1
    assert retry_after_seconds(56.1) == 57


class FakeRequest:
    def __init__(self, chunks: list[bytes]) -> None:
        self.chunks = chunks
        self.consumed = 0

    async def stream(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            self.consumed += 1
            yield chunk


def test_read_capped_body_stops_early() -> None:
    request = FakeRequest([b"a" * 6, b"b" * 6, b"c" * 6])
    assert asyncio.run(read_capped_body(request, 10)) is None  # type: ignore[arg-type]
    assert request.consumed == 2

    small = FakeRequest([b"ab", b"cd"])
    assert asyncio.run(read_capped_body(small, 10)) == b"abcd"  # type: ignore[arg-type]
