import json
from collections.abc import AsyncIterator
from typing import Any
from uuid import uuid4

from socratic_gateway.providers.base import (
    CompletionRequest,
    ProviderError,
    ProviderEvent,
    StepFinish,
    TextDelta,
    ToolCall,
)

TOOL_TRIGGER = "tool:"


class StubProvider:
    """Offline provider for local development and tests.

    * ``tool:<name> <json>`` as the last user text emits one tool call, then
      answers with the tool result on the following step.
    * ``error-connect`` fails before the first event, ``error-stream`` fails
      after the first chunk.
    * Anything else is answered with a short question, in 32-char chunks.
    """

    def __init__(self, chunk_size: int = 32):
        self._chunk_size = chunk_size

    async def stream(self, request: CompletionRequest) -> AsyncIterator[ProviderEvent]:
        last = request.messages[-1] if request.messages else {"role": "user", "content": []}
        last_text = _text_of(last)

        if last.get("role") == "user" and last_text.startswith("error-connect"):
            raise ProviderError(
                status_code=502,
                code="provider_bad_gateway",
                message="Provider upstream bad gateway",
            )

        if last.get("role") == "tool":
            results = [
                item for item in last.get("content", []) if item.get("type") == "tool_result"
            ]
            answer = "Tool results received: " + ", ".join(
                f"{item.get('name')}={json.dumps(item.get('output'), default=str)[:80]}"
                for item in results
            )
            async for event in self._text_events(answer):
                yield event
            return

        if last_text.startswith(TOOL_TRIGGER):
            name, _, raw_args = last_text.removeprefix(TOOL_TRIGGER).partition(" ")
            try:
                arguments = json.loads(raw_args) if raw_args.strip() else {}
            except json.JSONDecodeError:
                arguments = {}
            yield ToolCall(
                call_id=f"call_{uuid4().hex[:12]}",
                name=name.strip(),
                arguments=arguments if isinstance(arguments, dict) else {},
            )
            yield StepFinish(finish_reason="tool_use")
            return

        answer = f"What do you mean when you say: {last_text[:120]}?"
        fail_midway = last_text.startswith("error-stream")
        async for event in self._text_events(answer, fail_midway=fail_midway):
            yield event

    async def _text_events(
        self, answer: str, fail_midway: bool = False
    ) -> AsyncIterator[ProviderEvent]:
        pieces = [
            answer[idx : idx + self._chunk_size]
            for idx in range(0, len(answer), self._chunk_size)
        ] or [""]
        for index, piece in enumerate(pieces):
            yield TextDelta(text=piece)
            if fail_midway and index == 0:
                raise ProviderError(
                    status_code=503,
                    code="provider_stream_interrupted",
                    message="Provider stream interrupted",
                )
        yield StepFinish(
            finish_reason="stop",
            input_tokens=1,
            output_tokens=max(len(answer.split()), 1),
        )


def _text_of(message: dict[str, Any]) -> str:
    return "".join(
        item.get("text", "") for item in message.get("content", []) if item.get("type") == "text"
    ).strip()
