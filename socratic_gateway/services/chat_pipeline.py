"""Inbound chat pipeline: guards in fixed order, then a tool-augmented stream.

Stage order is origin, rate limit, auth, declared size, capped body read, JSON
parse, payload validation, model resolution, streaming. Every stage before
streaming returns its own terminal response. The streaming stage awaits the
provider's first event before the response is returned, so connection-time
failures become a plain 500; anything later is surfaced as one ``error`` event
inside the stream.
"""

import asyncio
import json
import logging
import math
from collections.abc import AsyncIterator
from contextlib import aclosing
from time import perf_counter
from typing import Any
from uuid import uuid4

from fastapi import Request
from fastapi.responses import Response, StreamingResponse
from starlette.background import BackgroundTask

from socratic_gateway import metrics
from socratic_gateway.core.context import RequestContext
from socratic_gateway.core.errors import (
    INTERNAL_ERROR_MESSAGE,
    error_response,
    request_id_from_request,
)
from socratic_gateway.guards.auth import Authenticator, Unauthenticated
from socratic_gateway.guards.origin import VARY_HEADERS, OriginGuard
from socratic_gateway.guards.payload import (
    Invalid,
    PayloadValidator,
    ValidationError,
)
from socratic_gateway.guards.rate_limit import SlidingWindowRateLimiter
from socratic_gateway.models.messages import ModelMessage, parse_messages, to_model_messages
from socratic_gateway.providers.base import (
    ChatProvider,
    CompletionRequest,
    ProviderEvent,
    StepFinish,
    TextDelta,
    ToolCall,
)
from socratic_gateway.providers.catalog import ModelBinding, ModelSelector, NoModelAvailableError
from socratic_gateway.providers.registry import ProviderRegistry
from socratic_gateway.services.prompt import SYSTEM_PROMPT
from socratic_gateway.tools.registry import ToolError, ToolRegistry

logger = logging.getLogger("socratic.chat")

RATE_LIMITED_MESSAGE = "Too many requests. Please try again later."
UNAUTHORIZED_MESSAGE = "Unauthorized"
TOOL_FAILED_MESSAGE = "Tool execution failed"

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
    "x-vercel-ai-ui-message-stream": "v1",
}


def sse_event(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, separators=(',', ':'), default=str)}\n\n"


SSE_DONE = "data: [DONE]\n\n"


def retry_after_seconds(retry_after: float | None) -> int:
    return max(1, math.ceil(retry_after or 0))


async def read_capped_body(request: Request, limit: int) -> bytes | None:
    """Read the request body, giving up as soon as it exceeds *limit* bytes."""
    buffer = bytearray()
    async for chunk in request.stream():
        buffer.extend(chunk)
        if len(buffer) > limit:
            return None
    return bytes(buffer)


class ChatRun:
    """One streaming completion, possibly spanning several tool-use steps."""

    def __init__(
        self,
        provider: ChatProvider,
        binding: ModelBinding,
        messages: list[ModelMessage],
        tools: ToolRegistry,
        system_prompt: str = SYSTEM_PROMPT,
        max_steps: int = 5,
        max_output_tokens: int = 2048,
        log_fields: dict[str, Any] | None = None,
        metrics_enabled: bool = True,
    ):
        self._provider = provider
        self._binding = binding
        self._history = list(messages)
        self._tools = tools
        self._system_prompt = system_prompt
        self._max_steps = max(1, max_steps)
        self._max_output_tokens = max_output_tokens
        self._log_fields = dict(log_fields or {})
        self._metrics_enabled = metrics_enabled
        self._first_stream: AsyncIterator[ProviderEvent] | None = None
        self._first_event: ProviderEvent | None = None
        self.tokens_in = 0
        self.tokens_out = 0
        self.steps = 0

    def completion_request(self) -> CompletionRequest:
        return CompletionRequest(
            model=self._binding.provider_model,
            system=self._system_prompt,
            messages=list(self._history),
            tools=self._tools.definitions(),
            max_output_tokens=self._max_output_tokens,
        )

    async def prime(self) -> None:
        """Open the first step and wait for its first event.

        Raises whatever the provider raises while connecting.
        """
        stream = self._provider.stream(self.completion_request())
        try:
            self._first_event = await anext(stream)
        except StopAsyncIteration:
            self._first_event = None
        self._first_stream = stream

    async def aclose(self) -> None:
        """Close a primed provider stream that no step has taken over."""
        stream, self._first_stream, self._first_event = self._first_stream, None, None
        if stream is not None:
            async with aclosing(stream):
                pass

    async def events(self) -> AsyncIterator[str]:
        started = perf_counter()
        status = "completed"
        error: BaseException | None = None
        try:
            yield sse_event({"type": "start", "messageId": f"msg_{uuid4().hex}"})
            for step in range(self._max_steps):
                self.steps = step + 1
                calls: list[ToolCall] = []
                async with aclosing(self._step(step, calls)) as frames:
                    async for frame in frames:
                        yield frame
                if not calls:
                    break
                async for frame in self._run_tools(calls):
                    yield frame
            yield sse_event({"type": "finish"})
        except (asyncio.CancelledError, GeneratorExit):
            status = "cancelled"
            raise
        except Exception as exc:
            status = "failed"
            error = exc
            logger.error(
                "chat_error",
                exc_info=exc,
                extra={
                    **self._log_fields,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "step": self.steps,
                },
            )
            yield sse_event({"type": "error", "errorText": INTERNAL_ERROR_MESSAGE})
        finally:
            await self.aclose()
            self._log_completion(started, status, error)
        yield SSE_DONE

    async def _step(self, step: int, calls: list[ToolCall]) -> AsyncIterator[str]:
        if step == 0 and self._first_stream is not None:
            stream, first = self._first_stream, self._first_event
            self._first_stream, self._first_event = None, None
        else:
            stream, first = self._provider.stream(self.completion_request()), None

        yield sse_event({"type": "start-step"})
        text_id: str | None = None
        text_parts: list[str] = []
        async with aclosing(_replay(first, stream)) as events:
            async for event in events:
                if isinstance(event, TextDelta):
                    if not event.text:
                        continue
                    if text_id is None:
                        text_id = f"txt_{uuid4().hex[:12]}"
                        yield sse_event({"type": "text-start", "id": text_id})
                    text_parts.append(event.text)
                    yield sse_event({"type": "text-delta", "id": text_id, "delta": event.text})
                elif isinstance(event, ToolCall):
                    calls.append(event)
                    yield sse_event(
                        {
                            "type": "tool-input-available",
                            "toolCallId": event.call_id,
                            "toolName": event.name,
                            "input": event.arguments,
                        }
                    )
                elif isinstance(event, StepFinish):
                    self.tokens_in += event.input_tokens
                    self.tokens_out += event.output_tokens
        if text_id is not None:
            yield sse_event({"type": "text-end", "id": text_id})
        yield sse_event({"type": "finish-step"})

        content: list[dict[str, Any]] = []
        if text_parts:
            content.append({"type": "text", "text": "".join(text_parts)})
        content.extend(
            {"type": "tool_call", "id": call.call_id, "name": call.name, "input": call.arguments}
            for call in calls
        )
        if content:
            self._history.append({"role": "assistant", "content": content})

    async def _run_tools(self, calls: list[ToolCall]) -> AsyncIterator[str]:
        results: list[dict[str, Any]] = []
        for call in calls:
            try:
                output = await self._tools.execute(call.name, call.arguments)
            except ToolError as exc:
                self._record_tool(call.name, "error")
                results.append(_tool_result(call, {"error": exc.message}, is_error=True))
                yield sse_event(
                    {
                        "type": "tool-output-error",
                        "toolCallId": call.call_id,
                        "errorText": exc.message,
                    }
                )
                continue
            except Exception as exc:
                logger.error(
                    "tool_failed",
                    exc_info=exc,
                    extra={**self._log_fields, "tool": call.name, "error_type": type(exc).__name__},
                )
                self._record_tool(call.name, "error")
                results.append(_tool_result(call, {"error": TOOL_FAILED_MESSAGE}, is_error=True))
                yield sse_event(
                    {
                        "type": "tool-output-error",
                        "toolCallId": call.call_id,
                        "errorText": TOOL_FAILED_MESSAGE,
                    }
                )
                continue
            self._record_tool(call.name, "ok")
            results.append(_tool_result(call, output))
            yield sse_event(
                {"type": "tool-output-available", "toolCallId": call.call_id, "output": output}
            )
        self._history.append({"role": "tool", "content": results})

    def _record_tool(self, tool: str, status: str) -> None:
        if self._metrics_enabled:
            metrics.record_tool_call(tool, status)

    def _log_completion(self, started: float, status: str, error: BaseException | None) -> None:
        latency_ms = int((perf_counter() - started) * 1000)
        logger.info(
            "chat_stream_completed",
            extra={
                **self._log_fields,
                "model": self._binding.model_id,
                "provider": self._binding.provider,
                "latency_ms": latency_ms,
                "token_in": self.tokens_in,
                "token_out": self.tokens_out,
                "step": self.steps,
                "reason": status,
                "error_type": type(error).__name__ if error else None,
            },
        )
        if self._metrics_enabled:
            metrics.record_stream(
                provider=self._binding.provider,
                model=self._binding.model_id,
                status=status,
                duration_s=latency_ms / 1000.0,
                tokens_in=self.tokens_in,
                tokens_out=self.tokens_out,
            )


async def _replay(
    first: ProviderEvent | None, stream: AsyncIterator[ProviderEvent]
) -> AsyncIterator[ProviderEvent]:
    async with aclosing(stream):
        if first is not None:
            yield first
        async for event in stream:
            yield event


def _tool_result(call: ToolCall, output: Any, is_error: bool = False) -> dict[str, Any]:
    return {
        "type": "tool_result",
        "id": call.call_id,
        "name": call.name,
        "output": output,
        "is_error": is_error,
    }


class ChatPipeline:
    def __init__(
        self,
        origin_guard: OriginGuard,
        rate_limiter: SlidingWindowRateLimiter,
        authenticator: Authenticator,
        validator: PayloadValidator,
        selector: ModelSelector,
        providers: ProviderRegistry,
        tools: ToolRegistry,
        system_prompt: str = SYSTEM_PROMPT,
        max_tool_steps: int = 5,
        max_output_tokens: int = 2048,
        metrics_enabled: bool = True,
    ):
        self._origin_guard = origin_guard
        self._rate_limiter = rate_limiter
        self._authenticator = authenticator
        self._validator = validator
        self._selector = selector
        self._providers = providers
        self._tools = tools
        self._system_prompt = system_prompt
        self._max_tool_steps = max_tool_steps
        self._max_output_tokens = max_output_tokens
        self._metrics_enabled = metrics_enabled

    async def preflight(self, request: Request) -> Response:
        return self._origin_guard.preflight_response(request.headers.get("origin"))

    async def handle(self, request: Request) -> Response:
        ctx = RequestContext.from_request(request)
        request_id = request_id_from_request(request)
        log_fields: dict[str, Any] = {"request_id": request_id, "client_key": ctx.client_key}

        if not self._origin_guard.admits(ctx.origin, ctx.url):
            logger.warning("csrf_rejected", extra={**log_fields, "origin": ctx.origin})
            self._outcome("forbidden")
            return self._origin_guard.reject_response()

        headers = {**VARY_HEADERS, **self._origin_guard.cors_headers(ctx.origin)}

        decision = self._rate_limiter.admit(ctx.client_key)
        if not decision.allowed:
            retry_after = retry_after_seconds(decision.retry_after)
            logger.warning(
                "rate_limit_exceeded", extra={**log_fields, "retry_after_s": retry_after}
            )
            self._outcome("rate_limited")
            return error_response(
                429,
                RATE_LIMITED_MESSAGE,
                headers={**headers, "Retry-After": str(retry_after)},
                request_id=request_id,
            )

        verdict = await self._authenticator.authenticate(ctx)
        if isinstance(verdict, Unauthenticated):
            logger.warning("auth_failed", extra={**log_fields, "reason": verdict.reason.value})
            self._outcome("unauthorized")
            return error_response(401, UNAUTHORIZED_MESSAGE, headers, request_id)
        log_fields["principal_id"] = verdict.principal_id

        size_verdict = self._validator.check_declared_size(ctx.content_length)
        if isinstance(size_verdict, Invalid):
            return self._invalid(size_verdict, headers, log_fields)

        raw = await read_capped_body(request, self._validator.limits.max_body_size)
        if raw is None:
            return self._invalid(Invalid(ValidationError.BODY_TOO_LARGE), headers, log_fields)
        ctx = ctx.with_body(raw)

        parse_verdict, body = self._validator.parse_body(ctx.body or b"")
        if isinstance(parse_verdict, Invalid):
            return self._invalid(parse_verdict, headers, log_fields)

        payload_verdict, payload = self._validator.validate_request(body)
        if isinstance(payload_verdict, Invalid) or payload is None:
            return self._invalid(payload_verdict, headers, log_fields)

        try:
            binding = self._selector.select(payload.model_id)
        except NoModelAvailableError as exc:
            logger.error("chat_error", extra={**log_fields, "error": str(exc)})
            self._outcome("error")
            return error_response(500, INTERNAL_ERROR_MESSAGE, headers, request_id)

        logger.info(
            "chat_request",
            extra={
                **log_fields,
                "message_count": len(payload.messages),
                "model_id": payload.model_id or "default",
                "model": binding.model_id,
                "provider": binding.provider,
            },
        )

        try:
            run = ChatRun(
                provider=self._providers.get(binding.provider),
                binding=binding,
                messages=to_model_messages(parse_messages(payload.messages)),
                tools=self._tools,
                system_prompt=self._system_prompt,
                max_steps=self._max_tool_steps,
                max_output_tokens=self._max_output_tokens,
                log_fields=log_fields,
                metrics_enabled=self._metrics_enabled,
            )
            await run.prime()
        except Exception as exc:
            logger.error(
                "chat_error",
                exc_info=exc,
                extra={**log_fields, "error": str(exc), "error_type": type(exc).__name__},
            )
            self._outcome("error")
            return error_response(500, INTERNAL_ERROR_MESSAGE, headers, request_id)

        self._outcome("streamed")
        return StreamingResponse(
            run.events(),
            media_type="text/event-stream",
            headers={**STREAM_HEADERS, **headers, "x-request-id": request_id},
            background=BackgroundTask(run.aclose),
        )

    def _invalid(
        self, verdict: Invalid, headers: dict[str, str], log_fields: dict[str, Any]
    ) -> Response:
        logger.info("payload_rejected", extra={**log_fields, "reason": verdict.error.name.lower()})
        self._outcome("invalid")
        return error_response(400, verdict.message, headers, log_fields.get("request_id"))

    def _outcome(self, outcome: str) -> None:
        if self._metrics_enabled:
            metrics.record_chat_outcome(outcome)

