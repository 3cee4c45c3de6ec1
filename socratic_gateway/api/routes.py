import logging
from typing import Any, TypeVar

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from socratic_gateway.core.context import RequestContext
from socratic_gateway.core.errors import AppError
from socratic_gateway.guards.auth import Unauthenticated
from socratic_gateway.guards.origin import FORBIDDEN_MESSAGE, VARY_HEADERS
from socratic_gateway.guards.payload import Invalid, PayloadValidator, ValidationError
from socratic_gateway.metrics import metrics_router
from socratic_gateway.models.conversations import (
    ConversationDetail,
    ConversationList,
    ConversationSummary,
    CreateConversationRequest,
    DeleteResult,
    MessageOut,
    ModelInfo,
    SaveMessageRequest,
)
from socratic_gateway.providers.catalog import ModelSelector
from socratic_gateway.services.chat_pipeline import (
    ChatPipeline,
    read_capped_body,
    retry_after_seconds,
)
from socratic_gateway.services.conversations import ConversationService, clamp_limit

logger = logging.getLogger("socratic.api")

ModelT = TypeVar("ModelT", bound=BaseModel)

router = APIRouter()
router.include_router(metrics_router)


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
def readyz(request: Request) -> dict[str, object]:
    selector: ModelSelector = request.app.state.model_selector
    models = selector.available_models()
    dependencies = {
        "models": "ok" if models else "unavailable",
        "storage": request.app.state.settings.storage_backend_normalized,
    }
    return {"status": "ready" if models else "degraded", "dependencies": dependencies}


@router.post("/api/chat")
async def chat(request: Request) -> Response:
    pipeline: ChatPipeline = request.app.state.chat_pipeline
    return await pipeline.handle(request)


@router.options("/api/chat")
async def chat_preflight(request: Request) -> Response:
    pipeline: ChatPipeline = request.app.state.chat_pipeline
    return await pipeline.preflight(request)


@router.get("/api/models", response_model=list[ModelInfo])
async def list_models(request: Request) -> list[ModelInfo]:
    await _authenticate(request, route="models_list")
    selector: ModelSelector = request.app.state.model_selector
    return [
        ModelInfo(id=entry.id, name=entry.name, provider=entry.provider)
        for entry in selector.available_models()
    ]


@router.get("/api/conversations", response_model=ConversationList)
async def list_conversations(request: Request) -> ConversationList:
    principal_id = await _authorize(request, route="conversations_list")
    service: ConversationService = request.app.state.conversation_service
    limit = clamp_limit(request.query_params.get("limit"))
    return ConversationList(conversations=await service.list_conversations(principal_id, limit))


@router.post("/api/conversations", response_model=ConversationSummary, status_code=201)
async def create_conversation(request: Request) -> ConversationSummary:
    principal_id = await _authorize(request, route="conversations_create", mutating=True)
    payload = await _read_model(request, CreateConversationRequest)
    service: ConversationService = request.app.state.conversation_service
    return await service.create_conversation(principal_id, payload.title)


@router.get("/api/conversations/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(request: Request, conversation_id: str) -> ConversationDetail:
    principal_id = await _authorize(request, route="conversations_get")
    service: ConversationService = request.app.state.conversation_service
    return await service.get_conversation(principal_id, conversation_id)


@router.delete("/api/conversations/{conversation_id}", response_model=DeleteResult)
async def delete_conversation(request: Request, conversation_id: str) -> DeleteResult:
    principal_id = await _authorize(request, route="conversations_delete", mutating=True)
    service: ConversationService = request.app.state.conversation_service
    await service.delete_conversation(principal_id, conversation_id)
    return DeleteResult(deleted=True)


@router.post(
    "/api/conversations/{conversation_id}/messages",
    response_model=MessageOut,
    status_code=201,
)
async def save_message(request: Request, conversation_id: str) -> MessageOut:
    principal_id = await _authorize(
        request, route="conversations_message_create", mutating=True
    )
    payload = await _read_model(request, SaveMessageRequest)
    service: ConversationService = request.app.state.conversation_service
    return await service.save_message(principal_id, conversation_id, payload.role, payload.content)


async def _authenticate(request: Request, route: str) -> tuple[RequestContext, str]:
    ctx = RequestContext.from_request(request)
    verdict = await request.app.state.authenticator.authenticate(ctx)
    if isinstance(verdict, Unauthenticated):
        logger.warning(
            "auth_failed",
            extra={"client_key": ctx.client_key, "reason": verdict.reason.value, "route": route},
        )
        raise AppError(401, "unauthorized", "Unauthorized")
    return ctx, verdict.principal_id


async def _authorize(request: Request, route: str, mutating: bool = False) -> str:
    """Origin check for mutating routes, then auth, then the per-principal limit."""
    if mutating:
        ctx = RequestContext.from_request(request)
        if not request.app.state.origin_guard.admits(ctx.origin, ctx.url):
            logger.warning(
                "csrf_rejected",
                extra={"client_key": ctx.client_key, "origin": ctx.origin, "route": route},
            )
            raise AppError(403, "origin_rejected", FORBIDDEN_MESSAGE, headers=VARY_HEADERS)

    _, principal_id = await _authenticate(request, route)
    decision = request.app.state.conversation_rate_limiter.admit(principal_id)
    if not decision.allowed:
        retry_after = retry_after_seconds(decision.retry_after)
        logger.warning(
            "rate_limit_exceeded",
            extra={"principal_id": principal_id, "route": route, "retry_after_s": retry_after},
        )
        raise AppError(
            429, "rate_limited", "Too many requests", headers={"Retry-After": str(retry_after)}
        )
    return principal_id


async def _read_model(request: Request, model: type[ModelT]) -> ModelT:
    validator: PayloadValidator = request.app.state.payload_validator
    verdict = validator.check_declared_size(request.headers.get("content-length"))
    if isinstance(verdict, Invalid):
        raise AppError(400, "invalid_request", verdict.message)

    raw = await read_capped_body(request, validator.limits.max_body_size)
    if raw is None:
        raise AppError(400, "invalid_request", ValidationError.BODY_TOO_LARGE.value)

    body: Any = {}
    if raw.strip():
        verdict, body = validator.parse_body(raw)
        if isinstance(verdict, Invalid):
            raise AppError(400, "invalid_request", verdict.message)
    try:
        return model.model_validate(body)
    except PydanticValidationError:
        raise AppError(400, "invalid_request", "Invalid request") from None
