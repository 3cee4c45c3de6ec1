import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from socratic_gateway.api.routes import router
from socratic_gateway.config.settings import Settings, get_settings
from socratic_gateway.core.errors import (
    INTERNAL_ERROR_MESSAGE,
    AppError,
    error_response,
    request_id_from_request,
)
from socratic_gateway.core.logging import configure_logging
from socratic_gateway.guards.auth import build_authenticator
from socratic_gateway.guards.origin import OriginGuard
from socratic_gateway.guards.payload import PayloadValidator
from socratic_gateway.guards.rate_limit import SlidingWindowRateLimiter
from socratic_gateway.middleware.request_id import RequestIDMiddleware
from socratic_gateway.providers.catalog import ModelSelector
from socratic_gateway.providers.registry import build_provider_registry
from socratic_gateway.services.chat_pipeline import ChatPipeline
from socratic_gateway.services.conversations import ConversationService
from socratic_gateway.storage.base import StorageError
from socratic_gateway.storage.memory import MemoryStore
from socratic_gateway.storage.postgres import PostgresStore
from socratic_gateway.tools.builtin import build_default_registry
from socratic_gateway.tools.search import TavilySearchClient

logger = logging.getLogger("socratic.app")


def _build_store(settings: Settings) -> MemoryStore | PostgresStore:
    backend = settings.storage_backend_normalized
    if backend == "memory":
        return MemoryStore()
    if backend == "postgres":
        if not settings.postgres_dsn:
            raise RuntimeError("SOCRATIC_POSTGRES_DSN is required when storage_backend=postgres")
        store = PostgresStore(dsn=settings.postgres_dsn)
        store.ensure_schema()
        return store
    raise RuntimeError(f"Unsupported SOCRATIC_STORAGE_BACKEND value: {backend}")


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Socratic Gateway", version="0.1.0")
    app.add_middleware(RequestIDMiddleware)

    origin_guard = OriginGuard(settings.allowed_origin_set)
    chat_limiter = SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        prune_interval_seconds=settings.rate_limit_prune_interval_seconds,
        max_keys=settings.rate_limit_max_keys,
    )
    conversation_limiter = SlidingWindowRateLimiter(
        max_requests=settings.conversation_rate_limit_max_requests,
        window_seconds=settings.conversation_rate_limit_window_seconds,
        prune_interval_seconds=settings.rate_limit_prune_interval_seconds,
        max_keys=settings.rate_limit_max_keys,
    )
    authenticator = build_authenticator(settings)
    validator = PayloadValidator()
    selector = ModelSelector(credentials=lambda: settings.provider_credentials)
    store = _build_store(settings)
    search_client = TavilySearchClient(
        api_key=settings.tavily_api_key,
        base_url=settings.tavily_base_url,
        timeout_s=settings.search_timeout_s,
    )
    tools = build_default_registry(search_client, store)

    app.state.settings = settings
    app.state.origin_guard = origin_guard
    app.state.authenticator = authenticator
    app.state.payload_validator = validator
    app.state.model_selector = selector
    app.state.conversation_rate_limiter = conversation_limiter
    app.state.store = store
    app.state.tool_registry = tools
    app.state.conversation_service = ConversationService(store=store, validator=validator)
    app.state.chat_pipeline = ChatPipeline(
        origin_guard=origin_guard,
        rate_limiter=chat_limiter,
        authenticator=authenticator,
        validator=validator,
        selector=selector,
        providers=build_provider_registry(settings),
        tools=tools,
        max_tool_steps=settings.max_tool_steps,
        max_output_tokens=settings.max_output_tokens,
        metrics_enabled=settings.metrics_enabled,
    )
    app.state.chat_rate_limiter = chat_limiter

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        request_id = request_id_from_request(request)
        return error_response(exc.status_code, exc.message, exc.headers, request_id)

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = request_id_from_request(request)
        return error_response(400, "Invalid request", request_id=request_id)

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        request_id = request_id_from_request(request)
        logger.error(
            "storage_error",
            extra={"request_id": request_id, "route": request.url.path, "error": str(exc)},
        )
        return error_response(500, INTERNAL_ERROR_MESSAGE, request_id=request_id)

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = request_id_from_request(request)
        logger.error(
            "unhandled_error",
            exc_info=exc,
            extra={"request_id": request_id, "route": request.url.path},
        )
        return error_response(500, INTERNAL_ERROR_MESSAGE, request_id=request_id)

    app.include_router(router)
    return app


app = create_app()
