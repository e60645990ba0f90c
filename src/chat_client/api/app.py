from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chat_client.api.middleware.correlation_id import CorrelationIdMiddleware
from chat_client.api.v1.routers import health, sessions, ws
from chat_client.application.exceptions import (
    AppError,
    AuthExpired,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    SessionClosedError,
    ValidationError,
)
from chat_client.config import settings
from chat_client.infrastructure.auth.jwt_token_provider import JwtTokenProvider
from chat_client.infrastructure.http.backend_client import HttpMessageBackend, HttpProfileSource
from chat_client.infrastructure.realtime.redis_pubsub import RedisRealtimeTransport
from chat_client.services.conversation_session import ConversationSession
from chat_client.services.profile_cache import ProfileCache
from chat_client.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""
    http = httpx.AsyncClient(
        base_url=settings.BACKEND_URL,
        timeout=settings.REQUEST_TIMEOUT_SECONDS,
    )
    tokens = JwtTokenProvider(
        http,
        settings.BACKEND_ACCESS_TOKEN,
        settings.BACKEND_REFRESH_TOKEN,
        api_key=settings.BACKEND_API_KEY,
        refresh_path=settings.TOKEN_REFRESH_PATH,
        leeway_seconds=settings.TOKEN_REFRESH_LEEWAY_SECONDS,
    )
    backend = HttpMessageBackend(
        http, tokens, api_key=settings.BACKEND_API_KEY, messages_path=settings.MESSAGES_PATH,
    )
    profiles = ProfileCache(
        HttpProfileSource(
            http, tokens, api_key=settings.BACKEND_API_KEY, profiles_path=settings.PROFILES_PATH,
        ),
        ttl_seconds=settings.PROFILE_CACHE_TTL_SECONDS,
        max_size=settings.PROFILE_CACHE_MAX_SIZE,
    )

    app.state.redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    transport = RedisRealtimeTransport(app.state.redis, settings.REALTIME_CHANNEL_PREFIX)
    logger.info("Backend %s, realtime via %s", settings.BACKEND_URL, settings.REDIS_URL)

    def _new_session() -> ConversationSession:
        return ConversationSession(
            backend,
            transport,
            page_size=settings.PAGE_SIZE,
            request_timeout=settings.REQUEST_TIMEOUT_SECONDS,
            echo_tolerance_ms=settings.ECHO_TOLERANCE_MS,
            reconnect_base_delay=settings.RECONNECT_BASE_DELAY_SECONDS,
            reconnect_max_delay=settings.RECONNECT_MAX_DELAY_SECONDS,
            profiles=profiles,
        )

    app.state.tokens = tokens
    app.state.registry = SessionRegistry(_new_session)

    yield

    await app.state.registry.aclose()
    await app.state.redis.aclose()
    await http.aclose()
    logger.info("Gateway resources released")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Chat Client Gateway",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(sessions.router)
    app.include_router(ws.router)

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    def _error(status_code: int, exc: AppError) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.detail, "kind": exc.kind.value},
        )

    @app.exception_handler(NotFoundError)
    async def _not_found(_req: Request, exc: NotFoundError) -> JSONResponse:
        return _error(404, exc)

    @app.exception_handler(ForbiddenError)
    async def _forbidden(_req: Request, exc: ForbiddenError) -> JSONResponse:
        return _error(403, exc)

    @app.exception_handler(AuthExpired)
    async def _auth_expired(_req: Request, exc: AuthExpired) -> JSONResponse:
        return _error(401, exc)

    @app.exception_handler(ConflictError)
    async def _conflict(_req: Request, exc: ConflictError) -> JSONResponse:
        return _error(409, exc)

    @app.exception_handler(SessionClosedError)
    async def _session_closed(_req: Request, exc: SessionClosedError) -> JSONResponse:
        return _error(409, exc)

    @app.exception_handler(ValidationError)
    async def _validation(_req: Request, exc: ValidationError) -> JSONResponse:
        return _error(422, exc)

    @app.exception_handler(AppError)
    async def _upstream(_req: Request, exc: AppError) -> JSONResponse:
        return _error(502, exc)
