"""Application factory.

Middleware runs outermost first, the reverse of registration order:

    RequestIDMiddleware    request id, access log (add_request_id_middleware)
    OriginCORSMiddleware   preflight answers and response headers
    AuthMiddleware         bearer token, plan lookup, request.state.viewer
    route handler

Shared clients live on app.state. Anything passed to create_app() is used
as given; the lifespan builds only what is still missing and closes only
what it built.
"""

from contextlib import asynccontextmanager
from uuid import UUID

import httpx
import redis
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from chatroute.api.routes import create_api_router
from chatroute.auth.middleware import AuthMiddleware
from chatroute.auth.verifier import JwksTokenVerifier, TokenVerifier
from chatroute.config import Environment, Settings, get_settings
from chatroute.db.models import Base
from chatroute.db.session import create_session_factory
from chatroute.errors import ApiError
from chatroute.logging import configure_logging, get_logger
from chatroute.middleware.cors import OriginCORSMiddleware
from chatroute.middleware.request_id import RequestIDMiddleware
from chatroute.responses import (
    api_error_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from chatroute.services.llm import ModelInvoker
from chatroute.services.profiles import ensure_profile
from chatroute.services.routing import Plan

logger = get_logger(__name__)

EXCEPTION_HANDLERS = (
    (ApiError, api_error_handler),
    (RequestValidationError, validation_exception_handler),
    (StarletteHTTPException, http_exception_handler),
    (Exception, unhandled_exception_handler),
)


def profile_resolver(session_factory):
    """Plan lookup for AuthMiddleware; one short-lived session per call."""

    def resolve(user_id: UUID) -> Plan:
        with session_factory() as db:
            return ensure_profile(db, user_id)

    return resolve


def jwks_verifier(settings: Settings) -> JwksTokenVerifier:
    return JwksTokenVerifier(
        jwks_url=settings.auth_jwks_url,
        issuer=settings.normalized_issuer,
        audiences=settings.audience_list,
    )


def connect_redis(redis_url: str | None) -> redis.Redis | None:
    """Connect and ping. None, which turns caching off, when unset or unreachable."""
    if not redis_url:
        return None
    client = redis.Redis.from_url(redis_url, decode_responses=True, socket_timeout=5)
    try:
        client.ping()
    except redis.RedisError as e:
        logger.warning("redis_unavailable", error_type=type(e).__name__)
        return None
    logger.info("redis_connected")
    return client


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    state = app.state

    if settings.chatroute_env in (Environment.LOCAL, Environment.TEST):
        Base.metadata.create_all(bind=state.session_factory.kw["bind"])

    state.httpx_client = httpx.AsyncClient(
        timeout=httpx.Timeout(float(settings.llm_timeout_s), connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )

    if state.model_invoker is None:
        state.model_invoker = ModelInvoker.from_settings(state.httpx_client, settings)
        logger.info(
            "model_invoker_ready",
            use_mock_llm=settings.use_mock_llm,
            providers=[
                name
                for name, enabled in (
                    ("openai", settings.enable_openai),
                    ("anthropic", settings.enable_anthropic),
                    ("gemini", settings.enable_gemini),
                )
                if enabled
            ],
        )

    owns_redis = state.redis_client is None
    if owns_redis:
        state.redis_client = connect_redis(settings.redis_url)

    try:
        yield
    finally:
        await state.httpx_client.aclose()
        if owns_redis and state.redis_client is not None:
            try:
                state.redis_client.close()
            except redis.RedisError as e:
                logger.warning("redis_close_failed", error_type=type(e).__name__)
        logger.info("shutdown_complete")


def create_app(
    token_verifier: TokenVerifier | None = None,
    session_factory=None,
    redis_client=None,
    model_invoker: ModelInvoker | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        token_verifier: Replaces the JWKS verifier built from settings.
        session_factory: Replaces the sessionmaker over DATABASE_URL.
        redis_client: Replaces the client the lifespan would connect.
        model_invoker: Replaces the invoker the lifespan would build.
    """
    settings = get_settings()
    configure_logging(json_format=settings.log_json, level=settings.log_level)

    app = FastAPI(
        title="Chatroute API",
        description="Tiered model routing, streaming and chat history for the chat product",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.session_factory = session_factory or create_session_factory()
    app.state.redis_client = redis_client
    app.state.model_invoker = model_invoker

    for exc_class, handler in EXCEPTION_HANDLERS:
        app.add_exception_handler(exc_class, handler)
    app.include_router(create_api_router())

    app.add_middleware(
        AuthMiddleware,
        verifier=token_verifier or jwks_verifier(settings),
        profile_callback=profile_resolver(app.state.session_factory),
    )
    if settings.cors_origin_list:
        app.add_middleware(OriginCORSMiddleware, allowed_origins=settings.cors_origin_list)

    logger.info(
        "app_created", env=settings.chatroute_env.value, cors_origins=settings.cors_origin_list
    )
    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Register RequestIDMiddleware.

    Call after create_app() so it wraps everything else and even auth
    failures carry X-Request-ID.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
