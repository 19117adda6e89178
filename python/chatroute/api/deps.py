"""FastAPI dependencies for route handlers.

Everything here reads from app.state, which the app factory and lifespan
populate once at startup.
"""

from collections.abc import Callable, Generator

from fastapi import Request
from sqlalchemy.orm import Session

from chatroute.config import Settings, get_settings
from chatroute.services.llm import ModelInvoker

__all__ = [
    "get_db",
    "get_model_invoker",
    "get_redis",
    "get_session_factory",
    "get_settings_dep",
]


def get_session_factory(request: Request) -> Callable[[], Session]:
    """The sessionmaker built at startup."""
    return request.app.state.session_factory


def get_db(request: Request) -> Generator[Session, None, None]:
    """FastAPI dependency that provides a database session.

    Yields:
        A database session that is automatically closed after use.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_model_invoker(request: Request) -> ModelInvoker:
    """The shared ModelInvoker (one httpx.AsyncClient for all providers)."""
    return request.app.state.model_invoker


def get_redis(request: Request):
    """Shared redis client, or None when caching is disabled."""
    return getattr(request.app.state, "redis_client", None)


def get_settings_dep() -> Settings:
    return get_settings()
