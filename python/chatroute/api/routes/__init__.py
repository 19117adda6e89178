"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
"""

from fastapi import APIRouter

from chatroute.api.routes.chat import router as chat_router
from chatroute.api.routes.health import router as health_router
from chatroute.api.routes.route import router as route_router


def create_api_router() -> APIRouter:
    """Create the API router with every route registered."""
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(chat_router, tags=["chat"])
    api_router.include_router(route_router, tags=["routing"])
    return api_router


__all__ = ["create_api_router"]
