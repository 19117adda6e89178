"""Liveness probe."""

from fastapi import APIRouter

from chatroute.responses import success_response

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict:
    """200 while the process serves requests; touches no database, cache or provider."""
    return success_response({"status": "ok"})
