"""Bearer authentication and plan resolution.

Every non-public request must carry `Authorization: Bearer <jwt>`. Once the
token verifies, the caller's plan is read from their profile (created on
first sight) and `request.state.viewer` is set for the route dependencies.
CORS preflights pass through untouched.
"""

from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from chatroute.auth.verifier import TokenVerifier
from chatroute.errors import ApiError, ApiErrorCode
from chatroute.logging import get_logger
from chatroute.responses import error_response
from chatroute.services.routing import Plan, normalize_plan

logger = get_logger(__name__)

PUBLIC_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})

ProfileCallback = Callable[[UUID], Plan | str]


@dataclass(frozen=True)
class Viewer:
    user_id: UUID
    subscription_plan: Plan = Plan.FREE


def bearer_token(authorization: str | None) -> str:
    """Return the token from an Authorization header value.

    Raises:
        ApiError(E_UNAUTHENTICATED): header absent, not Bearer, or empty.
    """
    if not authorization:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid authorization header format")
    return token.strip()


class AuthMiddleware(BaseHTTPMiddleware):
    """Rejects unauthenticated requests before they reach a route.

    `profile_callback(user_id)` returns the caller's plan. It touches the
    database, so it runs in the threadpool; when it fails the request
    fails with a 500 rather than proceeding on a guessed plan.
    """

    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier,
        profile_callback: ProfileCallback | None = None,
    ):
        super().__init__(app)
        self.verifier = verifier
        self.profile_callback = profile_callback

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        try:
            token = bearer_token(request.headers.get("authorization"))
            claims = self.verifier.verify(token)
        except ApiError as e:
            logger.warning("auth_failure", code=e.code.value, reason=e.message)
            return JSONResponse(status_code=e.status_code, content=error_response(e.code, e.message))

        user_id = UUID(claims["sub"])
        try:
            plan = await self._resolve_plan(user_id)
        except Exception as e:
            logger.exception("profile_bootstrap_failed", error_type=type(e).__name__)
            return JSONResponse(
                status_code=500,
                content=error_response(ApiErrorCode.E_INTERNAL, "Internal server error"),
            )

        request.state.viewer = Viewer(user_id=user_id, subscription_plan=plan)
        return await call_next(request)

    async def _resolve_plan(self, user_id: UUID) -> Plan:
        if self.profile_callback is None:
            return Plan.FREE
        return normalize_plan(await run_in_threadpool(self.profile_callback, user_id))


def get_viewer(request: Request) -> Viewer:
    """Route dependency for the authenticated caller."""
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer

