"""Pure ASGI CORS middleware.

CORS headers are derived from the request's own Origin: an allowed origin
is echoed back with credentials allowed and Vary: Origin. Preflight
(OPTIONS) is answered here, before auth runs.

Pure ASGI rather than BaseHTTPMiddleware so StreamingResponse bodies are
forwarded chunk by chunk.
"""

from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import Response
from starlette.types import ASGIApp, Receive, Scope, Send

ALLOWED_METHODS = "GET, POST, PATCH, DELETE, OPTIONS"
ALLOWED_HEADERS = "Authorization, Content-Type, X-Request-ID"
PREFLIGHT_MAX_AGE = "600"


class OriginCORSMiddleware:
    """Echo allowed origins on every response; answer preflight with 204."""

    def __init__(self, app: ASGIApp, allowed_origins: list[str]):
        self.app = app
        self.allowed_origins = set(allowed_origins)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        origin = Headers(scope=scope).get("origin")

        if origin is None:
            # Non-browser request (curl, tests)
            await self.app(scope, receive, send)
            return

        if origin not in self.allowed_origins:
            response = Response(status_code=403, content="origin not allowed")
            await response(scope, receive, send)
            return

        if scope["method"] == "OPTIONS":
            response = Response(
                status_code=204,
                headers={
                    "access-control-allow-origin": origin,
                    "access-control-allow-credentials": "true",
                    "access-control-allow-methods": ALLOWED_METHODS,
                    "access-control-allow-headers": ALLOWED_HEADERS,
                    "access-control-max-age": PREFLIGHT_MAX_AGE,
                    "vary": "Origin",
                },
            )
            await response(scope, receive, send)
            return

        async def send_with_cors(message: dict) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers["access-control-allow-origin"] = origin
                headers["access-control-allow-credentials"] = "true"
                headers["access-control-expose-headers"] = "X-Request-ID"
                headers.add_vary_header("Origin")
            await send(message)

        await self.app(scope, receive, send_with_cors)
