"""X-Request-ID correlation and the per-request access log.

A well-formed incoming id is kept (UUIDs lowercased); anything else is
replaced by a fresh UUID4. The id lands on request.state, in the log
context and on the response. Register this middleware last so it wraps
auth failures too.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from chatroute.logging import clear_request_context, get_logger, set_request_context

REQUEST_ID_HEADER = "X-Request-ID"

_ALLOWED = re.compile(r"[A-Za-z0-9._-]{1,128}")
_UUID = re.compile(r"[0-9a-fA-F]{8}(-[0-9a-fA-F]{4}){3}-[0-9a-fA-F]{12}")

logger = get_logger(__name__)


def is_valid_request_id(value: str) -> bool:
    return _ALLOWED.fullmatch(value) is not None


def normalize_request_id(value: str) -> str:
    return value.lower() if _UUID.fullmatch(value) else value


def resolve_request_id(incoming: str | None) -> str:
    if incoming and is_valid_request_id(incoming):
        return normalize_request_id(incoming)
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.monotonic()
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request_failed")
            raise
        else:
            viewer = getattr(request.state, "viewer", None)
            if viewer is not None:
                set_request_context(request_id, user_id=str(viewer.user_id))
            response.headers[REQUEST_ID_HEADER] = request_id
            if self.log_requests:
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round((time.monotonic() - started) * 1000, 2),
                )
            return response
        finally:
            clear_request_context()
