"""Response envelopes and the app's exception handlers.

Errors always render as {"error": {"code", "message", "request_id", ...extra}}.
Small resources are wrapped as {"data": ...}; chat payloads keep the raw
shapes their clients consume (see api/routes/chat.py).
"""

from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from chatroute.errors import ApiError, ApiErrorCode
from chatroute.logging import get_logger, get_request_id

logger = get_logger(__name__)

# Framework-raised HTTP errors (unknown route, wrong method) mapped onto our codes
_HTTP_STATUS_CODES: dict[int, ApiErrorCode] = {
    400: ApiErrorCode.E_INVALID_REQUEST,
    401: ApiErrorCode.E_UNAUTHENTICATED,
    403: ApiErrorCode.E_FORBIDDEN,
    404: ApiErrorCode.E_NOT_FOUND,
    405: ApiErrorCode.E_INVALID_REQUEST,
    422: ApiErrorCode.E_INVALID_REQUEST,
}


def success_response(data: Any) -> dict[str, Any]:
    return {"data": data}


def error_response(
    code: ApiErrorCode,
    message: str,
    request_id: str | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the error envelope.

    `request_id` defaults to the one bound to the current request. `extra`
    fields such as upgrade hints sit beside code and message.
    """
    error: dict[str, Any] = {"code": code.value, "message": message, **(extra or {})}
    request_id = request_id or get_request_id()
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


def _json_error(status_code: int, code: ApiErrorCode, message: str, **kwargs) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_response(code, message, **kwargs))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return _json_error(exc.status_code, exc.code, exc.message, extra=exc.extra)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Bad bodies, including malformed JSON, are 400 E_INVALID_REQUEST."""
    # Locations only; the offending values may be message text
    logger.info("request_validation_failed", locations=[err.get("loc") for err in exc.errors()])
    return _json_error(400, ApiErrorCode.E_INVALID_REQUEST, "Invalid request body")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    return _json_error(exc.status_code, code, str(exc.detail or "An error occurred"))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 E_INTERNAL; the exception is logged but never echoed."""
    logger.exception("unhandled_exception", error_type=type(exc).__name__)
    return _json_error(500, ApiErrorCode.E_INTERNAL, "Internal server error")
