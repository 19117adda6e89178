"""API error codes, their HTTP statuses, and the exceptions that carry them."""

from enum import Enum
from typing import Any


class ApiErrorCode(str, Enum):
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    E_FORBIDDEN = "E_FORBIDDEN"
    E_UPGRADE_REQUIRED = "E_UPGRADE_REQUIRED"
    E_STREAMING_DISABLED = "E_STREAMING_DISABLED"

    E_NOT_FOUND = "E_NOT_FOUND"
    E_SESSION_NOT_FOUND = "E_SESSION_NOT_FOUND"

    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_MESSAGE_REQUIRED = "E_MESSAGE_REQUIRED"
    E_INVALID_CURSOR = "E_INVALID_CURSOR"
    E_INVALID_TITLE = "E_INVALID_TITLE"

    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"
    E_INTERNAL = "E_INTERNAL"
    E_PERSISTENCE_FAILED = "E_PERSISTENCE_FAILED"
    E_ROUTING_FAILED = "E_ROUTING_FAILED"


_CODES_BY_STATUS: dict[int, tuple[ApiErrorCode, ...]] = {
    400: (
        ApiErrorCode.E_INVALID_REQUEST,
        ApiErrorCode.E_MESSAGE_REQUIRED,
        ApiErrorCode.E_INVALID_CURSOR,
        ApiErrorCode.E_INVALID_TITLE,
    ),
    401: (ApiErrorCode.E_UNAUTHENTICATED,),
    403: (
        ApiErrorCode.E_FORBIDDEN,
        ApiErrorCode.E_UPGRADE_REQUIRED,
        ApiErrorCode.E_STREAMING_DISABLED,
    ),
    404: (ApiErrorCode.E_NOT_FOUND, ApiErrorCode.E_SESSION_NOT_FOUND),
    500: (
        ApiErrorCode.E_INTERNAL,
        ApiErrorCode.E_PERSISTENCE_FAILED,
        ApiErrorCode.E_ROUTING_FAILED,
    ),
    503: (ApiErrorCode.E_AUTH_UNAVAILABLE,),
}

ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    code: status for status, codes in _CODES_BY_STATUS.items() for code in codes
}


class ApiError(Exception):
    """An error that renders as the standard error envelope.

    `extra` holds additional envelope fields, e.g. upgrade hints.
    """

    def __init__(self, code: ApiErrorCode, message: str, extra: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        self.extra = extra or {}


class NotFoundError(ApiError):
    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class UpgradeRequiredError(ApiError):
    """The caller's plan does not admit the requested intent."""

    def __init__(
        self,
        required_plan: str = "plus",
        message: str = "This feature requires a higher subscription plan",
    ):
        self.required_plan = required_plan
        super().__init__(
            ApiErrorCode.E_UPGRADE_REQUIRED,
            message,
            extra={"requiredPlan": required_plan, "upgradeRequired": True},
        )


class PersistenceError(ApiError):
    """A session or message write failed. Never retried automatically."""

    def __init__(self, message: str = "Failed to save chat session"):
        super().__init__(ApiErrorCode.E_PERSISTENCE_FAILED, message)
