"""Provider failure taxonomy.

Every failure falls into one of five kinds, each shown to users through a
fixed message that never carries provider detail:

    auth-config     key missing or rejected, provider disabled (401/403)
    rate-limit      quota or rate limit exceeded (429)
    invalid-model   model unknown, retired or not servable (404)
    network         timeouts, connection failures, 5xx, truncated streams
    unknown         anything else

Provider bodies refine the HTTP status where they say more than it does.
"""

import asyncio
from collections.abc import Callable
from enum import Enum

import httpx

from chatroute.logging import get_logger

logger = get_logger(__name__)


class LLMErrorClass(str, Enum):
    AUTH_CONFIG = "auth-config"
    RATE_LIMIT = "rate-limit"
    INVALID_MODEL = "invalid-model"
    NETWORK = "network"
    UNKNOWN = "unknown"


ERROR_CLASS_TO_MESSAGE: dict[LLMErrorClass, str] = {
    LLMErrorClass.AUTH_CONFIG: (
        "There seems to be an issue with the API configuration. "
        "Please contact support if this continues."
    ),
    LLMErrorClass.RATE_LIMIT: (
        "The API rate limit has been reached. Please try again in a few moments."
    ),
    LLMErrorClass.INVALID_MODEL: "The selected AI model is unavailable. Please try again later.",
    LLMErrorClass.NETWORK: (
        "There was a network error connecting to the AI service. Please try again."
    ),
    LLMErrorClass.UNKNOWN: (
        "I'm having trouble processing your request right now. This could be due to "
        "high demand or a temporary service issue. Please try again in a few moments."
    ),
}


def user_message_for(error_class: LLMErrorClass) -> str:
    return ERROR_CLASS_TO_MESSAGE[error_class]


class LLMError(Exception):
    """A classified provider failure.

    `message` is internal and only ever logged; users see `user_message`.
    """

    def __init__(self, error_class: LLMErrorClass, message: str, provider: str | None = None):
        super().__init__(message)
        self.error_class = error_class
        self.message = message
        self.provider = provider

    @property
    def user_message(self) -> str:
        return user_message_for(self.error_class)


def _error_object(body: dict | None) -> dict:
    error = (body or {}).get("error")
    return error if isinstance(error, dict) else {}


def _openai_rule(status_code: int, body: dict | None) -> LLMErrorClass | None:
    if status_code != 400:
        return None
    error = _error_object(body)
    text = str(error.get("message") or "").lower()
    if (
        error.get("code") == "model_not_found"
        or "does not exist" in text
        or ("model" in text and "not found" in text)
    ):
        return LLMErrorClass.INVALID_MODEL
    return None


_ANTHROPIC_ERROR_TYPES = {
    "authentication_error": LLMErrorClass.AUTH_CONFIG,
    "permission_error": LLMErrorClass.AUTH_CONFIG,
    "not_found_error": LLMErrorClass.INVALID_MODEL,
    "rate_limit_error": LLMErrorClass.RATE_LIMIT,
    "overloaded_error": LLMErrorClass.NETWORK,
}


def _anthropic_rule(status_code: int, body: dict | None) -> LLMErrorClass | None:
    return _ANTHROPIC_ERROR_TYPES.get(_error_object(body).get("type"))


# Gemini reports failures as free text and status names, matched case-insensitively
_GEMINI_MARKERS = (
    (("api_key_invalid", "api key not valid"), LLMErrorClass.AUTH_CONFIG),
    (("resource_exhausted", "quota"), LLMErrorClass.RATE_LIMIT),
    (("is not found", "not supported for generatecontent"), LLMErrorClass.INVALID_MODEL),
)


def _gemini_rule(status_code: int, body: dict | None) -> LLMErrorClass | None:
    text = str(body).lower() if body else ""
    for markers, error_class in _GEMINI_MARKERS:
        if any(marker in text for marker in markers):
            return error_class
    return None


_PROVIDER_RULES: dict[str, Callable[[int, dict | None], LLMErrorClass | None]] = {
    "openai": _openai_rule,
    "anthropic": _anthropic_rule,
    "gemini": _gemini_rule,
}


def classify_status(status_code: int) -> LLMErrorClass:
    if status_code in (401, 403):
        return LLMErrorClass.AUTH_CONFIG
    if status_code == 429:
        return LLMErrorClass.RATE_LIMIT
    if status_code == 404:
        return LLMErrorClass.INVALID_MODEL
    if status_code >= 500:
        return LLMErrorClass.NETWORK
    return LLMErrorClass.UNKNOWN


def classify_provider_error(
    provider: str,
    status_code: int | None,
    json_body: dict | None,
    exception: BaseException | None,
) -> LLMErrorClass:
    """Classify one failed provider call.

    Transport failures are NETWORK whatever the status. Otherwise the
    provider's body rule decides when it recognizes the body, and the
    status decides when it does not.
    """
    if isinstance(exception, (httpx.TransportError, asyncio.TimeoutError)):
        return LLMErrorClass.NETWORK
    if status_code is None:
        return LLMErrorClass.UNKNOWN

    rule = _PROVIDER_RULES.get(provider)
    if rule is None:
        logger.warning("llm.error.unknown_provider", provider=provider)
        return classify_status(status_code)
    return rule(status_code, json_body) or classify_status(status_code)
