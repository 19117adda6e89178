"""LLM adapter layer for provider-agnostic model invocation.

This package provides a unified interface for calling OpenAI, Anthropic, and
Gemini models (plus a deterministic mock). It includes:

- Provider adapters with async support (non-streaming + streaming + listing)
- Error classification into a five-kind taxonomy with fixed user messages
- Prompt rendering (provider-agnostic)
- ModelInvoker: servability check and fallback walk

Usage:
    from chatroute.services.llm import ModelInvoker, ModelTarget, Provider, Turn

    invoker = ModelInvoker.from_settings(httpx_client, settings)
    result = await invoker.invoke(
        [ModelTarget(Provider.OPENAI, "gpt-4"), ModelTarget(Provider.GEMINI, "gemini-1.5-pro")],
        [Turn(role="user", content="Hello!")],
    )
"""

from chatroute.services.llm.adapter import LLMAdapter
from chatroute.services.llm.errors import (
    ERROR_CLASS_TO_MESSAGE,
    LLMError,
    LLMErrorClass,
    classify_provider_error,
    user_message_for,
)
from chatroute.services.llm.invoker import (
    InvocationAttempt,
    InvocationEvent,
    InvocationResult,
    ModelInvoker,
    canonical_model_id,
)
from chatroute.services.llm.mock_adapter import MockAdapter
from chatroute.services.llm.prompt import (
    DEFAULT_SYSTEM_PROMPT,
    MAX_PROMPT_CHARS,
    PromptTooLargeError,
    estimate_token_count,
    fit_history,
    render_prompt,
    system_prompt_for,
    validate_prompt_size,
)
from chatroute.services.llm.types import (
    LLMChunk,
    LLMRequest,
    LLMResponse,
    LLMUsage,
    ModelTarget,
    Provider,
    Turn,
)

__all__ = [
    # Core types
    "Provider",
    "ModelTarget",
    "Turn",
    "LLMRequest",
    "LLMResponse",
    "LLMChunk",
    "LLMUsage",
    # Adapters
    "LLMAdapter",
    "MockAdapter",
    # Invoker
    "ModelInvoker",
    "InvocationResult",
    "InvocationEvent",
    "InvocationAttempt",
    "canonical_model_id",
    # Errors
    "LLMError",
    "LLMErrorClass",
    "ERROR_CLASS_TO_MESSAGE",
    "classify_provider_error",
    "user_message_for",
    # Prompt rendering
    "render_prompt",
    "system_prompt_for",
    "validate_prompt_size",
    "fit_history",
    "estimate_token_count",
    "PromptTooLargeError",
    "DEFAULT_SYSTEM_PROMPT",
    "MAX_PROMPT_CHARS",
]
