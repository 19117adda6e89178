"""Model invoker: servability check, fallback walk, and error normalization.

Given the ordered targets chosen by the router ([primary] + fallbacks), the
invoker:
- normalizes model aliases into canonical ids
- skips targets that are not servable (provider disabled, no key, or absent
  from the provider's cached model listing)
- attempts each remaining target once, with a bounded timeout
- maps every failure into one LLMErrorClass with a fixed user message

Observability:
- llm.request.started / llm.request.finished / llm.request.failed per attempt
- llm.fallback.advanced when a target is abandoned for the next one
- All events use safe_kv(); message content is never logged
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Literal

import httpx

from chatroute.config import Settings
from chatroute.logging import get_logger
from chatroute.services.llm.adapter import LLMAdapter
from chatroute.services.llm.anthropic_adapter import AnthropicAdapter
from chatroute.services.llm.errors import (
    LLMError,
    LLMErrorClass,
    classify_provider_error,
    user_message_for,
)
from chatroute.services.llm.gemini_adapter import GeminiAdapter
from chatroute.services.llm.mock_adapter import MockAdapter
from chatroute.services.llm.openai_adapter import OpenAIAdapter
from chatroute.services.llm.types import (
    LLMChunk,
    LLMRequest,
    LLMUsage,
    ModelTarget,
    Provider,
    Turn,
)
from chatroute.services.redact import safe_kv

logger = get_logger(__name__)

DEFAULT_TIMEOUT_S = 45

# Alias → canonical model id
MODEL_ALIASES: dict[str, str] = {
    "gpt-4-latest": "gpt-4",
    "gpt-3.5": "gpt-3.5-turbo",
    "gemini-pro": "gemini-1.5-pro",
    "gemini-1.5-pro-latest": "gemini-1.5-pro",
    "gemini-flash": "gemini-1.5-flash",
    "gemini-1.5-flash-latest": "gemini-1.5-flash",
    "claude-3": "claude-3-sonnet",
    "claude-3-sonnet-latest": "claude-3-sonnet",
    "claude-3-haiku-latest": "claude-3-haiku",
}

# Canonical id → name the provider API expects (identity when absent)
PROVIDER_MODEL_NAMES: dict[str, str] = {
    "claude-3-haiku": "claude-3-haiku-20240307",
    "claude-3-sonnet": "claude-3-sonnet-20240229",
}

KNOWN_MODELS = (
    "gpt-3.5-turbo",
    "gpt-4",
    "gemini-1.5-flash",
    "gemini-1.5-pro",
    "claude-3-haiku",
    "claude-3-sonnet",
)


def canonical_model_id(model_id: str) -> str:
    """Map an alias to its canonical id; unknown names pass through."""
    name = model_id.strip().lower()
    return MODEL_ALIASES.get(name, name)


def normalize_target(target: ModelTarget) -> ModelTarget:
    return ModelTarget(provider=target.provider, model_id=canonical_model_id(target.model_id))


def provider_model_name(target: ModelTarget) -> str:
    return PROVIDER_MODEL_NAMES.get(target.model_id, target.model_id)


@dataclass(frozen=True)
class InvocationAttempt:
    """One target tried during a walk of the fallback chain."""

    model: str
    provider: str
    error_kind: LLMErrorClass | None = None
    latency_ms: int | None = None


@dataclass(frozen=True)
class InvocationResult:
    """Outcome of a non-streaming invocation.

    ok is the only success signal; text holds either the model output or
    the fixed user message for error_kind.
    """

    ok: bool
    text: str
    requested_model: ModelTarget
    effective_model: ModelTarget | None
    fallback_used: bool = False
    error_kind: LLMErrorClass | None = None
    attempts: list[InvocationAttempt] = field(default_factory=list)
    usage: LLMUsage | None = None


@dataclass(frozen=True)
class InvocationEvent:
    """Item yielded by ModelInvoker.stream().

    kind:
        model: the serving target is known (precedes its first delta)
        delta: text chunk
        done: stream completed successfully
        error: stream failed; error_kind is set
    """

    kind: Literal["model", "delta", "done", "error"]
    text: str = ""
    target: ModelTarget | None = None
    fallback_used: bool = False
    error_kind: LLMErrorClass | None = None
    usage: LLMUsage | None = None


def _safe_parse_json(response: httpx.Response) -> dict | None:
    """Safely parse JSON from response, returning None on failure."""
    try:
        data = response.json()
    except (ValueError, httpx.ResponseNotRead):
        return None
    return data if isinstance(data, dict) else None


def normalize_error(provider: str, exc: BaseException) -> LLMError:
    """Convert any adapter failure into an LLMError with a taxonomy class."""
    if isinstance(exc, LLMError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return LLMError(LLMErrorClass.NETWORK, "Request timed out", provider=provider)
    if isinstance(exc, httpx.HTTPStatusError):
        json_body = _safe_parse_json(exc.response)
        error_class = classify_provider_error(provider, exc.response.status_code, json_body, None)
        return LLMError(
            error_class, f"Provider returned HTTP {exc.response.status_code}", provider=provider
        )
    if isinstance(exc, httpx.TransportError):
        return LLMError(LLMErrorClass.NETWORK, "Network error", provider=provider)
    return LLMError(
        LLMErrorClass.UNKNOWN, f"Unexpected error: {type(exc).__name__}", provider=provider
    )


class ModelInvoker:
    """Calls providers for routed targets, walking the fallback chain.

    Built once at startup and shared through app.state.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None,
        *,
        api_keys: dict[Provider, str | None] | None = None,
        enabled: dict[Provider, bool] | None = None,
        timeout_s: int = DEFAULT_TIMEOUT_S,
        max_output_tokens: int = 2048,
        listing_ttl_s: int = 300,
        adapters: dict[Provider, LLMAdapter] | None = None,
        use_mock: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._api_keys = api_keys or {}
        self._enabled = enabled or {p: True for p in Provider}
        self._timeout_s = timeout_s
        self._max_output_tokens = max_output_tokens
        self._listing_ttl_s = listing_ttl_s
        self._use_mock = use_mock
        self._clock = clock
        self._listings: dict[Provider, tuple[float, set[str]]] = {}

        if adapters is not None:
            self._adapters = dict(adapters)
        else:
            self._adapters = {
                Provider.OPENAI: OpenAIAdapter(client),
                Provider.ANTHROPIC: AnthropicAdapter(client),
                Provider.GEMINI: GeminiAdapter(client),
            }

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient | None, settings: Settings) -> "ModelInvoker":
        adapters = None
        if settings.use_mock_llm:
            mock = MockAdapter(
                client,
                models=set(PROVIDER_MODEL_NAMES.values()) | set(KNOWN_MODELS),
                token_delay_ms=settings.mock_token_delay_ms,
            )
            adapters = {p: mock for p in Provider}

        return cls(
            client,
            api_keys={
                Provider.OPENAI: settings.openai_api_key,
                Provider.ANTHROPIC: settings.anthropic_api_key,
                Provider.GEMINI: settings.gemini_api_key,
            },
            enabled={
                Provider.OPENAI: settings.enable_openai,
                Provider.ANTHROPIC: settings.enable_anthropic,
                Provider.GEMINI: settings.enable_gemini,
            },
            timeout_s=settings.llm_timeout_s,
            max_output_tokens=settings.llm_max_output_tokens,
            listing_ttl_s=settings.model_listing_ttl_s,
            adapters=adapters,
            use_mock=settings.use_mock_llm,
        )

    def _api_key(self, provider: Provider) -> str | None:
        if self._use_mock:
            return "mock"
        return self._api_keys.get(provider)

    async def _listed_models(self, provider: Provider, api_key: str) -> set[str] | None:
        """Cached provider listing; None when the listing call fails."""
        cached = self._listings.get(provider)
        now = self._clock()
        if cached is not None and cached[0] > now:
            return cached[1]

        try:
            models = await asyncio.wait_for(
                self._adapters[provider].list_models(api_key=api_key, timeout_s=self._timeout_s),
                timeout=self._timeout_s,
            )
        except (asyncio.TimeoutError, httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning(
                "llm.listing.failed", provider=provider.value, error_type=type(e).__name__
            )
            return None

        self._listings[provider] = (now + self._listing_ttl_s, models)
        return models

    async def check_servable(self, target: ModelTarget) -> LLMErrorClass | None:
        """Return None if the target may be attempted, else why it may not."""
        if target.provider not in self._adapters:
            return LLMErrorClass.INVALID_MODEL
        if not self._use_mock and not self._enabled.get(target.provider, False):
            return LLMErrorClass.AUTH_CONFIG
        api_key = self._api_key(target.provider)
        if not api_key:
            return LLMErrorClass.AUTH_CONFIG

        listed = await self._listed_models(target.provider, api_key)
        if listed is not None and provider_model_name(target) not in listed:
            return LLMErrorClass.INVALID_MODEL
        return None

    def _build_request(self, target: ModelTarget, messages: list[Turn]) -> LLMRequest:
        return LLMRequest(
            model_name=provider_model_name(target),
            messages=messages,
            max_tokens=self._max_output_tokens,
        )

    def _chain(self, targets: list[ModelTarget]) -> list[ModelTarget]:
        seen: set[ModelTarget] = set()
        chain = []
        for target in targets:
            normalized = normalize_target(target)
            if normalized not in seen:
                seen.add(normalized)
                chain.append(normalized)
        return chain

    def _log_skip(self, target: ModelTarget, error_kind: LLMErrorClass, index: int, total: int):
        logger.warning(
            "llm.target.skipped",
            **safe_kv(
                provider=target.provider.value,
                model_name=target.model_id,
                error_class=error_kind.value,
            ),
        )
        if index + 1 < total:
            logger.info(
                "llm.fallback.advanced",
                from_model=target.model_id,
                reason=error_kind.value,
            )

    async def invoke(self, targets: list[ModelTarget], messages: list[Turn]) -> InvocationResult:
        """Non-streaming generation over the fallback chain.

        Never raises for provider failures; inspect result.ok instead.
        """
        chain = self._chain(targets)
        requested = chain[0]
        attempts: list[InvocationAttempt] = []
        last_error = LLMErrorClass.UNKNOWN

        for index, target in enumerate(chain):
            provider = target.provider.value
            unservable = await self.check_servable(target)
            if unservable is not None:
                attempts.append(InvocationAttempt(target.model_id, provider, unservable))
                last_error = unservable
                self._log_skip(target, unservable, index, len(chain))
                continue

            req = self._build_request(target, messages)
            base = {"provider": provider, "model_name": target.model_id, "streaming": False}
            logger.info(
                "llm.request.started",
                **safe_kv(**base, message_chars=sum(len(m.content) for m in messages)),
            )
            start = time.monotonic()

            try:
                response = await asyncio.wait_for(
                    self._adapters[target.provider].generate(
                        req, api_key=self._api_key(target.provider), timeout_s=self._timeout_s
                    ),
                    timeout=self._timeout_s,
                )
            except Exception as e:
                err = normalize_error(provider, e)
                latency_ms = int((time.monotonic() - start) * 1000)
                logger.error(
                    "llm.request.failed",
                    **safe_kv(
                        **base,
                        outcome="error",
                        error_class=err.error_class.value,
                        latency_ms=latency_ms,
                    ),
                )
                attempts.append(
                    InvocationAttempt(target.model_id, provider, err.error_class, latency_ms)
                )
                last_error = err.error_class
                if index + 1 < len(chain):
                    logger.info(
                        "llm.fallback.advanced",
                        from_model=target.model_id,
                        reason=err.error_class.value,
                    )
                continue

            latency_ms = int((time.monotonic() - start) * 1000)
            usage = response.usage
            logger.info(
                "llm.request.finished",
                **safe_kv(
                    **base,
                    outcome="success",
                    latency_ms=latency_ms,
                    tokens_input=usage.prompt_tokens if usage else None,
                    tokens_output=usage.completion_tokens if usage else None,
                    provider_request_id=response.provider_request_id,
                ),
            )
            attempts.append(InvocationAttempt(target.model_id, provider, None, latency_ms))
            return InvocationResult(
                ok=True,
                text=response.text,
                requested_model=requested,
                effective_model=target,
                fallback_used=target != requested,
                attempts=attempts,
                usage=usage,
            )

        return InvocationResult(
            ok=False,
            text=user_message_for(last_error),
            requested_model=requested,
            effective_model=None,
            error_kind=last_error,
            attempts=attempts,
        )

    async def _next_chunk(self, stream: AsyncIterator[LLMChunk]) -> LLMChunk:
        async with asyncio.timeout(self._timeout_s):
            return await anext(stream)

    async def stream(
        self, targets: list[ModelTarget], messages: list[Turn]
    ) -> AsyncIterator[InvocationEvent]:
        """Streaming generation over the fallback chain.

        Fallback happens only until the first delta of a target has been
        yielded; after that a failure ends the stream with an error event.
        Closing this generator closes the provider stream, aborting the call.
        """
        chain = self._chain(targets)
        requested = chain[0]
        last_error = LLMErrorClass.UNKNOWN

        for index, target in enumerate(chain):
            provider = target.provider.value
            unservable = await self.check_servable(target)
            if unservable is not None:
                last_error = unservable
                self._log_skip(target, unservable, index, len(chain))
                continue

            req = self._build_request(target, messages)
            base = {"provider": provider, "model_name": target.model_id, "streaming": True}
            logger.info(
                "llm.request.started",
                **safe_kv(**base, message_chars=sum(len(m.content) for m in messages)),
            )
            start = time.monotonic()
            started = False

            adapter_stream = self._adapters[target.provider].generate_stream(
                req, api_key=self._api_key(target.provider), timeout_s=self._timeout_s
            )
            async with aclosing(adapter_stream):
                try:
                    while True:
                        try:
                            chunk = await self._next_chunk(adapter_stream)
                        except StopAsyncIteration:
                            raise LLMError(
                                LLMErrorClass.NETWORK,
                                "Stream ended without terminal chunk",
                                provider=provider,
                            ) from None

                        if chunk.done:
                            if not started:
                                started = True
                                yield InvocationEvent(
                                    kind="model", target=target, fallback_used=target != requested
                                )
                            latency_ms = int((time.monotonic() - start) * 1000)
                            usage = chunk.usage
                            logger.info(
                                "llm.request.finished",
                                **safe_kv(
                                    **base,
                                    outcome="success",
                                    latency_ms=latency_ms,
                                    tokens_output=usage.completion_tokens if usage else None,
                                    provider_request_id=chunk.provider_request_id,
                                ),
                            )
                            yield InvocationEvent(
                                kind="done",
                                target=target,
                                fallback_used=target != requested,
                                usage=usage,
                            )
                            return

                        if not chunk.delta_text:
                            continue
                        if not started:
                            started = True
                            yield InvocationEvent(
                                kind="model", target=target, fallback_used=target != requested
                            )
                        yield InvocationEvent(kind="delta", text=chunk.delta_text, target=target)

                except Exception as e:
                    err = normalize_error(provider, e)
                    logger.error(
                        "llm.request.failed",
                        **safe_kv(
                            **base,
                            outcome="error",
                            error_class=err.error_class.value,
                            latency_ms=int((time.monotonic() - start) * 1000),
                            after_first_delta=started,
                        ),
                    )
                    last_error = err.error_class
                    if started:
                        yield InvocationEvent(
                            kind="error",
                            text=err.user_message,
                            target=target,
                            error_kind=err.error_class,
                        )
                        return
                    if index + 1 < len(chain):
                        logger.info(
                            "llm.fallback.advanced",
                            from_model=target.model_id,
                            reason=err.error_class.value,
                        )

        yield InvocationEvent(
            kind="error", text=user_message_for(last_error), error_kind=last_error
        )

