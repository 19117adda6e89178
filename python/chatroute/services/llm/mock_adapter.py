"""Deterministic substitute adapter (USE_MOCK_LLM).

Serves every provider without network calls. Output depends only on the
model name and the last user turn, so tests and local development get
stable answers through the same streaming contract as the real adapters.
"""

import asyncio
import re
from collections.abc import AsyncIterator

import httpx

from chatroute.services.llm.adapter import LLMAdapter
from chatroute.services.llm.types import LLMChunk, LLMRequest, LLMResponse, LLMUsage

_RESPONSE_PATTERNS: list[tuple[re.Pattern, str]] = [
    (
        re.compile(r"^(hi|hello|hey|good morning|good afternoon)\b", re.I),
        "Hello! How can I help you today?",
    ),
    (
        re.compile(r"\b(code|function|class|method|algorithm|programming)\b", re.I),
        "Here is an outline of an implementation. Start by defining the inputs, "
        "then write a small function for each step and test it in isolation.",
    ),
    (
        re.compile(r"\b(analyze|explain|compare|evaluate|assess)\b", re.I),
        "Let's break this down. There are a few key factors to consider, "
        "and each one affects the outcome in a different way.",
    ),
    (
        re.compile(r"\b(write|create|generate|compose|design)\b", re.I),
        "Here is a first draft. Feel free to ask for changes in tone, length, or structure.",
    ),
]

_DEFAULT_RESPONSE = "That's a good question. Here is a short, helpful answer."


def mock_reply(model_name: str, messages) -> str:
    """Deterministic reply text for a request."""
    last_user = next((t.content for t in reversed(messages) if t.role == "user"), "")
    body = _DEFAULT_RESPONSE
    for pattern, reply in _RESPONSE_PATTERNS:
        if pattern.search(last_user):
            body = reply
            break
    return f"[{model_name}] {body}"


def _approx_tokens(text: str) -> int:
    return len(text) // 4 + 1


class MockAdapter(LLMAdapter):
    """Adapter that answers locally, word by word when streaming."""

    provider = "mock"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        models: set[str] | None = None,
        token_delay_ms: int = 0,
    ):
        super().__init__(client)
        self._models = set(models or ())
        self._token_delay_s = token_delay_ms / 1000

    async def generate(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> LLMResponse:
        text = mock_reply(req.model_name, req.messages)
        return LLMResponse(text=text, usage=self._usage(req, text), provider_request_id=None)

    async def generate_stream(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> AsyncIterator[LLMChunk]:
        text = mock_reply(req.model_name, req.messages)
        words = text.split(" ")
        for i, word in enumerate(words):
            if self._token_delay_s:
                await asyncio.sleep(self._token_delay_s)
            yield LLMChunk(delta_text=word if i == 0 else " " + word, done=False)
        yield LLMChunk(delta_text="", done=True, usage=self._usage(req, text))

    async def list_models(self, *, api_key: str, timeout_s: int) -> set[str]:
        return set(self._models)

    def _usage(self, req: LLMRequest, text: str) -> LLMUsage:
        prompt = sum(_approx_tokens(t.content) for t in req.messages)
        completion = _approx_tokens(text)
        return LLMUsage(
            prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion
        )
