"""Provider adapter base class and shared HTTP/SSE plumbing.

Adapters translate an LLMRequest into one provider's wire format and back.
They never retry, never touch the database and never log prompt or
completion text. Transport and status failures surface as raw httpx
exceptions; the invoker classifies them and walks the fallback chain.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from chatroute.services.llm.errors import LLMError, LLMErrorClass
from chatroute.services.llm.types import LLMChunk, LLMRequest, LLMResponse

CONNECT_TIMEOUT_S = 10.0


@dataclass(frozen=True)
class SSEEvent:
    """One `data:` payload of a server-sent event stream.

    `event` is the most recent `event:` name in the same block, if any.
    `data` is the decoded JSON payload, or the raw string when it is not JSON.
    """

    event: str | None
    data: dict | str


async def iter_sse(response: httpx.Response) -> AsyncIterator[SSEEvent]:
    event_name: str | None = None
    async for line in response.aiter_lines():
        if not line:
            event_name = None
        elif line.startswith("event:"):
            event_name = line[6:].strip()
        elif line.startswith("data:"):
            raw = line[5:].strip()
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                payload = raw
            yield SSEEvent(event=event_name, data=payload)


class LLMAdapter(ABC):
    """Base class for provider adapters.

    Subclasses set `provider`, build headers and bodies, and parse replies.
    The shared client is owned by the application lifespan.
    """

    provider: str = "unknown"

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    @abstractmethod
    async def generate(self, req: LLMRequest, *, api_key: str, timeout_s: int) -> LLMResponse:
        """Return the complete reply for `req`.

        Raises:
            httpx.HTTPStatusError: On non-2xx HTTP response.
            httpx.TimeoutException: On request timeout.
            httpx.NetworkError: On network failure.
            LLMError: If the reply cannot be interpreted.
        """

    @abstractmethod
    def generate_stream(
        self, req: LLMRequest, *, api_key: str, timeout_s: int
    ) -> AsyncIterator[LLMChunk]:
        """Yield text deltas, then exactly one chunk with done=True.

        Closing the iterator early closes the HTTP stream and aborts the
        provider call. A body that ends before the provider's terminal
        marker raises LLMError(NETWORK).
        """

    @abstractmethod
    async def list_models(self, *, api_key: str, timeout_s: int) -> set[str]:
        """Return the provider model names usable for text generation."""

    def _headers(self, api_key: str) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _timeout(self, timeout_s: int) -> httpx.Timeout:
        return httpx.Timeout(timeout_s, connect=CONNECT_TIMEOUT_S)

    async def _post(
        self, url: str, body: dict, *, api_key: str, timeout_s: int
    ) -> httpx.Response:
        response = await self._client.post(
            url, headers=self._headers(api_key), json=body, timeout=self._timeout(timeout_s)
        )
        response.raise_for_status()
        return response

    async def _get_json(
        self, url: str, *, api_key: str, timeout_s: int, params: dict | None = None
    ) -> dict:
        response = await self._client.get(
            url, headers=self._headers(api_key), params=params, timeout=self._timeout(timeout_s)
        )
        response.raise_for_status()
        return response.json()

    @asynccontextmanager
    async def _open_stream(
        self,
        url: str,
        body: dict,
        *,
        api_key: str,
        timeout_s: int,
        params: dict | None = None,
    ):
        async with self._client.stream(
            "POST",
            url,
            headers=self._headers(api_key),
            json=body,
            params=params,
            timeout=self._timeout(timeout_s),
        ) as response:
            if response.is_error:
                # Load the body so the classifier can inspect the error payload
                await response.aread()
            response.raise_for_status()
            yield response

    def _error(self, error_class: LLMErrorClass, message: str) -> LLMError:
        return LLMError(error_class, message, provider=self.provider)
