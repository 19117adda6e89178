"""OpenAI chat completions adapter.

Turns map one to one onto OpenAI messages. Streams end with `data: [DONE]`;
usage arrives on a trailing chunk with empty choices when
`stream_options.include_usage` is set.
"""

from collections.abc import AsyncIterator

from chatroute.services.llm.adapter import LLMAdapter, iter_sse
from chatroute.services.llm.errors import LLMErrorClass
from chatroute.services.llm.types import LLMChunk, LLMRequest, LLMResponse, LLMUsage

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
OPENAI_MODELS_URL = "https://api.openai.com/v1/models"


def _usage(payload: dict | None) -> LLMUsage | None:
    if not payload:
        return None
    return LLMUsage(
        prompt_tokens=payload.get("prompt_tokens"),
        completion_tokens=payload.get("completion_tokens"),
        total_tokens=payload.get("total_tokens"),
    )


class OpenAIAdapter(LLMAdapter):
    provider = "openai"

    def _headers(self, api_key: str) -> dict[str, str]:
        return {**super()._headers(api_key), "Authorization": f"Bearer {api_key}"}

    def _body(self, req: LLMRequest, *, stream: bool) -> dict:
        body: dict = {
            "model": req.model_name,
            "messages": [{"role": turn.role, "content": turn.content} for turn in req.messages],
            "max_tokens": req.max_tokens,
            "stream": stream,
        }
        if stream:
            body["stream_options"] = {"include_usage": True}
        if req.temperature is not None:
            body["temperature"] = req.temperature
        return body

    async def generate(self, req: LLMRequest, *, api_key: str, timeout_s: int) -> LLMResponse:
        response = await self._post(
            OPENAI_CHAT_URL, self._body(req, stream=False), api_key=api_key, timeout_s=timeout_s
        )
        payload = response.json()

        choices = payload.get("choices") or []
        if not choices:
            raise self._error(LLMErrorClass.UNKNOWN, "OpenAI response missing choices")

        message = choices[0].get("message") or {}
        return LLMResponse(
            text=message.get("content") or "",
            usage=_usage(payload.get("usage")),
            provider_request_id=response.headers.get("x-request-id") or payload.get("id"),
        )

    async def generate_stream(
        self, req: LLMRequest, *, api_key: str, timeout_s: int
    ) -> AsyncIterator[LLMChunk]:
        async with self._open_stream(
            OPENAI_CHAT_URL, self._body(req, stream=True), api_key=api_key, timeout_s=timeout_s
        ) as response:
            request_id = response.headers.get("x-request-id")
            usage = None

            async for sse in iter_sse(response):
                if sse.data == "[DONE]":
                    yield LLMChunk(
                        delta_text="", done=True, usage=usage, provider_request_id=request_id
                    )
                    return
                if not isinstance(sse.data, dict):
                    continue

                usage = _usage(sse.data.get("usage")) or usage
                for choice in (sse.data.get("choices") or [])[:1]:
                    text = (choice.get("delta") or {}).get("content")
                    if text:
                        yield LLMChunk(delta_text=text, done=False)

        raise self._error(LLMErrorClass.NETWORK, "OpenAI stream ended without [DONE] marker")

    async def list_models(self, *, api_key: str, timeout_s: int) -> set[str]:
        payload = await self._get_json(OPENAI_MODELS_URL, api_key=api_key, timeout_s=timeout_s)
        return {model["id"] for model in payload.get("data", []) if model.get("id")}
