"""Anthropic messages adapter.

The system turn travels in the top-level `system` field. Streams report
input tokens on `message_start`, output tokens on `message_delta`, and end
with a `message_stop` event.
"""

from collections.abc import AsyncIterator

from chatroute.services.llm.adapter import LLMAdapter, iter_sse
from chatroute.services.llm.errors import LLMErrorClass
from chatroute.services.llm.types import LLMChunk, LLMRequest, LLMResponse, LLMUsage

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_MODELS_URL = "https://api.anthropic.com/v1/models"
ANTHROPIC_API_VERSION = "2023-06-01"


def _usage(input_tokens: int | None, output_tokens: int | None) -> LLMUsage:
    both_known = input_tokens is not None and output_tokens is not None
    return LLMUsage(
        prompt_tokens=input_tokens,
        completion_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens if both_known else None,
    )


class AnthropicAdapter(LLMAdapter):
    provider = "anthropic"

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            **super()._headers(api_key),
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
        }

    def _body(self, req: LLMRequest, *, stream: bool) -> dict:
        system = [turn.content for turn in req.messages if turn.role == "system"]
        body: dict = {
            "model": req.model_name,
            "max_tokens": req.max_tokens,
            "messages": [
                {"role": turn.role, "content": turn.content}
                for turn in req.messages
                if turn.role != "system"
            ],
            "stream": stream,
        }
        if system and system[-1]:
            body["system"] = system[-1]
        if req.temperature is not None:
            body["temperature"] = req.temperature
        return body

    async def generate(self, req: LLMRequest, *, api_key: str, timeout_s: int) -> LLMResponse:
        response = await self._post(
            ANTHROPIC_MESSAGES_URL,
            self._body(req, stream=False),
            api_key=api_key,
            timeout_s=timeout_s,
        )
        payload = response.json()

        blocks = [block for block in payload.get("content", []) if block.get("type") == "text"]
        usage = payload.get("usage")
        return LLMResponse(
            text="".join(block.get("text", "") for block in blocks),
            usage=_usage(usage.get("input_tokens"), usage.get("output_tokens")) if usage else None,
            provider_request_id=payload.get("id"),
        )

    async def generate_stream(
        self, req: LLMRequest, *, api_key: str, timeout_s: int
    ) -> AsyncIterator[LLMChunk]:
        message_id = None
        input_tokens = output_tokens = None

        async with self._open_stream(
            ANTHROPIC_MESSAGES_URL,
            self._body(req, stream=True),
            api_key=api_key,
            timeout_s=timeout_s,
        ) as response:
            async for sse in iter_sse(response):
                data = sse.data if isinstance(sse.data, dict) else {}
                kind = data.get("type") or sse.event

                if kind == "message_stop":
                    yield LLMChunk(
                        delta_text="",
                        done=True,
                        usage=_usage(input_tokens, output_tokens),
                        provider_request_id=message_id,
                    )
                    return
                if kind == "error":
                    raise self._error(
                        LLMErrorClass.NETWORK, "Anthropic stream reported an error event"
                    )

                if kind == "message_start":
                    message = data.get("message", {})
                    message_id = message.get("id")
                    input_tokens = message.get("usage", {}).get("input_tokens")
                elif kind == "message_delta":
                    output_tokens = data.get("usage", {}).get("output_tokens", output_tokens)
                elif kind == "content_block_delta":
                    delta = data.get("delta", {})
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield LLMChunk(delta_text=delta["text"], done=False)

        raise self._error(
            LLMErrorClass.NETWORK, "Anthropic stream ended without message_stop event"
        )

    async def list_models(self, *, api_key: str, timeout_s: int) -> set[str]:
        payload = await self._get_json(
            ANTHROPIC_MODELS_URL, api_key=api_key, timeout_s=timeout_s, params={"limit": 1000}
        )
        return {model["id"] for model in payload.get("data", []) if model.get("id")}
