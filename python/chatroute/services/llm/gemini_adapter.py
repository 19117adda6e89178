"""Google Gemini adapter.

Auth goes in the `x-goog-api-key` header, never the query string. The
system turn becomes `systemInstruction` and the assistant role is called
`model`. A stream is complete once a candidate reports finishReason STOP.
Gemini returns no request id.
"""

from collections.abc import AsyncIterator

from chatroute.services.llm.adapter import LLMAdapter, iter_sse
from chatroute.services.llm.errors import LLMErrorClass
from chatroute.services.llm.types import LLMChunk, LLMRequest, LLMResponse, LLMUsage

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

_ROLE_NAMES = {"assistant": "model", "user": "user"}


def _usage(metadata: dict | None) -> LLMUsage | None:
    if not metadata:
        return None
    return LLMUsage(
        prompt_tokens=metadata.get("promptTokenCount"),
        completion_tokens=metadata.get("candidatesTokenCount"),
        total_tokens=metadata.get("totalTokenCount"),
    )


def _first_candidate(payload: dict) -> dict | None:
    candidates = payload.get("candidates") or []
    return candidates[0] if candidates else None


def _text_of(candidate: dict) -> str:
    return "".join(part.get("text", "") for part in candidate.get("content", {}).get("parts", []))


class GeminiAdapter(LLMAdapter):
    provider = "gemini"

    def _headers(self, api_key: str) -> dict[str, str]:
        return {**super()._headers(api_key), "x-goog-api-key": api_key}

    def _body(self, req: LLMRequest) -> dict:
        config: dict = {"maxOutputTokens": req.max_tokens}
        if req.temperature is not None:
            config["temperature"] = req.temperature

        body: dict = {
            "contents": [
                {"role": _ROLE_NAMES[turn.role], "parts": [{"text": turn.content}]}
                for turn in req.messages
                if turn.role != "system"
            ],
            "generationConfig": config,
        }
        system = [turn.content for turn in req.messages if turn.role == "system"]
        if system and system[-1]:
            body["systemInstruction"] = {"parts": [{"text": system[-1]}]}
        return body

    async def generate(self, req: LLMRequest, *, api_key: str, timeout_s: int) -> LLMResponse:
        response = await self._post(
            f"{GEMINI_BASE_URL}/{req.model_name}:generateContent",
            self._body(req),
            api_key=api_key,
            timeout_s=timeout_s,
        )
        payload = response.json()

        candidate = _first_candidate(payload)
        if candidate is None:
            raise self._error(LLMErrorClass.UNKNOWN, "Gemini response missing candidates")

        return LLMResponse(
            text=_text_of(candidate),
            usage=_usage(payload.get("usageMetadata")),
            provider_request_id=None,
        )

    async def generate_stream(
        self, req: LLMRequest, *, api_key: str, timeout_s: int
    ) -> AsyncIterator[LLMChunk]:
        usage = None
        async with self._open_stream(
            f"{GEMINI_BASE_URL}/{req.model_name}:streamGenerateContent",
            self._body(req),
            api_key=api_key,
            timeout_s=timeout_s,
            params={"alt": "sse"},
        ) as response:
            async for sse in iter_sse(response):
                if not isinstance(sse.data, dict):
                    continue
                candidate = _first_candidate(sse.data)
                if candidate is None:
                    continue

                usage = _usage(sse.data.get("usageMetadata")) or usage
                text = _text_of(candidate)
                if text:
                    yield LLMChunk(delta_text=text, done=False)
                if candidate.get("finishReason") == "STOP":
                    yield LLMChunk(delta_text="", done=True, usage=usage)
                    return

        raise self._error(LLMErrorClass.NETWORK, "Gemini stream ended without STOP finish reason")

    async def list_models(self, *, api_key: str, timeout_s: int) -> set[str]:
        payload = await self._get_json(
            GEMINI_BASE_URL, api_key=api_key, timeout_s=timeout_s, params={"pageSize": 1000}
        )
        return {
            model.get("name", "").removeprefix("models/")
            for model in payload.get("models", [])
            if "generateContent" in model.get("supportedGenerationMethods", [])
        }
