"""Tests for POST /chat/stream and the stream_chat generator."""

from unittest.mock import patch
from uuid import uuid4

import httpx
import pytest

from chatroute.api.deps import get_settings_dep
from chatroute.config import Settings
from chatroute.errors import PersistenceError
from chatroute.services import chat_sessions
from chatroute.services.chat_stream import SSE_DONE, format_sse_event, stream_chat
from chatroute.services.llm import LLMErrorClass, user_message_for
from chatroute.services.response_cache import chat_cache_key
from tests.helpers import auth_headers, event_types, parse_sse_events
from tests.support.scripted_adapter import ScriptedAdapter, reply_for

WEATHER = "What is the weather today?"
IMAGE = "Create an image of a sunset over the mountains"


@pytest.fixture
def headers(test_user_id):
    return auth_headers(test_user_id)


def _stream(client, headers, message, session_id=None):
    body = {"message": message}
    if session_id is not None:
        body["sessionId"] = session_id
    response = client.post("/chat/stream", json=body, headers=headers)
    return response, parse_sse_events(response.text)


def _deltas(events) -> str:
    return "".join(e["data"] for e in events if isinstance(e, dict) and e["type"] == "delta")


def _of_type(events, event_type):
    return [e for e in events if isinstance(e, dict) and e["type"] == event_type]


class TestFrames:
    def test_format(self):
        assert format_sse_event("delta", "hi") == 'data: {"type": "delta", "data": "hi"}\n\n'
        assert SSE_DONE == "data: [DONE]\n\n"


class TestStreamEndpoint:
    def test_event_order(self, client, headers):
        response, events = _stream(client, headers, WEATHER)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        types = event_types(events)
        assert types[:3] == ["routing", "session", "model_selected"]
        assert set(types[3:-1]) == {"delta"}
        assert types[-1] == "[DONE]"
        assert _deltas(events) == reply_for("gpt-3.5-turbo")

    def test_sse_headers(self, client, headers):
        response, _ = _stream(client, headers, WEATHER)

        assert response.headers["cache-control"] == "no-cache, no-transform"
        assert response.headers["x-accel-buffering"] == "no"

    def test_routing_and_model_payloads(self, client, headers):
        _, events = _stream(client, headers, WEATHER)

        routing = _of_type(events, "routing")[0]["data"]
        session = _of_type(events, "session")[0]["data"]
        selected = _of_type(events, "model_selected")[0]["data"]
        assert routing["primaryModel"] == "gpt-3.5-turbo"
        assert routing["allowed"] is True
        assert session["isNewChat"] is True
        assert selected == {"model": "gpt-3.5-turbo", "downgraded": False, "cached": False}

    def test_streamed_answer_is_persisted(self, client, headers):
        _, events = _stream(client, headers, WEATHER)
        session_id = _of_type(events, "session")[0]["data"]["sessionId"]

        detail = client.get(f"/chat/{session_id}", headers=headers).json()["data"]

        assert detail["total_messages"] == 2
        assert detail["messages"][1]["content"] == reply_for("gpt-3.5-turbo")
        assert detail["messages"][1]["model_used"] == "gpt-3.5-turbo"

    def test_second_stream_is_served_from_cache(self, client, headers, scripted_adapter):
        _stream(client, headers, WEATHER)
        _, events = _stream(client, headers, WEATHER)

        selected = _of_type(events, "model_selected")[0]["data"]
        assert selected["cached"] is True
        assert _deltas(events) == reply_for("gpt-3.5-turbo")
        assert scripted_adapter.call_count == 1

    def test_restricted_intent(self, client, headers, scripted_adapter):
        response, events = _stream(client, headers, IMAGE)

        assert response.status_code == 200
        assert event_types(events) == ["routing", "error", "[DONE]"]
        error = events[1]["data"]
        assert error["upgradeRequired"] is True
        assert error["requiredPlan"] == "plus"
        assert scripted_adapter.call_count == 0
        assert client.get("/chat/sessions", headers=headers).json()["data"] == []

    def test_unknown_session(self, client, headers, scripted_adapter):
        _, events = _stream(client, headers, WEATHER, str(uuid4()))

        assert event_types(events) == ["routing", "error", "[DONE]"]
        assert events[1]["data"]["code"] == "E_SESSION_NOT_FOUND"
        assert scripted_adapter.call_count == 0

    def test_blank_message_is_rejected_before_streaming(self, client, headers):
        response = client.post("/chat/stream", json={"message": "  "}, headers=headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_MESSAGE_REQUIRED"

    def test_streaming_disabled(self, app, client, headers):
        app.dependency_overrides[get_settings_dep] = lambda: Settings(
            DATABASE_URL="sqlite://", CHATROUTE_ENV="test", USE_MOCK_LLM=True, ENABLE_STREAMING=False
        )

        response = client.post("/chat/stream", json={"message": WEATHER}, headers=headers)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E_STREAMING_DISABLED"

    def test_persistence_failure_is_an_error_event(self, client, headers, fake_redis, test_user_id):
        with patch.object(
            chat_sessions, "append_exchange", side_effect=PersistenceError()
        ):
            _, events = _stream(client, headers, WEATHER)

        errors = _of_type(events, "error")
        assert errors[-1]["data"]["kind"] == "persistence"
        assert events[-1] == "[DONE]"
        assert fake_redis.get(chat_cache_key(test_user_id, WEATHER)) is None


class TestProviderFailures:
    @pytest.fixture
    def scripted_adapter(self):
        return ScriptedAdapter(
            replies={"gpt-3.5-turbo": "partial answer that breaks"},
            stream_failures={"gpt-3.5-turbo": (2, httpx.ReadError("reset"))},
        )

    def test_error_after_first_delta_keeps_partial_content(
        self, client, headers, scripted_adapter, fake_redis, test_user_id
    ):
        _, events = _stream(client, headers, WEATHER)

        types = event_types(events)
        assert types[-2:] == ["error", "[DONE]"]
        assert types.count("delta") == 2
        assert events[-2]["data"]["kind"] == LLMErrorClass.NETWORK.value
        assert scripted_adapter.calls == ["gpt-3.5-turbo"]

        session_id = _of_type(events, "session")[0]["data"]["sessionId"]
        detail = client.get(f"/chat/{session_id}", headers=headers).json()["data"]
        assert detail["messages"][1]["content"] == "partial answer"
        assert fake_redis.get(chat_cache_key(test_user_id, WEATHER)) is None


class TestTotalFailure:
    @pytest.fixture
    def scripted_adapter(self):
        request = httpx.Request("POST", "https://provider.test")
        error = httpx.HTTPStatusError(
            "bad key", request=request, response=httpx.Response(401, request=request)
        )
        return ScriptedAdapter(
            failures={
                "gpt-3.5-turbo": error,
                "gemini-1.5-flash": error,
                "claude-3-haiku-20240307": error,
            }
        )

    def test_apology_is_streamed_and_persisted(self, client, headers, scripted_adapter):
        _, events = _stream(client, headers, WEATHER)

        assert event_types(events) == ["routing", "session", "error", "[DONE]"]
        assert events[2]["data"]["message"] == user_message_for(LLMErrorClass.AUTH_CONFIG)
        assert scripted_adapter.call_count == 3

        session_id = events[1]["data"]["sessionId"]
        detail = client.get(f"/chat/{session_id}", headers=headers).json()["data"]
        assert detail["messages"][1]["content"] == user_message_for(LLMErrorClass.AUTH_CONFIG)
        assert detail["messages"][1]["model_used"] is None


class TestStreamChatGenerator:
    @pytest.mark.asyncio
    async def test_continues_existing_session(
        self, session_factory, model_invoker, fake_redis, scripted_adapter, db_session
    ):
        owner = uuid4()
        session = chat_sessions.create_session(db_session, owner)

        frames = [
            frame
            async for frame in stream_chat(
                session_factory,
                owner_id=owner,
                plan="free",
                message="Hello there",
                session_id=str(session.id),
                invoker=model_invoker,
                redis_client=fake_redis,
            )
        ]

        events = parse_sse_events("".join(frames))
        assert events[1]["data"] == {"sessionId": str(session.id), "isNewChat": False}
        assert frames[-1] == SSE_DONE
        assert chat_sessions.count_messages(db_session, session.id) == 2

    @pytest.mark.asyncio
    async def test_closing_early_persists_nothing(
        self, session_factory, model_invoker, fake_redis, scripted_adapter, db_session
    ):
        owner = uuid4()
        session = chat_sessions.create_session(db_session, owner)
        stream = stream_chat(
            session_factory,
            owner_id=owner,
            plan="free",
            message="Hello there",
            session_id=str(session.id),
            invoker=model_invoker,
            redis_client=fake_redis,
        )

        async for frame in stream:
            if '"type": "delta"' in frame:
                break
        await stream.aclose()

        assert scripted_adapter.streams_closed == 1
        assert chat_sessions.count_messages(db_session, session.id) == 0
