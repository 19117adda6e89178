"""Tests for the response cache and session view invalidation."""

import json
from uuid import uuid4

from chatroute.services.cache_invalidation import invalidate_session_views
from chatroute.services.response_cache import (
    CHAT_CACHE_TTL_SECONDS,
    MISS,
    chat_cache_key,
    get_cached_answer,
    get_view,
    normalize_message,
    session_detail_key,
    session_list_key,
    set_view,
    store_answer,
)


class TestKeys:
    def test_normalization_collapses_whitespace_and_case(self):
        assert normalize_message("  Hello\n\tWORLD  ") == "hello world"

    def test_equivalent_messages_share_a_key(self):
        owner = uuid4()

        assert chat_cache_key(owner, "What is  X?") == chat_cache_key(owner, " what is x? ")

    def test_keys_are_owner_scoped(self):
        assert chat_cache_key(uuid4(), "hi") != chat_cache_key(uuid4(), "hi")

    def test_key_does_not_contain_message(self):
        key = chat_cache_key(uuid4(), "my secret question")

        assert "secret" not in key

    def test_view_keys_live_under_owner_sessions_prefix(self):
        owner = uuid4()

        assert session_list_key(owner, None, 20, "next").startswith(f"sessions:{owner}:")
        assert session_detail_key(owner, uuid4(), 50, 0).startswith(f"sessions:{owner}:")


class TestChatAnswers:
    def test_store_then_hit(self, fake_redis):
        owner = uuid4()
        session_id = uuid4()

        stored = store_answer(
            fake_redis, owner, "Hi", ok=True, output="Hello!", model="gpt-4", session_id=session_id
        )
        result = get_cached_answer(fake_redis, owner, "hi")

        assert stored.value is True
        assert result.hit is True
        assert result.value.output == "Hello!"
        assert result.value.model == "gpt-4"
        assert result.value.session_id == str(session_id)
        assert fake_redis.ttls[chat_cache_key(owner, "hi")] == CHAT_CACHE_TTL_SECONDS

    def test_miss(self, fake_redis):
        result = get_cached_answer(fake_redis, uuid4(), "never asked")

        assert result.ok is True
        assert result.hit is False

    def test_failed_answer_is_not_stored(self, fake_redis):
        result = store_answer(
            fake_redis, uuid4(), "Hi", ok=False, output="There was a network error", model=None
        )

        assert result.value is False
        assert fake_redis.store == {}

    def test_payload_without_ok_tag_is_deleted_and_missed(self, fake_redis):
        owner = uuid4()
        key = chat_cache_key(owner, "Hi")
        fake_redis.store[key] = json.dumps(
            {"output": "I'm having trouble processing your request", "model": "gpt-4"}
        )

        result = get_cached_answer(fake_redis, owner, "Hi")

        assert result.hit is False
        assert key not in fake_redis.store

    def test_ok_false_payload_is_deleted(self, fake_redis):
        owner = uuid4()
        key = chat_cache_key(owner, "Hi")
        fake_redis.store[key] = json.dumps({"ok": False, "output": "x", "model": "gpt-4"})

        assert get_cached_answer(fake_redis, owner, "Hi").hit is False
        assert key not in fake_redis.store

    def test_undecodable_payload_is_deleted(self, fake_redis):
        owner = uuid4()
        key = chat_cache_key(owner, "Hi")
        fake_redis.store[key] = "not json {"

        assert get_cached_answer(fake_redis, owner, "Hi").hit is False
        assert key not in fake_redis.store

    def test_incomplete_payload_is_deleted(self, fake_redis):
        owner = uuid4()
        key = chat_cache_key(owner, "Hi")
        fake_redis.store[key] = json.dumps({"ok": True, "output": "", "model": "gpt-4"})

        assert get_cached_answer(fake_redis, owner, "Hi").hit is False
        assert key not in fake_redis.store

    def test_no_client_is_a_miss(self):
        assert get_cached_answer(None, uuid4(), "Hi") is MISS
        assert store_answer(None, uuid4(), "Hi", ok=True, output="x", model="m") is MISS

    def test_read_failure_is_reported_not_raised(self, failing_redis):
        result = get_cached_answer(failing_redis, uuid4(), "Hi")

        assert result.ok is False
        assert result.hit is False
        assert "redis down" in result.error

    def test_write_failure_is_reported_not_raised(self, failing_redis):
        result = store_answer(failing_redis, uuid4(), "Hi", ok=True, output="x", model="m")

        assert result.ok is False


class TestViews:
    def test_round_trip(self, fake_redis):
        key = session_list_key(uuid4(), None, 20, "next")

        set_view(fake_redis, key, {"data": [], "cached": False}, ttl_seconds=60)

        assert get_view(fake_redis, key).value == {"data": [], "cached": False}
        assert fake_redis.ttls[key] == 60

    def test_failure_is_a_miss(self, failing_redis):
        result = get_view(failing_redis, "sessions:x:list")

        assert result.ok is False
        assert result.hit is False


class TestInvalidation:
    def test_deletes_only_owner_session_views(self, fake_redis):
        owner = uuid4()
        other = uuid4()
        set_view(fake_redis, session_list_key(owner, None, 20, "next"), {})
        set_view(fake_redis, session_detail_key(owner, uuid4(), 50, 0), {})
        set_view(fake_redis, session_list_key(other, None, 20, "next"), {})
        store_answer(fake_redis, owner, "Hi", ok=True, output="x", model="gpt-4")

        result = invalidate_session_views(fake_redis, owner, reason="append")

        assert result.ok is True
        assert result.value == 2
        assert fake_redis.keys_matching(f"sessions:{owner}:*") == []
        assert len(fake_redis.keys_matching(f"sessions:{other}:*")) == 1
        assert fake_redis.get(chat_cache_key(owner, "Hi")) is not None

    def test_nothing_to_delete(self, fake_redis):
        result = invalidate_session_views(fake_redis, uuid4())

        assert result.ok is True
        assert result.value == 0

    def test_failure_is_reported_not_raised(self, failing_redis):
        result = invalidate_session_views(failing_redis, uuid4(), reason="rename")

        assert result.ok is False

    def test_no_client(self):
        assert invalidate_session_views(None, uuid4()).ok is True
