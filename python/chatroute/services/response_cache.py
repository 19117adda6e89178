"""Response cache: content-addressed chat answers and short-lived views.

Chat answers:
    key: chat:{owner_id}:{sha256(normalized message)}
    payload: {"ok": true, "output": ..., "model": ..., "session_id": ...}
    TTL: CHAT_CACHE_TTL_S (3600)

Only payloads tagged ok=true are served. Anything else found under a chat
key (failed answer, untagged legacy value, undecodable JSON) is deleted and
reported as a miss so the request regenerates.

Session views (list/detail/history) live under sessions:{owner_id}:... with
SESSION_CACHE_TTL_S (60) and are evicted by cache_invalidation.

Every operation is best-effort: it never raises, logs failures, and
returns a CacheResult the caller is free to ignore. A None client makes
every operation a no-op miss.
"""

import json
import re
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from chatroute.logging import get_logger
from chatroute.services.redact import hash_text

logger = get_logger(__name__)

CHAT_CACHE_TTL_SECONDS = 3600
SESSION_VIEW_TTL_SECONDS = 60

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class CacheResult:
    """Outcome of a best-effort cache operation.

    ok=False means the cache itself failed (error holds the reason);
    ok=True with value=None is a plain miss.
    """

    ok: bool
    value: Any = None
    error: str | None = None

    @property
    def hit(self) -> bool:
        return self.ok and self.value is not None


MISS = CacheResult(ok=True)


@dataclass(frozen=True)
class CachedAnswer:
    output: str
    model: str
    session_id: str | None = None


def normalize_message(message: str) -> str:
    """Trim, collapse internal whitespace, lowercase."""
    return _WHITESPACE.sub(" ", message.strip()).lower()


def chat_cache_key(owner_id: UUID | str, message: str) -> str:
    return f"chat:{owner_id}:{hash_text(normalize_message(message))}"


def session_list_key(owner_id: UUID | str, cursor: str | None, limit: int, direction: str) -> str:
    return f"sessions:{owner_id}:list:{cursor or 'initial'}:{limit}:{direction}"


def session_detail_key(owner_id: UUID | str, session_id: UUID | str, limit: int, offset: int) -> str:
    return f"sessions:{owner_id}:detail:{session_id}:{limit}:{offset}"


def session_history_key(owner_id: UUID | str, limit: int, offset: int) -> str:
    return f"sessions:{owner_id}:history:{limit}:{offset}"


def _discard(redis_client, key: str, reason: str) -> None:
    logger.info("chat_cache.discarded", reason=reason, key_sha256=hash_text(key))
    try:
        redis_client.delete(key)
    except Exception as e:
        logger.warning("chat_cache.delete_failed", error=str(e))


def get_cached_answer(redis_client, owner_id: UUID | str, message: str) -> CacheResult:
    """Look up a previous successful answer for (owner, message)."""
    if redis_client is None:
        return MISS

    key = chat_cache_key(owner_id, message)
    try:
        raw = redis_client.get(key)
    except Exception as e:
        logger.warning("chat_cache.read_failed", error=str(e))
        return CacheResult(ok=False, error=str(e))

    if raw is None:
        return MISS

    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        _discard(redis_client, key, "undecodable")
        return MISS

    if not isinstance(payload, dict) or payload.get("ok") is not True:
        _discard(redis_client, key, "not_ok")
        return MISS

    output = payload.get("output")
    model = payload.get("model")
    if not isinstance(output, str) or not output or not isinstance(model, str):
        _discard(redis_client, key, "incomplete")
        return MISS

    return CacheResult(
        ok=True,
        value=CachedAnswer(output=output, model=model, session_id=payload.get("session_id")),
    )


def store_answer(
    redis_client,
    owner_id: UUID | str,
    message: str,
    *,
    ok: bool,
    output: str,
    model: str | None,
    session_id: UUID | str | None = None,
    ttl_seconds: int = CHAT_CACHE_TTL_SECONDS,
) -> CacheResult:
    """Cache a freshly generated answer. Failed answers are never cached."""
    if redis_client is None:
        return MISS
    if not ok or not output or not model:
        return CacheResult(ok=True, value=False)

    payload = {
        "ok": True,
        "output": output,
        "model": model,
        "session_id": str(session_id) if session_id else None,
    }
    try:
        redis_client.setex(chat_cache_key(owner_id, message), ttl_seconds, json.dumps(payload))
    except Exception as e:
        logger.warning("chat_cache.write_failed", error=str(e))
        return CacheResult(ok=False, error=str(e))
    return CacheResult(ok=True, value=True)


def get_view(redis_client, key: str) -> CacheResult:
    """Read a cached JSON view (session list or detail)."""
    if redis_client is None:
        return MISS
    try:
        raw = redis_client.get(key)
        if raw is None:
            return MISS
        return CacheResult(ok=True, value=json.loads(raw))
    except Exception as e:
        logger.warning("session_cache.read_failed", error=str(e))
        return CacheResult(ok=False, error=str(e))


def set_view(
    redis_client, key: str, value: Any, ttl_seconds: int = SESSION_VIEW_TTL_SECONDS
) -> CacheResult:
    if redis_client is None:
        return MISS
    try:
        redis_client.setex(key, ttl_seconds, json.dumps(value, default=str))
    except Exception as e:
        logger.warning("session_cache.write_failed", error=str(e))
        return CacheResult(ok=False, error=str(e))
    return CacheResult(ok=True, value=True)
