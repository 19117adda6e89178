"""Guards that keep secrets and user text out of logs.

Keys, tokens, prompts, messages, model output and session titles are never
logged. Log a length (`*_chars`) or a digest (`*_sha256`, via hash_text)
instead.
"""

import hashlib
import os

from chatroute.logging import get_logger

FORBIDDEN_KEYS = frozenset(
    {
        "api_key",
        "bearer",
        "token",
        "secret",
        "password",
        "prompt",
        "content",
        "message",
        "user_message",
        "output",
        "title",
        "raw_body",
    }
)

# Environments where a violation raises instead of warning
_STRICT_ENVS = frozenset({"local", "test"})


def hash_text(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def safe_kv(*, _env: str | None = None, **fields) -> dict:
    """Return `fields` for a log call after checking the key names.

        logger.info("llm.request.started", **safe_kv(provider="openai", message_chars=42))

    `_env` overrides CHATROUTE_ENV and exists for tests.
    """
    violations = sorted(set(fields) & FORBIDDEN_KEYS)
    if not violations:
        return fields

    if (_env or os.environ.get("CHATROUTE_ENV", "local")) in _STRICT_ENVS:
        raise ValueError(f"Forbidden log keys without redacted suffix: {violations}")
    get_logger(__name__).warning("safe_kv_violation", forbidden_keys=violations)
    return fields
