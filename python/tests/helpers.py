"""Test helpers for authentication, SSE parsing and common test operations.

Provides:
- Token minting for test authentication
- Header generation for test requests
- SSE body parsing
"""

import json
import time
from uuid import UUID, uuid4

import jwt

from tests.support.jwt_verifier import (
    TEST_AUDIENCE,
    TEST_ISSUER,
    MockJwtVerifier,
    generate_private_key_pem,
)

DEFAULT_EXPIRES_IN = 3600  # 1 hour


def mint_test_token(
    user_id: UUID | str,
    expires_in: int = DEFAULT_EXPIRES_IN,
    issuer: str = TEST_ISSUER,
    audience: str = TEST_AUDIENCE,
    private_key: bytes | None = None,
    **extra_claims,
) -> str:
    """Mint a signed RS256 test JWT.

    Args:
        user_id: The user ID to set as the `sub` claim.
        expires_in: Token validity in seconds from now (negative = expired).
        issuer: The `iss` claim value.
        audience: The `aud` claim value.
        private_key: Signing key; defaults to the MockJwtVerifier key.
        **extra_claims: Additional claims to include in the token.
    """
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "iss": issuer,
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
        **extra_claims,
    }
    return jwt.encode(
        payload, private_key or MockJwtVerifier.get_private_key(), algorithm="RS256"
    )


def mint_expired_token(user_id: UUID | str) -> str:
    """Mint a token that expired 1 hour ago (well past the clock skew)."""
    return mint_test_token(user_id, expires_in=-3600)


def mint_token_with_bad_signature(user_id: UUID | str) -> str:
    """Mint a token signed with an unrelated key."""
    return mint_test_token(user_id, private_key=generate_private_key_pem())


def auth_headers(user_id: UUID | str, **token_kwargs) -> dict[str, str]:
    """Return headers dict with valid Authorization for the given user."""
    token = mint_test_token(user_id, **token_kwargs)
    return {"Authorization": f"Bearer {token}"}


def create_test_user_id() -> UUID:
    return uuid4()


def parse_sse_events(body: str) -> list:
    """Split an SSE body into decoded event payloads.

    The terminal sentinel is returned as the plain string "[DONE]".
    """
    events = []
    for frame in body.split("\n\n"):
        frame = frame.strip()
        if not frame.startswith("data: "):
            continue
        data = frame[len("data: ") :]
        events.append(data if data == "[DONE]" else json.loads(data))
    return events


def event_types(events: list) -> list[str]:
    return [e if isinstance(e, str) else e["type"] for e in events]
