"""Bearer token verification.

`TokenVerifier` is the seam AuthMiddleware depends on. Production uses
`JwksTokenVerifier`; tests use the keypair-backed verifier in
tests/support/jwt_verifier.py.
"""

import threading
from typing import Any, Protocol
from uuid import UUID

import jwt
from jwt import PyJWKClient
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
    PyJWKClientError,
)

from chatroute.errors import ApiError, ApiErrorCode
from chatroute.logging import get_logger

logger = get_logger(__name__)

CLOCK_SKEW_SECONDS = 60
ALGORITHMS = ["RS256", "ES256"]

# Checked in order, so subclasses precede their bases
_DECODE_FAILURES: tuple[tuple[type[InvalidTokenError], str, str], ...] = (
    (ExpiredSignatureError, "expired_token", "Token expired"),
    (InvalidSignatureError, "invalid_signature", "Invalid token signature"),
    (InvalidIssuerError, "invalid_issuer", "Invalid token issuer"),
    (InvalidAudienceError, "invalid_audience", "Invalid token audience"),
    (DecodeError, "decode_error", "Invalid token format"),
    (InvalidTokenError, "invalid_token", "Invalid token"),
)


def _unauthenticated(reason: str, message: str) -> ApiError:
    logger.warning("auth_failure", reason=reason)
    return ApiError(ApiErrorCode.E_UNAUTHENTICATED, message)


class TokenVerifier(Protocol):
    def verify(self, token: str) -> dict[str, Any]:
        """Return the token's claims.

        Raises:
            ApiError(E_UNAUTHENTICATED): The token is not acceptable.
            ApiError(E_AUTH_UNAVAILABLE): Keys could not be fetched.
        """
        ...


class JwksTokenVerifier:
    """Verifies RS256/ES256 tokens against the identity provider's JWKS.

    Requires exp, iss and a UUID sub. exp allows CLOCK_SKEW_SECONDS of skew,
    iss is compared without a trailing slash, and aud must be one of
    `audiences`. An unknown kid triggers one key refetch before rejecting.
    """

    def __init__(self, jwks_url: str, issuer: str, audiences: list[str], cache_ttl: int = 3600):
        self.jwks_url = jwks_url
        self.issuer = issuer.rstrip("/")
        self.audiences = audiences
        self.cache_ttl = cache_ttl

        self._lock = threading.Lock()
        self._jwks_client: PyJWKClient | None = None

    def _new_client(self) -> PyJWKClient:
        return PyJWKClient(self.jwks_url, cache_keys=True, lifespan=self.cache_ttl)

    def _get_jwks_client(self, *, refresh: bool = False) -> PyJWKClient:
        with self._lock:
            if refresh or self._jwks_client is None:
                self._jwks_client = self._new_client()
            return self._jwks_client

    def _signing_key(self, token: str):
        try:
            return self._get_jwks_client().get_signing_key_from_jwt(token)
        except PyJWKClientError as e:
            if "Unable to find" not in str(e) and "kid" not in str(e).lower():
                logger.warning("auth_failure", reason="jwks_unavailable", error=str(e))
                raise ApiError(
                    ApiErrorCode.E_AUTH_UNAVAILABLE, "Authentication service unavailable"
                ) from e

        logger.info("jwks_refresh", reason="kid_miss")
        try:
            return self._get_jwks_client(refresh=True).get_signing_key_from_jwt(token)
        except PyJWKClientError as e:
            raise _unauthenticated("kid_not_found", "Invalid token: signing key not found") from e

    def verify(self, token: str) -> dict[str, Any]:
        signing_key = self._signing_key(token)
        try:
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=ALGORITHMS,
                audience=self.audiences,
                issuer=self.issuer,
                leeway=CLOCK_SKEW_SECONDS,
                options={"require": ["exp", "iss", "sub"]},
            )
        except InvalidTokenError as e:
            reason, message = next(
                (reason, message)
                for error_type, reason, message in _DECODE_FAILURES
                if isinstance(e, error_type)
            )
            raise _unauthenticated(reason, message) from e
        return validate_subject(claims)


def validate_subject(claims: dict[str, Any]) -> dict[str, Any]:
    """Require a UUID `sub`; every verifier applies this last."""
    sub = claims.get("sub")
    if not sub:
        raise _unauthenticated("missing_sub", "Invalid token: missing sub")
    try:
        UUID(str(sub))
    except ValueError as e:
        raise _unauthenticated("invalid_sub", "Invalid token: sub is not a valid UUID") from e
    return claims
