"""Unit tests for token verifiers.

Tests JwksTokenVerifier (JWKS client mocked) and the shared subject check.
"""

from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from jwt.exceptions import PyJWKClientError

from chatroute.auth.verifier import JwksTokenVerifier, validate_subject
from chatroute.errors import ApiError, ApiErrorCode
from tests.helpers import mint_test_token, mint_token_with_bad_signature
from tests.support.jwt_verifier import MockJwtVerifier

ISSUER = "https://auth.chatroute.test"
AUDIENCE = "authenticated"


def _jwk_client(public_key=None, error: Exception | None = None) -> MagicMock:
    client = MagicMock()
    if error is not None:
        client.get_signing_key_from_jwt.side_effect = error
    else:
        signing_key = MagicMock()
        signing_key.key = public_key or MockJwtVerifier.get_public_key()
        client.get_signing_key_from_jwt.return_value = signing_key
    return client


def _token(sub=None, **kwargs) -> str:
    kwargs.setdefault("issuer", ISSUER)
    kwargs.setdefault("audience", AUDIENCE)
    return mint_test_token(sub or uuid4(), **kwargs)


class TestJwksTokenVerifier:
    """All tests mock the JWKS client; no HTTP is made."""

    @pytest.fixture
    def verifier(self):
        return JwksTokenVerifier(
            jwks_url="https://auth.chatroute.test/.well-known/jwks.json",
            issuer=ISSUER + "/",
            audiences=[AUDIENCE],
        )

    def _verify(self, verifier, token, client=None):
        with patch.object(verifier, "_get_jwks_client", return_value=client or _jwk_client()):
            return verifier.verify(token)

    def test_valid_token(self, verifier):
        user_id = str(uuid4())

        claims = self._verify(verifier, _token(user_id))

        assert claims["sub"] == user_id
        assert claims["iss"] == ISSUER
        assert claims["aud"] == AUDIENCE

    def test_issuer_trailing_slash_is_ignored(self, verifier):
        assert verifier.issuer == ISSUER

    @pytest.mark.parametrize(
        "token_kwargs,message",
        [
            ({"expires_in": -3600}, "expired"),
            ({"issuer": "https://elsewhere.test"}, "issuer"),
            ({"audience": "someone-else"}, "audience"),
        ],
    )
    def test_rejected_claims(self, verifier, token_kwargs, message):
        with pytest.raises(ApiError) as exc_info:
            self._verify(verifier, _token(**token_kwargs))

        assert exc_info.value.code == ApiErrorCode.E_UNAUTHENTICATED
        assert message in exc_info.value.message.lower()

    def test_within_clock_skew_is_accepted(self, verifier):
        claims = self._verify(verifier, _token(expires_in=-30))

        assert "sub" in claims

    def test_invalid_signature(self, verifier):
        token = mint_token_with_bad_signature(uuid4())

        with pytest.raises(ApiError) as exc_info:
            self._verify(verifier, token)

        assert exc_info.value.code == ApiErrorCode.E_UNAUTHENTICATED

    def test_non_uuid_subject(self, verifier):
        with pytest.raises(ApiError) as exc_info:
            self._verify(verifier, _token("not-a-uuid"))

        assert "uuid" in exc_info.value.message.lower()

    def test_jwks_unreachable_is_auth_unavailable(self, verifier):
        client = _jwk_client(error=PyJWKClientError("Fail to fetch data from the url"))

        with pytest.raises(ApiError) as exc_info:
            self._verify(verifier, _token(), client)

        assert exc_info.value.code == ApiErrorCode.E_AUTH_UNAVAILABLE
        assert exc_info.value.status_code == 503

    def test_kid_miss_refreshes_once(self, verifier):
        stale = _jwk_client(error=PyJWKClientError("Unable to find a signing key"))
        fresh = _jwk_client()

        with patch.object(verifier, "_new_client", side_effect=[stale, fresh]) as new_client:
            claims = verifier.verify(_token())

        assert new_client.call_count == 2
        assert "sub" in claims

    def test_kid_still_missing_after_refresh(self, verifier):
        missing = PyJWKClientError("Unable to find a signing key")

        with patch.object(
            verifier, "_new_client", side_effect=[_jwk_client(error=missing), _jwk_client(error=missing)]
        ):
            with pytest.raises(ApiError) as exc_info:
                verifier.verify(_token())

        assert exc_info.value.code == ApiErrorCode.E_UNAUTHENTICATED


class TestValidateSubject:
    def test_missing_sub(self):
        with pytest.raises(ApiError) as exc_info:
            validate_subject({"iss": ISSUER})

        assert exc_info.value.code == ApiErrorCode.E_UNAUTHENTICATED

    def test_uuid_sub_passes(self):
        payload = {"sub": str(uuid4())}

        assert validate_subject(payload) is payload
