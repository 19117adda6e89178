"""Tests for OriginCORSMiddleware.

The allowed origin list comes from CORS_ORIGINS (conftest sets
http://localhost:8080).
"""

from fastapi.testclient import TestClient

from tests.helpers import auth_headers

ALLOWED = "http://localhost:8080"


class TestPreflight:
    def test_preflight_answered_without_auth(self, client: TestClient):
        response = client.options(
            "/chat",
            headers={
                "Origin": ALLOWED,
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Authorization, Content-Type",
            },
        )

        assert response.status_code == 204
        assert response.headers["access-control-allow-origin"] == ALLOWED
        assert response.headers["access-control-allow-credentials"] == "true"
        assert "POST" in response.headers["access-control-allow-methods"]
        assert "Authorization" in response.headers["access-control-allow-headers"]
        assert response.headers["vary"] == "Origin"

    def test_disallowed_origin_preflight(self, client: TestClient):
        response = client.options(
            "/chat",
            headers={"Origin": "https://evil.example", "Access-Control-Request-Method": "POST"},
        )

        assert response.status_code == 403
        assert "access-control-allow-origin" not in response.headers


class TestSimpleRequests:
    def test_allowed_origin_is_echoed(self, client: TestClient, test_user_id):
        response = client.get(
            "/chat/sessions", headers={**auth_headers(test_user_id), "Origin": ALLOWED}
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == ALLOWED
        assert response.headers["access-control-expose-headers"] == "X-Request-ID"
        assert "Origin" in response.headers["vary"]

    def test_error_responses_carry_cors_headers(self, client: TestClient):
        response = client.get("/chat/sessions", headers={"Origin": ALLOWED})

        assert response.status_code == 401
        assert response.headers["access-control-allow-origin"] == ALLOWED

    def test_disallowed_origin_is_rejected(self, client: TestClient, test_user_id):
        response = client.get(
            "/chat/sessions",
            headers={**auth_headers(test_user_id), "Origin": "https://evil.example"},
        )

        assert response.status_code == 403

    def test_no_origin_gets_no_cors_headers(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        assert "access-control-allow-origin" not in response.headers

    def test_stream_carries_cors_headers(self, client: TestClient, test_user_id):
        response = client.post(
            "/chat/stream",
            json={"message": "Hello there"},
            headers={**auth_headers(test_user_id), "Origin": ALLOWED},
        )

        assert response.headers["access-control-allow-origin"] == ALLOWED
        assert response.text.endswith("data: [DONE]\n\n")
