"""Tests for the legacy POST /route endpoint."""

import pytest

from tests.helpers import auth_headers

HARD_CODING = "Implement a complex machine learning algorithm with neural networks"


@pytest.fixture
def headers(test_user_id):
    return auth_headers(test_user_id)


def _route(client, headers, message, plan):
    return client.post(
        "/route", json={"userMessage": message, "subscriptionPlan": plan}, headers=headers
    )


class TestRouteEndpoint:
    def test_free_hard_coding(self, client, headers):
        response = _route(client, headers, HARD_CODING, "free")

        assert response.status_code == 200
        assert response.json() == {
            "intent": "coding",
            "contentType": "coding",
            "difficulty": "hard",
            "model": "gpt-3.5-turbo",
            "endpoint": "/api/free",
            "allowed": True,
            "downgraded": True,
            "plan": "free",
        }

    def test_pro_uses_pro_endpoint(self, client, headers):
        data = _route(client, headers, HARD_CODING, "pro").json()

        assert data["model"] == "gpt-4"
        assert data["endpoint"] == "/api/pro"
        assert data["downgraded"] is False

    def test_general_intent(self, client, headers):
        data = _route(client, headers, "What is the weather today?", "plus").json()

        assert data["intent"] == "general"
        assert data["difficulty"] == "easy"
        assert data["endpoint"] == "/api/free"

    def test_restricted_intent_is_reported_not_raised(self, client, headers):
        response = _route(client, headers, "Create an image of a sunset over the mountains", "free")

        assert response.status_code == 200
        assert response.json()["allowed"] is False
        assert response.json()["contentType"] == "image"

    def test_unknown_plan_is_free(self, client, headers):
        assert _route(client, headers, HARD_CODING, "platinum").json()["plan"] == "free"

    def test_never_invokes_a_model(self, client, headers, scripted_adapter, fake_redis):
        _route(client, headers, HARD_CODING, "pro")

        assert scripted_adapter.call_count == 0
        assert fake_redis.store == {}

    @pytest.mark.parametrize(
        "body",
        [
            {"subscriptionPlan": "free"},
            {"userMessage": "hi"},
            {"userMessage": "", "subscriptionPlan": "free"},
        ],
    )
    def test_missing_fields(self, client, headers, body):
        response = client.post("/route", json=body, headers=headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"

    def test_requires_authentication(self, client):
        response = client.post(
            "/route", json={"userMessage": "hi", "subscriptionPlan": "free"}
        )

        assert response.status_code == 401
