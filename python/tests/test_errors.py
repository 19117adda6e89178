"""Tests for error handling and response envelopes.

Verifies:
- Error envelope shape is correct, including upgrade hints
- Every error code maps to correct HTTP status
- Unknown exceptions return E_INTERNAL with 500
- Malformed JSON returns E_INVALID_REQUEST
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from chatroute.errors import (
    ERROR_CODE_TO_STATUS,
    ApiError,
    ApiErrorCode,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
    PersistenceError,
    UpgradeRequiredError,
)
from chatroute.responses import (
    error_response,
    success_response,
    unhandled_exception_handler,
)
from tests.helpers import auth_headers


class TestErrorResponse:
    """Tests for error response envelope format."""

    def test_error_response_has_correct_shape(self):
        response = error_response(ApiErrorCode.E_NOT_FOUND, "Resource not found")

        assert response["error"]["code"] == "E_NOT_FOUND"
        assert response["error"]["message"] == "Resource not found"

    def test_explicit_request_id(self):
        response = error_response(ApiErrorCode.E_INTERNAL, "boom", request_id="req-1")

        assert response["error"]["request_id"] == "req-1"

    def test_extra_fields_are_merged(self):
        response = error_response(
            ApiErrorCode.E_UPGRADE_REQUIRED, "Upgrade", extra={"requiredPlan": "plus"}
        )

        assert response["error"]["requiredPlan"] == "plus"
        assert response["error"]["code"] == "E_UPGRADE_REQUIRED"


class TestSuccessResponse:
    def test_success_response_has_data_key(self):
        assert success_response({"status": "ok"}) == {"data": {"status": "ok"}}

    def test_success_response_with_list(self):
        assert success_response([1, 2]) == {"data": [1, 2]}


class TestErrorCodeToStatus:
    def test_all_error_codes_have_status_mapping(self):
        for code in ApiErrorCode:
            assert code in ERROR_CODE_TO_STATUS, f"Missing status mapping for {code}"

    @pytest.mark.parametrize(
        "code,expected_status",
        [
            (ApiErrorCode.E_UNAUTHENTICATED, 401),
            (ApiErrorCode.E_UPGRADE_REQUIRED, 403),
            (ApiErrorCode.E_STREAMING_DISABLED, 403),
            (ApiErrorCode.E_SESSION_NOT_FOUND, 404),
            (ApiErrorCode.E_MESSAGE_REQUIRED, 400),
            (ApiErrorCode.E_INVALID_CURSOR, 400),
            (ApiErrorCode.E_INVALID_TITLE, 400),
            (ApiErrorCode.E_AUTH_UNAVAILABLE, 503),
            (ApiErrorCode.E_PERSISTENCE_FAILED, 500),
            (ApiErrorCode.E_ROUTING_FAILED, 500),
        ],
    )
    def test_error_code_maps_to_correct_status(self, code: ApiErrorCode, expected_status: int):
        assert ERROR_CODE_TO_STATUS[code] == expected_status


class TestApiErrorClass:
    def test_api_error_derives_status_code(self):
        error = ApiError(ApiErrorCode.E_SESSION_NOT_FOUND, "Chat not found")

        assert error.status_code == 404
        assert error.message == "Chat not found"

    def test_subclass_defaults(self):
        assert NotFoundError().status_code == 404
        assert ForbiddenError().status_code == 403
        assert InvalidRequestError().code == ApiErrorCode.E_INVALID_REQUEST

    def test_upgrade_required_carries_hint(self):
        error = UpgradeRequiredError(required_plan="plus")

        assert error.code == ApiErrorCode.E_UPGRADE_REQUIRED
        assert error.extra == {"requiredPlan": "plus", "upgradeRequired": True}

    def test_persistence_error(self):
        error = PersistenceError()

        assert error.status_code == 500
        assert error.message == "Failed to save chat session"


class TestMalformedJsonHandling:
    def test_malformed_json_returns_400(self, client: TestClient, test_user_id):
        response = client.post(
            "/chat",
            content="{invalid json",
            headers={**auth_headers(test_user_id), "content-type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"

    def test_wrong_body_type_returns_400(self, client: TestClient, test_user_id):
        response = client.post("/chat", json=["not", "an", "object"], headers=auth_headers(test_user_id))

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"

    def test_unknown_route_is_enveloped(self, client: TestClient, test_user_id):
        response = client.get("/nope", headers=auth_headers(test_user_id))

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_NOT_FOUND"


class TestUnhandledExceptionHandling:
    def _crash_client(self, detail: str) -> TestClient:
        test_app = FastAPI()

        @test_app.get("/crash")
        def crash_endpoint():
            raise RuntimeError(detail)

        test_app.add_exception_handler(Exception, unhandled_exception_handler)
        return TestClient(test_app, raise_server_exceptions=False)

    def test_unhandled_exception_returns_500_with_e_internal(self):
        response = self._crash_client("Unexpected error").get("/crash")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "E_INTERNAL"

    def test_unhandled_exception_does_not_leak_details(self):
        response = self._crash_client("SECRET_INTERNAL_DETAIL").get("/crash")

        assert "SECRET_INTERNAL_DETAIL" not in response.text
