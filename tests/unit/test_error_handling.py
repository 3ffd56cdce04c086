"""
Unit tests for the service error hierarchy and the error middleware.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from microflash.enums.errors import ErrorCode
from microflash.middleware.error_handling import (
    AuthorizationError,
    NotFoundError,
    ServiceError,
    StateError,
    TransientError,
    ValidationError,
    setup_error_handling,
)


def build_app(debug: bool = False) -> FastAPI:
    app = FastAPI()
    setup_error_handling(app, debug=debug)

    @app.get("/no-items")
    async def no_items():
        raise StateError(ErrorCode.NO_ELIGIBLE_ITEMS)

    @app.get("/expired")
    async def expired():
        raise StateError(ErrorCode.SESSION_EXPIRED, details={"sprint_id": 7})

    @app.get("/not-owned")
    async def not_owned():
        raise AuthorizationError(ErrorCode.SESSION_NOT_OWNED)

    @app.get("/bad-rating")
    async def bad_rating():
        raise ValidationError(ErrorCode.INVALID_RATING)

    @app.get("/crash")
    async def crash():
        raise RuntimeError("database password is hunter2")

    @app.get("/ok")
    async def ok():
        return {"status": "ok"}

    return app


class TestServiceErrors:
    """Tests for status codes and default messages."""

    @pytest.mark.parametrize(
        "error, status, code",
        [
            (ValidationError(ErrorCode.INVALID_RATING), 422, ErrorCode.INVALID_RATING),
            (StateError(ErrorCode.SESSION_EXPIRED), 409, ErrorCode.SESSION_EXPIRED),
            (StateError(ErrorCode.NO_ELIGIBLE_ITEMS), 404, ErrorCode.NO_ELIGIBLE_ITEMS),
            (AuthorizationError(), 403, ErrorCode.RESOURCE_NOT_OWNED),
            (NotFoundError(ErrorCode.SESSION_NOT_FOUND), 404, ErrorCode.SESSION_NOT_FOUND),
            (TransientError(), 503, ErrorCode.DELIVERY_FAILED),
            (ServiceError(), 500, ErrorCode.INTERNAL_ERROR),
        ],
    )
    def test_status_and_code(self, error, status, code):
        """Test each error class maps to its HTTP status and code."""
        assert error.status_code == status
        assert error.code == code
        assert error.error_code == code.value

    def test_default_and_custom_messages(self):
        """Test codes carry a default message that can be overridden."""
        assert StateError(ErrorCode.SESSION_INCOMPLETE).message == "Sprint still has unreviewed cards"
        assert StateError(ErrorCode.SESSION_INCOMPLETE, "2 cards left").message == "2 cards left"

    def test_no_items_status_does_not_leak_to_class(self):
        """Test the 404 override is per instance."""
        StateError(ErrorCode.NO_ELIGIBLE_ITEMS)
        assert StateError.status_code == 409


class TestErrorMiddleware:
    """Tests for ErrorHandlingMiddleware responses."""

    @pytest.fixture
    def client(self):
        return TestClient(build_app())

    def test_state_error_response(self, client):
        """Test a StateError becomes a 409 with its code and no details."""
        response = client.get("/expired")

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "SESSION_EXPIRED"
        assert body["message"] == "Sprint has expired and was abandoned"
        assert body["details"] is None
        assert len(body["error_id"]) == 8

    def test_no_eligible_items_is_404(self, client):
        """Test NO_ELIGIBLE_ITEMS maps to 404."""
        response = client.get("/no-items")
        assert response.status_code == 404
        assert response.json()["error"] == "NO_ELIGIBLE_ITEMS"

    def test_authorization_and_validation(self, client):
        """Test 403 and 422 responses carry their codes."""
        assert client.get("/not-owned").json()["error"] == "SESSION_NOT_OWNED"
        assert client.get("/not-owned").status_code == 403
        assert client.get("/bad-rating").status_code == 422

    def test_unexpected_error_is_sanitized(self, client):
        """Test unknown exceptions become INTERNAL_ERROR without their message."""
        response = client.get("/crash")

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "INTERNAL_ERROR"
        assert "hunter2" not in response.text
        assert "details" not in body

    def test_debug_includes_details(self):
        """Test debug mode exposes details for diagnosis."""
        client = TestClient(build_app(debug=True))

        assert client.get("/expired").json()["details"] == {"sprint_id": 7}
        crash = client.get("/crash").json()
        assert crash["details"]["exception"] == "RuntimeError"

    def test_success_passes_through(self, client):
        """Test normal responses are untouched."""
        response = client.get("/ok")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
