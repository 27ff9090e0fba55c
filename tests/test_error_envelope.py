"""Tests for the error body and exception handlers.

Every error response has the shape::

    {"message": "...", "code": "<stable_code>", "details": ..., "request_id": "..."}

``details`` is omitted when empty; ``error`` appears only on development 500s.
"""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from amora import app as app_module
from amora.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
    register_exception_handlers,
)
from amora.config import reset_settings_cache
from amora.service.errors import (
    DuplicateIdentity,
    InvalidCredentials,
    InvalidToken,
    NotFoundError,
    ServerError,
    ServiceError,
    Unauthorized,
    ValidationError,
)
from amora.storage.errors import ConstraintViolation


class TestStatusMapping:
    def test_known_statuses(self):
        assert _error_code_for_status(400) == "validation_error"
        assert _error_code_for_status(401) == "unauthorized"
        assert _error_code_for_status(404) == "not_found"
        assert _error_code_for_status(500) == "server_error"

    def test_unknown_statuses_fall_back_by_class(self):
        assert _error_code_for_status(418) == "validation_error"
        assert _error_code_for_status(503) == "server_error"

    def test_mapping_has_no_duplicates(self):
        assert len(set(_STATUS_TO_CODE.values())) == len(_STATUS_TO_CODE)


class TestErrorResponse:
    def test_body_shape(self):
        response = _error_response(400, "bad input", {"errors": [{"field": "email"}]})

        body = json.loads(response.body)
        assert response.status_code == 400
        assert body["message"] == "bad input"
        assert body["code"] == "validation_error"
        assert body["details"] == {"errors": [{"field": "email"}]}
        assert body["request_id"]
        assert "error" not in body

    def test_empty_details_omitted(self):
        body = json.loads(_error_response(404, "Not Found").body)

        assert "details" not in body


@pytest.mark.parametrize(
    "exc_type, status, code",
    [
        (ValidationError, 400, "validation_error"),
        (DuplicateIdentity, 400, "duplicate_identity"),
        (InvalidCredentials, 401, "invalid_credentials"),
        (InvalidToken, 401, "invalid_token"),
        (Unauthorized, 401, "unauthorized"),
        (NotFoundError, 404, "not_found"),
        (ServerError, 500, "server_error"),
    ],
)
def test_service_error_taxonomy(exc_type, status, code):
    exc = exc_type("boom")
    assert isinstance(exc, ServiceError)
    assert exc.status_code == status
    assert exc.error_code == code


@pytest.fixture
def failing_app():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/boom")
    async def boom():
        raise RuntimeError("password=hunter2 exploded")

    @app.get("/conflict")
    async def conflict():
        raise ConstraintViolation("email already exists", {"field": "email"})

    @app.get("/service")
    async def service():
        raise NotFoundError("User not found")

    return app


def test_uncaught_exception_hides_cause_in_production(failing_app):
    client = TestClient(failing_app, raise_server_exceptions=False)

    response = client.get("/boom")

    assert response.status_code == 500
    body = response.json()
    assert body["message"] == "internal server error"
    assert body["code"] == "server_error"
    assert "error" not in body


def test_uncaught_exception_sanitized_cause_in_development(failing_app, monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "development")
    reset_settings_cache()
    client = TestClient(failing_app, raise_server_exceptions=False)

    response = client.get("/boom")

    body = response.json()
    assert response.status_code == 500
    assert "exploded" in body["error"]
    assert "hunter2" not in body["error"]


def test_constraint_violation_maps_to_duplicate(failing_app):
    response = TestClient(failing_app).get("/conflict")

    assert response.status_code == 400
    assert response.json()["code"] == "duplicate_identity"
    assert response.json()["details"] == {"field": "email"}


def test_service_error_handler(failing_app):
    response = TestClient(failing_app).get("/service")

    assert response.status_code == 404
    assert response.json() == {
        "message": "User not found",
        "code": "not_found",
        "request_id": response.json()["request_id"],
    }


def test_unmatched_route_is_not_found():
    client = TestClient(app_module.app)

    response = client.get("/api/users/nope")

    assert response.status_code == 404
    assert response.json()["message"] == "Not Found"
    assert response.json()["code"] == "not_found"


def test_request_id_echoed_in_error_body():
    client = TestClient(app_module.app)

    response = client.get("/api/users/profile", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 401
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.json()["request_id"] == "req-123"
