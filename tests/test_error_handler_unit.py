"""Focused unit tests for global exception handling behaviors.

These tests exercise the public contract via FastAPI test app using the installed
exception handler and ExceptionNormalizationMiddleware.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi import FastAPI, HTTPException, status
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient
from pydantic import BaseModel, Field

from core.error_handler import (
    ExceptionNormalizationMiddleware,
    global_exception_handler,
)
from core.exceptions import (
    ConfigurationError,
    MissingCredentialError,
    UnknownModelError,
)
from core.middleware import CorrelationIdMiddleware


LEAKED_KEY = "sk-live-0123456789abcdef"  # pragma: allowlist secret


class Item(BaseModel):
    name: str = Field(min_length=3)
    qty: int = Field(ge=1)


@pytest.fixture
def build_test_app():
    patchers = []

    def _build(env: str) -> TestClient:
        # Patch environment setting per test invocation
        patcher = patch("core.error_handler.get_settings")
        patchers.append(patcher)
        mocked = patcher.start()
        mocked.return_value.ENVIRONMENT = env
        return TestClient(_make_app())

    yield _build
    for patcher in patchers:
        patcher.stop()


def _make_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(ExceptionNormalizationMiddleware)
    app.add_exception_handler(Exception, global_exception_handler)
    app.add_exception_handler(HTTPException, global_exception_handler)
    app.add_exception_handler(RequestValidationError, global_exception_handler)
    app.add_exception_handler(ConfigurationError, global_exception_handler)

    @app.post("/items")
    async def create_item(item: Item):  # pragma: no cover - executed via client
        return {"ok": True, "item": item.model_dump()}

    @app.get("/unknown-model")
    async def unknown_model():
        raise UnknownModelError("mystery-9000")

    @app.get("/missing-key")
    async def missing_key():
        raise MissingCredentialError("openai")

    @app.get("/boom")
    async def boom():
        raise RuntimeError(f"Exploded with {LEAKED_KEY}")

    @app.get("/unauthorized")
    async def unauthorized():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.get("/forbidden")
    async def forbidden():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied",
        )

    return app


def test_validation_error_production(build_test_app):
    client = build_test_app("production")
    resp = client.post("/items", json={"name": "ab", "qty": 0})
    assert resp.status_code == 422
    data = resp.json()
    assert data["error"]["type"] == "validation_error"
    # production should not include validation_errors
    assert "validation_errors" not in data["error"]


def test_validation_error_development(build_test_app):
    client = build_test_app("development")
    resp = client.post("/items", json={"name": "ab", "qty": 0})
    assert resp.status_code == 422
    data = resp.json()
    assert "validation_errors" in data["error"]
    for error in data["error"]["validation_errors"]:
        assert set(error) == {"loc", "msg", "type"}
    assert ["body", "qty"] in [e["loc"] for e in data["error"]["validation_errors"]]


def test_unknown_model_production(build_test_app):
    client = build_test_app("production")
    resp = client.get("/unknown-model")
    assert resp.status_code == 400
    data = resp.json()
    assert data["error"]["type"] == "configuration_error"
    assert data["message"] == "The requested model is not supported"
    assert "details" not in data["error"]


def test_unknown_model_development(build_test_app):
    client = build_test_app("development")
    resp = client.get("/unknown-model")
    assert resp.status_code == 400
    details = resp.json()["error"]["details"]
    assert details["error_code"] == "unknown_model"
    assert "mystery-9000" in details["detail"]


def test_missing_credential_is_forbidden(build_test_app):
    client = build_test_app("development")
    resp = client.get("/missing-key")
    assert resp.status_code == 403
    data = resp.json()
    assert data["error"]["type"] == "configuration_error"
    assert data["error"]["details"]["error_code"] == "missing_credential"


def test_generic_exception_production(build_test_app):
    client = build_test_app("production")
    resp = client.get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["type"] == "internal_server_error"
    assert "traceback" not in body["error"]
    assert LEAKED_KEY not in str(body)


def test_generic_exception_development(build_test_app):
    client = build_test_app("development")
    resp = client.get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["type"] == "internal_server_error"
    assert "traceback" in body["error"]
    assert LEAKED_KEY not in body["error"]["traceback"]


def test_unauthorized_error_canonical_type(build_test_app):
    """Test that 401 HTTPException returns canonical 'unauthorized' error type."""
    client = build_test_app("production")
    resp = client.get("/unauthorized")
    assert resp.status_code == 401
    body = resp.json()
    assert body["error"]["type"] == "unauthorized"
    assert body["error"]["correlation_id"]
    assert body["success"] is False
    # Should not leak details in production
    assert "details" not in body["error"]


def test_unauthorized_error_development(build_test_app):
    """Test that 401 HTTPException includes details in development."""
    client = build_test_app("development")
    resp = client.get("/unauthorized")
    assert resp.status_code == 401
    body = resp.json()
    assert body["error"]["type"] == "unauthorized"
    assert body["error"]["correlation_id"]
    # Should include details in development
    assert "details" in body["error"]
    assert body["error"]["details"]["detail"] == "Could not validate credentials"


def test_forbidden_error_canonical_type(build_test_app):
    """Test that 403 HTTPException returns canonical 'forbidden' error type."""
    client = build_test_app("production")
    resp = client.get("/forbidden")
    assert resp.status_code == 403
    body = resp.json()
    assert body["error"]["type"] == "forbidden"
    assert body["error"]["correlation_id"]
    assert body["success"] is False
    # Should not leak details in production
    assert "details" not in body["error"]


def test_forbidden_error_development(build_test_app):
    """Test that 403 HTTPException includes details in development."""
    client = build_test_app("development")
    resp = client.get("/forbidden")
    assert resp.status_code == 403
    body = resp.json()
    assert body["error"]["type"] == "forbidden"
    assert body["error"]["correlation_id"]
    # Should include details in development
    assert "details" in body["error"]
    assert body["error"]["details"]["detail"] == "Access denied"
