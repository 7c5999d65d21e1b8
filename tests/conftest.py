"""Shared test fixtures for pytest.

We set minimal env defaults (e.g. SECRET_KEY) early so importing modules
that instantiate settings (core.security, main) succeeds without needing an
external .env file during tests.
"""

import os
from collections.abc import AsyncGenerator, Callable, Generator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient


os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")

from pydantic_ai import models

from dependencies.auth import get_current_user_id
from dependencies.streaming import get_orchestrator
from main import app
from services.streaming.orchestrator import StreamOrchestrator
from tests.fixtures.streaming import TEST_USER_ID


# Block any real model requests in tests
models.ALLOW_MODEL_REQUESTS = False


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """
    Create a test client for the FastAPI application.
    """
    with TestClient(app) as client:
        yield client


@pytest.fixture
def use_orchestrator() -> Generator[Callable[[StreamOrchestrator], None], None, None]:
    """Install an orchestrator for API tests; removed again after the test."""

    def _install(orchestrator: StreamOrchestrator) -> None:
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    yield _install
    app.dependency_overrides.pop(get_orchestrator, None)


async def _override_get_current_user_id() -> str:
    return TEST_USER_ID


@pytest_asyncio.fixture
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    """Async client with auth override (auto-auth)."""
    app.dependency_overrides[get_current_user_id] = _override_get_current_user_id
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.pop(get_current_user_id, None)


@pytest_asyncio.fixture
async def anon_client() -> AsyncGenerator[AsyncClient, None]:
    """Async client that goes through the real bearer-token dependency."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
