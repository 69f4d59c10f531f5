"""Shared fixtures for API tests.

This module provides TestClient setup with dependency overrides, so tests
never touch the engine created by the app lifespan or the real network.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_read_state_store
from api.routes.proxy import get_proxy_transport
from config import Settings, get_settings
from main import app


@pytest.fixture
def client_with_store(store):
    """Provide a TestClient with a fresh ReadStateStore injected.

    Uses FastAPI's dependency override system to replace the store owned by
    the global engine.

    Args:
        store: A pytest fixture providing an initialized ReadStateStore.

    Yields:
        A tuple of (TestClient, ReadStateStore) for testing.

    Example:
        def test_something(client_with_store):
            client, store = client_with_store
            response = client.get("/read-state")
            assert response.status_code == 200
    """
    app.dependency_overrides[get_read_state_store] = lambda: store
    client = TestClient(app)

    yield client, store

    app.dependency_overrides.clear()


class UpstreamRecorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.response = httpx.Response(200, json={"ok": True})
        self.error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def upstream() -> UpstreamRecorder:
    return UpstreamRecorder()


@pytest.fixture
def proxy_settings() -> Settings:
    """Settings used by the proxy route; tests may mutate them."""
    return Settings(
        backend_url="http://backend:1300",
        bearer_token=None,
        disable_api_proxy_query_config=False,
        disable_api_proxy_apply_config=False,
    )


@pytest.fixture
def proxy_client(upstream, proxy_settings):
    """TestClient whose proxy talks to an in-process upstream."""
    app.dependency_overrides[get_proxy_transport] = lambda: httpx.MockTransport(upstream)
    app.dependency_overrides[get_settings] = lambda: proxy_settings
    client = TestClient(app)

    yield client

    app.dependency_overrides.clear()
