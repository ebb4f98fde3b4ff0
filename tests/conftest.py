"""Shared test fixtures for all test modules."""

from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from scrapestack.adapters.frameworks.asgi import Receive, Scope, Send
from scrapestack.adapters.storage.in_memory import (
    InMemoryLogStorage,
    InMemoryMetricsStorage,
)
from scrapestack.adapters.storage.sqlite_state import InMemoryStateStorage
from scrapestack.core.config import ScrapeTarget
from scrapestack.core.registry import MetricsRegistry

SAMPLE_EXPOSITION = """\
# HELP process_resident_memory_bytes Resident memory size in bytes.
# TYPE process_resident_memory_bytes gauge
process_resident_memory_bytes 12345678
# HELP http_requests_total Total HTTP requests.
# TYPE http_requests_total counter
http_requests_total{method="GET",path="/"} 3
"""


@pytest.fixture
def metrics_db_path(tmp_path: Path) -> str:
    """Provide a temporary database path for metrics storage tests."""
    return str(tmp_path / "metrics.db")


@pytest.fixture
def state_db_path(tmp_path: Path) -> str:
    """Provide a temporary database path for state storage tests."""
    return str(tmp_path / "state.db")


# === ASGI Test Fixtures ===


@pytest.fixture
def basic_asgi_app():
    """Basic ASGI app fixture that returns 200 OK."""

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b"OK"})

    return app


@pytest.fixture
def asgi_scope():
    """Factory fixture for creating ASGI scope dicts."""

    def _scope(method: str = "GET", path: str = "/test") -> Scope:
        return {
            "type": "http",
            "method": method,
            "path": path,
            "query_string": b"",
            "headers": [],
        }

    return _scope


@pytest.fixture
def asgi_send_capture():
    """Return a send callable and the list of messages it records."""

    responses: list[dict[str, object]] = []

    async def send(message: dict[str, object]) -> None:
        responses.append(message)

    return send, responses


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing.

    Usage:
        async def test_something(asgi_test_client):
            async with asgi_test_client(app) as client:
                response = await client.get("/endpoint")
    """

    def _get_client(app, raise_app_exceptions: bool = True):
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(
                app=app, raise_app_exceptions=raise_app_exceptions
            ),
            base_url="http://test",
        )

    return _get_client


@pytest.fixture
def mock_client():
    """Factory fixture for an httpx.AsyncClient served by a handler function.

    Usage:
        client = mock_client(lambda request: httpx.Response(200, text="up 1\\n"))
    """

    def _get_client(
        handler: Callable[[httpx.Request], httpx.Response],
    ) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _get_client


# === Shared Storage Fixtures ===


@pytest.fixture
def log_storage() -> InMemoryLogStorage:
    """Empty in-memory log storage."""
    return InMemoryLogStorage()


@pytest.fixture
def metrics_storage() -> InMemoryMetricsStorage:
    """Empty in-memory metrics storage."""
    return InMemoryMetricsStorage()


@pytest.fixture
def state_storage() -> InMemoryStateStorage:
    """Empty in-memory document storage."""
    return InMemoryStateStorage()


@pytest.fixture
def registry() -> MetricsRegistry:
    """Fresh metrics registry."""
    return MetricsRegistry()


@pytest.fixture
def app_target() -> ScrapeTarget:
    """Scrape target for the example application."""
    return ScrapeTarget(
        job_name="app",
        address="app:8000",
        metrics_path="/metrics/",
        interval=5.0,
        timeout=5.0,
    )


@pytest.fixture
def sample_exposition() -> str:
    """A small valid exposition body."""
    return SAMPLE_EXPOSITION
