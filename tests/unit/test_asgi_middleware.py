"""Tests for ASGIMetricsMiddleware and create_metrics_app().

These drive the ASGI callables directly with hand-built scopes; the
integration tests cover the same code behind FastAPI.
"""

import pytest

from scrapestack.adapters.frameworks.asgi import (
    ASGIMetricsMiddleware,
    Receive,
    Scope,
    Send,
    create_metrics_app,
)
from scrapestack.core.encoding.prometheus import CONTENT_TYPE
from scrapestack.core.registry import MetricsRegistry


async def _receive() -> dict[str, object]:
    return {"type": "http.request", "body": b""}


@pytest.mark.tier(1)
@pytest.mark.tra("Adapter.ASGI.Middleware.Passthrough")
@pytest.mark.asgi
async def test_middleware_passes_response_through(
    basic_asgi_app, asgi_scope, asgi_send_capture, registry: MetricsRegistry
) -> None:
    """The wrapped app's messages reach the server unchanged."""
    # Arrange
    middleware = ASGIMetricsMiddleware(basic_asgi_app, registry)
    send, responses = asgi_send_capture

    # Act
    await middleware(asgi_scope(), _receive, send)

    # Assert
    assert responses[0]["status"] == 200
    assert responses[1]["body"] == b"OK"


@pytest.mark.tier(1)
@pytest.mark.tra("Adapter.ASGI.Middleware.Counter")
@pytest.mark.asgi
async def test_middleware_counts_requests_by_status(
    basic_asgi_app, asgi_scope, asgi_send_capture, registry: MetricsRegistry
) -> None:
    """Each request increments http_requests_total once."""
    middleware = ASGIMetricsMiddleware(basic_asgi_app, registry)
    send, _ = asgi_send_capture

    await middleware(asgi_scope("GET", "/test"), _receive, send)
    await middleware(asgi_scope("GET", "/test"), _receive, send)

    assert middleware.requests.value(method="GET", path="/test", status="200") == 2.0
    assert middleware.duration.count(method="GET", path="/test") == 2.0
    assert middleware.in_progress.value(method="GET") == 0.0


@pytest.mark.tier(1)
@pytest.mark.tra("Adapter.ASGI.Middleware.Error")
@pytest.mark.asgi
async def test_middleware_records_500_and_reraises(
    asgi_scope, asgi_send_capture, registry: MetricsRegistry
) -> None:
    """A raising handler is counted as 500 and the exception propagates."""

    async def failing_app(scope: Scope, receive: Receive, send: Send) -> None:
        raise RuntimeError("boom")

    middleware = ASGIMetricsMiddleware(failing_app, registry)
    send, responses = asgi_send_capture

    with pytest.raises(RuntimeError, match="boom"):
        await middleware(asgi_scope("POST", "/fail"), _receive, send)

    assert responses == []
    assert middleware.requests.value(method="POST", path="/fail", status="500") == 1.0
    assert middleware.duration.count(method="POST", path="/fail") == 1.0


@pytest.mark.tier(1)
@pytest.mark.tra("Adapter.ASGI.Middleware.ExcludePaths")
@pytest.mark.asgi
@pytest.mark.parametrize(
    ("exclude", "path", "recorded"),
    [
        (None, "/metrics/", False),
        (None, "/metrics", True),
        (["/internal/*"], "/internal/debug", False),
        (["/internal/*"], "/public", True),
    ],
)
async def test_middleware_exclude_paths(
    basic_asgi_app,
    asgi_scope,
    asgi_send_capture,
    registry: MetricsRegistry,
    exclude: list[str] | None,
    path: str,
    recorded: bool,
) -> None:
    """Excluded paths support exact matches and wildcards."""
    middleware = ASGIMetricsMiddleware(basic_asgi_app, registry, exclude_paths=exclude)
    send, _ = asgi_send_capture

    await middleware(asgi_scope("GET", path), _receive, send)

    count = middleware.requests.value(method="GET", path=path, status="200")
    assert count == (1.0 if recorded else 0.0)


@pytest.mark.tier(1)
@pytest.mark.tra("Adapter.ASGI.Middleware.RouteTemplate")
@pytest.mark.asgi
async def test_middleware_uses_route_template(
    asgi_scope, asgi_send_capture, registry: MetricsRegistry
) -> None:
    """A route object in the scope collapses path parameters."""

    class Route:
        path = "/items/{item_id}"

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        scope["route"] = Route()
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b""})

    middleware = ASGIMetricsMiddleware(app, registry)
    send, _ = asgi_send_capture

    await middleware(asgi_scope("GET", "/items/1"), _receive, send)
    await middleware(asgi_scope("GET", "/items/2"), _receive, send)

    assert (
        middleware.requests.value(method="GET", path="/items/{item_id}", status="200")
        == 2.0
    )


@pytest.mark.tier(1)
@pytest.mark.tra("Adapter.ASGI.MetricsApp")
@pytest.mark.asgi
class TestCreateMetricsApp:
    """Tests for the standalone metrics ASGI app."""

    async def test_serves_exposition_at_exact_path(
        self, asgi_scope, asgi_send_capture, registry: MetricsRegistry
    ) -> None:
        registry.gauge("queue_depth", "Jobs waiting.").set(3)
        send, responses = asgi_send_capture

        app = create_metrics_app(registry)
        await app(asgi_scope("GET", "/metrics/"), _receive, send)

        start, body = responses
        assert start["status"] == 200
        assert start["headers"] == [(b"content-type", CONTENT_TYPE.encode())]
        assert b"queue_depth 3\n" in body["body"]

    @pytest.mark.parametrize(
        ("method", "path", "status"),
        [("GET", "/metrics", 404), ("GET", "/other", 404), ("POST", "/metrics/", 405)],
    )
    async def test_other_requests(
        self,
        asgi_scope,
        asgi_send_capture,
        registry: MetricsRegistry,
        method: str,
        path: str,
        status: int,
    ) -> None:
        send, responses = asgi_send_capture

        await create_metrics_app(registry)(asgi_scope(method, path), _receive, send)

        assert responses[0]["status"] == status
