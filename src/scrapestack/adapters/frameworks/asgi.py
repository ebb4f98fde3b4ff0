"""ASGI adapter for instrumented applications.

Framework-agnostic pieces usable with any ASGI server (uvicorn, hypercorn,
daphne): a middleware recording request metrics into a MetricsRegistry
and a tiny app serving the registry in exposition format.
"""

import fnmatch
import json
import time
from collections.abc import Callable, Coroutine
from typing import Any

from scrapestack.adapters.logging import get_logger
from scrapestack.core.encoding.prometheus import CONTENT_TYPE, encode_families
from scrapestack.core.registry import MetricsRegistry

logger = get_logger(__name__)

# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Coroutine[Any, Any, dict[str, Any]]]
Send = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
ASGIApp = Callable[[Scope, Receive, Send], Coroutine[Any, Any, None]]

DEFAULT_METRICS_PATH = "/metrics/"


async def _send_response(send: Send, status: int, content_type: str, body: str) -> None:
    """Send an HTTP response with headers and body.

    Args:
        send: ASGI send callable for writing response.
        status: HTTP status code.
        content_type: Content-Type header value.
        body: Response body as string (will be encoded to bytes).
    """
    headers = [(b"content-type", content_type.encode())]
    await send({"type": "http.response.start", "status": status, "headers": headers})
    await send({"type": "http.response.body", "body": body.encode()})


async def send_metrics(send: Send, registry: MetricsRegistry) -> None:
    """Encode the registry and send it, or a JSON 500 if encoding fails."""
    try:
        body = encode_families(registry.collect())
    except Exception:
        logger.exception("Error encoding metrics endpoint")
        error_body = json.dumps({"error": "Internal Server Error"})
        await _send_response(send, 500, "application/json", error_body)
        return
    await _send_response(send, 200, CONTENT_TYPE, body)


class ASGIMetricsMiddleware:
    """ASGI middleware recording request metrics.

    Records, per request:
    - ``http_requests_total{method,path,status}`` counter
    - ``http_request_duration_seconds{method,path}`` histogram
    - ``http_requests_in_progress{method}`` gauge

    Requests whose handler raises are recorded with status 500 before the
    exception propagates, so failed requests still show up in the histogram.
    """

    def __init__(
        self,
        app: ASGIApp,
        registry: MetricsRegistry,
        exclude_paths: list[str] | None = None,
        request_counter_name: str = "http_requests_total",
        request_histogram_name: str = "http_request_duration_seconds",
    ) -> None:
        """Initialize the middleware.

        Args:
            app: The ASGI application to wrap.
            registry: Registry receiving the request metrics.
            exclude_paths: Paths not recorded. Supports exact matches and
                wildcard patterns (e.g., "/internal/*"). Defaults to the
                metrics endpoint itself.
            request_counter_name: Name of the request counter.
            request_histogram_name: Name of the request duration histogram.
        """
        self.app = app
        self.registry = registry
        self.exclude_paths = (
            [DEFAULT_METRICS_PATH] if exclude_paths is None else exclude_paths
        )
        self.requests = registry.counter(
            request_counter_name,
            "Total HTTP requests by method, path and status.",
            ["method", "path", "status"],
        )
        self.duration = registry.histogram(
            request_histogram_name,
            "HTTP request duration in seconds by method and path.",
            ["method", "path"],
        )
        self.in_progress = registry.gauge(
            "http_requests_in_progress",
            "HTTP requests currently in flight.",
            ["method"],
        )

    def _path_excluded(self, path: str) -> bool:
        """Check if path matches any pattern in exclude_paths."""
        return any(fnmatch.fnmatch(path, pattern) for pattern in self.exclude_paths)

    def _route_path(self, scope: Scope) -> str:
        # Use the route template when a framework exposes it, so
        # /items/1 and /items/2 share one series.
        route = scope.get("route")
        template = getattr(route, "path", None)
        return template if isinstance(template, str) else scope["path"]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI callable interface that processes requests through the wrapped app."""
        if scope["type"] != "http" or self._path_excluded(scope["path"]):
            await self.app(scope, receive, send)
            return

        method = scope["method"]
        start_time = time.perf_counter()
        captured: dict[str, Any] = {"status": None}

        async def wrapped_send(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                captured["status"] = message["status"]
            await send(message)

        self.in_progress.inc(method=method)
        try:
            await self.app(scope, receive, wrapped_send)
        except Exception:
            captured["status"] = 500
            raise
        finally:
            self.in_progress.dec(method=method)
            duration = time.perf_counter() - start_time
            path = self._route_path(scope)
            self.requests.inc(
                method=method, path=path, status=str(captured["status"] or 500)
            )
            self.duration.observe(duration, method=method, path=path)


def create_metrics_app(
    registry: MetricsRegistry, path: str = DEFAULT_METRICS_PATH
) -> ASGIApp:
    """Create an ASGI app serving ``registry`` at exactly ``path``.

    The match is exact, trailing slash included; every other path is 404.

    Args:
        registry: Registry to expose.
        path: Route of the metrics endpoint.

    Returns:
        ASGI application callable.
    """

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            return
        if scope["path"] != path:
            await _send_response(send, 404, "text/plain", "Not Found")
            return
        if scope["method"] not in ("GET", "HEAD"):
            await _send_response(send, 405, "text/plain", "Method Not Allowed")
            return
        await send_metrics(send, registry)

    return app
