"""Example instrumented application.

Run with:
    scrapestack app --port 8000

Endpoints:
    /                 - hello
    /items/{item_id}  - simulated lookup
    /error            - always raises (still counted in the histograms)
    /metrics/         - Prometheus text format, trailing slash required
"""

import asyncio

from fastapi import FastAPI, HTTPException

from scrapestack.adapters.frameworks.asgi import ASGIMetricsMiddleware
from scrapestack.adapters.frameworks.fastapi import create_metrics_router
from scrapestack.core.registry import MetricsRegistry, process_collector

METRICS_PATH = "/metrics/"


def create_app(
    registry: MetricsRegistry | None = None,
    metrics_path: str = METRICS_PATH,
    with_process_metrics: bool = True,
) -> ASGIMetricsMiddleware:
    """Build the example app wrapped in the metrics middleware.

    Args:
        registry: Registry to record into (a fresh one by default).
        metrics_path: Route of the metrics endpoint.
        with_process_metrics: Report process_* metrics via psutil.
    """
    registry = registry or MetricsRegistry()
    if with_process_metrics:
        registry.register_collector(process_collector())
    items_served = registry.counter(
        "app_items_served_total", "Items returned by /items.", ["found"]
    )

    # No slash redirects: a scraper must use the exact metrics path
    app = FastAPI(title="scrapestack example app", redirect_slashes=False)
    app.include_router(create_metrics_router(registry, metrics_path))

    @app.get("/")
    async def root() -> dict[str, str]:
        return {"message": f"Hello! Metrics are at {metrics_path}"}

    @app.get("/items/{item_id}")
    async def get_item(item_id: int) -> dict[str, int | str]:
        await asyncio.sleep(0.01)
        if item_id < 0:
            items_served.inc(found="false")
            raise HTTPException(status_code=404, detail="Item not found")
        items_served.inc(found="true")
        return {"id": item_id, "name": f"item-{item_id}"}

    @app.get("/error")
    async def error() -> dict[str, str]:
        raise RuntimeError("Intentional error for demonstration")

    return ASGIMetricsMiddleware(app, registry, exclude_paths=[metrics_path])
