"""Shared helpers and fixtures for dashboard BDD tests."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
from fastapi import FastAPI

from scrapestack.adapters.storage.in_memory import InMemoryMetricsStorage
from scrapestack.adapters.storage.sqlite_state import InMemoryStateStorage
from scrapestack.collector import ScrapeManager, create_collector_app
from scrapestack.core.models import MetricSample
from scrapestack.visualization import create_dashboard_app

SERVICE_HOSTS = {"app", "prometheus", "grafana", "node_exporter"}


@dataclass
class DashboardScenarioContext:
    """Shared state between steps in a dashboard scenario."""

    metrics: InMemoryMetricsStorage = field(default_factory=InMemoryMetricsStorage)
    state: InMemoryStateStorage = field(default_factory=InMemoryStateStorage)
    app: FastAPI | None = None
    credentials: tuple[str, str] = ("admin", "admin")
    response: httpx.Response | None = None
    rendered: dict[str, Any] = field(default_factory=dict)

    def build_app(self) -> None:
        collector = create_collector_app(
            ScrapeManager(self.metrics), manage_lifecycle=False
        )
        self.app = create_dashboard_app(
            self.state,
            http_client=httpx.AsyncClient(
                transport=httpx.ASGITransport(app=collector),
                base_url="http://prometheus:9090",
            ),
            service_hosts=SERVICE_HOSTS,
        )

    def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send one request to the dashboard service."""
        assert self.app is not None
        kwargs.setdefault("auth", self.credentials)

        async def _send() -> httpx.Response:
            async with httpx.AsyncClient(
                transport=httpx.ASGITransport(app=self.app),
                base_url="http://grafana:3000",
            ) as client:
                return await client.request(method, path, **kwargs)

        self.response = run_async(_send())
        return self.response


def run_async(coro: Any) -> Any:
    """Run a coroutine synchronously."""
    return asyncio.run(coro)


def scraped_samples(job: str, instance: str) -> list[MetricSample]:
    """What one successful scrape of the example app leaves behind."""
    now = time.time()
    labels = {"job": job, "instance": instance}
    return [
        MetricSample("up", now, 1.0, labels),
        MetricSample("process_resident_memory_bytes", now, 12345678.0, labels),
    ]
