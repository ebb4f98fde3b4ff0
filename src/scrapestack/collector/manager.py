"""Scrape manager: owns the scrape loops and applies configuration."""

import asyncio
import time
from collections.abc import Callable
from pathlib import Path

import httpx

from scrapestack.adapters.logging import get_logger
from scrapestack.collector.scrape import ScrapeLoop, TargetHealth
from scrapestack.core.config import CollectorConfig, ScrapeTarget
from scrapestack.core.errors import ConfigError
from scrapestack.core.models import RetentionPolicy
from scrapestack.core.ports import MetricsStoragePort
from scrapestack.core.registry import MetricsRegistry

logger = get_logger(__name__)

ClientFactory = Callable[[], httpx.AsyncClient]


def _default_client() -> httpx.AsyncClient:
    # A redirect (e.g. a missing trailing slash) counts as a failed scrape
    return httpx.AsyncClient(follow_redirects=False)


class ScrapeManager:
    """Runs one ScrapeLoop per configured target.

    Args:
        storage: Sample store shared by every loop.
        config_path: File re-read by reload(); optional when apply() is used.
        client_factory: Builds the shared HTTP client on start().
        retention: Retention policy enforced by the background sweep.
        retention_interval: Seconds between sweeps.
        registry: Registry receiving the collector's own metrics.
        jitter: Spread first scrapes across the interval.
    """

    def __init__(
        self,
        storage: MetricsStoragePort,
        config_path: str | Path | None = None,
        client_factory: ClientFactory = _default_client,
        retention: RetentionPolicy | None = None,
        retention_interval: float = 60.0,
        registry: MetricsRegistry | None = None,
        jitter: bool = True,
    ) -> None:
        self.storage = storage
        self.config_path = Path(config_path) if config_path else None
        self.config = CollectorConfig()
        self.retention = retention or RetentionPolicy()
        self.registry = registry or MetricsRegistry()
        self._client_factory = client_factory
        self._client: httpx.AsyncClient | None = None
        self._retention_interval = retention_interval
        self._retention_task: asyncio.Task[None] | None = None
        self._loops: dict[tuple[str, str], ScrapeLoop] = {}
        self._jitter = jitter
        self._lock = asyncio.Lock()

        self._scrapes = self.registry.counter(
            "collector_scrapes_total", "Scrape cycles run, by job.", ["job"]
        )
        self._failures = self.registry.counter(
            "collector_scrape_failures_total", "Failed scrape cycles, by job.", ["job"]
        )
        self._targets_gauge = self.registry.gauge(
            "collector_targets", "Number of active scrape targets."
        )
        self._reloads = self.registry.counter(
            "collector_config_reloads_total",
            "Configuration reloads, by result.",
            ["result"],
        )

    @property
    def started(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        """Open the HTTP client, load the config file and start loops."""
        if self._client is None:
            self._client = self._client_factory()
        if self.config_path is not None:
            await self.apply(CollectorConfig.load(self.config_path))
        else:
            await self.apply(self.config)
        if self._retention_task is None:
            self._retention_task = asyncio.create_task(
                self._retention_loop(), name="retention"
            )

    async def stop(self) -> None:
        """Stop every loop, the retention sweep and the HTTP client."""
        async with self._lock:
            for loop in self._loops.values():
                await loop.stop()
            self._loops.clear()
        if self._retention_task is not None:
            self._retention_task.cancel()
            try:
                await self._retention_task
            except asyncio.CancelledError:
                pass
            self._retention_task = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _on_result(self, health: TargetHealth) -> None:
        job = health.target.job_name
        self._scrapes.inc(job=job)
        if health.health == "down":
            self._failures.inc(job=job)

    def _new_loop(self, target: ScrapeTarget) -> ScrapeLoop:
        assert self._client is not None
        return ScrapeLoop(
            target,
            self.storage,
            self._client,
            on_result=self._on_result,
            jitter=self._jitter,
        )

    async def apply(self, config: CollectorConfig) -> None:
        """Make the running loops match ``config``.

        New targets start, removed targets stop, changed targets restart.
        Samples already stored are left untouched.
        """
        if self._client is None:
            raise RuntimeError("ScrapeManager.start() must be called first")
        async with self._lock:
            wanted = {t.key: t for t in config.targets()}
            for key in list(self._loops):
                loop = self._loops[key]
                if key not in wanted or loop.target != wanted[key]:
                    await loop.stop()
                    del self._loops[key]
                    logger.info("Stopped scraping %s", loop.target.url)
            for key, target in wanted.items():
                if key not in self._loops:
                    loop = self._new_loop(target)
                    self._loops[key] = loop
                    loop.start()
                    logger.info(
                        "Scraping %s every %ss", target.url, f"{target.interval:g}"
                    )
            self.config = config
            self._targets_gauge.set(len(self._loops))

    async def reload(self) -> CollectorConfig:
        """Re-read the config file and apply it.

        An invalid file leaves the running configuration in place.

        Raises:
            ConfigError: If the file is missing or invalid.
        """
        if self.config_path is None:
            raise ConfigError("no configuration file to reload")
        try:
            config = CollectorConfig.load(self.config_path)
        except ConfigError:
            self._reloads.inc(result="failure")
            logger.exception("Configuration reload from %s failed", self.config_path)
            raise
        await self.apply(config)
        self._reloads.inc(result="success")
        logger.info("Reloaded configuration from %s", self.config_path)
        return config

    def targets(self) -> list[TargetHealth]:
        """Health of every active target, ordered by job then address."""
        return [self._loops[key].health for key in sorted(self._loops)]

    def loop(self, job_name: str, address: str) -> ScrapeLoop | None:
        return self._loops.get((job_name, address))

    def metadata(self) -> dict[str, tuple[str, str]]:
        """Type and help of every metric seen in the latest scrapes."""
        merged: dict[str, tuple[str, str]] = {}
        for health in self.targets():
            merged.update(health.metadata)
        return merged

    async def enforce_retention(self, now: float | None = None) -> int:
        """Delete samples older than the retention window."""
        cutoff = (time.time() if now is None else now) - self.retention.max_age_seconds
        deleted = await self.storage.delete_before(cutoff)
        if deleted:
            logger.info("Retention removed %d samples older than %.0f", deleted, cutoff)
        return deleted

    async def _retention_loop(self) -> None:
        while True:
            await asyncio.sleep(self._retention_interval)
            try:
                await self.enforce_retention()
            except Exception:
                logger.exception("Retention sweep failed")
