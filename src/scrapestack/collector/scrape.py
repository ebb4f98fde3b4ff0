"""Per-target scrape loop.

Every configured target runs its own ScrapeLoop task. A cycle moves the
target through PENDING -> SCRAPING -> SUCCESS|FAILURE and back to PENDING,
then sleeps until the next interval. Loops share nothing but the sample
store and the HTTP client, so a slow or dead target never delays another.
"""

import asyncio
import time
import zlib
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx

from scrapestack.adapters.logging import get_logger
from scrapestack.core.config import ScrapeTarget
from scrapestack.core.errors import ExpositionParseError, ScrapeError
from scrapestack.core.exposition import parse_families
from scrapestack.core.metrics import counter, gauge
from scrapestack.core.models import MetricFamily, MetricSample, TargetState
from scrapestack.core.ports import MetricsStoragePort

logger = get_logger(__name__)

ACCEPT_HEADER = "text/plain;version=0.0.4;q=1,*/*;q=0.1"
USER_AGENT = "scrapestack-collector"

Clock = Callable[[], float]


@dataclass
class TargetHealth:
    """Health snapshot of one target, as shown on the targets page."""

    target: ScrapeTarget
    state: TargetState = TargetState.PENDING
    last_result: TargetState | None = None
    last_scrape: float | None = None
    last_duration: float | None = None
    last_error: str = ""
    failures: int = 0
    scrapes: int = 0
    samples_scraped: int = 0
    metadata: dict[str, tuple[str, str]] = field(default_factory=dict)

    @property
    def health(self) -> str:
        if self.last_result is None:
            return "unknown"
        return "up" if self.last_result is TargetState.SUCCESS else "down"

    def as_dict(self) -> dict[str, object]:
        return {
            "labels": self.target.target_labels(),
            "scrapePool": self.target.job_name,
            "scrapeUrl": self.target.url,
            "state": self.state.value,
            "health": self.health,
            "lastError": self.last_error,
            "lastScrape": self.last_scrape,
            "lastScrapeDuration": self.last_duration,
            "scrapeInterval": self.target.interval,
            "scrapeTimeout": self.target.effective_timeout,
            "failures": self.failures,
            "scrapes": self.scrapes,
        }


def merge_labels(scraped: dict[str, str], target: dict[str, str]) -> dict[str, str]:
    """Attach target labels; clashing scraped labels become ``exported_<name>``."""
    merged: dict[str, str] = {}
    for key, value in scraped.items():
        if key in target:
            merged[f"exported_{key}"] = value
        else:
            merged[key] = value
    merged.update(target)
    return merged


def start_offset(target: ScrapeTarget) -> float:
    """Deterministic start delay spreading targets across their interval."""
    digest = zlib.crc32(f"{target.job_name}/{target.address}".encode())
    return (digest % 1000) / 1000 * target.interval


class ScrapeLoop:
    """Scrapes one target on a fixed interval.

    Args:
        target: The target to scrape.
        storage: Sample store receiving each successful scrape atomically.
        client: Shared HTTP client.
        clock: Wall clock used to stamp samples (injectable for tests).
        on_result: Optional callback invoked with the health after each cycle.
        jitter: Whether to delay the first scrape by start_offset().
    """

    def __init__(
        self,
        target: ScrapeTarget,
        storage: MetricsStoragePort,
        client: httpx.AsyncClient,
        clock: Clock = time.time,
        on_result: Callable[[TargetHealth], None] | None = None,
        jitter: bool = True,
    ) -> None:
        self.target = target
        self.health = TargetHealth(target=target)
        self._storage = storage
        self._client = client
        self._clock = clock
        self._on_result = on_result
        self._jitter = jitter
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(
            self._run(), name=f"scrape:{self.target.job_name}/{self.target.address}"
        )

    async def stop(self) -> None:
        """Cancel the loop; an in-flight scrape commits nothing."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            # Only the loop was cancelled; a cancel aimed at the caller stands
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
        finally:
            self.health.state = TargetState.PENDING

    async def _run(self) -> None:
        if self._jitter:
            await asyncio.sleep(start_offset(self.target))
        loop = asyncio.get_running_loop()
        while True:
            started = loop.time()
            try:
                await self.scrape_once()
            except Exception:
                logger.exception("Scrape cycle for %s crashed", self.target.url)
                self.health.state = TargetState.PENDING
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, self.target.interval - elapsed))

    async def _fetch(self) -> str:
        try:
            response = await self._client.get(
                self.target.url,
                headers={"Accept": ACCEPT_HEADER, "User-Agent": USER_AGENT},
                timeout=self.target.effective_timeout,
            )
        except httpx.TimeoutException as e:
            raise ScrapeError("timeout", f"scrape timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ScrapeError("connection", f"scrape request failed: {e}") from e
        if response.status_code != 200:
            raise ScrapeError(
                "status", f"server returned HTTP status {response.status_code}"
            )
        return response.text

    async def _scrape(self) -> list[MetricFamily]:
        async with asyncio.timeout(self.target.effective_timeout):
            body = await self._fetch()
        try:
            return parse_families(body)
        except ExpositionParseError as e:
            raise ScrapeError("parse", f"invalid exposition: {e}") from e

    def _report_samples(
        self, timestamp: float, up: float, duration: float, scraped: int
    ) -> list[MetricSample]:
        labels = self.target.target_labels()
        return [
            gauge("up", up, labels, timestamp),
            gauge("scrape_duration_seconds", duration, labels, timestamp),
            gauge("scrape_samples_scraped", scraped, labels, timestamp),
            counter(
                "scrape_failures_total", self.health.failures, labels, timestamp
            ),
        ]

    async def scrape_once(self) -> TargetHealth:
        """Run one scrape cycle and commit its outcome.

        Failures are recorded on the health object and never raised.
        """
        health = self.health
        health.state = TargetState.SCRAPING
        timestamp = self._clock()
        started = time.perf_counter()
        error: ScrapeError | None = None
        try:
            families = await self._scrape()
        except TimeoutError:
            error = ScrapeError("timeout", "scrape exceeded its timeout")
        except ScrapeError as e:
            error = e
        if error is not None:
            duration = time.perf_counter() - started
            health.failures += 1
            health.last_error = str(error)
            health.samples_scraped = 0
            await self._storage.write_batch(
                self._report_samples(timestamp, 0.0, duration, 0)
            )
            self._finish(TargetState.FAILURE, timestamp, duration)
            logger.warning(
                "Scrape of %s failed: %s",
                self.target.url,
                error,
                extra={
                    "job": self.target.job_name,
                    "instance": self.target.address,
                    "reason": error.reason,
                },
            )
            return health

        duration = time.perf_counter() - started
        target_labels = self.target.target_labels()
        samples = [
            MetricSample(
                name=s.name,
                timestamp=timestamp,
                value=s.value,
                labels=merge_labels(s.labels, target_labels),
            )
            for family in families
            for s in family.samples
        ]
        health.metadata = {f.name: (f.type, f.help) for f in families}
        health.last_error = ""
        health.samples_scraped = len(samples)
        await self._storage.write_batch(
            samples + self._report_samples(timestamp, 1.0, duration, len(samples))
        )
        self._finish(TargetState.SUCCESS, timestamp, duration)
        logger.debug(
            "Scraped %d samples from %s in %.3fs",
            len(samples),
            self.target.url,
            duration,
        )
        return health

    def _finish(self, result: TargetState, timestamp: float, duration: float) -> None:
        health = self.health
        health.scrapes += 1
        health.last_result = result
        health.last_scrape = timestamp
        health.last_duration = duration
        health.state = result
        if self._on_result is not None:
            self._on_result(health)
        health.state = TargetState.PENDING
