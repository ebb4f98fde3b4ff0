"""In-process metric registry for instrumented applications.

The registry keeps cumulative counters, gauges and histograms and turns
them into MetricFamily snapshots on demand. Snapshots are what the
``/metrics/`` endpoint encodes; taking one never changes recorded values.
"""

import threading
import time
from collections.abc import Callable, Iterable

import psutil

from scrapestack.core.metrics import (
    DEFAULT_HISTOGRAM_BUCKETS,
    counter,
    format_bucket_bound,
    gauge,
)
from scrapestack.core.models import MetricFamily, MetricSample

Collector = Callable[[], Iterable[MetricFamily]]


class _Metric:
    """Shared label handling for registry metrics."""

    type = "untyped"

    def __init__(self, name: str, help: str, labelnames: Iterable[str]) -> None:
        self.name = name
        self.help = help
        self.labelnames = tuple(labelnames)
        self._lock = threading.Lock()

    def _key(self, labels: dict[str, str]) -> tuple[str, ...]:
        if set(labels) != set(self.labelnames):
            raise ValueError(
                f"{self.name} expects labels {sorted(self.labelnames)}, "
                f"got {sorted(labels)}"
            )
        return tuple(str(labels[n]) for n in self.labelnames)

    def _labels(self, key: tuple[str, ...]) -> dict[str, str]:
        return dict(zip(self.labelnames, key, strict=True))

    def samples(self, timestamp: float) -> list[MetricSample]:
        raise NotImplementedError

    def family(self, timestamp: float) -> MetricFamily:
        return MetricFamily(
            name=self.name,
            type=self.type,
            help=self.help,
            samples=tuple(self.samples(timestamp)),
        )


class Counter(_Metric):
    """Monotonically increasing value per label set."""

    type = "counter"

    def __init__(self, name: str, help: str, labelnames: Iterable[str]) -> None:
        super().__init__(name, help, labelnames)
        self._values: dict[tuple[str, ...], float] = {}
        if not self.labelnames:
            self._values[()] = 0.0

    def inc(self, amount: float = 1.0, **labels: str) -> None:
        if amount < 0:
            raise ValueError("Counters can only be incremented by non-negative amounts")
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount

    def value(self, **labels: str) -> float:
        return self._values.get(self._key(labels), 0.0)

    def samples(self, timestamp: float) -> list[MetricSample]:
        with self._lock:
            items = list(self._values.items())
        return [counter(self.name, v, self._labels(k), timestamp) for k, v in items]


class Gauge(_Metric):
    """Value that can go up and down per label set."""

    type = "gauge"

    def __init__(self, name: str, help: str, labelnames: Iterable[str]) -> None:
        super().__init__(name, help, labelnames)
        self._values: dict[tuple[str, ...], float] = {}
        if not self.labelnames:
            self._values[()] = 0.0

    def set(self, value: float, **labels: str) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = float(value)

    def inc(self, amount: float = 1.0, **labels: str) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount

    def dec(self, amount: float = 1.0, **labels: str) -> None:
        self.inc(-amount, **labels)

    def value(self, **labels: str) -> float:
        return self._values.get(self._key(labels), 0.0)

    def samples(self, timestamp: float) -> list[MetricSample]:
        with self._lock:
            items = list(self._values.items())
        return [gauge(self.name, v, self._labels(k), timestamp) for k, v in items]


class Histogram(_Metric):
    """Cumulative bucketed observations per label set."""

    type = "histogram"

    def __init__(
        self,
        name: str,
        help: str,
        labelnames: Iterable[str],
        buckets: Iterable[float] = DEFAULT_HISTOGRAM_BUCKETS,
    ) -> None:
        super().__init__(name, help, labelnames)
        if "le" in self.labelnames:
            raise ValueError("Histograms cannot use the reserved label 'le'")
        bounds = sorted(float(b) for b in buckets)
        if not bounds or bounds[-1] != float("inf"):
            bounds.append(float("inf"))
        self.buckets = tuple(bounds)
        # key -> (per-bucket counts, sum, count)
        self._values: dict[tuple[str, ...], tuple[list[float], float, float]] = {}

    def observe(self, value: float, **labels: str) -> None:
        key = self._key(labels)
        with self._lock:
            counts, total, count = self._values.get(
                key, ([0.0] * len(self.buckets), 0.0, 0.0)
            )
            for i, bound in enumerate(self.buckets):
                if value <= bound:
                    counts[i] += 1
            self._values[key] = (counts, total + value, count + 1)

    def count(self, **labels: str) -> float:
        entry = self._values.get(self._key(labels))
        return entry[2] if entry else 0.0

    def samples(self, timestamp: float) -> list[MetricSample]:
        with self._lock:
            items = [(k, (list(c), s, n)) for k, (c, s, n) in self._values.items()]
        out: list[MetricSample] = []
        for key, (counts, total, count) in items:
            labels = self._labels(key)
            for bound, bucket_count in zip(self.buckets, counts, strict=True):
                out.append(
                    counter(
                        f"{self.name}_bucket",
                        bucket_count,
                        {**labels, "le": format_bucket_bound(bound)},
                        timestamp,
                    )
                )
            out.append(counter(f"{self.name}_sum", total, labels, timestamp))
            out.append(counter(f"{self.name}_count", count, labels, timestamp))
        return out


class MetricsRegistry:
    """Named collection of metrics plus extra collectors.

    Example:
        ```python
        registry = MetricsRegistry()
        requests = registry.counter("jobs_total", "Jobs run", ["queue"])
        requests.inc(queue="default")
        families = registry.collect()
        ```
    """

    def __init__(self) -> None:
        self._metrics: dict[str, _Metric] = {}
        self._collectors: list[Collector] = []
        self._lock = threading.Lock()

    def _get_or_create(
        self, cls: type[_Metric], name: str, factory: Callable[[], _Metric]
    ) -> _Metric:
        with self._lock:
            existing = self._metrics.get(name)
            if existing is not None:
                if type(existing) is not cls:
                    raise ValueError(
                        f"Metric {name} already registered as {existing.type}"
                    )
                return existing
            metric = factory()
            self._metrics[name] = metric
            return metric

    def counter(
        self, name: str, help: str = "", labelnames: Iterable[str] = ()
    ) -> Counter:
        metric = self._get_or_create(
            Counter, name, lambda: Counter(name, help, labelnames)
        )
        assert isinstance(metric, Counter)
        return metric

    def gauge(
        self, name: str, help: str = "", labelnames: Iterable[str] = ()
    ) -> Gauge:
        metric = self._get_or_create(Gauge, name, lambda: Gauge(name, help, labelnames))
        assert isinstance(metric, Gauge)
        return metric

    def histogram(
        self,
        name: str,
        help: str = "",
        labelnames: Iterable[str] = (),
        buckets: Iterable[float] = DEFAULT_HISTOGRAM_BUCKETS,
    ) -> Histogram:
        metric = self._get_or_create(
            Histogram, name, lambda: Histogram(name, help, labelnames, buckets)
        )
        assert isinstance(metric, Histogram)
        return metric

    def register_collector(self, collector: Collector) -> None:
        """Add a callable producing extra families at collect time."""
        with self._lock:
            self._collectors.append(collector)

    def collect(self) -> list[MetricFamily]:
        """Return a point-in-time snapshot of every family."""
        now = time.time()
        with self._lock:
            metrics = list(self._metrics.values())
            collectors = list(self._collectors)
        families = [m.family(now) for m in metrics]
        for collector in collectors:
            families.extend(collector())
        return families


def process_collector(process: psutil.Process | None = None) -> Collector:
    """Build a collector reporting standard ``process_*`` metrics."""
    proc = process or psutil.Process()

    def collect() -> list[MetricFamily]:
        now = time.time()
        with proc.oneshot():
            mem = proc.memory_info()
            cpu = proc.cpu_times()
            start = proc.create_time()
            fds = proc.num_fds() if hasattr(proc, "num_fds") else None
        families = [
            MetricFamily(
                "process_resident_memory_bytes",
                "gauge",
                "Resident memory size in bytes.",
                (gauge("process_resident_memory_bytes", mem.rss, timestamp=now),),
            ),
            MetricFamily(
                "process_virtual_memory_bytes",
                "gauge",
                "Virtual memory size in bytes.",
                (gauge("process_virtual_memory_bytes", mem.vms, timestamp=now),),
            ),
            MetricFamily(
                "process_cpu_seconds_total",
                "counter",
                "Total user and system CPU time spent in seconds.",
                (
                    counter(
                        "process_cpu_seconds_total",
                        cpu.user + cpu.system,
                        timestamp=now,
                    ),
                ),
            ),
            MetricFamily(
                "process_start_time_seconds",
                "gauge",
                "Start time of the process since unix epoch in seconds.",
                (gauge("process_start_time_seconds", start, timestamp=now),),
            ),
        ]
        if fds is not None:
            families.append(
                MetricFamily(
                    "process_open_fds",
                    "gauge",
                    "Number of open file descriptors.",
                    (gauge("process_open_fds", fds, timestamp=now),),
                )
            )
        return families

    return collect
