"""Core domain models for the metrics pipeline."""

from dataclasses import dataclass, field
from enum import Enum

METRIC_TYPES = frozenset({"counter", "gauge", "histogram", "summary", "untyped"})


@dataclass(frozen=True)
class LogEntry:
    """A structured log entry.

    Attributes:
        timestamp: Unix timestamp in seconds.
        level: Log level (e.g., INFO, ERROR, DEBUG).
        message: The log message.
        attributes: Additional structured fields.
    """

    timestamp: float
    level: str
    message: str
    attributes: dict[str, str | int | float | bool] = field(default_factory=dict)


@dataclass(frozen=True)
class MetricSample:
    """A single metric measurement.

    Attributes:
        name: Metric name (e.g., http_requests_total).
        timestamp: Unix timestamp in seconds.
        value: The metric value.
        labels: Key-value pairs for metric dimensions.
    """

    name: str
    timestamp: float
    value: float
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def series_key(self) -> tuple[str, tuple[tuple[str, str], ...]]:
        """Identity of the time series this sample belongs to."""
        return self.name, tuple(sorted(self.labels.items()))


@dataclass(frozen=True)
class MetricFamily:
    """A named group of samples sharing one type and help text.

    Histogram families hold their ``_bucket``, ``_sum`` and ``_count``
    samples under the family name.
    """

    name: str
    type: str = "untyped"
    help: str = ""
    samples: tuple[MetricSample, ...] = ()


class TargetState(str, Enum):
    """Scrape cycle state of a single target."""

    PENDING = "pending"
    SCRAPING = "scraping"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class RetentionPolicy:
    """How long the collector keeps samples.

    Attributes:
        max_age_seconds: Samples older than now - max_age are deleted.
    """

    max_age_seconds: float = 15 * 24 * 3600

    def __post_init__(self) -> None:
        if self.max_age_seconds <= 0:
            raise ValueError("max_age_seconds must be positive")
