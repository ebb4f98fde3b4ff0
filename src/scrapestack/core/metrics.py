"""Metric helper functions for creating MetricSample objects."""

import time

from scrapestack.core.models import MetricSample


def counter(
    name: str,
    value: float = 1.0,
    labels: dict[str, str] | None = None,
    timestamp: float | None = None,
) -> MetricSample:
    """Create a counter metric sample.

    Args:
        name: Metric name (e.g., "http_requests_total")
        value: Cumulative counter value (default: 1.0)
        labels: Optional dimension labels
        timestamp: Sample time (default: now)

    Returns:
        MetricSample for the counter
    """
    return MetricSample(
        name=name,
        timestamp=time.time() if timestamp is None else timestamp,
        value=value,
        labels=labels or {},
    )


def gauge(
    name: str,
    value: float,
    labels: dict[str, str] | None = None,
    timestamp: float | None = None,
) -> MetricSample:
    """Create a gauge metric sample.

    Args:
        name: Metric name (e.g., "up")
        value: Current gauge value
        labels: Optional dimension labels
        timestamp: Sample time (default: now)

    Returns:
        MetricSample for the gauge
    """
    return MetricSample(
        name=name,
        timestamp=time.time() if timestamp is None else timestamp,
        value=value,
        labels=labels or {},
    )


DEFAULT_HISTOGRAM_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10)


def format_bucket_bound(bound: float) -> str:
    """Render a bucket boundary the way exposition ``le`` labels expect."""
    if bound == float("inf"):
        return "+Inf"
    return repr(float(bound))


def histogram(
    name: str,
    value: float,
    labels: dict[str, str] | None = None,
    buckets: tuple[float, ...] | list[float] | None = None,
    timestamp: float | None = None,
) -> list[MetricSample]:
    """Create histogram metric samples for a single observation.

    Args:
        name: Metric name (e.g., "http_request_duration_seconds")
        value: Observed value
        labels: Optional dimension labels
        buckets: Bucket boundaries (default: Prometheus standard buckets)
        timestamp: Sample time (default: now)

    Returns:
        List of MetricSample objects (bucket samples + sum + count)
    """
    ts = time.time() if timestamp is None else timestamp
    base_labels = labels or {}
    bucket_boundaries = buckets if buckets is not None else DEFAULT_HISTOGRAM_BUCKETS

    samples = [
        MetricSample(
            name=f"{name}_bucket",
            timestamp=ts,
            value=1.0 if value <= boundary else 0.0,
            labels={**base_labels, "le": format_bucket_bound(boundary)},
        )
        for boundary in bucket_boundaries
    ]
    # +Inf bucket always contains the observation
    samples.append(
        MetricSample(
            name=f"{name}_bucket",
            timestamp=ts,
            value=1.0,
            labels={**base_labels, "le": "+Inf"},
        )
    )
    samples.append(
        MetricSample(name=f"{name}_sum", timestamp=ts, value=value, labels=base_labels)
    )
    samples.append(
        MetricSample(name=f"{name}_count", timestamp=ts, value=1.0, labels=base_labels)
    )
    return samples
