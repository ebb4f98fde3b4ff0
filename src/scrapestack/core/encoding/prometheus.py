"""Prometheus text exposition format encoder."""

import math
from collections.abc import AsyncIterable, Iterable

from scrapestack.core.models import MetricFamily, MetricSample

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def escape_label_value(value: str) -> str:
    """Escape a label value for the exposition format."""
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def escape_help(text: str) -> str:
    """Escape HELP text (quotes are left alone)."""
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def format_value(value: float) -> str:
    """Format a sample value.

    Integral values are written without a fractional part so that
    ``12345678`` stays readable; special floats use the Prometheus spelling.
    """
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if float(value).is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def format_sample(sample: MetricSample) -> str:
    """Render one ``name{labels} value`` line without trailing newline."""
    if sample.labels:
        pairs = ",".join(
            f'{k}="{escape_label_value(v)}"' for k, v in sample.labels.items()
        )
        return f"{sample.name}{{{pairs}}} {format_value(sample.value)}"
    return f"{sample.name} {format_value(sample.value)}"


def encode_families(families: Iterable[MetricFamily]) -> str:
    """Encode metric families to Prometheus text format.

    Args:
        families: Families to encode, in output order.

    Returns:
        Exposition text ending with a newline, or an empty string.
    """
    lines: list[str] = []
    for family in families:
        if family.help:
            lines.append(f"# HELP {family.name} {escape_help(family.help)}")
        lines.append(f"# TYPE {family.name} {family.type}")
        lines.extend(format_sample(s) for s in family.samples)
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def encode_metrics(samples: Iterable[MetricSample]) -> str:
    """Encode bare samples, one line each, without metadata."""
    lines = [format_sample(s) for s in samples]
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


async def encode_current(samples: AsyncIterable[MetricSample]) -> str:
    """Encode only the latest sample of every series.

    Series are grouped under untyped families named after the metric,
    in order of first appearance.
    """
    latest: dict[tuple[str, tuple[tuple[str, str], ...]], MetricSample] = {}
    async for sample in samples:
        key = sample.series_key
        current = latest.get(key)
        if current is None or sample.timestamp >= current.timestamp:
            latest[key] = sample

    by_name: dict[str, list[MetricSample]] = {}
    for sample in latest.values():
        by_name.setdefault(sample.name, []).append(sample)

    return encode_families(
        MetricFamily(name=name, samples=tuple(group))
        for name, group in by_name.items()
    )
