"""NDJSON encoders for log entries and metric samples."""

import json
import math
from collections.abc import AsyncIterable

from scrapestack.core.models import LogEntry, MetricSample


async def encode_logs(entries: AsyncIterable[LogEntry]) -> str:
    """Encode log entries to newline-delimited JSON.

    Args:
        entries: An async iterable of LogEntry objects.

    Returns:
        NDJSON string with one JSON object per line.
        Empty string if no entries.
    """
    lines = []
    async for entry in entries:
        obj = {
            "timestamp": entry.timestamp,
            "level": entry.level,
            "message": entry.message,
            "attributes": entry.attributes,
        }
        lines.append(json.dumps(obj))

    if not lines:
        return ""

    return "\n".join(lines) + "\n"


async def encode_ndjson(samples: AsyncIterable[MetricSample]) -> str:
    """Encode metric samples to newline-delimited JSON.

    Non-finite values are written as strings ("NaN", "+Inf", "-Inf")
    because JSON has no spelling for them.
    """
    lines = []
    async for sample in samples:
        value: float | str = sample.value
        if math.isnan(sample.value):
            value = "NaN"
        elif math.isinf(sample.value):
            value = "+Inf" if sample.value > 0 else "-Inf"
        obj = {
            "name": sample.name,
            "timestamp": sample.timestamp,
            "value": value,
            "labels": sample.labels,
        }
        lines.append(json.dumps(obj))

    if not lines:
        return ""

    return "\n".join(lines) + "\n"
