"""Shared query parameter parsing utilities for framework adapters."""

import math
from datetime import datetime

from scrapestack.core.config import parse_duration
from scrapestack.core.errors import ConfigError, QueryError

# Valid log levels for validation
VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _parse_since_param(params: dict[str, list[str]]) -> float:
    """Parse and validate the 'since' query parameter.

    Args:
        params: Parsed query string parameters (as returned by urllib.parse.parse_qs).

    Returns:
        Timestamp as float, defaulting to 0.0 if invalid or missing.
        Rejects negative, NaN, and infinite values, returning 0.0 for these cases.
    """
    try:
        value = float(params.get("since", ["0"])[0])
    except ValueError:
        return 0.0
    if value < 0 or not math.isfinite(value):
        return 0.0
    return value


def _parse_level_param(params: dict[str, list[str]]) -> str | None:
    """Parse and validate the 'level' query parameter.

    Returns:
        Validated level string (uppercase) or None if invalid/missing.
    """
    level_list = params.get("level", [None])  # type: ignore[list-item]
    level_raw = level_list[0] if level_list else None
    if level_raw and level_raw.upper() in VALID_LEVELS:
        return level_raw.upper()
    return None


def parse_time(value: str | None, default: float, name: str = "time") -> float:
    """Parse a query time given as unix seconds or RFC 3339.

    Raises:
        QueryError: If the value is neither.
    """
    if value is None or value == "":
        return default
    try:
        result = float(value)
    except ValueError:
        try:
            result = datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            raise QueryError(f"cannot parse {value!r} to a valid timestamp") from None
    if not math.isfinite(result):
        raise QueryError(f"invalid {name} {value!r}")
    return result


def parse_step(value: str | None) -> float:
    """Parse a range step given as seconds or a duration string (``15s``).

    Raises:
        QueryError: If missing or invalid.
    """
    if not value:
        raise QueryError("missing step parameter")
    try:
        return parse_duration(value, "step")
    except ConfigError as e:
        raise QueryError(f"invalid step {value!r}") from e
