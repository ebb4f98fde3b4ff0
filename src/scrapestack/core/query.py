"""Query evaluation over the collector's sample store.

Expressions are vector selectors: a metric name with optional label
matchers (``=``, ``!=``, ``=~``, ``!~``), or a bare matcher set that names
the metric through ``__name__``. Instant queries return the most recent
sample of each matching series within the lookback window; range queries
repeat that evaluation at every step.
"""

import bisect
import re
from dataclasses import dataclass, field

from scrapestack.core.errors import QueryError
from scrapestack.core.exposition import LABEL_NAME_RE, METRIC_NAME_RE
from scrapestack.core.models import MetricSample
from scrapestack.core.ports import MetricsStoragePort

DEFAULT_LOOKBACK = 300.0
MAX_POINTS_PER_SERIES = 11000

_OPERATORS = ("=~", "!~", "!=", "=")


@dataclass(frozen=True)
class Matcher:
    """One label matcher."""

    name: str
    op: str
    value: str
    _regex: re.Pattern[str] | None = field(default=None, compare=False, repr=False)

    @classmethod
    def create(cls, name: str, op: str, value: str) -> "Matcher":
        regex = None
        if op in ("=~", "!~"):
            try:
                regex = re.compile(value)
            except re.error as e:
                raise QueryError(f"invalid regex {value!r}: {e}") from e
        return cls(name=name, op=op, value=value, _regex=regex)

    def matches(self, labels: dict[str, str]) -> bool:
        actual = labels.get(self.name, "")
        if self.op == "=":
            return actual == self.value
        if self.op == "!=":
            return actual != self.value
        assert self._regex is not None
        found = self._regex.fullmatch(actual) is not None
        return found if self.op == "=~" else not found


@dataclass(frozen=True)
class Selector:
    """A parsed vector selector."""

    name: str | None
    matchers: tuple[Matcher, ...] = ()

    def matches(self, sample: MetricSample) -> bool:
        if self.name is not None and sample.name != self.name:
            return False
        labels = {**sample.labels, "__name__": sample.name}
        return all(m.matches(labels) for m in self.matchers)


@dataclass
class Series:
    """Evaluated series: identifying labels plus (timestamp, value) points."""

    labels: dict[str, str]
    points: list[tuple[float, float]] = field(default_factory=list)


def _skip_spaces(text: str, pos: int) -> int:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return pos


def _parse_string(text: str, pos: int) -> tuple[str, int]:
    quote = text[pos]
    pos += 1
    chars: list[str] = []
    while pos < len(text):
        ch = text[pos]
        if ch == "\\" and pos + 1 < len(text):
            nxt = text[pos + 1]
            chars.append({"n": "\n", "t": "\t"}.get(nxt, nxt))
            pos += 2
            continue
        if ch == quote:
            return "".join(chars), pos + 1
        chars.append(ch)
        pos += 1
    raise QueryError("unterminated string in selector")


def parse_selector(query: str) -> Selector:
    """Parse a vector selector such as ``up{job="app"}``.

    Raises:
        QueryError: If the expression is not a valid selector.
    """
    text = query.strip()
    if not text:
        raise QueryError("empty query")
    pos = 0
    name: str | None = None
    match = METRIC_NAME_RE.match(text, pos)
    if match is not None:
        name = match.group()
        pos = match.end()
    matchers: list[Matcher] = []
    pos = _skip_spaces(text, pos)
    if pos < len(text) and text[pos] == "{":
        pos += 1
        while True:
            pos = _skip_spaces(text, pos)
            if pos < len(text) and text[pos] == "}":
                pos += 1
                break
            label = LABEL_NAME_RE.match(text, pos)
            if label is None:
                raise QueryError(f"expected label name at position {pos}")
            pos = _skip_spaces(text, label.end())
            op = next((o for o in _OPERATORS if text.startswith(o, pos)), None)
            if op is None:
                raise QueryError(f"expected matcher operator at position {pos}")
            pos = _skip_spaces(text, pos + len(op))
            if pos >= len(text) or text[pos] not in "\"'":
                raise QueryError(f"expected quoted value at position {pos}")
            value, pos = _parse_string(text, pos)
            matchers.append(Matcher.create(label.group(), op, value))
            pos = _skip_spaces(text, pos)
            if pos < len(text) and text[pos] == ",":
                pos += 1
                continue
            if pos < len(text) and text[pos] == "}":
                pos += 1
                break
            raise QueryError(f"expected ',' or '}}' at position {pos}")
    pos = _skip_spaces(text, pos)
    if pos != len(text):
        raise QueryError(f"unexpected input at position {pos}: {text[pos:]!r}")

    if name is None:
        for m in matchers:
            if m.name == "__name__" and m.op == "=":
                name = m.value
        if not any(not m.matches({}) for m in matchers):
            raise QueryError("selector must contain at least one non-empty matcher")
    return Selector(name=name, matchers=tuple(matchers))


def _series_labels(sample: MetricSample) -> dict[str, str]:
    return {"__name__": sample.name, **sample.labels}


class QueryEngine:
    """Evaluates selectors against a MetricsStoragePort.

    Args:
        storage: The collector's sample store.
        lookback: How far back (seconds) a sample still counts as current.
    """

    def __init__(
        self, storage: MetricsStoragePort, lookback: float = DEFAULT_LOOKBACK
    ) -> None:
        self._storage = storage
        self.lookback = lookback

    async def _grouped(
        self, selector: Selector, start: float, end: float
    ) -> dict[tuple[str, tuple[tuple[str, str], ...]], list[MetricSample]]:
        groups: dict[tuple[str, tuple[tuple[str, str], ...]], list[MetricSample]] = {}
        async for sample in self._storage.select(selector.name, start, end):
            if selector.matches(sample):
                groups.setdefault(sample.series_key, []).append(sample)
        return groups

    async def instant(self, query: str, at: float) -> list[Series]:
        """Evaluate ``query`` at time ``at``.

        Each matching series contributes its latest sample with
        ``at - lookback < timestamp <= at``; the point carries time ``at``.
        """
        selector = parse_selector(query)
        groups = await self._grouped(selector, at - self.lookback, at)
        result = []
        for samples in groups.values():
            candidates = [s for s in samples if s.timestamp > at - self.lookback]
            if not candidates:
                continue
            latest = max(candidates, key=lambda s: s.timestamp)
            result.append(Series(_series_labels(latest), [(at, latest.value)]))
        result.sort(key=lambda s: sorted(s.labels.items()))
        return result

    async def range(
        self, query: str, start: float, end: float, step: float
    ) -> list[Series]:
        """Evaluate ``query`` at every ``step`` from ``start`` to ``end``.

        Raises:
            QueryError: For a non-positive step, an inverted range or too
                many points per series.
        """
        if step <= 0:
            raise QueryError("step must be positive")
        if end < start:
            raise QueryError("end must not be before start")
        if (end - start) / step + 1 > MAX_POINTS_PER_SERIES:
            raise QueryError(
                f"exceeded maximum resolution of {MAX_POINTS_PER_SERIES} points "
                "per series; use a larger step"
            )
        selector = parse_selector(query)
        groups = await self._grouped(selector, start - self.lookback, end)

        steps: list[float] = []
        t = start
        while t <= end:
            steps.append(t)
            t += step

        result = []
        for samples in groups.values():
            samples.sort(key=lambda s: s.timestamp)
            times = [s.timestamp for s in samples]
            points = []
            for t in steps:
                idx = bisect.bisect_right(times, t) - 1
                if idx >= 0 and times[idx] > t - self.lookback:
                    points.append((t, samples[idx].value))
            if points:
                result.append(Series(_series_labels(samples[-1]), points))
        result.sort(key=lambda s: sorted(s.labels.items()))
        return result
