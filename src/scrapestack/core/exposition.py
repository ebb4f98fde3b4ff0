"""Parser for the Prometheus text exposition format.

Parsing is all-or-nothing: the first malformed line raises
ExpositionParseError and nothing from the body is returned. The scraper
relies on this so a broken target never commits a partial scrape.
"""

import re

from scrapestack.core.errors import ExpositionParseError
from scrapestack.core.models import METRIC_TYPES, MetricFamily, MetricSample

METRIC_NAME_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
LABEL_NAME_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")
_FLOAT_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_TIMESTAMP_RE = re.compile(r"-?\d+")
_SPECIAL_VALUES = {
    "+inf": float("inf"),
    "inf": float("inf"),
    "-inf": float("-inf"),
    "nan": float("nan"),
}
_ESCAPES = {"\\": "\\", '"': '"', "n": "\n"}
# Suffixes that attach a sample to a declared family
_FAMILY_SUFFIXES = ("_bucket", "_sum", "_count", "_total", "_created")


def _parse_value(token: str, line_no: int) -> float:
    special = _SPECIAL_VALUES.get(token.lower())
    if special is not None:
        return special
    if not _FLOAT_RE.fullmatch(token):
        raise ExpositionParseError(line_no, f"invalid sample value {token!r}")
    return float(token)


def _parse_labels(line: str, pos: int, line_no: int) -> tuple[dict[str, str], int]:
    """Parse ``{a="b",...}`` starting at the opening brace.

    Returns the labels and the position just after the closing brace.
    """
    labels: dict[str, str] = {}
    pos += 1
    n = len(line)
    while True:
        while pos < n and line[pos] in " \t":
            pos += 1
        if pos < n and line[pos] == "}":
            return labels, pos + 1
        match = LABEL_NAME_RE.match(line, pos)
        if match is None:
            raise ExpositionParseError(line_no, "invalid label name")
        name = match.group()
        pos = match.end()
        while pos < n and line[pos] in " \t":
            pos += 1
        if pos >= n or line[pos] != "=":
            raise ExpositionParseError(line_no, f"expected '=' after label {name}")
        pos += 1
        while pos < n and line[pos] in " \t":
            pos += 1
        if pos >= n or line[pos] != '"':
            raise ExpositionParseError(line_no, f"expected quoted value for {name}")
        pos += 1
        chars: list[str] = []
        while True:
            if pos >= n:
                raise ExpositionParseError(line_no, "unterminated label value")
            ch = line[pos]
            if ch == "\\":
                if pos + 1 >= n or line[pos + 1] not in _ESCAPES:
                    raise ExpositionParseError(line_no, "invalid escape sequence")
                chars.append(_ESCAPES[line[pos + 1]])
                pos += 2
                continue
            if ch == '"':
                pos += 1
                break
            chars.append(ch)
            pos += 1
        if name in labels:
            raise ExpositionParseError(line_no, f"duplicate label {name}")
        labels[name] = "".join(chars)
        while pos < n and line[pos] in " \t":
            pos += 1
        if pos < n and line[pos] == ",":
            pos += 1
            continue
        if pos < n and line[pos] == "}":
            return labels, pos + 1
        raise ExpositionParseError(line_no, "expected ',' or '}' in label set")


def _parse_sample_line(line: str, line_no: int) -> MetricSample:
    match = METRIC_NAME_RE.match(line)
    if match is None:
        raise ExpositionParseError(line_no, "invalid metric name")
    name = match.group()
    pos = match.end()
    labels: dict[str, str] = {}
    if pos < len(line) and line[pos] == "{":
        labels, pos = _parse_labels(line, pos, line_no)
    rest = line[pos:]
    if rest and rest[0] not in " \t":
        raise ExpositionParseError(line_no, "expected whitespace before value")
    tokens = rest.split()
    if not tokens:
        raise ExpositionParseError(line_no, "missing sample value")
    if len(tokens) > 2:
        raise ExpositionParseError(line_no, "unexpected trailing data")
    value = _parse_value(tokens[0], line_no)
    if len(tokens) == 2 and not _TIMESTAMP_RE.fullmatch(tokens[1]):
        raise ExpositionParseError(line_no, f"invalid timestamp {tokens[1]!r}")
    return MetricSample(name=name, timestamp=0.0, value=value, labels=labels)


def _unescape_help(text: str) -> str:
    return text.replace("\\n", "\n").replace("\\\\", "\\")


class _FamilyBuilder:
    def __init__(self, name: str) -> None:
        self.name = name
        self.type: str | None = None
        self.help = ""
        self.samples: list[MetricSample] = []

    def build(self) -> MetricFamily:
        return MetricFamily(
            name=self.name,
            type=self.type or "untyped",
            help=self.help,
            samples=tuple(self.samples),
        )


def _family_for(name: str, families: dict[str, _FamilyBuilder]) -> _FamilyBuilder:
    if name in families:
        return families[name]
    for suffix in _FAMILY_SUFFIXES:
        if name.endswith(suffix):
            base = families.get(name[: -len(suffix)])
            if base is not None and base.type is not None:
                return base
    builder = _FamilyBuilder(name)
    families[name] = builder
    return builder


def _parse_comment(
    line: str, line_no: int, families: dict[str, _FamilyBuilder]
) -> None:
    parts = line[1:].strip().split(None, 2)
    if len(parts) < 2 or parts[0] not in ("HELP", "TYPE"):
        return
    keyword, name = parts[0], parts[1]
    if not METRIC_NAME_RE.fullmatch(name):
        raise ExpositionParseError(line_no, f"invalid metric name in {keyword}")
    builder = families.setdefault(name, _FamilyBuilder(name))
    if keyword == "HELP":
        builder.help = _unescape_help(parts[2]) if len(parts) > 2 else ""
        return
    if len(parts) < 3 or parts[2].strip() not in METRIC_TYPES:
        raise ExpositionParseError(line_no, f"invalid TYPE for {name}")
    if builder.type is not None:
        raise ExpositionParseError(line_no, f"duplicate TYPE for {name}")
    if builder.samples:
        raise ExpositionParseError(line_no, f"TYPE for {name} after its samples")
    builder.type = parts[2].strip()


def parse_families(text: str) -> list[MetricFamily]:
    """Parse an exposition body into families.

    Samples carry timestamp 0; the scraper stamps them.

    Raises:
        ExpositionParseError: On the first malformed line.
    """
    families: dict[str, _FamilyBuilder] = {}
    # Only \n separates lines; other line breaks may appear in label values
    for line_no, raw in enumerate(text.split("\n"), start=1):
        line = raw.strip()
        if not line:
            continue
        if line.startswith("#"):
            _parse_comment(line, line_no, families)
            continue
        sample = _parse_sample_line(line, line_no)
        _family_for(sample.name, families).samples.append(sample)
    return [b.build() for b in families.values() if b.samples or b.type]


def parse_exposition(text: str) -> list[MetricSample]:
    """Parse an exposition body into a flat list of samples.

    Raises:
        ExpositionParseError: On the first malformed line.
    """
    return [s for family in parse_families(text) for s in family.samples]
