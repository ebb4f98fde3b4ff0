"""Exception hierarchy for scrapestack."""


class ScrapestackError(Exception):
    """Base class for all scrapestack errors."""


class ConfigError(ScrapestackError):
    """Invalid collector, dashboard or topology configuration.

    Attributes:
        field: Dotted path of the offending field, when known.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(f"{field}: {message}" if field else message)


class ExpositionParseError(ScrapestackError):
    """A metrics body could not be parsed.

    Attributes:
        line: 1-based line number of the offending line.
    """

    def __init__(self, line: int, message: str) -> None:
        self.line = line
        super().__init__(f"line {line}: {message}")


class QueryError(ScrapestackError):
    """A query expression or its range parameters are invalid."""


class ScrapeError(ScrapestackError):
    """A scrape failed.

    Attributes:
        reason: Short machine friendly reason (timeout, connection, status, parse).
    """

    def __init__(self, reason: str, message: str) -> None:
        self.reason = reason
        super().__init__(message)


class DataSourceError(ScrapestackError):
    """A data source could not be reached or returned an unusable response."""


class AuthenticationError(ScrapestackError):
    """Credentials were rejected."""


class TopologyError(ScrapestackError):
    """The process topology is inconsistent.

    Attributes:
        problems: Every problem found, in discovery order.
    """

    def __init__(self, problems: list[str]) -> None:
        self.problems = problems
        super().__init__("; ".join(problems))
