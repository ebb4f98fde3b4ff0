"""Data sources: named collector endpoints the dashboards query.

A data source URL is resolved from inside the dashboard process, not from
the operator's browser. ``localhost`` therefore points at the dashboard
container itself; check_namespace() flags such URLs before they are saved.
"""

import math
from dataclasses import asdict, dataclass
from typing import Any
from urllib.parse import urlsplit

import httpx
import yaml

from scrapestack.adapters.logging import get_logger
from scrapestack.core.errors import ConfigError, DataSourceError
from scrapestack.core.query import Series

logger = get_logger(__name__)

BROWSER_NAMESPACE_HOSTS = frozenset({"localhost", "127.0.0.1", "0.0.0.0", "::1"})
SUPPORTED_TYPES = ("prometheus",)


def _flag(value: Any, field_name: str) -> bool:
    """Accept a boolean or the strings true/false in any case."""
    if isinstance(value, bool):
        return value
    text = value.strip().lower() if isinstance(value, str) else None
    if text not in ("true", "false"):
        raise ConfigError(f"must be true or false, not {value!r}", field_name)
    return text == "true"


@dataclass(frozen=True)
class DataSource:
    """A registered query backend."""

    name: str
    url: str
    type: str = "prometheus"
    is_default: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("name is required", "datasource.name")
        if self.type not in SUPPORTED_TYPES:
            raise ConfigError(f"unsupported type {self.type!r}", "datasource.type")
        parts = urlsplit(self.url)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ConfigError(
                f"url {self.url!r} must be an absolute http(s) URL", "datasource.url"
            )

    @property
    def host(self) -> str:
        return urlsplit(self.url).hostname or ""

    @property
    def base_url(self) -> str:
        return self.url.rstrip("/")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DataSource":
        try:
            return cls(
                name=str(data["name"]),
                url=str(data["url"]),
                type=str(data.get("type", "prometheus")),
                is_default=_flag(
                    data.get("is_default", False), "datasource.is_default"
                ),
            )
        except KeyError as e:
            raise ConfigError(f"missing {e.args[0]}", "datasource") from e


def check_namespace(url: str, service_hosts: set[str] | None = None) -> list[str]:
    """Return problems resolving ``url`` from inside the dashboard process.

    Args:
        url: Data source URL.
        service_hosts: Names resolvable on the shared network, when known.
    """
    host = urlsplit(url).hostname or ""
    problems = []
    if host in BROWSER_NAMESPACE_HOSTS:
        problems.append(
            f"{host} resolves to the dashboard process itself, not the collector; "
            "use the collector's service name on the shared network "
            "(for example http://prometheus:9090)"
        )
    elif service_hosts is not None and host not in service_hosts:
        problems.append(
            f"host {host!r} is not a service on the shared network "
            f"(known: {', '.join(sorted(service_hosts))})"
        )
    return problems


@dataclass(frozen=True)
class DataSourceTestResult:
    ok: bool
    message: str


def _value(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        return math.nan


class DataSourceClient:
    """Reads from a collector's query API.

    Args:
        source: The data source to query.
        client: HTTP client, usually shared by the dashboard service.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self, source: DataSource, client: httpx.AsyncClient, timeout: float = 10.0
    ) -> None:
        self.source = source
        self._client = client
        self._timeout = timeout

    async def _get(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        url = f"{self.source.base_url}{path}"
        try:
            response = await self._client.get(url, params=params, timeout=self._timeout)
        except httpx.ConnectError as e:
            raise DataSourceError(
                f"cannot connect to {self.source.url}: {e}. The URL must be "
                "reachable from the dashboard service, not from your browser"
            ) from e
        except httpx.TimeoutException as e:
            raise DataSourceError(f"request to {self.source.url} timed out") from e
        except httpx.HTTPError as e:
            raise DataSourceError(f"request to {self.source.url} failed: {e}") from e
        try:
            body = response.json()
        except ValueError:
            raise DataSourceError(
                f"{self.source.url} returned HTTP {response.status_code} "
                "with a non-JSON body; is this a collector query endpoint?"
            ) from None
        if not isinstance(body, dict):
            raise DataSourceError(f"{self.source.url} returned an unexpected body")
        if response.status_code != 200 or body.get("status") != "success":
            detail = body.get("error")
            raise DataSourceError(
                f"{self.source.url} returned HTTP {response.status_code}"
                + (f": {detail}" if detail else "")
            )
        data: dict[str, Any] = body.get("data") or {}
        return data

    async def test(self) -> DataSourceTestResult:
        """Check the data source answers a trivial query."""
        try:
            await self._get("/api/v1/query", {"query": "up"})
        except DataSourceError as e:
            logger.warning("Data source %s failed its test: %s", self.source.name, e)
            return DataSourceTestResult(ok=False, message=str(e))
        return DataSourceTestResult(ok=True, message="Data source is working")

    async def query_range(
        self, expr: str, start: float, end: float, step: float
    ) -> list[Series]:
        """Run a range query.

        Raises:
            DataSourceError: If the data source fails or answers garbage.
        """
        data = await self._get(
            "/api/v1/query_range",
            {"query": expr, "start": repr(start), "end": repr(end), "step": repr(step)},
        )
        if data.get("resultType") != "matrix":
            raise DataSourceError(f"unexpected result type {data.get('resultType')!r}")
        try:
            return [
                Series(
                    labels=dict(item["metric"]),
                    points=[(float(t), _value(v)) for t, v in item["values"]],
                )
                for item in data.get("result", [])
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise DataSourceError(f"malformed matrix result: {e}") from e


def load_provisioning(text: str) -> list[DataSource]:
    """Parse a data source provisioning file.

    The format is the one topology rendering writes::

        apiVersion: 1
        datasources:
          - name: Prometheus
            type: prometheus
            url: http://prometheus:9090
            isDefault: true

    Raises:
        ConfigError: If the document is not a valid provisioning file.
    """
    try:
        doc = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML: {e}") from e
    if not isinstance(doc, dict) or not isinstance(doc.get("datasources", []), list):
        raise ConfigError("expected a mapping with a datasources list")
    sources = []
    for i, raw in enumerate(doc.get("datasources", [])):
        if not isinstance(raw, dict):
            raise ConfigError("expected a mapping", f"datasources[{i}]")
        sources.append(
            DataSource.from_dict(
                {
                    "name": raw.get("name", ""),
                    "url": raw.get("url", ""),
                    "type": raw.get("type", "prometheus"),
                    "is_default": raw.get("isDefault", False),
                }
            )
        )
    return sources
