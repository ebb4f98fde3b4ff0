"""Collector configuration file.

The file is YAML in the familiar Prometheus shape::

    global:
      scrape_interval: 15s
    scrape_configs:
      - job_name: app
        metrics_path: /metrics/
        static_configs:
          - targets: ["app:8000"]

Parsing produces frozen dataclasses; every validation problem raises
ConfigError naming the offending field.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from scrapestack.core.errors import ConfigError

DEFAULT_SCRAPE_INTERVAL = 60.0
DEFAULT_SCRAPE_TIMEOUT = 10.0
DEFAULT_METRICS_PATH = "/metrics"
VALID_SCHEMES = ("http", "https")

_DURATION_UNITS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
    "w": 604800.0,
}
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d|w)")


def parse_duration(value: str | int | float, field_name: str = "duration") -> float:
    """Parse a duration such as ``15s``, ``1m30s`` or ``500ms`` into seconds.

    Bare numbers are taken as seconds.

    Raises:
        ConfigError: If the value is not a valid positive duration.
    """
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration {value!r}", field_name)
    if isinstance(value, int | float):
        seconds = float(value)
    else:
        text = str(value).strip()
        pos = 0
        seconds = 0.0
        for match in _DURATION_PART_RE.finditer(text):
            if match.start() != pos:
                break
            seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
            pos = match.end()
        if not text or pos != len(text):
            try:
                seconds = float(text)
            except ValueError:
                raise ConfigError(f"invalid duration {value!r}", field_name) from None
    if seconds <= 0:
        raise ConfigError(f"duration must be positive, got {value!r}", field_name)
    return seconds


def format_duration(seconds: float) -> str:
    """Render seconds as the shortest exact duration string."""
    for unit in ("w", "d", "h", "m", "s"):
        size = _DURATION_UNITS[unit]
        if seconds >= size and (seconds / size).is_integer():
            return f"{int(seconds / size)}{unit}"
    return f"{int(round(seconds * 1000))}ms"


def split_address(address: str, field_name: str) -> tuple[str, int]:
    """Split ``host:port`` and validate the port."""
    host, sep, port_text = address.rpartition(":")
    if not sep or not host or not port_text.isdigit():
        raise ConfigError(f"target {address!r} is not host:port", field_name)
    port = int(port_text)
    if not 1 <= port <= 65535:
        raise ConfigError(f"target {address!r} has invalid port", field_name)
    return host.strip("[]"), port


@dataclass(frozen=True)
class ScrapeTarget:
    """One endpoint the collector scrapes on a schedule."""

    job_name: str
    address: str
    metrics_path: str = DEFAULT_METRICS_PATH
    scheme: str = "http"
    interval: float = DEFAULT_SCRAPE_INTERVAL
    timeout: float = DEFAULT_SCRAPE_TIMEOUT
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def url(self) -> str:
        """Full scrape URL; the path is kept verbatim, trailing slash included."""
        return f"{self.scheme}://{self.address}{self.metrics_path}"

    @property
    def key(self) -> tuple[str, str]:
        return self.job_name, self.address

    @property
    def host(self) -> str:
        return split_address(self.address, "target")[0]

    @property
    def port(self) -> int:
        return split_address(self.address, "target")[1]

    @property
    def effective_timeout(self) -> float:
        """Timeout bounded by the interval so scrapes never overlap."""
        return min(self.timeout, self.interval)

    def target_labels(self) -> dict[str, str]:
        """Labels attached to every sample scraped from this target."""
        return {**self.labels, "job": self.job_name, "instance": self.address}


@dataclass(frozen=True)
class StaticConfig:
    targets: tuple[str, ...]
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ScrapeJob:
    """One ``scrape_configs`` entry."""

    job_name: str
    static_configs: tuple[StaticConfig, ...] = ()
    metrics_path: str = DEFAULT_METRICS_PATH
    scheme: str = "http"
    scrape_interval: float | None = None
    scrape_timeout: float | None = None


@dataclass(frozen=True)
class GlobalConfig:
    scrape_interval: float = DEFAULT_SCRAPE_INTERVAL
    scrape_timeout: float = DEFAULT_SCRAPE_TIMEOUT
    external_labels: dict[str, str] = field(default_factory=dict)


def _mapping(value: Any, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError("expected a mapping", field_name)
    return value


def _labels(value: Any, field_name: str) -> dict[str, str]:
    labels = _mapping(value, field_name)
    return {str(k): str(v) for k, v in labels.items()}


def _parse_job(raw: Any, index: int, global_cfg: GlobalConfig) -> ScrapeJob:
    prefix = f"scrape_configs[{index}]"
    data = _mapping(raw, prefix)
    job_name = data.get("job_name")
    if not job_name or not isinstance(job_name, str):
        raise ConfigError("job_name is required", f"{prefix}.job_name")

    scheme = data.get("scheme", "http")
    if scheme not in VALID_SCHEMES:
        raise ConfigError(
            f"scheme must be one of {', '.join(VALID_SCHEMES)}", f"{prefix}.scheme"
        )

    metrics_path = data.get("metrics_path", DEFAULT_METRICS_PATH)
    if not isinstance(metrics_path, str) or not metrics_path.startswith("/"):
        raise ConfigError("metrics_path must start with '/'", f"{prefix}.metrics_path")

    interval = timeout = None
    if "scrape_interval" in data:
        interval = parse_duration(data["scrape_interval"], f"{prefix}.scrape_interval")
    if "scrape_timeout" in data:
        timeout = parse_duration(data["scrape_timeout"], f"{prefix}.scrape_timeout")
    effective_interval = interval or global_cfg.scrape_interval
    effective_timeout = timeout or min(global_cfg.scrape_timeout, effective_interval)
    if effective_timeout > effective_interval:
        raise ConfigError(
            "scrape_timeout must not exceed scrape_interval", f"{prefix}.scrape_timeout"
        )

    static_configs = []
    raw_statics = data.get("static_configs") or []
    if not isinstance(raw_statics, list):
        raise ConfigError("expected a list", f"{prefix}.static_configs")
    for j, raw_static in enumerate(raw_statics):
        static_prefix = f"{prefix}.static_configs[{j}]"
        static = _mapping(raw_static, static_prefix)
        targets = static.get("targets") or []
        if not isinstance(targets, list):
            raise ConfigError("expected a list", f"{static_prefix}.targets")
        for target in targets:
            split_address(str(target), f"{static_prefix}.targets")
        static_configs.append(
            StaticConfig(
                targets=tuple(str(t) for t in targets),
                labels=_labels(static.get("labels"), f"{static_prefix}.labels"),
            )
        )

    return ScrapeJob(
        job_name=job_name,
        static_configs=tuple(static_configs),
        metrics_path=metrics_path,
        scheme=scheme,
        scrape_interval=interval,
        scrape_timeout=timeout,
    )


@dataclass(frozen=True)
class CollectorConfig:
    """Parsed collector configuration."""

    global_config: GlobalConfig = field(default_factory=GlobalConfig)
    scrape_configs: tuple[ScrapeJob, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CollectorConfig":
        """Build and validate a configuration from parsed YAML."""
        root = _mapping(data, "config")
        raw_global = _mapping(root.get("global"), "global")
        interval = parse_duration(
            raw_global.get("scrape_interval", DEFAULT_SCRAPE_INTERVAL),
            "global.scrape_interval",
        )
        timeout = parse_duration(
            raw_global.get("scrape_timeout", min(DEFAULT_SCRAPE_TIMEOUT, interval)),
            "global.scrape_timeout",
        )
        if timeout > interval:
            raise ConfigError(
                "scrape_timeout must not exceed scrape_interval",
                "global.scrape_timeout",
            )
        global_cfg = GlobalConfig(
            scrape_interval=interval,
            scrape_timeout=timeout,
            external_labels=_labels(
                raw_global.get("external_labels"), "global.external_labels"
            ),
        )

        raw_jobs = root.get("scrape_configs") or []
        if not isinstance(raw_jobs, list):
            raise ConfigError("expected a list", "scrape_configs")
        jobs = []
        seen: set[str] = set()
        for i, raw_job in enumerate(raw_jobs):
            job = _parse_job(raw_job, i, global_cfg)
            if job.job_name in seen:
                raise ConfigError(
                    f"duplicate job_name {job.job_name!r}",
                    f"scrape_configs[{i}].job_name",
                )
            seen.add(job.job_name)
            jobs.append(job)
        return cls(global_config=global_cfg, scrape_configs=tuple(jobs))

    @classmethod
    def loads(cls, text: str) -> "CollectorConfig":
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def load(cls, path: str | Path) -> "CollectorConfig":
        """Read and validate a configuration file."""
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"cannot read {path}: {e}") from e
        return cls.loads(text)

    def targets(self) -> list[ScrapeTarget]:
        """Flatten every job into its scrape targets."""
        result = []
        for job in self.scrape_configs:
            interval = job.scrape_interval or self.global_config.scrape_interval
            timeout = job.scrape_timeout or min(
                self.global_config.scrape_timeout, interval
            )
            for static in job.static_configs:
                for address in static.targets:
                    result.append(
                        ScrapeTarget(
                            job_name=job.job_name,
                            address=address,
                            metrics_path=job.metrics_path,
                            scheme=job.scheme,
                            interval=interval,
                            timeout=timeout,
                            labels={
                                **self.global_config.external_labels,
                                **static.labels,
                            },
                        )
                    )
        return result

    def to_dict(self) -> dict[str, Any]:
        global_section: dict[str, Any] = {
            "scrape_interval": format_duration(self.global_config.scrape_interval),
            "scrape_timeout": format_duration(self.global_config.scrape_timeout),
        }
        if self.global_config.external_labels:
            global_section["external_labels"] = dict(self.global_config.external_labels)
        jobs = []
        for job in self.scrape_configs:
            entry: dict[str, Any] = {"job_name": job.job_name}
            if job.scrape_interval is not None:
                entry["scrape_interval"] = format_duration(job.scrape_interval)
            if job.scrape_timeout is not None:
                entry["scrape_timeout"] = format_duration(job.scrape_timeout)
            entry["metrics_path"] = job.metrics_path
            entry["scheme"] = job.scheme
            statics = []
            for static in job.static_configs:
                item: dict[str, Any] = {"targets": list(static.targets)}
                if static.labels:
                    item["labels"] = dict(static.labels)
                statics.append(item)
            entry["static_configs"] = statics
            jobs.append(entry)
        return {"global": global_section, "scrape_configs": jobs}

    def dump(self) -> str:
        """Render the configuration back to YAML."""
        return yaml.safe_dump(self.to_dict(), sort_keys=False)
