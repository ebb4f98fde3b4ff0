"""Process topology declaration.

Describes the processes of the pipeline (instrumented app, collector,
dashboards, host exporter), the network they share and the volumes they
keep, and renders the files an operator starts them from:

    docker-compose.yml
    prometheus/prometheus.yml
    grafana/provisioning/datasources/datasource.yml

Processes find each other by service name on the shared network, so
validate() checks every scrape target and data source URL against the
declared services.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

from scrapestack.adapters.logging import get_logger
from scrapestack.core.config import (
    CollectorConfig,
    GlobalConfig,
    ScrapeJob,
    StaticConfig,
)
from scrapestack.core.errors import ConfigError, TopologyError
from scrapestack.visualization.datasource import (
    DataSource,
    check_namespace,
    load_provisioning,
)

logger = get_logger(__name__)

DEFAULT_NETWORK = "monitoring"
DEFAULT_RESTART = "unless-stopped"
GRAFANA_VOLUME = "grafana-storage"

DEFAULT_DOCKERFILE = "Dockerfile"

COMPOSE_FILE = "docker-compose.yml"
PROMETHEUS_FILE = "prometheus/prometheus.yml"
DATASOURCE_FILE = "grafana/provisioning/datasources/datasource.yml"


def _parse_port(raw: Any, field_name: str) -> tuple[int, int]:
    """Parse a compose short-syntax port: ``[ip:]host:container[/protocol]``."""
    text = str(raw).split("/", 1)[0]
    bind, sep, container = text.rpartition(":")
    host = bind.rpartition(":")[2] if sep else ""
    if not host.isdigit() or not container.isdigit():
        raise ConfigError(f"port {raw!r} is not host:container", field_name)
    return int(host), int(container)


@dataclass(frozen=True)
class ServiceSpec:
    """One process of the topology.

    ``ports`` holds (host_port, container_port) pairs; ``expose`` lists
    container ports reachable only on the shared network.
    """

    name: str
    image: str | None = None
    build: str | None = None
    ports: tuple[tuple[int, int], ...] = ()
    expose: tuple[int, ...] = ()
    networks: tuple[str, ...] = (DEFAULT_NETWORK,)
    restart: str = DEFAULT_RESTART
    volumes: tuple[str, ...] = ()
    environment: dict[str, str] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    command: tuple[str, ...] = ()
    dockerfile: str = DEFAULT_DOCKERFILE

    @property
    def container_ports(self) -> set[int]:
        return {c for _, c in self.ports} | set(self.expose)

    def named_volumes(self) -> list[str]:
        """Volume names used, skipping bind mounts."""
        names = []
        for volume in self.volumes:
            source = volume.split(":", 1)[0]
            if not source.startswith((".", "/", "~")):
                names.append(source)
        return names

    def to_compose(self) -> dict[str, Any]:
        entry: dict[str, Any] = {}
        if self.image:
            entry["image"] = self.image
        if self.build and self.dockerfile != DEFAULT_DOCKERFILE:
            entry["build"] = {"context": self.build, "dockerfile": self.dockerfile}
        elif self.build:
            entry["build"] = self.build
        entry["container_name"] = self.name
        if self.command:
            entry["command"] = list(self.command)
        if self.ports:
            entry["ports"] = [f"{h}:{c}" for h, c in self.ports]
        if self.expose:
            entry["expose"] = [str(p) for p in self.expose]
        if self.volumes:
            entry["volumes"] = list(self.volumes)
        if self.environment:
            entry["environment"] = dict(self.environment)
        if self.depends_on:
            # Plain list: no health conditions, startup order is not awaited
            entry["depends_on"] = list(self.depends_on)
        entry["networks"] = list(self.networks)
        entry["restart"] = self.restart
        return entry

    @classmethod
    def from_compose(cls, name: str, data: dict[str, Any]) -> "ServiceSpec":
        prefix = f"services.{name}"
        ports = [_parse_port(raw, f"{prefix}.ports") for raw in data.get("ports") or []]
        try:
            expose = tuple(int(p) for p in data.get("expose") or [])
        except ValueError as e:
            raise ConfigError(f"invalid expose entry: {e}", f"{prefix}.expose") from e
        depends = data.get("depends_on") or []
        if isinstance(depends, dict):
            depends = list(depends)
        networks = data.get("networks") or []
        if isinstance(networks, dict):
            networks = list(networks)
        build = data.get("build")
        dockerfile = DEFAULT_DOCKERFILE
        if isinstance(build, dict):
            dockerfile = str(build.get("dockerfile", DEFAULT_DOCKERFILE))
            build = build.get("context", ".")
        return cls(
            name=name,
            image=data.get("image"),
            build=str(build) if build is not None else None,
            dockerfile=dockerfile,
            ports=tuple(ports),
            expose=expose,
            networks=tuple(str(n) for n in networks),
            restart=str(data.get("restart", "no")),
            volumes=tuple(str(v) for v in data.get("volumes") or []),
            environment={
                str(k): str(v) for k, v in (data.get("environment") or {}).items()
            },
            depends_on=tuple(str(d) for d in depends),
            command=tuple(str(c) for c in data.get("command") or []),
        )


def _default_collector(app_port: int) -> CollectorConfig:
    return CollectorConfig(
        global_config=GlobalConfig(scrape_interval=15.0, scrape_timeout=10.0),
        scrape_configs=(
            ScrapeJob(
                job_name="prometheus",
                static_configs=(StaticConfig(targets=("prometheus:9090",)),),
            ),
            ScrapeJob(
                job_name="app",
                metrics_path="/metrics/",
                scrape_interval=5.0,
                scrape_timeout=5.0,
                static_configs=(StaticConfig(targets=(f"app:{app_port}",)),),
            ),
            ScrapeJob(
                job_name="node_exporter",
                static_configs=(StaticConfig(targets=("node_exporter:9100",)),),
            ),
        ),
    )


@dataclass(frozen=True)
class Topology:
    """The whole deployment: services, shared network, volumes and configs."""

    services: tuple[ServiceSpec, ...]
    collector: CollectorConfig
    datasources: tuple[DataSource, ...] = ()
    network: str = DEFAULT_NETWORK
    volumes: tuple[str, ...] = ()

    @classmethod
    def default(cls, app_port: int = 8000, build_context: str = ".") -> "Topology":
        """App, collector, dashboards and node exporter on one network.

        Args:
            app_port: Port the example app listens on and publishes.
            build_context: Project root holding the Dockerfile, relative to
                the directory the compose file is written to.
        """
        services = (
            ServiceSpec(
                name="app",
                build=build_context,
                command=(
                    "scrapestack", "app", "--host", "0.0.0.0", "--port", str(app_port)
                ),
                ports=((app_port, app_port),),
            ),
            ServiceSpec(
                name="prometheus",
                image="prom/prometheus:latest",
                command=("--config.file=/etc/prometheus/prometheus.yml",),
                ports=((9090, 9090),),
                volumes=("./prometheus:/etc/prometheus",),
            ),
            ServiceSpec(
                name="grafana",
                image="grafana/grafana:latest",
                ports=((3000, 3000),),
                volumes=(
                    f"{GRAFANA_VOLUME}:/var/lib/grafana",
                    "./grafana/provisioning:/etc/grafana/provisioning",
                ),
                # Default pair; rotate it on first login
                environment={
                    "GF_SECURITY_ADMIN_USER": "admin",
                    "GF_SECURITY_ADMIN_PASSWORD": "admin",
                },
                depends_on=("prometheus",),
            ),
            ServiceSpec(
                name="node_exporter",
                image="prom/node-exporter:latest",
                ports=((9100, 9100),),
            ),
        )
        return cls(
            services=services,
            collector=_default_collector(app_port),
            datasources=(
                DataSource(
                    name="Prometheus", url="http://prometheus:9090", is_default=True
                ),
            ),
            volumes=(GRAFANA_VOLUME,),
        )

    def service(self, name: str) -> ServiceSpec | None:
        for service in self.services:
            if service.name == name:
                return service
        return None

    def network_hosts(self) -> set[str]:
        """Service names resolvable on the shared network."""
        return {s.name for s in self.services if self.network in s.networks}

    def problems(self, base_dir: str | Path | None = None) -> list[str]:
        """Every inconsistency, in a stable order.

        Build contexts are only checked when ``base_dir``, the directory
        holding the compose file, is given.
        """
        found: list[str] = []
        seen: set[str] = set()
        host_ports: dict[int, str] = {}
        for service in self.services:
            if service.name in seen:
                found.append(f"duplicate service name {service.name!r}")
            seen.add(service.name)
            if not service.image and not service.build:
                found.append(
                    f"service {service.name!r} needs an image or a build context"
                )
            if service.build and base_dir is not None:
                context = Path(base_dir) / service.build
                if not (context / service.dockerfile).is_file():
                    found.append(
                        f"service {service.name!r} build context {service.build!r} "
                        f"has no {service.dockerfile}"
                    )
            if self.network not in service.networks:
                found.append(
                    f"service {service.name!r} is not on network {self.network!r}"
                )
            for host_port, _ in service.ports:
                owner = host_ports.setdefault(host_port, service.name)
                if owner != service.name:
                    found.append(
                        f"host port {host_port} is published by both "
                        f"{owner!r} and {service.name!r}"
                    )
            for volume in service.named_volumes():
                if volume not in self.volumes:
                    found.append(
                        f"service {service.name!r} uses undeclared volume {volume!r}"
                    )
            for dependency in service.depends_on:
                if self.service(dependency) is None:
                    found.append(
                        f"service {service.name!r} depends on unknown {dependency!r}"
                    )

        hosts = self.network_hosts()
        for target in self.collector.targets():
            service = self.service(target.host)
            if target.host not in hosts or service is None:
                found.append(
                    f"scrape target {target.address} (job {target.job_name!r}) "
                    f"is not a service on network {self.network!r}"
                )
            elif target.port not in service.container_ports:
                found.append(
                    f"scrape target {target.address} (job {target.job_name!r}) "
                    f"uses a port {target.host!r} does not expose"
                )

        for source in self.datasources:
            issues = check_namespace(source.url, hosts)
            found.extend(f"data source {source.name!r}: {issue}" for issue in issues)
            service = self.service(source.host)
            default_port = 443 if source.url.startswith("https") else 80
            port = urlsplit(source.url).port or default_port
            exposed = service.container_ports if service is not None else {port}
            if not issues and port not in exposed:
                found.append(
                    f"data source {source.name!r}: port {port} is not exposed by "
                    f"{source.host!r}"
                )
        return found

    def validate(self, base_dir: str | Path | None = None) -> None:
        """Raise TopologyError listing every problem found."""
        problems = self.problems(base_dir)
        if problems:
            raise TopologyError(problems)

    def render_compose(self) -> str:
        doc: dict[str, Any] = {
            "services": {s.name: s.to_compose() for s in self.services},
            "networks": {self.network: {"driver": "bridge"}},
        }
        if self.volumes:
            doc["volumes"] = {v: {} for v in self.volumes}
        return yaml.safe_dump(doc, sort_keys=False)

    def render_prometheus_config(self) -> str:
        return self.collector.dump()

    def render_grafana_datasources(self) -> str:
        doc = {
            "apiVersion": 1,
            "datasources": [
                {
                    "name": s.name,
                    "type": s.type,
                    "access": "proxy",
                    "url": s.url,
                    "isDefault": s.is_default,
                }
                for s in self.datasources
            ],
        }
        return yaml.safe_dump(doc, sort_keys=False)

    def write(self, directory: str | Path) -> list[Path]:
        """Validate, then write the rendered files under ``directory``."""
        self.validate(directory)
        root = Path(directory)
        rendered = {
            COMPOSE_FILE: self.render_compose(),
            PROMETHEUS_FILE: self.render_prometheus_config(),
            DATASOURCE_FILE: self.render_grafana_datasources(),
        }
        written = []
        for relative, text in rendered.items():
            path = root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
            written.append(path)
            logger.info("Wrote %s", path)
        return written

    @classmethod
    def load(cls, directory: str | Path) -> "Topology":
        """Read a rendered topology back from ``directory``.

        Raises:
            ConfigError: If a file is missing or malformed.
        """
        root = Path(directory)
        try:
            compose = yaml.safe_load((root / COMPOSE_FILE).read_text(encoding="utf-8"))
            datasource_text = (root / DATASOURCE_FILE).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"cannot read topology: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML: {e}", COMPOSE_FILE) from e
        services = compose.get("services") if isinstance(compose, dict) else None
        if not isinstance(services, dict):
            raise ConfigError("expected a services mapping", COMPOSE_FILE)
        networks = list(compose.get("networks") or {DEFAULT_NETWORK: None})
        return cls(
            services=tuple(
                ServiceSpec.from_compose(name, data or {})
                for name, data in services.items()
            ),
            collector=CollectorConfig.load(root / PROMETHEUS_FILE),
            datasources=tuple(load_provisioning(datasource_text)),
            network=str(networks[0]),
            volumes=tuple(compose.get("volumes") or ()),
        )
