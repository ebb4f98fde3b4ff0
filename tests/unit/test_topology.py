"""Tests for the process topology."""

import dataclasses
import os
from pathlib import Path

import pytest
import yaml

from scrapestack.core.errors import ConfigError, TopologyError
from scrapestack.topology import (
    COMPOSE_FILE,
    DATASOURCE_FILE,
    PROMETHEUS_FILE,
    ServiceSpec,
    Topology,
)
from scrapestack.visualization.datasource import DataSource

pytestmark = [pytest.mark.tier(1), pytest.mark.topology]

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _replace_service(topology: Topology, name: str, **changes) -> Topology:
    services = tuple(
        dataclasses.replace(s, **changes) if s.name == name else s
        for s in topology.services
    )
    return dataclasses.replace(topology, services=services)


@pytest.mark.tra("Topology.Default")
class TestDefaultTopology:
    """The bundled four-process topology."""

    def test_is_consistent(self) -> None:
        topology = Topology.default()
        assert topology.problems() == []
        topology.validate()

    def test_services_share_one_network(self) -> None:
        topology = Topology.default()
        assert topology.network_hosts() == {
            "app",
            "prometheus",
            "grafana",
            "node_exporter",
        }

    def test_published_ports(self) -> None:
        ports = {s.name: s.ports for s in Topology.default(app_port=8080).services}
        assert ports == {
            "app": ((8080, 8080),),
            "prometheus": ((9090, 9090),),
            "grafana": ((3000, 3000),),
            "node_exporter": ((9100, 9100),),
        }

    def test_app_job_scrapes_trailing_slash_path(self) -> None:
        targets = {t.job_name: t for t in Topology.default().collector.targets()}
        assert targets["app"].url == "http://app:8000/metrics/"
        assert targets["app"].interval == 5.0
        assert targets["prometheus"].interval == 15.0
        assert targets["node_exporter"].address == "node_exporter:9100"

    def test_datasource_uses_service_name(self) -> None:
        (source,) = Topology.default().datasources
        assert source.url == "http://prometheus:9090"
        assert source.is_default


@pytest.mark.tra("Topology.Validate")
class TestProblems:
    """Inconsistencies found by Topology.problems()."""

    def test_target_not_on_network(self) -> None:
        topology = _replace_service(Topology.default(), "node_exporter", networks=())
        problems = topology.problems()
        assert "service 'node_exporter' is not on network 'monitoring'" in problems
        assert any("node_exporter:9100" in p for p in problems)

    def test_target_port_not_exposed(self) -> None:
        topology = _replace_service(Topology.default(), "app", ports=((8001, 8001),))
        (problem,) = topology.problems()
        assert "app:8000" in problem
        assert "does not expose" in problem

    def test_duplicate_host_port(self) -> None:
        topology = _replace_service(
            Topology.default(), "node_exporter", ports=((9090, 9100),)
        )
        assert (
            "host port 9090 is published by both 'prometheus' and 'node_exporter'"
            in topology.problems()
        )

    def test_localhost_datasource(self) -> None:
        topology = dataclasses.replace(
            Topology.default(),
            datasources=(DataSource("Prometheus", "http://localhost:9090"),),
        )
        (problem,) = topology.problems()
        assert problem.startswith("data source 'Prometheus': localhost resolves")

    def test_undeclared_volume_and_unknown_dependency(self) -> None:
        topology = dataclasses.replace(
            _replace_service(Topology.default(), "grafana", depends_on=("loki",)),
            volumes=(),
        )
        assert topology.problems() == [
            "service 'grafana' uses undeclared volume 'grafana-storage'",
            "service 'grafana' depends on unknown 'loki'",
        ]

    def test_service_without_image(self) -> None:
        topology = _replace_service(Topology.default(), "grafana", image=None)
        assert topology.problems() == [
            "service 'grafana' needs an image or a build context"
        ]

    def test_validate_raises_with_every_problem(self) -> None:
        topology = _replace_service(Topology.default(), "prometheus", networks=())
        with pytest.raises(TopologyError) as info:
            topology.validate()
        assert len(info.value.problems) >= 3


@pytest.mark.tra("Topology.Render")
class TestRender:
    """Rendering and reading back the operator files."""

    def test_compose_document(self) -> None:
        doc = yaml.safe_load(Topology.default().render_compose())

        assert doc["networks"] == {"monitoring": {"driver": "bridge"}}
        assert doc["volumes"] == {"grafana-storage": {}}
        grafana = doc["services"]["grafana"]
        assert grafana["ports"] == ["3000:3000"]
        assert grafana["depends_on"] == ["prometheus"]
        assert grafana["restart"] == "unless-stopped"
        assert grafana["environment"]["GF_SECURITY_ADMIN_PASSWORD"] == "admin"

    def test_grafana_datasources_document(self) -> None:
        doc = yaml.safe_load(Topology.default().render_grafana_datasources())
        assert doc == {
            "apiVersion": 1,
            "datasources": [
                {
                    "name": "Prometheus",
                    "type": "prometheus",
                    "access": "proxy",
                    "url": "http://prometheus:9090",
                    "isDefault": True,
                }
            ],
        }

    def test_write_and_load(self, tmp_path: Path) -> None:
        (tmp_path / "Dockerfile").write_text("FROM python:3.12-slim\n")
        topology = Topology.default()

        written = topology.write(tmp_path)

        assert [p.relative_to(tmp_path).as_posix() for p in written] == [
            COMPOSE_FILE,
            PROMETHEUS_FILE,
            DATASOURCE_FILE,
        ]
        loaded = Topology.load(tmp_path)
        assert loaded.services == topology.services
        assert loaded.datasources == topology.datasources
        assert loaded.volumes == topology.volumes
        assert loaded.collector.targets() == topology.collector.targets()
        assert loaded.problems() == []

    def test_write_refuses_inconsistent_topology(self, tmp_path: Path) -> None:
        topology = _replace_service(Topology.default(), "app", networks=())
        with pytest.raises(TopologyError):
            topology.write(tmp_path)
        assert not (tmp_path / COMPOSE_FILE).exists()

    def test_write_refuses_build_context_without_dockerfile(
        self, tmp_path: Path
    ) -> None:
        with pytest.raises(TopologyError) as info:
            Topology.default().write(tmp_path)
        assert info.value.problems == [
            "service 'app' build context '.' has no Dockerfile"
        ]
        assert not (tmp_path / COMPOSE_FILE).exists()

    def test_app_builds_from_the_project_dockerfile(self, tmp_path: Path) -> None:
        out = tmp_path / "deploy"
        context = os.path.relpath(PROJECT_ROOT, out)

        Topology.default(build_context=context).write(out)

        compose = yaml.safe_load((out / COMPOSE_FILE).read_text())
        assert compose["services"]["app"]["build"] == context
        assert (out / context / "Dockerfile").is_file()
        assert Topology.load(out).problems(out) == []

    def test_build_context_is_not_checked_without_base_dir(self) -> None:
        topology = Topology.default(build_context="../nowhere")
        assert topology.problems() == []

    def test_load_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="cannot read topology"):
            Topology.load(tmp_path / "missing")


class TestServiceSpec:
    """Tests for ServiceSpec compose conversion."""

    def test_named_volumes_skip_bind_mounts(self) -> None:
        service = ServiceSpec(
            "grafana", image="g", volumes=("data:/var/lib", "./conf:/etc", "/abs:/x")
        )
        assert service.named_volumes() == ["data"]

    def test_from_compose_accepts_mapping_forms(self) -> None:
        service = ServiceSpec.from_compose(
            "grafana",
            {
                "image": "grafana/grafana",
                "ports": ["3000:3000"],
                "expose": [3000],
                "depends_on": {"prometheus": {"condition": "service_started"}},
                "networks": {"monitoring": {}},
            },
        )
        assert service.depends_on == ("prometheus",)
        assert service.networks == ("monitoring",)
        assert service.container_ports == {3000}

    def test_from_compose_rejects_bad_port(self) -> None:
        with pytest.raises(ConfigError) as info:
            ServiceSpec.from_compose("x", {"image": "i", "ports": ["3000"]})
        assert info.value.field == "services.x.ports"

    @pytest.mark.parametrize(
        "raw",
        ["9090:9090", "127.0.0.1:9090:9090", "9090:9090/tcp", "[::1]:9090:9090/udp"],
    )
    def test_from_compose_port_forms(self, raw: str) -> None:
        service = ServiceSpec.from_compose("p", {"image": "i", "ports": [raw]})
        assert service.ports == ((9090, 9090),)

    def test_from_compose_build_mapping(self) -> None:
        service = ServiceSpec.from_compose(
            "app", {"build": {"context": "..", "dockerfile": "app.Dockerfile"}}
        )
        assert service.build == ".."
        assert service.dockerfile == "app.Dockerfile"
        assert service.to_compose()["build"] == {
            "context": "..",
            "dockerfile": "app.Dockerfile",
        }
