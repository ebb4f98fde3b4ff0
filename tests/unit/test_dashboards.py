"""Tests for dashboards and panel rendering."""

import httpx
import pytest

from scrapestack.core.errors import ConfigError, QueryError
from scrapestack.core.query import Series
from scrapestack.visualization.dashboards import (
    Dashboard,
    DashboardRenderer,
    Panel,
    PanelResult,
)
from scrapestack.visualization.datasource import DataSource, DataSourceClient

pytestmark = [pytest.mark.tier(1), pytest.mark.visualization]

SOURCES = {
    "Prometheus": DataSource("Prometheus", "http://prometheus:9090"),
    "Broken": DataSource("Broken", "http://broken:9090"),
}

DASHBOARD = Dashboard(
    uid="app",
    title="App",
    panels=(
        Panel("Memory", "Prometheus", "process_resident_memory_bytes"),
        Panel("Up", "Prometheus", "up"),
    ),
)


def _matrix(request: httpx.Request) -> httpx.Response:
    name = request.url.params["query"]
    return httpx.Response(
        200,
        json={
            "status": "success",
            "data": {
                "resultType": "matrix",
                "result": [{"metric": {"__name__": name}, "values": [[100, "1"]]}],
            },
        },
    )


def _renderer(mock_client) -> DashboardRenderer:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "broken":
            raise httpx.ConnectError("connection refused", request=request)
        return _matrix(request)

    client = mock_client(handler)
    return DashboardRenderer(SOURCES, lambda source: DataSourceClient(source, client))


@pytest.mark.tra("Visualization.Dashboard.Model")
class TestDashboard:
    """Tests for the Dashboard model."""

    def test_dict_roundtrip(self) -> None:
        assert Dashboard.from_dict(DASHBOARD.to_dict()) == DASHBOARD

    def test_title_defaults_to_uid(self) -> None:
        assert Dashboard.from_dict({"uid": "x"}).title == "x"

    def test_validate_unknown_datasource(self) -> None:
        dashboard = Dashboard("x", "X", (Panel("p", "Missing", "up"),))
        with pytest.raises(ConfigError) as info:
            dashboard.validate(SOURCES)
        assert info.value.field == "panels[0].datasource"

    @pytest.mark.parametrize(
        ("data", "field"),
        [
            ({"title": "no uid"}, "dashboard.uid"),
            ({"uid": "x", "panels": ["p"]}, "panels[0]"),
            (
                {"uid": "x", "panels": [{"title": "t", "expr": "up"}]},
                "panels[0].datasource",
            ),
            (
                {
                    "uid": "x",
                    "panels": [
                        {"title": "t", "datasource": "d", "expr": "up", "type": "pie"}
                    ],
                },
                "panels[0].type",
            ),
        ],
    )
    def test_from_dict_invalid(self, data: dict, field: str) -> None:
        with pytest.raises(ConfigError) as info:
            Dashboard.from_dict(data)
        assert info.value.field == field


class TestPanelResult:
    """Tests for PanelResult serialisation."""

    def test_values_are_strings(self) -> None:
        result = PanelResult(
            "Up", series=[Series({"job": "app"}, [(1.0, 1.0), (2.0, float("nan"))])]
        )
        assert result.to_dict() == {
            "title": "Up",
            "error": None,
            "series": [
                {"labels": {"job": "app"}, "points": [[1.0, "1"], [2.0, "NaN"]]}
            ],
        }


@pytest.mark.tra("Visualization.Dashboard.Render")
class TestDashboardRenderer:
    """Tests for DashboardRenderer."""

    async def test_panels_render_in_order(self, mock_client) -> None:
        results = await _renderer(mock_client).render(DASHBOARD, 0.0, 200.0, 15.0)

        assert [r.title for r in results] == ["Memory", "Up"]
        assert results[0].series[0].labels == {
            "__name__": "process_resident_memory_bytes"
        }
        assert all(r.error is None for r in results)

    async def test_failing_source_only_breaks_its_panels(self, mock_client) -> None:
        dashboard = Dashboard(
            "mixed",
            "Mixed",
            (Panel("Down", "Broken", "up"), Panel("Up", "Prometheus", "up")),
        )

        down, up = await _renderer(mock_client).render(dashboard, 0.0, 200.0, 15.0)

        assert down.error is not None
        assert "cannot connect" in down.error
        assert down.series == []
        assert up.error is None
        assert up.series

    async def test_missing_source_is_panel_error(self, mock_client) -> None:
        dashboard = Dashboard("x", "X", (Panel("Gone", "Deleted", "up"),))

        (result,) = await _renderer(mock_client).render(dashboard, 0.0, 10.0, 1.0)

        assert result.error == "data source 'Deleted' not found"

    @pytest.mark.parametrize(
        ("start", "end", "step"), [(10.0, 0.0, 1.0), (0.0, 10.0, 0.0)]
    )
    async def test_invalid_range(
        self, mock_client, start: float, end: float, step: float
    ) -> None:
        with pytest.raises(QueryError):
            await _renderer(mock_client).render(DASHBOARD, start, end, step)
