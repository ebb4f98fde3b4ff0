"""Dashboards: ordered panels, each bound to one data source and one query."""

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from scrapestack.adapters.logging import get_logger
from scrapestack.core.encoding.prometheus import format_value
from scrapestack.core.errors import ConfigError, DataSourceError, QueryError
from scrapestack.core.query import Series
from scrapestack.visualization.datasource import DataSource, DataSourceClient

logger = get_logger(__name__)

PANEL_TYPES = ("timeseries", "stat", "gauge", "table")


@dataclass(frozen=True)
class Panel:
    title: str
    datasource: str
    expr: str
    type: str = "timeseries"

    def to_dict(self) -> dict[str, str]:
        return {
            "title": self.title,
            "datasource": self.datasource,
            "expr": self.expr,
            "type": self.type,
        }


@dataclass(frozen=True)
class Dashboard:
    """A saved dashboard; panels render in the order given."""

    uid: str
    title: str
    panels: tuple[Panel, ...] = ()

    def validate(self, datasources: Mapping[str, DataSource]) -> None:
        """Check every panel references an existing data source.

        Raises:
            ConfigError: Naming the first broken panel.
        """
        for i, panel in enumerate(self.panels):
            if panel.datasource not in datasources:
                raise ConfigError(
                    f"unknown data source {panel.datasource!r}",
                    f"panels[{i}].datasource",
                )

    def to_dict(self) -> dict[str, Any]:
        return {
            "uid": self.uid,
            "title": self.title,
            "panels": [p.to_dict() for p in self.panels],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Dashboard":
        uid = data.get("uid")
        if not uid or not isinstance(uid, str):
            raise ConfigError("uid is required", "dashboard.uid")
        panels = []
        for i, raw in enumerate(data.get("panels") or []):
            if not isinstance(raw, dict):
                raise ConfigError("expected a mapping", f"panels[{i}]")
            for key in ("title", "datasource", "expr"):
                if not raw.get(key):
                    raise ConfigError(f"{key} is required", f"panels[{i}].{key}")
            panel_type = raw.get("type", "timeseries")
            if panel_type not in PANEL_TYPES:
                raise ConfigError(
                    f"unknown panel type {panel_type!r}", f"panels[{i}].type"
                )
            panels.append(
                Panel(
                    title=str(raw["title"]),
                    datasource=str(raw["datasource"]),
                    expr=str(raw["expr"]),
                    type=panel_type,
                )
            )
        return cls(uid=uid, title=str(data.get("title") or uid), panels=tuple(panels))


@dataclass
class PanelResult:
    """Outcome of rendering one panel: its series, or an error state."""

    title: str
    series: list[Series] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "error": self.error,
            "series": [
                {
                    "labels": s.labels,
                    "points": [[t, format_value(v)] for t, v in s.points],
                }
                for s in self.series
            ],
        }


ClientFactory = Callable[[DataSource], DataSourceClient]


class DashboardRenderer:
    """Evaluates every panel of a dashboard against its data source.

    Panels are evaluated concurrently. A failing data source only puts its
    own panels into the error state.
    """

    def __init__(
        self, datasources: Mapping[str, DataSource], client_factory: ClientFactory
    ) -> None:
        self._datasources = datasources
        self._client_factory = client_factory

    async def _render_panel(
        self, panel: Panel, start: float, end: float, step: float
    ) -> PanelResult:
        source = self._datasources.get(panel.datasource)
        if source is None:
            return PanelResult(
                panel.title, error=f"data source {panel.datasource!r} not found"
            )
        client = self._client_factory(source)
        try:
            series = await client.query_range(panel.expr, start, end, step)
        except (DataSourceError, QueryError) as e:
            logger.warning("Panel %r failed: %s", panel.title, e)
            return PanelResult(panel.title, error=str(e))
        return PanelResult(panel.title, series=series)

    async def render(
        self, dashboard: Dashboard, start: float, end: float, step: float
    ) -> list[PanelResult]:
        """Render all panels, preserving panel order."""
        if step <= 0 or end < start:
            raise QueryError("invalid time range")
        return list(
            await asyncio.gather(
                *(self._render_panel(p, start, end, step) for p in dashboard.panels)
            )
        )
