"""Dashboard service: data sources, dashboards, users and their HTTP API."""

from scrapestack.visualization.api import create_dashboard_app
from scrapestack.visualization.auth import UserStore
from scrapestack.visualization.dashboards import (
    Dashboard,
    DashboardRenderer,
    Panel,
    PanelResult,
)
from scrapestack.visualization.datasource import (
    DataSource,
    DataSourceClient,
    DataSourceTestResult,
    check_namespace,
    load_provisioning,
)

__all__ = [
    "Dashboard",
    "DashboardRenderer",
    "DataSource",
    "DataSourceClient",
    "DataSourceTestResult",
    "Panel",
    "PanelResult",
    "UserStore",
    "check_namespace",
    "create_dashboard_app",
    "load_provisioning",
]
