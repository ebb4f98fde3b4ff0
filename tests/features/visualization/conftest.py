"""BDD step definitions for dashboard features."""

import time

import pytest
from pytest_bdd import given, parsers, then, when
from tests.features.visualization.steps_helpers import (
    DashboardScenarioContext,
    run_async,
    scraped_samples,
)


@pytest.fixture
def ctx() -> DashboardScenarioContext:
    """Fresh scenario context for each test."""
    return DashboardScenarioContext()


# === Background Steps ===
@given(parsers.parse('a collector holding a scrape of job "{job}"'))
def step_collector(ctx: DashboardScenarioContext, job: str) -> None:
    run_async(ctx.metrics.write_batch(scraped_samples(job, f"{job}:8000")))


@given("a dashboard service on the shared network")
def step_dashboard_service(ctx: DashboardScenarioContext) -> None:
    ctx.build_app()


# === Data Source Steps ===
@given(parsers.parse('data source "{name}" pointing at "{url}"'))
def step_datasource(ctx: DashboardScenarioContext, name: str, url: str) -> None:
    response = ctx.request("POST", "/api/datasources", json={"name": name, "url": url})
    assert response.status_code == 200, response.text


@when(parsers.parse('data source "{name}" pointing at "{url}" is added'))
def step_add_datasource(ctx: DashboardScenarioContext, name: str, url: str) -> None:
    ctx.request("POST", "/api/datasources", json={"name": name, "url": url})


# === Dashboard Steps ===
@given(parsers.parse('a dashboard "{uid}" with a panel "{title}" querying "{expr}"'))
def step_dashboard(
    ctx: DashboardScenarioContext, uid: str, title: str, expr: str
) -> None:
    panel = {"title": title, "datasource": "Prometheus", "expr": expr}
    response = ctx.request(
        "POST", "/api/dashboards", json={"uid": uid, "panels": [panel]}
    )
    assert response.status_code == 200, response.text


@when(
    parsers.parse('the dashboard "{uid}" is rendered over the last {minutes:d} minutes')
)
def step_render(ctx: DashboardScenarioContext, uid: str, minutes: int) -> None:
    now = int(time.time())
    response = ctx.request(
        "GET",
        f"/api/dashboards/{uid}/render",
        params={"start": now - minutes * 60, "end": now + 60, "step": "15s"},
    )
    assert response.status_code == 200, response.text
    ctx.rendered = response.json()


@then(parsers.parse('panel "{title}" should show a non-empty series'))
def step_panel_series(ctx: DashboardScenarioContext, title: str) -> None:
    (panel,) = [p for p in ctx.rendered["panels"] if p["title"] == title]
    assert panel["error"] is None
    assert panel["series"]
    assert all(series["points"] for series in panel["series"])


# === Password Steps ===
@when(parsers.parse('the admin password is changed from "{old}" to "{new}"'))
def step_change_password(ctx: DashboardScenarioContext, old: str, new: str) -> None:
    response = ctx.request(
        "POST",
        "/api/user/password",
        json={"oldPassword": old, "newPassword": new},
        auth=("admin", old),
    )
    assert response.status_code == 200, response.text


@then(parsers.parse('logging in as "{user}" with "{password}" should fail'))
def step_login_fails(ctx: DashboardScenarioContext, user: str, password: str) -> None:
    assert ctx.request("GET", "/api/user", auth=(user, password)).status_code == 401


@then(parsers.parse('logging in as "{user}" with "{password}" should succeed'))
def step_login_succeeds(
    ctx: DashboardScenarioContext, user: str, password: str
) -> None:
    response = ctx.request("GET", "/api/user", auth=(user, password))
    assert response.status_code == 200
    assert response.json()["mustChangePassword"] is False


# === Response Steps ===
@then(parsers.parse("the request should fail with status {code:d}"))
def step_status(ctx: DashboardScenarioContext, code: int) -> None:
    assert ctx.response is not None
    assert ctx.response.status_code == code


@then(parsers.parse('the error should mention "{text}"'))
def step_error_mentions(ctx: DashboardScenarioContext, text: str) -> None:
    assert ctx.response is not None
    assert text in ctx.response.json()["detail"]
