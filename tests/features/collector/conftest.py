"""BDD step definitions for collector scraping features."""

import time
from collections.abc import Iterator
from pathlib import Path

import pytest
from pytest_bdd import given, parsers, then, when
from tests.features.collector.steps_helpers import (
    SERVING,
    CollectorScenarioContext,
    read_series,
    scrape_cycle,
    settle,
)

REPORT_SERIES = [
    "scrape_duration_seconds",
    "scrape_failures_total",
    "scrape_samples_scraped",
    "up",
]


@pytest.fixture
def ctx(tmp_path: Path) -> Iterator[CollectorScenarioContext]:
    """Fresh scenario context; stops the collector afterwards."""
    context = CollectorScenarioContext(config_path=tmp_path / "prometheus.yml")
    yield context
    if context.manager is not None:
        context.run(context.manager.stop())
    context.loop.close()


# === Configuration Steps ===
@given(parsers.parse('a collector configured to scrape job "app" at "{address}"'))
def step_collector(ctx: CollectorScenarioContext, address: str) -> None:
    ctx.addresses = [address]
    ctx.write_config()
    ctx.build_manager()


@given(parsers.parse('the configuration also lists "{address}"'))
def step_second_target(ctx: CollectorScenarioContext, address: str) -> None:
    ctx.addresses.append(address)
    ctx.write_config()


# === Target Behaviour Steps ===
@given(parsers.parse("the target answers with status {code:d}"))
def step_target_status(ctx: CollectorScenarioContext, code: int) -> None:
    ctx.target.status_code = code
    ctx.target.body = "error\n"


@given(parsers.parse('the target exposes "{line}"'))
def step_target_exposes(ctx: CollectorScenarioContext, line: str) -> None:
    ctx.target.body = f"{line}\n"


@given("the target starts serving its metrics")
@when("the target starts serving its metrics")
def step_target_serving(ctx: CollectorScenarioContext) -> None:
    ctx.target.status_code = 200
    ctx.target.body = SERVING


# === Collector Steps ===
@when("the collector starts")
def step_collector_starts(ctx: CollectorScenarioContext) -> None:
    assert ctx.manager is not None
    ctx.run(ctx.manager.start())
    ctx.run(settle(ctx.manager))


@when("a scrape cycle runs")
def step_scrape_cycle(ctx: CollectorScenarioContext) -> None:
    assert ctx.manager is not None
    ctx.run(scrape_cycle(ctx.manager))


@when(parsers.parse("{n:d} scrape cycles run"))
def step_n_scrape_cycles(ctx: CollectorScenarioContext, n: int) -> None:
    assert ctx.manager is not None
    for _ in range(n):
        ctx.run(scrape_cycle(ctx.manager))


@when(parsers.parse('"{address}" is removed and the configuration is reloaded'))
def step_remove_and_reload(ctx: CollectorScenarioContext, address: str) -> None:
    assert ctx.manager is not None
    ctx.addresses.remove(address)
    ctx.write_config()
    ctx.run(ctx.manager.reload())


# === Assertion Steps ===
@then(parsers.parse('"{name}" for instance "{instance}" should be {value:g}'))
def step_latest_value(
    ctx: CollectorScenarioContext, name: str, instance: str, value: float
) -> None:
    samples = ctx.run(read_series(ctx.storage, name, instance))
    assert samples, f"no {name} samples for {instance}"
    assert samples[-1].value == value


@then(
    parsers.re(
        r'"(?P<name>\w+)" for instance "(?P<instance>[^"]+)" '
        r"should have (?P<count>\d+) samples?"
    ),
    converters={"count": int},
)
def step_sample_count(
    ctx: CollectorScenarioContext, name: str, instance: str, count: int
) -> None:
    assert len(ctx.run(read_series(ctx.storage, name, instance))) == count


@then("no scraped samples should be stored")
def step_no_scraped_samples(ctx: CollectorScenarioContext) -> None:
    assert ctx.run(ctx.storage.names()) == sorted(REPORT_SERIES)


@then(parsers.parse('querying "{query}" should return "{value}"'))
def step_instant_query(ctx: CollectorScenarioContext, query: str, value: str) -> None:
    async def _query() -> dict:
        async with ctx.collector_client() as client:
            response = await client.get("/api/v1/query", params={"query": query})
        return response.json()

    body = ctx.run(_query())
    assert body["status"] == "success"
    (result,) = body["data"]["result"]
    assert result["value"][1] == value


@then(
    parsers.parse(
        'querying "{query}" over the last minute should include instance "{instance}"'
    )
)
def step_range_query(ctx: CollectorScenarioContext, query: str, instance: str) -> None:
    async def _query() -> dict:
        now = int(time.time())
        async with ctx.collector_client() as client:
            response = await client.get(
                "/api/v1/query_range",
                params={"query": query, "start": now - 60, "end": now + 60, "step": 15},
            )
        return response.json()

    body = ctx.run(_query())
    instances = {r["metric"]["instance"] for r in body["data"]["result"]}
    assert instance in instances
