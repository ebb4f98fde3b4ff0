"""Command line entry point for scrapestack."""

import os
from pathlib import Path

import click
import uvicorn
from fastapi import FastAPI

from scrapestack.adapters.logging import (
    ROOT_LOGGER,
    StorageLogHandler,
    configure_logging,
    get_logger,
)
from scrapestack.adapters.storage import (
    InMemoryMetricsStorage,
    RingBufferLogStorage,
    SQLiteMetricsStorage,
    SQLiteStateStorage,
)
from scrapestack.app import create_app
from scrapestack.collector import ScrapeManager, create_collector_app
from scrapestack.core.config import CollectorConfig, format_duration, parse_duration
from scrapestack.core.errors import ConfigError, TopologyError
from scrapestack.core.models import RetentionPolicy
from scrapestack.core.ports import MetricsStoragePort
from scrapestack.topology import Topology
from scrapestack.visualization import create_dashboard_app, load_provisioning

logger = get_logger(__name__)

LOG_BUFFER_SIZE = 1000


def build_collector_app(
    config_path: str, storage: str = "memory", retention: str = "15d"
) -> FastAPI:
    """Wire the collector: sample store, manager, log capture and API.

    Args:
        config_path: Collector configuration file.
        storage: ``memory`` or a SQLite database path.
        retention: How long samples are kept, as a duration.
    """
    try:
        max_age = parse_duration(retention, "retention")
        policy = RetentionPolicy(max_age_seconds=max_age)
    except ConfigError as e:
        raise click.BadParameter(str(e), param_hint="--retention") from e
    store: MetricsStoragePort
    if storage == "memory":
        store = InMemoryMetricsStorage()
    else:
        store = SQLiteMetricsStorage(storage)
    logger.info("Storing samples in %s", storage)
    log_storage = RingBufferLogStorage(max_size=LOG_BUFFER_SIZE)
    get_logger(ROOT_LOGGER).addHandler(StorageLogHandler(log_storage))
    manager = ScrapeManager(store, config_path=config_path, retention=policy)
    return create_collector_app(manager, log_storage=log_storage)


def build_dashboard_app(data_dir: str, provisioning: str | None = None) -> FastAPI:
    """Wire the dashboard service on a SQLite file under ``data_dir``."""
    directory = Path(data_dir)
    directory.mkdir(parents=True, exist_ok=True)
    provisioned = None
    if provisioning:
        try:
            provisioned = load_provisioning(Path(provisioning).read_text("utf-8"))
        except OSError as e:
            raise click.BadParameter(str(e), param_hint="--provisioning") from e
        except ConfigError as e:
            raise click.ClickException(f"{provisioning}: {e}") from e
    state = SQLiteStateStorage(str(directory / "scrapestack.db"))
    return create_dashboard_app(state, provisioned=provisioned)


@click.group()
@click.version_option(package_name="scrapestack")
@click.option(
    "--log-level",
    default="INFO",
    envvar="SCRAPESTACK_LOG_LEVEL",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level",
)
def cli(log_level: str) -> None:
    """scrapestack - pull-based metrics pipeline."""
    configure_logging(log_level)


@cli.command("app")
@click.option("--host", default="127.0.0.1", envvar="SCRAPESTACK_APP_HOST")
@click.option("--port", default=8000, type=int, envvar="SCRAPESTACK_APP_PORT")
def app_command(host: str, port: int) -> None:
    """Run the example instrumented application."""
    click.echo(f"Serving the example app on {host}:{port}, metrics at /metrics/")
    uvicorn.run(create_app(), host=host, port=port)


@cli.command("collector")
@click.option(
    "--config",
    "config_path",
    default="prometheus.yml",
    envvar="SCRAPESTACK_CONFIG",
    type=click.Path(dir_okay=False),
    help="Collector configuration file",
)
@click.option(
    "--storage",
    default="memory",
    envvar="SCRAPESTACK_STORAGE",
    help="'memory' or a SQLite database path",
)
@click.option("--retention", default="15d", envvar="SCRAPESTACK_RETENTION")
@click.option("--host", default="127.0.0.1", envvar="SCRAPESTACK_COLLECTOR_HOST")
@click.option("--port", default=9090, type=int, envvar="SCRAPESTACK_COLLECTOR_PORT")
def collector_command(
    config_path: str, storage: str, retention: str, host: str, port: int
) -> None:
    """Run the collector."""
    try:
        CollectorConfig.load(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    app = build_collector_app(config_path, storage, retention)
    click.echo(f"Collector listening on {host}:{port}")
    uvicorn.run(app, host=host, port=port)


@cli.command("dashboards")
@click.option("--data-dir", default="data", envvar="SCRAPESTACK_DATA_DIR")
@click.option(
    "--provisioning",
    default=None,
    envvar="SCRAPESTACK_PROVISIONING",
    help="Data source provisioning file",
)
@click.option("--host", default="127.0.0.1", envvar="SCRAPESTACK_DASHBOARDS_HOST")
@click.option("--port", default=3000, type=int, envvar="SCRAPESTACK_DASHBOARDS_PORT")
def dashboards_command(
    data_dir: str, provisioning: str | None, host: str, port: int
) -> None:
    """Run the dashboard service."""
    app = build_dashboard_app(data_dir, provisioning)
    click.echo(f"Dashboards listening on {host}:{port} (default login admin/admin)")
    uvicorn.run(app, host=host, port=port)


@cli.group()
def config() -> None:
    """Collector configuration commands."""


@config.command("check")
@click.argument("path", type=click.Path(dir_okay=False))
def config_check(path: str) -> None:
    """Validate a collector configuration and list its targets."""
    try:
        parsed = CollectorConfig.load(path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    targets = parsed.targets()
    click.echo(f"{path}: {len(targets)} target(s)")
    for target in targets:
        click.echo(
            f"  {target.job_name:<16} {target.url:<40} "
            f"every {format_duration(target.interval)}"
        )


@cli.group()
def topology() -> None:
    """Process topology commands."""


@topology.command("render")
@click.option("--out", "out_dir", required=True, type=click.Path(file_okay=False))
@click.option("--app-port", default=8000, type=int, show_default=True)
@click.option(
    "--project-dir",
    default=".",
    show_default=True,
    type=click.Path(file_okay=False, exists=True),
    help="Directory holding the Dockerfile the app image is built from.",
)
def topology_render(out_dir: str, app_port: int, project_dir: str) -> None:
    """Write docker-compose, collector and data source files."""
    # Compose resolves the build context against the compose file
    context = os.path.relpath(Path(project_dir).resolve(), Path(out_dir).resolve())
    try:
        written = Topology.default(app_port=app_port, build_context=context).write(
            out_dir
        )
    except TopologyError as e:
        raise click.ClickException("\n".join(e.problems)) from e
    for path in written:
        click.echo(f"wrote {path}")


@topology.command("check")
@click.argument("directory", type=click.Path(file_okay=False, exists=True))
def topology_check(directory: str) -> None:
    """Validate previously rendered topology files."""
    try:
        Topology.load(directory).validate(directory)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    except TopologyError as e:
        raise click.ClickException(
            "topology has problems:\n" + "\n".join(f"  - {p}" for p in e.problems)
        ) from e
    click.echo(f"{directory}: topology is consistent")


if __name__ == "__main__":
    cli()
