"""Collector HTTP API.

Serves the query endpoints the dashboard service reads from, the targets
page data, a reload hook, the collector's own metrics and its logs.
"""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from scrapestack.adapters.frameworks.query_params import (
    _parse_level_param,
    _parse_since_param,
    parse_step,
    parse_time,
)
from scrapestack.adapters.logging import get_logger
from scrapestack.collector.manager import ScrapeManager
from scrapestack.core.encoding.ndjson import encode_logs
from scrapestack.core.encoding.prometheus import (
    CONTENT_TYPE,
    encode_current,
    encode_families,
    format_value,
)
from scrapestack.core.errors import ConfigError, QueryError
from scrapestack.core.models import MetricSample
from scrapestack.core.ports import LogStoragePort
from scrapestack.core.query import QueryEngine, Series, parse_selector

logger = get_logger(__name__)


def _vector(series: list[Series]) -> list[dict[str, Any]]:
    return [
        {"metric": s.labels, "value": [s.points[0][0], format_value(s.points[0][1])]}
        for s in series
    ]


def _matrix(series: list[Series]) -> list[dict[str, Any]]:
    return [
        {"metric": s.labels, "values": [[t, format_value(v)] for t, v in s.points]}
        for s in series
    ]


def _success(data: Any) -> JSONResponse:
    return JSONResponse({"status": "success", "data": data})


def _error(status_code: int, error_type: str, message: str) -> JSONResponse:
    return JSONResponse(
        {"status": "error", "errorType": error_type, "error": message},
        status_code=status_code,
    )


async def _params(request: Request) -> dict[str, str]:
    """Merge query string and form body parameters (POST is allowed)."""
    params = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({k: str(v) for k, v in form.items()})
    return params


def create_collector_app(
    manager: ScrapeManager,
    engine: QueryEngine | None = None,
    log_storage: LogStoragePort | None = None,
    manage_lifecycle: bool = True,
) -> FastAPI:
    """Create the collector FastAPI application.

    Args:
        manager: Scrape manager owning the loops and the sample store.
        engine: Query engine (defaults to one over the manager's storage).
        log_storage: Storage serving /logs; the endpoint is empty without it.
        manage_lifecycle: Start and stop the manager with the app.
    """
    query_engine = engine or QueryEngine(manager.storage)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
        if manage_lifecycle:
            await manager.start()
        yield
        if manage_lifecycle:
            await manager.stop()

    app = FastAPI(title="scrapestack collector", lifespan=lifespan)

    @app.exception_handler(QueryError)
    async def query_error_handler(_request: Request, exc: QueryError) -> JSONResponse:
        return _error(400, "bad_data", str(exc))

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "internal", "internal server error")

    @app.api_route("/api/v1/query", methods=["GET", "POST"])
    async def query(request: Request) -> JSONResponse:
        """Instant query."""
        params = await _params(request)
        expr = params.get("query")
        if not expr:
            raise QueryError("missing query parameter")
        at = parse_time(params.get("time"), time.time())
        series = await query_engine.instant(expr, at)
        return _success({"resultType": "vector", "result": _vector(series)})

    @app.api_route("/api/v1/query_range", methods=["GET", "POST"])
    async def query_range(request: Request) -> JSONResponse:
        """Range query."""
        params = await _params(request)
        expr = params.get("query")
        if not expr:
            raise QueryError("missing query parameter")
        if "start" not in params or "end" not in params:
            raise QueryError("start and end are required")
        start = parse_time(params["start"], 0.0, "start")
        end = parse_time(params["end"], 0.0, "end")
        step = parse_step(params.get("step"))
        series = await query_engine.range(expr, start, end, step)
        return _success({"resultType": "matrix", "result": _matrix(series)})

    @app.get("/api/v1/targets")
    async def targets() -> JSONResponse:
        return _success(
            {
                "activeTargets": [h.as_dict() for h in manager.targets()],
                "droppedTargets": [],
            }
        )

    @app.get("/api/v1/label/__name__/values")
    async def metric_names() -> JSONResponse:
        return _success(await manager.storage.names())

    @app.get("/api/v1/metadata")
    async def metadata() -> JSONResponse:
        return _success(
            {
                name: [{"type": mtype, "help": help_text}]
                for name, (mtype, help_text) in sorted(manager.metadata().items())
            }
        )

    @app.get("/api/v1/status/config")
    async def status_config() -> JSONResponse:
        return _success({"yaml": manager.config.dump()})

    @app.post("/-/reload")
    async def reload() -> Response:
        try:
            await manager.reload()
        except ConfigError as e:
            return PlainTextResponse(
                f"failed to reload config: {e}", status_code=500
            )
        return PlainTextResponse("")

    @app.get("/-/healthy")
    async def healthy() -> PlainTextResponse:
        return PlainTextResponse("Collector is Healthy.\n")

    @app.get("/-/ready")
    async def ready() -> PlainTextResponse:
        if not manager.started:
            return PlainTextResponse(
                "Service Unavailable", status_code=503
            )
        return PlainTextResponse("Collector is Ready.\n")

    @app.get("/metrics")
    async def own_metrics() -> Response:
        """The collector's own metrics in exposition format."""
        return Response(
            content=encode_families(manager.registry.collect()), media_type=CONTENT_TYPE
        )

    @app.get("/federate")
    async def federate(request: Request) -> Response:
        """Latest stored sample of every series matching ``match[]``."""
        selectors = [parse_selector(m) for m in request.query_params.getlist("match[]")]
        if not selectors:
            raise QueryError("at least one match[] selector is required")
        now = time.time()
        start = now - query_engine.lookback

        async def matching() -> AsyncGenerator[MetricSample]:
            for selector in selectors:
                async for sample in manager.storage.select(selector.name, start, now):
                    if selector.matches(sample):
                        yield sample

        body = await encode_current(matching())
        return Response(content=body, media_type=CONTENT_TYPE)

    @app.get("/logs")
    async def logs(request: Request) -> Response:
        """The collector's own log records as NDJSON."""
        params = {k: request.query_params.getlist(k) for k in request.query_params}
        since = _parse_since_param(params)
        level = _parse_level_param(params)
        body = ""
        if log_storage is not None:
            body = await encode_logs(log_storage.read(since=since, level=level))
        return Response(content=body, media_type="application/x-ndjson")

    return app
