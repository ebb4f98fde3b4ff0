"""Dashboard service HTTP API.

Every route except /api/health requires HTTP Basic credentials. While the
admin account still has the default password, responses carry
``X-Must-Change-Password: true``.
"""

import time
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Annotated, Any

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from scrapestack.adapters.frameworks.query_params import parse_step, parse_time
from scrapestack.adapters.logging import get_logger
from scrapestack.core.errors import AuthenticationError, ConfigError, QueryError
from scrapestack.core.ports import StateStoragePort
from scrapestack.visualization.auth import User, UserStore
from scrapestack.visualization.dashboards import Dashboard, DashboardRenderer
from scrapestack.visualization.datasource import (
    DataSource,
    DataSourceClient,
    check_namespace,
)

logger = get_logger(__name__)

MUST_CHANGE_HEADER = "X-Must-Change-Password"
DEFAULT_RANGE_SECONDS = 3600.0
DEFAULT_STEP = "15s"

_DATASOURCE = "datasource"
_DASHBOARD = "dashboard"

_basic = HTTPBasic(auto_error=False, realm="scrapestack")


def _not_found(name: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"data source {name!r} not found")


def create_dashboard_app(
    state: StateStoragePort,
    http_client: httpx.AsyncClient | None = None,
    service_hosts: set[str] | None = None,
    provisioned: list[DataSource] | None = None,
) -> FastAPI:
    """Create the dashboard FastAPI application.

    Args:
        state: Document store for users, data sources and dashboards.
        http_client: Client used to reach data sources. One is created
            (and closed on shutdown) when omitted.
        service_hosts: Hosts resolvable on the shared network; data sources
            pointing elsewhere are rejected when given.
        provisioned: Data sources written to the store on startup.
    """
    users = UserStore(state)
    owned_client: list[httpx.AsyncClient] = []

    def client() -> httpx.AsyncClient:
        if http_client is not None:
            return http_client
        if not owned_client:
            owned_client.append(httpx.AsyncClient())
        return owned_client[0]

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
        await users.ensure_default()
        for source in provisioned or []:
            await state.put(_DATASOURCE, source.name, source.to_dict())
            logger.info("Provisioned data source %s -> %s", source.name, source.url)
        yield
        for c in owned_client:
            await c.aclose()
        owned_client.clear()

    app = FastAPI(title="scrapestack dashboards", lifespan=lifespan)

    async def current_user(
        response: Response,
        credentials: Annotated[HTTPBasicCredentials | None, Depends(_basic)],
    ) -> User:
        if credentials is None:
            raise HTTPException(
                status_code=401,
                detail="Not authenticated",
                headers={"WWW-Authenticate": "Basic"},
            )
        try:
            user = await users.authenticate(credentials.username, credentials.password)
        except AuthenticationError as e:
            raise HTTPException(
                status_code=401, detail=str(e), headers={"WWW-Authenticate": "Basic"}
            ) from e
        if user.must_change_password:
            response.headers[MUST_CHANGE_HEADER] = "true"
        return user

    CurrentUser = Annotated[User, Depends(current_user)]

    async def datasources() -> dict[str, DataSource]:
        return {
            doc["name"]: DataSource.from_dict(doc)
            for doc in await state.list(_DATASOURCE)
        }

    async def load_dashboard(uid: str) -> Dashboard:
        doc = await state.get(_DASHBOARD, uid)
        if doc is None:
            raise HTTPException(status_code=404, detail=f"dashboard {uid!r} not found")
        return Dashboard.from_dict(doc)

    def client_factory() -> Callable[[DataSource], DataSourceClient]:
        http = client()
        return lambda source: DataSourceClient(source, http)

    @app.exception_handler(ConfigError)
    async def config_error_handler(_request: Request, exc: ConfigError) -> JSONResponse:
        return JSONResponse({"message": str(exc), "field": exc.field}, status_code=400)

    @app.exception_handler(QueryError)
    async def query_error_handler(_request: Request, exc: QueryError) -> JSONResponse:
        return JSONResponse({"message": str(exc)}, status_code=400)

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse({"message": "internal server error"}, status_code=500)

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"database": "ok"}

    @app.get("/api/user")
    async def whoami(user: CurrentUser) -> dict[str, Any]:
        return {"login": user.username, "mustChangePassword": user.must_change_password}

    @app.post("/api/user/password")
    async def change_password(
        body: dict[str, str], user: CurrentUser, response: Response
    ) -> dict[str, str]:
        try:
            await users.change_password(
                user.username, body.get("oldPassword", ""), body.get("newPassword", "")
            )
        except AuthenticationError as e:
            raise HTTPException(status_code=401, detail=str(e)) from e
        if MUST_CHANGE_HEADER in response.headers:
            del response.headers[MUST_CHANGE_HEADER]
        return {"message": "User password changed"}

    @app.get("/api/datasources")
    async def list_datasources(_user: CurrentUser) -> list[dict[str, Any]]:
        return [s.to_dict() for s in (await datasources()).values()]

    @app.post("/api/datasources")
    async def create_datasource(
        body: dict[str, Any], _user: CurrentUser
    ) -> dict[str, Any]:
        source = DataSource.from_dict(body)
        problems = check_namespace(source.url, service_hosts)
        if problems:
            raise HTTPException(status_code=400, detail="; ".join(problems))
        if source.is_default:
            for other in (await datasources()).values():
                if other.is_default and other.name != source.name:
                    await state.put(
                        _DATASOURCE,
                        other.name,
                        {**other.to_dict(), "is_default": False},
                    )
        await state.put(_DATASOURCE, source.name, source.to_dict())
        logger.info("Saved data source %s -> %s", source.name, source.url)
        # Stored even when the test below fails
        result = await DataSourceClient(source, client()).test()
        if result.ok:
            status, message = "OK", "Datasource added"
        else:
            logger.warning(
                "Data source %s failed its test: %s", source.name, result.message
            )
            status = "error"
            message = f"Datasource added, but testing it failed: {result.message}"
        return {"status": status, "message": message, "datasource": source.to_dict()}

    @app.delete("/api/datasources/{name}")
    async def delete_datasource(name: str, _user: CurrentUser) -> dict[str, str]:
        if not await state.delete(_DATASOURCE, name):
            raise _not_found(name)
        return {"message": "Data source deleted"}

    @app.post("/api/datasources/{name}/test")
    async def test_datasource(name: str, _user: CurrentUser) -> dict[str, str]:
        source = (await datasources()).get(name)
        if source is None:
            raise _not_found(name)
        result = await DataSourceClient(source, client()).test()
        return {"status": "OK" if result.ok else "error", "message": result.message}

    @app.get("/api/dashboards")
    async def list_dashboards(_user: CurrentUser) -> list[dict[str, str]]:
        return [
            {"uid": doc["uid"], "title": doc.get("title", doc["uid"])}
            for doc in await state.list(_DASHBOARD)
        ]

    @app.post("/api/dashboards")
    async def save_dashboard(
        body: dict[str, Any], _user: CurrentUser
    ) -> dict[str, Any]:
        dashboard = Dashboard.from_dict(body)
        dashboard.validate(await datasources())
        await state.put(_DASHBOARD, dashboard.uid, dashboard.to_dict())
        return {"status": "success", "uid": dashboard.uid}

    @app.get("/api/dashboards/{uid}")
    async def get_dashboard(uid: str, _user: CurrentUser) -> dict[str, Any]:
        return (await load_dashboard(uid)).to_dict()

    @app.get("/api/dashboards/{uid}/render")
    async def render_dashboard(
        uid: str,
        _user: CurrentUser,
        start: str | None = None,
        end: str | None = None,
        step: str | None = None,
    ) -> dict[str, Any]:
        dashboard = await load_dashboard(uid)
        end_ts = parse_time(end, time.time(), "end")
        start_ts = parse_time(start, end_ts - DEFAULT_RANGE_SECONDS, "start")
        step_s = parse_step(step or DEFAULT_STEP)
        renderer = DashboardRenderer(await datasources(), client_factory())
        panels = await renderer.render(dashboard, start_ts, end_ts, step_s)
        return {
            "uid": dashboard.uid,
            "title": dashboard.title,
            "panels": [p.to_dict() for p in panels],
        }

    return app
