"""RouteApp wiring: transports, lifecycle and configuration."""

import asyncio
import logging

import pytest

from routekit import Request, RouteApp, Settings, inject
from routekit.exceptions import (
    ConfigurationError,
    DuplicateRouteError,
    RegistryFrozenError,
    RouteDefinitionError,
)


class RecordingTransport:
    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], object] = {}
        self.port: int | None = None

    def add_route(self, method, path, callback) -> None:
        self.routes[(method, path)] = callback

    async def listen(self, port: int) -> str:
        self.port = port
        return f"http://127.0.0.1:{port}"


def test_bind_registers_every_route_and_freezes(app) -> None:
    app.get("/users/{id}")(lambda ctx: {"id": ctx.params["id"]})
    transport = RecordingTransport()
    app.bind(transport)

    assert ("GET", "/users/{id}") in transport.routes
    assert ("GET", "/openapi.json") in transport.routes
    assert app.registry.frozen
    with pytest.raises(RegistryFrozenError):
        app.post("/late")(lambda ctx: {})

    callback = transport.routes[("GET", "/users/{id}")]
    response = asyncio.run(callback(Request("GET", "/users/7")))
    assert response.status_code == 200
    assert response.json() == {"id": "7"}


def test_listen_runs_startup_hooks(app) -> None:
    started: list[str] = []
    app.on_event("startup")(lambda: started.append("up"))
    transport = RecordingTransport()
    address = asyncio.run(app.listen(8080, transport))
    assert address == "http://127.0.0.1:8080"
    assert transport.port == 8080
    assert started == ["up"]


@pytest.mark.parametrize("port", [-1, 70000, "80"])
def test_listen_rejects_invalid_port(app, port) -> None:
    with pytest.raises(ConfigurationError):
        asyncio.run(app.listen(port, RecordingTransport()))


def test_listen_requires_transport(app) -> None:
    with pytest.raises(ConfigurationError):
        asyncio.run(app.listen(8080))


def test_shutdown_closes_singletons(app) -> None:
    closed: list[object] = []
    pool = inject(object, lifetime="singleton", cleanup=closed.append)
    app.get("/pool", dependencies={"pool": pool})(lambda ctx: {})

    async def run() -> None:
        await app.process(Request("GET", "/pool"))
        await app.shutdown()

    asyncio.run(run())
    assert len(closed) == 1
    assert app.injector.singleton_count == 0


def test_unknown_lifecycle_event(app) -> None:
    with pytest.raises(ConfigurationError):
        app.on_event("reload")


def test_duplicate_declaration_rejected(app) -> None:
    app.get("/users/{id}")(lambda ctx: {})
    with pytest.raises(DuplicateRouteError):
        app.get("/users/{user_id}")(lambda ctx: {})


def test_handler_docstring_becomes_description(app) -> None:
    @app.get("/health")
    def health(ctx):
        """Report service health."""
        return {"ok": True}

    op = app.openapi_schema()["paths"]["/health"]["get"]
    assert op["description"] == "Report service health."


def test_request_is_logged(app, caplog) -> None:
    app.get("/ping")(lambda ctx: {})
    with caplog.at_level(logging.INFO, logger="routekit.request"):
        asyncio.run(app.process(Request("GET", "/ping", headers={"x-request-id": "r-1"})))
    messages = [r.getMessage() for r in caplog.records if r.name == "routekit.request"]
    assert any("GET /ping -> 200" in m and "r-1" in m for m in messages)


def test_settings_validated_on_construction() -> None:
    with pytest.raises(ConfigurationError):
        RouteApp(settings=Settings(environment="prod", debug=True))


def test_settings_drive_supervisor(settings) -> None:
    settings.task_warning_ms = 250
    settings.task_timeout = None
    app = RouteApp(settings=settings)
    assert app.supervisor.warning_threshold == 0.25
    assert app.supervisor.default_timeout is None


def test_routes_declared_as_a_map(settings) -> None:
    from pydantic import BaseModel

    class UserPath(BaseModel):
        id: int

    app = RouteApp(
        settings=settings,
        routes={
            "/users/{id}": {
                "get": {"handler": lambda ctx: {"id": ctx.params.id}, "params": UserPath},
                "delete": {"handler": lambda ctx: None, "status": 204, "tags": ["users"]},
                "put": None,
            },
            "/health": {"GET": {"handler": lambda ctx: {"ok": True}}},
        },
    )

    assert app.registry.get("GET", "/users/{id}").params is UserPath
    assert app.registry.get("DELETE", "/users/{id}").status_code == 204
    assert app.registry.get("PUT", "/users/{id}") is None
    assert [r.id for r in app.registry.get_by_tag("users")] == ["DELETE /users/{id}"]

    async def run():
        return await app.handle(Request("GET", "/users/5"))

    assert asyncio.run(run()).json() == {"id": 5}


@pytest.mark.parametrize(
    "routes",
    [
        {"": {"get": {"handler": lambda ctx: {}}}},
        {"/x": None},
        {"/x": {"get": {"summary": "no handler"}}},
        {"/x": {"brew": {"handler": lambda ctx: {}}}},
    ],
)
def test_invalid_route_map_rejected(settings, routes) -> None:
    with pytest.raises(RouteDefinitionError):
        RouteApp(settings=settings, routes=routes)


def test_reserved_routes_registered_at_construction(app) -> None:
    assert app.registry.get("GET", "/openapi.json") is not None
    assert app.registry.get("GET", "/openapi/routes/{operation_id}") is not None
    app.get("/ping")(lambda ctx: {})
    before = list(app.registry.list())

    asyncio.run(app.process(Request("GET", "/ping")))
    assert list(app.registry.list()) == before


def test_declared_route_replaces_reserved_one(app) -> None:
    app.get("/openapi/routes/{name}")(lambda ctx: {"name": ctx.params["name"]})
    assert app.registry.get("GET", "/openapi/routes/{operation_id}") is None
    response = asyncio.run(app.handle(Request("GET", "/openapi/routes/x")))
    assert response.json() == {"name": "x"}


def test_reserved_route_kept_when_replacement_fails(app) -> None:
    app.get("/a", operation_id="dup")(lambda ctx: {})
    with pytest.raises(DuplicateRouteError):
        app.get("/openapi/routes/{name}", operation_id="dup")(lambda ctx: {})
    assert app.registry.get("GET", "/openapi/routes/{operation_id}") is not None
    assert app.registry.get("GET", "/openapi/routes/{name}") is None
