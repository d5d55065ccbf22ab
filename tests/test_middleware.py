"""Path- and method-scoped middleware."""

import pytest

from routekit import MiddlewareRegistry, Response, inject
from routekit.exceptions import RouteDefinitionError, UnauthorizedException
from routekit.middleware import matches_path


@pytest.mark.parametrize(
    "pattern, path, expected",
    [
        (None, "/anything", True),
        ("/api", "/api", True),
        ("/api", "/api/users", True),
        ("/api", "/apix", False),
        ("/api*", "/apix", True),
        ("/admin/", "/admin/users", True),
        ("/admin", "/", False),
    ],
)
def test_matches_path(pattern, path, expected) -> None:
    assert matches_path(pattern, path) is expected


def test_for_request_filters_and_orders() -> None:
    registry = MiddlewareRegistry()

    def late(ctx):
        return None

    def early(ctx):
        return None

    def posts_only(ctx):
        return None

    def other_tree(ctx):
        return None

    registry.add(late, priority=200)
    registry.add(early, path="/api", priority=10)
    registry.add(posts_only, path="/api", method="post")
    registry.add(other_tree, path="/admin")

    assert registry.for_request("/api/users", "GET") == [early, late]
    assert registry.for_request("/api/users", "POST") == [early, posts_only, late]
    assert registry.for_request("/health", "GET") == [late]


def test_remove_and_lookup() -> None:
    registry = MiddlewareRegistry()
    first = registry.add(lambda ctx: None)
    second = registry.add(lambda ctx: None, path="/x")
    assert first != second
    assert registry.get(second).path == "/x"
    assert registry.remove(first) is True
    assert registry.remove(first) is False
    assert len(registry) == 1
    registry.clear()
    assert registry.entries() == []


@pytest.mark.parametrize(
    "kwargs",
    [
        {"priority": -1},
        {"priority": 1.5},
        {"path": "api"},
        {"method": "BREW"},
    ],
)
def test_invalid_registration_rejected(kwargs) -> None:
    with pytest.raises(RouteDefinitionError):
        MiddlewareRegistry().add(lambda ctx: None, **kwargs)


def test_non_callable_rejected() -> None:
    with pytest.raises(RouteDefinitionError):
        MiddlewareRegistry().add("not a function")


def test_middleware_runs_before_handler_in_priority_order(app, client) -> None:
    calls: list[str] = []

    async def audit(ctx):
        calls.append(f"audit {ctx.method} {ctx.path}")

    def trace(ctx):
        calls.append("trace")

    app.use(audit, path="/users", priority=50)
    app.use(trace, priority=10)

    @app.get("/users/{id}")
    def read_user(ctx):
        calls.append("handler")
        return {"id": ctx.params["id"]}

    assert client.get("/users/3").json() == {"id": "3"}
    assert calls == ["trace", "audit GET /users/3", "handler"]


def test_middleware_sees_resolved_dependencies(app, client) -> None:
    seen: list[object] = []
    app.use(lambda ctx: seen.append(ctx.dependencies["token"]))
    app.get("/me", dependencies={"token": inject(lambda: "abc")})(lambda ctx: {})

    client.get("/me")
    assert seen == ["abc"]


def test_middleware_can_reject_request(app, client) -> None:
    called: list[bool] = []

    def require_key(ctx):
        if ctx.headers.get("x-api-key") != "secret":
            raise UnauthorizedException("Missing API key")

    app.use(require_key, path="/private")
    app.get("/private/data")(lambda ctx: called.append(True) or {"ok": True})
    app.get("/public")(lambda ctx: {"ok": True})

    resp = client.get("/private/data")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Missing API key"
    assert called == []
    assert client.get("/private/data", headers={"x-api-key": "secret"}).json() == {
        "ok": True
    }
    assert client.get("/public").status_code == 200


def test_middleware_response_short_circuits(app, client) -> None:
    app.use(lambda ctx: Response("maintenance", status_code=503), method="DELETE")
    app.delete("/items/{id}")(lambda ctx: {"deleted": True})
    app.get("/items/{id}")(lambda ctx: {"id": ctx.params["id"]})

    resp = client.delete("/items/1")
    assert resp.status_code == 503
    assert resp.text == "maintenance"
    assert client.get("/items/1").json() == {"id": "1"}


def test_failing_middleware_is_a_handler_error(app, client) -> None:
    def broken(ctx):
        raise RuntimeError("middleware bug")

    app.use(broken)
    app.get("/x")(lambda ctx: {})

    resp = client.get("/x")
    assert resp.status_code == 500
    assert "middleware bug" not in resp.text
