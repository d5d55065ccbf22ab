"""TestClient helpers."""

import pytest
from pydantic import BaseModel, Field

from routekit.testclient import BoundaryCase


class Adult(BaseModel):
    name: str
    age: int = Field(ge=18, le=120)


class AdultOut(BaseModel):
    name: str
    age: int


@pytest.fixture
def adults(app):
    @app.post("/adults", body=Adult, response=AdultOut, status_code=201)
    def create_adult(ctx):
        return ctx.body

    return app


def test_age_boundaries(adults, client) -> None:
    responses = client.test_boundaries(
        "POST",
        "/adults",
        [
            BoundaryCase({"name": "a", "age": 17}, success=False, status=422),
            BoundaryCase({"name": "a", "age": 18}, success=True, status=201),
            BoundaryCase({"name": "a", "age": 120}, success=True),
            BoundaryCase({"name": "a", "age": 121}, success=False),
        ],
    )
    assert [r.status_code for r in responses] == [422, 201, 201, 422]


def test_boundaries_accept_mappings(adults, client) -> None:
    client.test_boundaries(
        "POST",
        "/adults",
        [{"input": {"name": "a", "age": 30}, "expected": {"success": True}}],
    )


def test_boundaries_report_unexpected_outcome(adults, client) -> None:
    with pytest.raises(AssertionError) as info:
        client.test_boundaries(
            "POST",
            "/adults",
            [
                BoundaryCase({"name": "a", "age": 17}, success=True),
                BoundaryCase({"name": "a", "age": 50}, success=True, status=200),
            ],
        )
    message = str(info.value)
    assert "expected success" in message
    assert "expected status 200" in message


def test_boundaries_require_cases(adults, client) -> None:
    with pytest.raises(ValueError):
        client.test_boundaries("POST", "/adults", [])


def test_query_boundaries(app, client) -> None:
    class Page(BaseModel):
        size: int = Field(10, ge=1, le=100)

    app.get("/items", query=Page)(lambda ctx: {"size": ctx.query.size})
    client.test_boundaries(
        "GET",
        "/items",
        [
            BoundaryCase({"size": 0}, success=False, source="query"),
            BoundaryCase({"size": 1}, success=True, source="query"),
            BoundaryCase({"size": 100}, success=True, source="query"),
            BoundaryCase({"size": 101}, success=False, source="query"),
        ],
    )


def test_expect_success_and_error(adults, client) -> None:
    resp = client.expect_success("POST", "/adults", json_body={"name": "a", "age": 40})
    assert resp.json() == {"name": "a", "age": 40}
    client.expect_error("POST", "/adults", 422, json_body={"name": "a"})
    with pytest.raises(AssertionError):
        client.expect_success("POST", "/adults", json_body={})
    with pytest.raises(AssertionError):
        client.expect_error("GET", "/missing", 500)


def test_contract(adults, client) -> None:
    value = client.test_contract(
        "POST", "/adults", AdultOut, status=201, json_body={"name": "a", "age": 40}
    )
    assert value == AdultOut(name="a", age=40)

    class Other(BaseModel):
        email: str

    with pytest.raises(AssertionError) as info:
        client.test_contract(
            "POST", "/adults", Other, json_body={"name": "a", "age": 40}
        )
    assert "email" in str(info.value)


def test_client_context_runs_lifecycle(app) -> None:
    from routekit.testclient import TestClient

    events: list[str] = []

    @app.on_event("startup")
    def started() -> None:
        events.append("startup")

    @app.on_event("shutdown")
    async def stopped() -> None:
        events.append("shutdown")

    with TestClient(app) as client:
        assert events == ["startup"]
        assert client.get("/openapi.json").status_code == 200
    assert events == ["startup", "shutdown"]
    with pytest.raises(RuntimeError):
        client.get("/openapi.json")


def test_json_body_and_body_are_exclusive(client) -> None:
    with pytest.raises(ValueError):
        client.post("/x", json_body={}, body=b"{}")
