"""Simple in-memory HTTP client for RouteApp."""

from __future__ import annotations

import asyncio
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Coroutine, Iterable, Mapping, TypeVar
from urllib.parse import urlencode

from .app import RouteApp
from .exceptions import ValidationError
from .http import Request, encode_json

T = TypeVar("T")


@dataclass
class Response:
    """Container for HTTP response data."""

    status_code: int
    text: str
    headers: Mapping[str, str]
    content: bytes
    elapsed: float = 0.0

    def json(self) -> Any:
        """Return the body parsed as JSON."""
        return json.loads(self.text)


@dataclass(frozen=True)
class BoundaryCase:
    """One case of ``TestClient.test_boundaries``.

    ``source`` selects where ``input`` is sent: ``"body"`` (JSON) or
    ``"query"`` (a mapping of query parameters).
    """

    input: Any
    success: bool
    status: int | None = None
    source: str = "body"


def _query_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return [_query_value(v) for v in value]
    return value


def _as_case(case: BoundaryCase | Mapping[str, Any]) -> BoundaryCase:
    if isinstance(case, BoundaryCase):
        return case
    expected = case.get("expected", {})
    return BoundaryCase(
        input=case.get("input"),
        success=bool(expected.get("success", case.get("success"))),
        status=expected.get("status", case.get("status")),
        source=case.get("source", "body"),
    )


class TestClient:
    """Execute requests against a ``RouteApp`` without a server.

    Requests run on a private event loop in a background thread so that
    background tasks keep running after a response has been returned, as
    they would behind a real transport.
    """

    __test__ = False  # prevent Pytest from treating this as a test case

    def __init__(self, app: RouteApp, *, timeout: float = 30.0) -> None:
        self.app = app
        self.timeout = timeout
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever, name="routekit-testclient", daemon=True
        )
        self._thread.start()
        self._closed = False

    def _call(self, coro: Coroutine[Any, Any, T]) -> T:
        if self._closed:
            coro.close()
            raise RuntimeError("TestClient is closed")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(self.timeout)

    def __enter__(self) -> TestClient:
        self._call(self.app.startup())
        return self

    def __exit__(self, *exc_info: Any) -> None:
        try:
            self._call(self.app.shutdown())
        finally:
            self.close()

    def close(self) -> None:
        """Cancel leftover tasks and stop the client's event loop."""

        if self._closed:
            return

        async def _cancel_pending() -> None:
            current = asyncio.current_task()
            pending = [t for t in asyncio.all_tasks() if t is not current]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        self._call(_cancel_pending())
        self._closed = True
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()

    # -- requests -----------------------------------------------------

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        body: bytes | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send an HTTP request and return the response."""

        if json_body is not None and body is not None:
            raise ValueError("Pass either json_body or body, not both")
        hdrs = dict(headers or {})
        if json_body is not None:
            payload = encode_json(json_body)
            hdrs.setdefault("content-type", "application/json")
        else:
            payload = body or b""
        url = path
        if params:
            query = {k: _query_value(v) for k, v in params.items()}
            url += "?" + urlencode(query, doseq=True)
        request = Request(method, url, payload, hdrs)
        start = time.perf_counter()
        response = self._call(self.app.handle(request))
        elapsed = time.perf_counter() - start
        status, content, resp_headers = response.serialize()
        return Response(
            status,
            content.decode(errors="replace"),
            resp_headers,
            content,
            elapsed,
        )

    def get(self, path: str, **kwargs: Any) -> Response:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> Response:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> Response:
        return self.request("PUT", path, **kwargs)

    def patch(self, path: str, **kwargs: Any) -> Response:
        return self.request("PATCH", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Response:
        return self.request("DELETE", path, **kwargs)

    def wait_for_tasks(self) -> None:
        """Block until every background task submitted so far has finished."""

        self._call(self.app.supervisor.join())

    # -- assertions ---------------------------------------------------

    def expect_success(self, method: str, path: str, **kwargs: Any) -> Response:
        response = self.request(method, path, **kwargs)
        if not 200 <= response.status_code < 300:
            raise AssertionError(
                f"Expected success for {method} {path} but got status "
                f"{response.status_code}: {response.text}"
            )
        return response

    def expect_error(
        self, method: str, path: str, status: int, **kwargs: Any
    ) -> Response:
        response = self.request(method, path, **kwargs)
        if response.status_code != status:
            raise AssertionError(
                f"Expected status {status} for {method} {path} but got "
                f"{response.status_code}: {response.text}"
            )
        return response

    def test_boundaries(
        self,
        method: str,
        path: str,
        cases: Iterable[BoundaryCase | Mapping[str, Any]],
    ) -> list[Response]:
        """Send every case and check it succeeds or fails as declared.

        All cases are sent; the assertion lists every case that did not
        behave as expected.
        """

        normalized = [_as_case(case) for case in cases]
        if not normalized:
            raise ValueError("At least one boundary case is required")
        responses: list[Response] = []
        failures: list[str] = []
        for case in normalized:
            if case.source == "query":
                response = self.request(method, path, params=case.input)
            elif case.source == "body":
                response = self.request(method, path, json_body=case.input)
            else:
                raise ValueError(f"Unsupported boundary case source: {case.source}")
            responses.append(response)
            succeeded = 200 <= response.status_code < 300
            if succeeded != case.success:
                outcome = "success" if case.success else "failure"
                failures.append(
                    f"expected {outcome} for input {case.input!r} but got "
                    f"status {response.status_code}"
                )
            elif case.status is not None and response.status_code != case.status:
                failures.append(
                    f"expected status {case.status} for input {case.input!r} "
                    f"but got {response.status_code}"
                )
        if failures:
            raise AssertionError("; ".join(failures))
        return responses

    def test_contract(
        self,
        method: str,
        path: str,
        schema: Any,
        *,
        status: int | None = None,
        **kwargs: Any,
    ) -> Any:
        """Check the response body against *schema* and return the parsed value."""

        response = self.request(method, path, **kwargs)
        if status is not None and response.status_code != status:
            raise AssertionError(
                f"Expected status {status} but got {response.status_code}"
            )
        try:
            return self.app.adapter.validate(schema, response.json())
        except ValidationError as exc:
            raise AssertionError(
                "Response does not match contract: " + ", ".join(
                    f"{err.field}: {err.msg}" for err in exc.field_errors
                )
            ) from exc


__all__ = ["BoundaryCase", "Response", "TestClient"]
