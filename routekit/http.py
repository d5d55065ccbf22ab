"""Minimal HTTP primitives with header and cookie support."""

from __future__ import annotations

import json
from http.cookies import SimpleCookie
from types import SimpleNamespace
from typing import Any, Iterable, Mapping
from urllib.parse import parse_qs, urlsplit

from pydantic_core import to_jsonable_python


def parse_query_lists(query: str | bytes) -> dict[str, list[str]]:
    """Parse a raw query string keeping every value of every key."""

    if isinstance(query, bytes):
        query = query.decode()
    return parse_qs(query, keep_blank_values=True)


def unwrap_single(
    values: Mapping[str, list[str]], keep: Iterable[str] = ()
) -> dict[str, Any]:
    """Collapse one-element lists to their value, except for keys in *keep*."""

    kept = set(keep)
    return {
        k: (v[0] if len(v) == 1 and k not in kept else v) for k, v in values.items()
    }


def parse_query(query: str | bytes) -> dict[str, Any]:
    """Parse a raw query string; repeated keys become lists."""

    return unwrap_single(parse_query_lists(query))


class Request:
    """Represent an incoming HTTP request."""

    def __init__(
        self,
        method: str = "GET",
        url: str = "/",
        body: bytes = b"",
        headers: Mapping[str, str] | None = None,
        path_params: Mapping[str, str] | None = None,
    ) -> None:
        self.method = method.upper()
        self.url = url
        self._body = body
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.path_params = dict(path_params or {})
        parts = urlsplit(url)
        self.path = parts.path or "/"
        self.query_string = parts.query
        self.query_lists = parse_query_lists(parts.query)
        self.query_params = unwrap_single(self.query_lists)
        self._cookies: dict[str, str] | None = None
        self.state: SimpleNamespace = SimpleNamespace()

    async def body(self) -> bytes:
        """Return the request body."""
        return self._body

    async def json(self) -> Any:
        """Return the JSON-decoded body if present."""
        data = await self.body()
        if not data:
            return None
        return json.loads(data.decode())

    @property
    def cookies(self) -> dict[str, str]:
        """Lazily parse cookies from the request headers."""
        if self._cookies is None:
            raw = self.headers.get("cookie", "")
            jar: SimpleCookie = SimpleCookie()
            jar.load(raw)
            self._cookies = {k: morsel.value for k, morsel in jar.items()}
        return self._cookies


class Response:
    """HTTP response container with header and cookie management."""

    def __init__(
        self,
        content: str | bytes = b"",
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
        media_type: str | None = None,
    ) -> None:
        if isinstance(content, str):
            self.body = content.encode()
            default_type = "text/plain; charset=utf-8"
        else:
            self.body = content
            default_type = "application/octet-stream"
        self.status_code = status_code
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.media_type = media_type or default_type
        self.headers.setdefault("content-type", self.media_type)
        self._cookies: SimpleCookie = SimpleCookie()

    def set_header(self, key: str, value: str) -> None:
        """Set or replace a header."""
        self.headers[key.lower()] = value

    def set_cookie(self, key: str, value: str, **params: Any) -> None:
        """Attach a cookie to the response."""
        self._cookies[key] = value
        for k, v in params.items():
            self._cookies[key][k.replace("_", "-")] = str(v)

    def json(self) -> Any:
        """Return the body parsed as JSON."""
        return json.loads(self.body.decode())

    def serialize(self) -> tuple[int, bytes, dict[str, str]]:
        """Return ``(status_code, body, headers)`` for transmission."""
        headers = self.headers.copy()
        if self._cookies:
            headers["set-cookie"] = self._cookies.output(
                header="",
                sep="; ",
            ).strip()
        return self.status_code, self.body, headers


def encode_json(content: Any) -> bytes:
    """Encode *content* to JSON bytes, accepting pydantic models and friends."""

    return json.dumps(to_jsonable_python(content)).encode()


class JSONResponse(Response):
    """Serialize content to JSON."""

    def __init__(
        self,
        content: Any,
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            encode_json(content),
            status_code=status_code,
            headers=headers,
            media_type="application/json",
        )


__all__ = [
    "JSONResponse",
    "Request",
    "Response",
    "encode_json",
    "parse_query",
    "parse_query_lists",
    "unwrap_single",
]
