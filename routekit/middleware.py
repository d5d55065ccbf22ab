"""Path- and method-scoped request middleware."""

from __future__ import annotations

import inspect
import itertools
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from .exceptions import RouteDefinitionError
from .http import Response
from .route import HTTPMethod

if TYPE_CHECKING:  # pragma: no cover
    from .context import RequestContext

_LOGGER = logging.getLogger("routekit.middleware")

DEFAULT_PRIORITY = 100

Middleware = Callable[["RequestContext"], Any]


def matches_path(pattern: str | None, path: str) -> bool:
    """``None`` matches everything, ``/api*`` is a prefix, ``/api`` covers its subtree."""

    if pattern is None:
        return True
    if pattern.endswith("*"):
        return path.startswith(pattern[:-1])
    return path == pattern or path.startswith(pattern.rstrip("/") + "/")


@dataclass(frozen=True)
class MiddlewareEntry:
    id: str
    middleware: Middleware
    path: str | None = None
    method: HTTPMethod | None = None
    priority: int = DEFAULT_PRIORITY

    def applies_to(self, path: str, method: HTTPMethod) -> bool:
        if self.method is not None and self.method is not method:
            return False
        return matches_path(self.path, path)


class MiddlewareRegistry:
    """Ordered collection of middlewares run before each handler.

    A middleware receives the :class:`RequestContext` after dependencies are
    resolved. It may be sync or async. Returning a :class:`Response` answers
    the request without calling the handler; raising an ``HTTPException``
    rejects it. Lower priorities run first; equal priorities keep
    registration order.
    """

    def __init__(self) -> None:
        self._entries: list[MiddlewareEntry] = []
        self._ids = itertools.count(1)

    def add(
        self,
        middleware: Middleware,
        *,
        path: str | None = None,
        method: str | HTTPMethod | None = None,
        priority: int = DEFAULT_PRIORITY,
    ) -> str:
        """Register *middleware* and return its id."""

        if not callable(middleware):
            raise RouteDefinitionError(f"Middleware must be callable, got {middleware!r}")
        if path is not None and (not isinstance(path, str) or not path.startswith("/")):
            raise RouteDefinitionError(f"Middleware path must start with '/': {path!r}")
        if isinstance(priority, bool) or not isinstance(priority, int) or priority < 0:
            raise RouteDefinitionError(
                f"Middleware priority must be a non-negative integer, got {priority!r}"
            )
        verb = HTTPMethod.parse(method) if method is not None else None
        entry = MiddlewareEntry(
            f"middleware_{next(self._ids)}", middleware, path, verb, priority
        )
        self._entries.append(entry)
        _LOGGER.debug(
            "Registered %s for %s %s (priority %d)",
            entry.id,
            verb.value if verb else "*",
            path or "*",
            priority,
        )
        return entry.id

    def remove(self, middleware_id: str) -> bool:
        for entry in self._entries:
            if entry.id == middleware_id:
                self._entries.remove(entry)
                return True
        return False

    def get(self, middleware_id: str) -> MiddlewareEntry | None:
        return next((e for e in self._entries if e.id == middleware_id), None)

    def clear(self) -> None:
        self._entries.clear()

    def entries(self) -> list[MiddlewareEntry]:
        return list(self._entries)

    def for_request(self, path: str, method: str | HTTPMethod) -> list[Middleware]:
        """Middlewares applying to *method* and *path*, in execution order."""

        verb = HTTPMethod.parse(method)
        matching = [e for e in self._entries if e.applies_to(path, verb)]
        matching.sort(key=lambda e: e.priority)
        return [e.middleware for e in matching]

    async def run(self, context: RequestContext) -> Response | None:
        """Run the applicable middlewares; return the first response one produces."""

        for middleware in self.for_request(context.path, context.method):
            result = middleware(context)
            if inspect.isawaitable(result):
                result = await result
            if isinstance(result, Response):
                return result
        return None

    def __len__(self) -> int:
        return len(self._entries)


__all__ = [
    "DEFAULT_PRIORITY",
    "Middleware",
    "MiddlewareEntry",
    "MiddlewareRegistry",
    "matches_path",
]
