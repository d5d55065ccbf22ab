"""Route registry: the single source of truth for declared routes."""

from __future__ import annotations

import logging
from typing import Iterator, NamedTuple, ValuesView

from .exceptions import (
    AmbiguousRouteError,
    DuplicateRouteError,
    RegistryFrozenError,
    RouteConflictError,
    RouteDefinitionError,
    RouteNotFound,
)
from .route import HTTPMethod, PathTemplate, Route, split_path

_LOGGER = logging.getLogger("routekit.registry")


class RouteMatch(NamedTuple):
    route: Route
    params: dict[str, str]


class RouteRegistry:
    """Collection of routes keyed by method and normalized path.

    Registration rejects exact duplicates, templates that would be ambiguous
    with an existing one (a literal and a parameter competing for the same
    position) and reused explicit operation ids. A derived operation id that
    is already taken gets a numeric suffix (``get_users_id_2``). Iteration
    follows registration order.
    """

    def __init__(self) -> None:
        self._routes: dict[tuple[HTTPMethod, str], Route] = {}
        self._by_method: dict[HTTPMethod, list[Route]] = {}
        self._operation_ids: dict[str, Route] = {}
        self._frozen = False

    # -- registration -------------------------------------------------

    def conflicts(self, route: Route) -> RouteConflictError | None:
        """Return the error registering *route* would raise, if any."""

        existing = self._routes.get(route.key)
        if existing is not None:
            return DuplicateRouteError(
                f"Route {route.id} conflicts with {existing.id}",
                method=route.method.value,
                path=route.path,
            )
        for other in self._by_method.get(route.method, ()):
            if other.template.overlaps(route.template):
                return AmbiguousRouteError(
                    f"Route {route.id} is ambiguous with {other.id}",
                    method=route.method.value,
                    path=route.path,
                    existing=other.path,
                )
        owner = self._operation_ids.get(route.operation_id or "")
        if owner is not None and not route.derived_operation_id:
            return DuplicateRouteError(
                f"Operation id '{route.operation_id}' of {route.id} is already "
                f"used by {owner.id}",
                method=route.method.value,
                path=route.path,
            )
        return None

    def register(self, route: Route) -> Route:
        if not isinstance(route, Route):
            raise RouteDefinitionError(f"Expected a Route, got {route!r}")
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register {route.id}: the registry is frozen"
            )
        error = self.conflicts(route)
        if error is not None:
            raise error
        if route.operation_id in self._operation_ids:
            route._rename_operation(self._unique_operation_id(route.operation_id))
        self._routes[route.key] = route
        self._by_method.setdefault(route.method, []).append(route)
        self._operation_ids[route.operation_id or ""] = route
        _LOGGER.debug("Registered route %s (%s)", route.id, route.operation_id)
        return route

    def _unique_operation_id(self, base: str) -> str:
        suffix = 2
        while f"{base}_{suffix}" in self._operation_ids:
            suffix += 1
        return f"{base}_{suffix}"

    def delete(self, method: str | HTTPMethod, path: str) -> bool:
        """Remove the route declared for *method* and template *path*."""

        if self._frozen:
            raise RegistryFrozenError("Cannot delete routes: the registry is frozen")
        route = self.get(method, path)
        if route is None:
            return False
        del self._routes[route.key]
        self._by_method[route.method].remove(route)
        del self._operation_ids[route.operation_id or ""]
        return True

    def clear(self) -> None:
        """Drop every route and unfreeze the registry."""

        self._routes.clear()
        self._by_method.clear()
        self._operation_ids.clear()
        self._frozen = False

    def freeze(self) -> None:
        """Make the registry read-only; done once serving starts."""

        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # -- lookup -------------------------------------------------------

    def find(self, method: str, raw_path: str) -> RouteMatch:
        """Match a concrete request path.

        Returns the route together with the raw, undecoded-by-schema
        parameter strings. Raises :class:`RouteNotFound` when nothing
        matches.
        """

        path = raw_path.split("?", 1)[0]
        try:
            verb = HTTPMethod.parse(method)
        except RouteDefinitionError:
            raise RouteNotFound(method, path) from None
        parts = split_path(path)
        for route in self._by_method.get(verb, ()):
            params = route.template.match(parts)
            if params is not None:
                return RouteMatch(route, params)
        raise RouteNotFound(verb.value, path)

    def get(self, method: str | HTTPMethod, path: str) -> Route | None:
        """Return the route declared with exactly this template, if any."""

        try:
            key = (HTTPMethod.parse(method), PathTemplate.parse(path).normalized)
        except RouteDefinitionError:
            return None
        return self._routes.get(key)

    def has(self, method: str | HTTPMethod, path: str) -> bool:
        return self.get(method, path) is not None

    def list(self) -> ValuesView[Route]:
        """Live, re-iterable view of every route in registration order."""

        return self._routes.values()

    def get_by_method(self, method: str | HTTPMethod) -> list[Route]:
        return list(self._by_method.get(HTTPMethod.parse(method), ()))

    def get_by_tag(self, tag: str) -> list[Route]:
        return [route for route in self._routes.values() if tag in route.tags]

    def get_by_operation_id(self, operation_id: str) -> Route | None:
        return self._operation_ids.get(operation_id)

    def count(self) -> int:
        return len(self._routes)

    def __len__(self) -> int:
        return len(self._routes)

    def __iter__(self) -> Iterator[Route]:
        return iter(self._routes.values())

    def __contains__(self, route: object) -> bool:
        return isinstance(route, Route) and self._routes.get(route.key) is route


__all__ = ["RouteMatch", "RouteRegistry"]
