"""Route declarations and path templates."""

from __future__ import annotations

import re
from dataclasses import InitVar, dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Sequence
from urllib.parse import unquote

from .dependency import Dependency, check_dependency_graph
from .exceptions import InvalidSchemaError, RouteDefinitionError
from .schema import SchemaAdapter, default_adapter

_PARAM_RE = re.compile(r"^\{([A-Za-z_][A-Za-z0-9_]*)\}$")
_OPERATION_RE = re.compile(r"[^0-9A-Za-z]+")


class HTTPMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"

    @classmethod
    def parse(cls, value: str | HTTPMethod) -> HTTPMethod:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise RouteDefinitionError(f"HTTP method must be a string, got {value!r}")
        try:
            return cls(value.strip().upper())
        except ValueError as exc:
            raise RouteDefinitionError(f"Unsupported HTTP method: {value}") from exc


def split_path(path: str) -> list[str]:
    """Split *path* into segments, ignoring repeated and trailing slashes."""

    return [segment for segment in path.split("/") if segment]


@dataclass(frozen=True)
class PathTemplate:
    """Parsed ``/users/{id}`` style path.

    ``segments`` holds ``(value, is_param)`` pairs; for parameters the value
    is the parameter name.
    """

    path: str
    segments: tuple[tuple[str, bool], ...]

    @classmethod
    def parse(cls, path: str) -> PathTemplate:
        if not isinstance(path, str) or not path.startswith("/"):
            raise RouteDefinitionError(f"Route path must start with '/': {path!r}")
        segments: list[tuple[str, bool]] = []
        seen: set[str] = set()
        for raw in split_path(path):
            match = _PARAM_RE.match(raw)
            if match:
                name = match.group(1)
                if name in seen:
                    raise RouteDefinitionError(
                        f"Path parameter '{name}' appears twice in {path}"
                    )
                seen.add(name)
                segments.append((name, True))
            elif "{" in raw or "}" in raw:
                raise RouteDefinitionError(f"Malformed path segment '{raw}' in {path}")
            else:
                segments.append((raw, False))
        canonical = "/" + "/".join(
            "{" + value + "}" if is_param else value for value, is_param in segments
        )
        return cls(canonical, tuple(segments))

    @property
    def param_names(self) -> tuple[str, ...]:
        return tuple(value for value, is_param in self.segments if is_param)

    @property
    def normalized(self) -> str:
        """Path with every parameter replaced by ``{}``; the registry key."""

        return "/" + "/".join("{}" if is_param else value for value, is_param in self.segments)

    def match(self, parts: Sequence[str]) -> dict[str, str] | None:
        """Return raw parameter strings when *parts* fits this template."""

        if len(parts) != len(self.segments):
            return None
        params: dict[str, str] = {}
        for (value, is_param), part in zip(self.segments, parts):
            if is_param:
                params[value] = unquote(part)
            elif value != part:
                return None
        return params

    def overlaps(self, other: PathTemplate) -> bool:
        """Whether one concrete path could match both templates."""

        if len(self.segments) != len(other.segments):
            return False
        for (value, is_param), (other_value, other_param) in zip(
            self.segments, other.segments
        ):
            if not is_param and not other_param and value != other_value:
                return False
        return True


def default_operation_id(method: HTTPMethod, template: PathTemplate) -> str:
    """Derive ``get_users_id`` from ``GET /users/{id}``."""

    words = [method.value.lower()]
    for value, _ in template.segments:
        word = _OPERATION_RE.sub("_", value).strip("_")
        if word:
            words.append(word)
    return "_".join(words)


@dataclass(frozen=True, eq=False)
class Route:
    """One endpoint declaration, immutable once constructed.

    Construction validates the declaration: the path template, the handler,
    the schemas (through the schema adapter) and the dependency graph. A
    ``params`` schema must declare exactly the template's parameter names.
    """

    method: HTTPMethod
    path: str
    handler: Callable[..., Any]
    params: Any = None
    query: Any = None
    body: Any = None
    response: Any = None
    status_code: int = 200
    dependencies: Mapping[str, Dependency] = field(default_factory=dict)
    tags: tuple[str, ...] = ()
    summary: str | None = None
    description: str | None = None
    operation_id: str | None = None
    deprecated: bool = False
    include_in_schema: bool = True
    template: PathTemplate = field(init=False, repr=False)
    derived_operation_id: bool = field(init=False, repr=False, default=False)
    adapter: InitVar[SchemaAdapter | None] = None

    def __post_init__(self, adapter: SchemaAdapter | None) -> None:
        method = HTTPMethod.parse(self.method)
        template = PathTemplate.parse(self.path)
        if self.handler is None or not callable(self.handler):
            raise RouteDefinitionError(f"Route {method.value} {self.path} requires a handler")
        if not isinstance(self.status_code, int) or not 100 <= self.status_code <= 599:
            raise RouteDefinitionError(f"Invalid status code: {self.status_code!r}")
        if isinstance(self.tags, str):
            raise RouteDefinitionError("tags must be a sequence of strings")

        dependencies: dict[str, Dependency] = {}
        for name, dep in dict(self.dependencies or {}).items():
            if not isinstance(dep, Dependency):
                raise RouteDefinitionError(
                    f"Dependency '{name}' must be declared with inject(), got {dep!r}"
                )
            dependencies[name] = dep
        check_dependency_graph(dependencies)

        adapter = adapter or default_adapter()
        if self.params is not None:
            names = set(adapter.fields(self.params))
            expected = set(template.param_names)
            if names != expected:
                raise InvalidSchemaError(
                    f"Params schema fields {sorted(names)} do not match path "
                    f"parameters {sorted(expected)} of {template.path}"
                )
        if self.query is not None:
            adapter.fields(self.query)
        for schema in (self.body, self.response):
            if schema is not None:
                adapter.to_structural_schema(schema)

        set_ = object.__setattr__
        set_(self, "method", method)
        set_(self, "template", template)
        set_(self, "path", template.path)
        set_(self, "dependencies", MappingProxyType(dependencies))
        set_(self, "tags", tuple(self.tags or ()))
        set_(self, "derived_operation_id", not self.operation_id)
        set_(self, "operation_id", self.operation_id or default_operation_id(method, template))

    def _rename_operation(self, operation_id: str) -> None:
        """Replace a derived operation id; only the registry calls this, before storing."""

        if not self.derived_operation_id:
            raise RouteDefinitionError(
                f"Operation id '{self.operation_id}' of {self.id} was declared explicitly"
            )
        object.__setattr__(self, "operation_id", operation_id)

    @property
    def id(self) -> str:
        return f"{self.method.value} {self.path}"

    @property
    def key(self) -> tuple[HTTPMethod, str]:
        return self.method, self.template.normalized

    def __repr__(self) -> str:
        return f"<Route {self.id} operation_id={self.operation_id}>"


__all__ = [
    "HTTPMethod",
    "PathTemplate",
    "Route",
    "default_operation_id",
    "split_path",
]
