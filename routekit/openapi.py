"""Derive an OpenAPI 3.1 document from registered routes."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from .exceptions import ConfigurationError
from .route import Route
from .schema import SchemaAdapter, default_adapter

OPENAPI_VERSION = "3.1.0"

_VALIDATION_COMPONENTS: dict[str, dict[str, Any]] = {
    "ValidationError": {
        "type": "object",
        "properties": {
            "loc": {
                "type": "array",
                "items": {"anyOf": [{"type": "string"}, {"type": "integer"}]},
            },
            "field": {"type": "string"},
            "msg": {"type": "string"},
            "type": {"type": "string"},
        },
        "required": ["loc", "msg", "type"],
    },
    "HTTPValidationError": {
        "type": "object",
        "properties": {
            "status": {"type": "integer"},
            "detail": {"type": "string"},
            "path": {"type": "string"},
            "errors": {
                "type": "array",
                "items": {"$ref": "#/components/schemas/ValidationError"},
            },
        },
        "required": ["status", "detail"],
    },
}


@dataclass(frozen=True)
class DocumentInfo:
    """Document-level metadata: ``info`` plus optional server entries."""

    title: str
    version: str
    description: str | None = None
    servers: tuple[Mapping[str, str], ...] = field(default_factory=tuple)

    @classmethod
    def coerce(cls, info: DocumentInfo | Mapping[str, Any] | None) -> DocumentInfo:
        if isinstance(info, cls):
            result = info
        elif isinstance(info, Mapping):
            result = cls(
                title=info.get("title"),  # type: ignore[arg-type]
                version=info.get("version"),  # type: ignore[arg-type]
                description=info.get("description"),
                servers=tuple(info.get("servers") or ()),
            )
        else:
            raise ConfigurationError("Document info with a title and version is required")
        if not result.title or not isinstance(result.title, str):
            raise ConfigurationError("Document info requires a title")
        if not result.version or not isinstance(result.version, str):
            raise ConfigurationError("Document info requires a version")
        return result

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"title": self.title, "version": self.version}
        if self.description:
            data["description"] = self.description
        return data


def _hoist(structural: dict[str, Any], components: dict[str, Any]) -> dict[str, Any]:
    for name, definition in structural.pop("$defs", {}).items():
        components.setdefault(name, definition)
    return structural


def _operation(
    route: Route, adapter: SchemaAdapter, components: dict[str, Any]
) -> dict[str, Any]:
    op: dict[str, Any] = {}
    if route.tags:
        op["tags"] = list(route.tags)
    if route.summary:
        op["summary"] = route.summary
    if route.description:
        op["description"] = route.description
    op["operationId"] = route.operation_id

    parameters: list[dict[str, Any]] = []
    path_fields: Mapping[str, Any] = {}
    path_props: dict[str, Any] = {}
    if route.params is not None:
        path_fields = adapter.fields(route.params)
        path_props = _hoist(adapter.to_structural_schema(route.params), components).get(
            "properties", {}
        )
    for name in route.template.param_names:
        param: dict[str, Any] = {
            "name": name,
            "in": "path",
            "required": True,
            "schema": path_props.get(name, {"type": "string"}),
        }
        if name in path_fields:
            description = adapter.describe(path_fields[name])
            if description:
                param["description"] = description
        parameters.append(param)

    if route.query is not None:
        query_props = _hoist(adapter.to_structural_schema(route.query), components).get(
            "properties", {}
        )
        for name, query_field in adapter.fields(route.query).items():
            param = {
                "name": name,
                "in": "query",
                "required": not adapter.is_optional(query_field),
                "schema": query_props.get(name, {}),
            }
            description = adapter.describe(query_field)
            if description:
                param["description"] = description
            parameters.append(param)
    if parameters:
        op["parameters"] = parameters

    if route.body is not None:
        op["requestBody"] = {
            "required": True,
            "content": {
                "application/json": {
                    "schema": _hoist(adapter.to_structural_schema(route.body), components)
                }
            },
        }

    success: dict[str, Any] = {"description": "Successful Response"}
    if route.response is not None:
        success["content"] = {
            "application/json": {
                "schema": _hoist(adapter.to_structural_schema(route.response), components)
            }
        }
    responses: dict[str, Any] = {str(route.status_code): success}
    if route.params is not None or route.query is not None or route.body is not None:
        responses.setdefault(
            "422",
            {
                "description": "Validation Error",
                "content": {
                    "application/json": {
                        "schema": {"$ref": "#/components/schemas/HTTPValidationError"}
                    }
                },
            },
        )
    op["responses"] = responses
    if route.deprecated:
        op["deprecated"] = True
    return op


def generate(
    routes: Iterable[Route],
    info: DocumentInfo | Mapping[str, Any],
    *,
    adapter: SchemaAdapter | None = None,
) -> dict[str, Any]:
    """Build the OpenAPI document for *routes*.

    The result depends only on the routes, their order and *info*: the same
    input always yields an equal document. Routes declared with
    ``include_in_schema=False`` are left out.
    """

    document_info = DocumentInfo.coerce(info)
    if routes is None or isinstance(routes, (str, bytes, Mapping)):
        raise ConfigurationError("routes must be an iterable of Route objects")
    try:
        route_list = list(routes)
    except TypeError as exc:
        raise ConfigurationError("routes must be an iterable of Route objects") from exc
    adapter = adapter or default_adapter()

    paths: dict[str, dict[str, Any]] = {}
    components: dict[str, Any] = {}
    tag_set: set[str] = set()
    for route in route_list:
        if not isinstance(route, Route):
            raise ConfigurationError(f"Expected a Route, got {route!r}")
        if not route.include_in_schema:
            continue
        paths.setdefault(route.path, {})[route.method.value.lower()] = _operation(
            route, adapter, components
        )
        tag_set.update(route.tags)

    schemas = {name: components[name] for name in sorted(components)}
    for name, definition in _VALIDATION_COMPONENTS.items():
        schemas.setdefault(name, copy.deepcopy(definition))

    doc: dict[str, Any] = {
        "openapi": OPENAPI_VERSION,
        "info": document_info.as_dict(),
    }
    if document_info.servers:
        doc["servers"] = [dict(server) for server in document_info.servers]
    doc["paths"] = paths
    doc["components"] = {"schemas": schemas}
    if tag_set:
        doc["tags"] = [{"name": t} for t in sorted(tag_set)]
    return doc


def describe_route(route: Route, adapter: SchemaAdapter | None = None) -> dict[str, Any]:
    """Return the structural description of a single route."""

    adapter = adapter or default_adapter()

    def structural(schema: Any) -> dict[str, Any] | None:
        return None if schema is None else adapter.to_structural_schema(schema)

    return {
        "operationId": route.operation_id,
        "method": route.method.value,
        "path": route.path,
        "status_code": route.status_code,
        "tags": list(route.tags),
        "params": structural(route.params),
        "query": structural(route.query),
        "body": structural(route.body),
        "response": structural(route.response),
        "dependencies": [
            {"name": name, "lifetime": dep.lifetime.value}
            for name, dep in route.dependencies.items()
        ],
    }


__all__ = ["DocumentInfo", "OPENAPI_VERSION", "describe_route", "generate"]
