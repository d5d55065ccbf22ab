"""Schema adapter: the only place routekit touches the validation library.

The route engine talks to schemas through :class:`SchemaAdapter`. The bundled
:class:`PydanticAdapter` accepts ``BaseModel`` subclasses and any annotation
understood by :class:`pydantic.TypeAdapter`, e.g.
``Annotated[int, Field(ge=18, le=120)]``.
"""

from __future__ import annotations

import inspect
import types
from collections import abc
from typing import (
    Annotated,
    Any,
    Mapping,
    Protocol,
    Union,
    get_args,
    get_origin,
    runtime_checkable,
)

from pydantic import BaseModel, PydanticUserError, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.fields import FieldInfo

from .exceptions import FieldError, InvalidSchemaError, ValidationError

REF_TEMPLATE = "#/components/schemas/{model}"


@runtime_checkable
class SchemaAdapter(Protocol):
    """Capability surface the route engine needs from a validation backend."""

    def validate(self, schema: Any, value: Any) -> Any: ...

    def is_optional(self, schema: Any) -> bool: ...

    def is_nullable(self, schema: Any) -> bool: ...

    def is_sequence(self, schema: Any) -> bool: ...

    def describe(self, schema: Any) -> str | None: ...

    def to_structural_schema(self, schema: Any) -> dict[str, Any]: ...

    def fields(self, schema: Any) -> Mapping[str, Any]: ...


def _is_model(schema: Any) -> bool:
    return inspect.isclass(schema) and issubclass(schema, BaseModel)


def _strip_annotated(tp: Any) -> Any:
    while get_origin(tp) is Annotated:
        tp = get_args(tp)[0]
    return tp


def _accepts_none(tp: Any) -> bool:
    tp = _strip_annotated(tp)
    if tp is None or tp is type(None) or tp is Any:
        return True
    if get_origin(tp) in (Union, types.UnionType):
        return any(_accepts_none(arg) for arg in get_args(tp))
    return False


_SEQUENCE_ORIGINS = (
    list,
    tuple,
    set,
    frozenset,
    abc.Sequence,
    abc.MutableSequence,
    abc.Set,
    abc.MutableSet,
)


def _accepts_many(tp: Any) -> bool:
    tp = _strip_annotated(tp)
    if get_origin(tp) in (Union, types.UnionType):
        return any(_accepts_many(arg) for arg in get_args(tp))
    return (get_origin(tp) or tp) in _SEQUENCE_ORIGINS


def _field_annotation(field: FieldInfo) -> Any:
    """Return an annotation that validates like *field* without its default."""

    if field.metadata:
        return Annotated[(field.annotation, *field.metadata)]
    return field.annotation


def _convert_errors(exc: PydanticValidationError) -> list[FieldError]:
    errors: list[FieldError] = []
    for err in exc.errors():
        err.pop("url", None)
        loc = tuple(part for part in err.get("loc", ()) if part != "__root__")
        errors.append(
            FieldError(
                loc=loc,
                msg=err.get("msg", ""),
                type=err.get("type", "value_error"),
                input=err.get("input"),
            )
        )
    return errors


class PydanticAdapter:
    """:class:`SchemaAdapter` backed by pydantic v2."""

    def __init__(self) -> None:
        self._adapters: dict[Any, TypeAdapter[Any]] = {}

    def _type_adapter(self, schema: Any) -> TypeAdapter[Any]:
        try:
            cached = self._adapters.get(schema)
        except TypeError:  # unhashable annotation metadata
            cached = None
            hashable = False
        else:
            hashable = True
        if cached is not None:
            return cached
        annotation = _field_annotation(schema) if isinstance(schema, FieldInfo) else schema
        try:
            adapter = TypeAdapter(annotation)
        except (PydanticUserError, TypeError, NameError) as exc:
            raise InvalidSchemaError(f"Unsupported schema {schema!r}: {exc}") from exc
        if hashable:
            self._adapters[schema] = adapter
        return adapter

    def _ensure(self, schema: Any) -> None:
        if schema is None:
            raise InvalidSchemaError("Schema is required")
        if isinstance(schema, str):
            raise InvalidSchemaError(f"Schema must be a type, not the string {schema!r}")
        if _is_model(schema) or isinstance(schema, FieldInfo):
            return
        self._type_adapter(schema)

    def validate(self, schema: Any, value: Any) -> Any:
        """Parse *value* against *schema* and return the parsed result."""

        self._ensure(schema)
        try:
            if _is_model(schema):
                return schema.model_validate(value, from_attributes=True)
            return self._type_adapter(schema).validate_python(
                value, from_attributes=True
            )
        except PydanticValidationError as exc:
            raise ValidationError(_convert_errors(exc)) from exc

    def is_optional(self, schema: Any) -> bool:
        """Return ``True`` when the value may be omitted entirely."""

        self._ensure(schema)
        if isinstance(schema, FieldInfo):
            return not schema.is_required()
        return False

    def is_nullable(self, schema: Any) -> bool:
        """Return ``True`` when ``None`` is an accepted value."""

        self._ensure(schema)
        if isinstance(schema, FieldInfo):
            return _accepts_none(schema.annotation)
        if _is_model(schema):
            return False
        return _accepts_none(schema)

    def is_sequence(self, schema: Any) -> bool:
        """Return ``True`` when the value is a list-like collection.

        Query strings carry such fields as repeated keys.
        """

        self._ensure(schema)
        if isinstance(schema, FieldInfo):
            return _accepts_many(schema.annotation)
        if _is_model(schema):
            return False
        return _accepts_many(schema)

    def describe(self, schema: Any) -> str | None:
        self._ensure(schema)
        if isinstance(schema, FieldInfo):
            return schema.description
        return self.to_structural_schema(schema).get("description")

    def to_structural_schema(self, schema: Any) -> dict[str, Any]:
        """Return the JSON Schema for *schema*.

        Nested models are referenced through ``#/components/schemas/<Model>``
        and their definitions are listed under ``$defs``.
        """

        self._ensure(schema)
        try:
            if _is_model(schema):
                return schema.model_json_schema(ref_template=REF_TEMPLATE)
            structural = self._type_adapter(schema).json_schema(
                ref_template=REF_TEMPLATE
            )
        except PydanticUserError as exc:
            raise InvalidSchemaError(
                f"Schema {schema!r} has no structural representation: {exc}"
            ) from exc
        if isinstance(schema, FieldInfo) and schema.description:
            structural.setdefault("description", schema.description)
        return structural

    def fields(self, schema: Any) -> dict[str, FieldInfo]:
        """Return the ordered ``name -> FieldInfo`` mapping of an object schema.

        Keys are the external names, i.e. the alias when a field declares one.
        """

        self._ensure(schema)
        if not _is_model(schema):
            raise InvalidSchemaError(
                f"Expected an object schema (BaseModel subclass), got {schema!r}"
            )
        return {
            field.alias or name: field for name, field in schema.model_fields.items()
        }


_DEFAULT_ADAPTER = PydanticAdapter()


def default_adapter() -> PydanticAdapter:
    """Return the process-wide adapter used when none is supplied."""

    return _DEFAULT_ADAPTER


__all__ = ["PydanticAdapter", "REF_TEMPLATE", "SchemaAdapter", "default_adapter"]
