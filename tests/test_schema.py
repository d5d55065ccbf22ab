"""PydanticAdapter behaviour."""

from typing import Annotated, Optional

import pytest
from pydantic import BaseModel, Field

from routekit import PydanticAdapter, SchemaAdapter
from routekit.exceptions import InvalidSchemaError, ValidationError


class Address(BaseModel):
    city: str


class User(BaseModel):
    """A registered user."""

    name: str
    age: int = Field(ge=18, le=120, description="Age in years")
    nickname: Optional[str] = None
    address: Address | None = None


adapter = PydanticAdapter()


def test_adapter_satisfies_protocol() -> None:
    assert isinstance(adapter, SchemaAdapter)


def test_validate_coerces_strings() -> None:
    assert adapter.validate(int, "42") == 42
    user = adapter.validate(User, {"name": "Ann", "age": "30"})
    assert user.age == 30


def test_validate_reports_every_field() -> None:
    with pytest.raises(ValidationError) as info:
        adapter.validate(User, {"age": 17})
    fields = info.value.fields
    assert "name" in fields
    assert "age" in fields
    entry = next(e for e in info.value.errors() if e["field"] == "age")
    assert entry["type"] == "greater_than_equal"
    assert entry["loc"] == ["age"]


def test_validate_annotated_bounds() -> None:
    bounded = Annotated[int, Field(ge=18, le=120)]
    assert adapter.validate(bounded, 18) == 18
    assert adapter.validate(bounded, 120) == 120
    with pytest.raises(ValidationError):
        adapter.validate(bounded, 121)


def test_with_prefix_extends_locations() -> None:
    with pytest.raises(ValidationError) as info:
        adapter.validate(User, {"name": "Ann", "age": 5})
    prefixed = info.value.with_prefix("body")
    assert prefixed.fields == ["body.age"]


def test_optional_and_nullable() -> None:
    fields = adapter.fields(User)
    assert adapter.is_optional(fields["nickname"]) is True
    assert adapter.is_optional(fields["name"]) is False
    assert adapter.is_nullable(fields["nickname"]) is True
    assert adapter.is_nullable(fields["age"]) is False
    assert adapter.is_nullable(Optional[int]) is True
    assert adapter.is_optional(int) is False


def test_describe() -> None:
    assert adapter.describe(adapter.fields(User)["age"]) == "Age in years"
    assert adapter.describe(User) == "A registered user."
    assert adapter.describe(int) is None


def test_structural_schema_references_components() -> None:
    schema = adapter.to_structural_schema(User)
    assert schema["type"] == "object"
    assert schema["properties"]["age"]["minimum"] == 18
    assert "Address" in schema["$defs"]
    rendered = str(schema["properties"]["address"])
    assert "#/components/schemas/Address" in rendered


def test_fields_uses_aliases() -> None:
    class Query(BaseModel):
        page_size: int = Field(10, alias="pageSize")

    assert list(adapter.fields(Query)) == ["pageSize"]


@pytest.mark.parametrize("schema", [None, "User"])
def test_missing_schema_rejected(schema) -> None:
    with pytest.raises(InvalidSchemaError):
        adapter.validate(schema, {})
    with pytest.raises(InvalidSchemaError):
        adapter.to_structural_schema(schema)


def test_fields_requires_object_schema() -> None:
    with pytest.raises(InvalidSchemaError):
        adapter.fields(int)


def test_is_sequence() -> None:
    class Filters(BaseModel):
        tag: list[str] = []
        ids: Optional[tuple[int, ...]] = None
        name: str = ""

    fields = adapter.fields(Filters)
    assert adapter.is_sequence(fields["tag"]) is True
    assert adapter.is_sequence(fields["ids"]) is True
    assert adapter.is_sequence(fields["name"]) is False
    assert adapter.is_sequence(Annotated[list[int], Field(max_length=3)]) is True
    assert adapter.is_sequence(str) is False
    assert adapter.is_sequence(Filters) is False
