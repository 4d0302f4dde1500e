from __future__ import annotations

from typing import Any

import pytest

from mcp_starter.app.errors import InvalidParamsError
from mcp_starter.app.schema import validate_arguments

SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "taskName": {"type": "string"},
        "steps": {"type": "integer", "default": 5},
        "mode": {"type": "string", "enum": ["fast", "slow"]},
    },
    "required": ["taskName"],
}


def test_defaults_are_applied() -> None:
    assert validate_arguments(SCHEMA, {"taskName": "build"}) == {"taskName": "build", "steps": 5}


def test_none_arguments_behave_like_empty_object() -> None:
    schema = {"type": "object", "properties": {}}
    assert validate_arguments(schema, None) == {}


def test_unknown_properties_are_allowed_by_default() -> None:
    validated = validate_arguments(SCHEMA, {"taskName": "build", "extra": True})
    assert validated["extra"] is True


def test_unknown_properties_rejected_when_schema_forbids_them() -> None:
    schema = {**SCHEMA, "additionalProperties": False}
    with pytest.raises(InvalidParamsError) as exc_info:
        validate_arguments(schema, {"taskName": "build", "extra": True})
    assert exc_info.value.field == "extra"


def test_missing_required_property_names_the_field() -> None:
    with pytest.raises(InvalidParamsError) as exc_info:
        validate_arguments(SCHEMA, {})
    assert exc_info.value.field == "taskName"
    assert exc_info.value.to_envelope().code == -32602


def test_type_mismatch_names_the_field() -> None:
    with pytest.raises(InvalidParamsError) as exc_info:
        validate_arguments(SCHEMA, {"taskName": "build", "steps": "five"})
    assert exc_info.value.field == "steps"
    assert exc_info.value.data == {"field": "steps"}


def test_enum_violation_names_the_field() -> None:
    with pytest.raises(InvalidParamsError) as exc_info:
        validate_arguments(SCHEMA, {"taskName": "build", "mode": "medium"})
    assert exc_info.value.field == "mode"


def test_non_object_arguments_are_rejected() -> None:
    with pytest.raises(InvalidParamsError) as exc_info:
        validate_arguments(SCHEMA, ["taskName"])
    assert exc_info.value.field == "arguments"
