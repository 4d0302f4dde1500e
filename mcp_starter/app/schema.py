"""도구 입력 스키마 검사와 인자 검증이에요.

검증은 `jsonschema`로 하고, 오류가 나면 문제가 된 필드 이름을 담은
`InvalidParamsError`로 바꿔요.
"""

from __future__ import annotations

import copy
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema import ValidationError as JsonSchemaValidationError
from jsonschema.exceptions import SchemaError

from libs.common.errors import ConfigurationError
from mcp_starter.app.errors import InvalidParamsError

EMPTY_OBJECT_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


def check_input_schema(name: str, schema: dict[str, Any]) -> None:
    """등록 시점에 스키마 자체가 올바른지 확인해요."""
    if not isinstance(schema, dict) or schema.get("type") != "object":
        raise ConfigurationError(f"도구 입력 스키마는 type이 object여야 해요: {name}")
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as exc:
        raise ConfigurationError(f"도구 입력 스키마가 올바르지 않아요: {name}: {exc.message}") from exc


def apply_defaults(schema: dict[str, Any], arguments: dict[str, Any]) -> dict[str, Any]:
    applied = dict(arguments)
    properties = schema.get("properties")
    if not isinstance(properties, dict):
        return applied
    for key, property_schema in properties.items():
        if key in applied or not isinstance(property_schema, dict) or "default" not in property_schema:
            continue
        applied[key] = copy.deepcopy(property_schema["default"])
    return applied


def validate_arguments(schema: dict[str, Any], arguments: Any) -> dict[str, Any]:
    """기본값을 채운 뒤 스키마로 검증한 인자를 돌려줘요.

    스키마가 `additionalProperties: false`를 선언하지 않았다면 모르는 속성도 통과시켜요.
    """
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise InvalidParamsError("arguments는 객체여야 해요.", field="arguments")

    applied = apply_defaults(schema, arguments)
    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(applied), key=lambda error: (len(error.path), list(map(str, error.path))))
    if not errors:
        return applied

    first = errors[0]
    field = _offending_field(first)
    raise InvalidParamsError(_describe(first, field), field=field)


def _offending_field(error: JsonSchemaValidationError) -> str | None:
    if error.validator == "required" and isinstance(error.instance, dict):
        missing = [name for name in error.validator_value if name not in error.instance]
        if missing:
            return ".".join([*map(str, error.path), str(missing[0])])
    if error.validator == "additionalProperties" and isinstance(error.instance, dict):
        allowed = error.schema.get("properties", {}) if isinstance(error.schema, dict) else {}
        extras = [name for name in error.instance if name not in allowed]
        if extras:
            return ".".join([*map(str, error.path), str(extras[0])])
    if error.path:
        return ".".join(str(part) for part in error.path)
    return None


def _describe(error: JsonSchemaValidationError, field: str | None) -> str:
    if error.validator == "required" and field:
        return f"필수 인자가 빠졌어요: {field}"
    if error.validator == "additionalProperties" and field:
        return f"허용되지 않은 인자예요: {field}"
    if error.validator == "type" and field:
        return f"인자 타입이 맞지 않아요: {field} ({error.validator_value} 필요)"
    if error.validator == "enum" and field:
        allowed = ", ".join(map(str, error.validator_value))
        return f"허용되지 않은 값이에요: {field} (가능한 값: {allowed})"
    if field:
        return f"인자가 올바르지 않아요: {field}: {error.message}"
    return f"인자가 올바르지 않아요: {error.message}"
