from __future__ import annotations

from typing import Any, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr
from pydantic import ValidationError as PydanticValidationError

from mcp_starter.app.errors import InvalidParamsError

ParamsModel = TypeVar("ParamsModel", bound=BaseModel)


class _Params(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class InitializeParams(_Params):
    protocol_version: str = Field(alias="protocolVersion", min_length=1)
    capabilities: dict[str, Any] = Field(default_factory=dict)
    client_info: dict[str, Any] = Field(default_factory=dict, alias="clientInfo")


class ListParams(_Params):
    cursor: str | None = None


class CallToolParams(_Params):
    name: str = Field(min_length=1)
    arguments: dict[str, Any] | None = None


class ReadResourceParams(_Params):
    uri: str = Field(min_length=1)


class GetPromptParams(_Params):
    name: str = Field(min_length=1)
    arguments: dict[str, Any] | None = None


class CancelledParams(_Params):
    request_id: Union[StrictStr, StrictInt, None] = Field(default=None, alias="requestId")
    id: Union[StrictStr, StrictInt, None] = None
    reason: str | None = None

    @property
    def target(self) -> str | int | None:
        return self.request_id if self.request_id is not None else self.id


def parse_params(model: type[ParamsModel], params: dict[str, Any]) -> ParamsModel:
    """요청 파라미터를 모델로 검증해요. 실패하면 첫 번째 문제 필드를 담은 `InvalidParamsError`를 던져요."""
    try:
        return model.model_validate(params)
    except PydanticValidationError as exc:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = first.get("loc", ())
        field = ".".join(str(part) for part in location) or None
        message = first.get("msg", "파라미터가 올바르지 않아요.")
        raise InvalidParamsError(f"파라미터가 올바르지 않아요: {field}: {message}", field=field) from exc


def progress_token_of(params: dict[str, Any]) -> str | int | None:
    meta = params.get("_meta")
    if not isinstance(meta, dict):
        return None
    token = meta.get("progressToken")
    if isinstance(token, bool):
        return None
    return token if isinstance(token, (str, int)) else None
