from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from libs.contracts.models import JsonRpcNotification, JsonRpcRequest, JsonRpcResponse
from mcp_starter.app.errors import InvalidRequestError, ParseError

JSONRPC_VERSION = "2.0"
MCP_PROTOCOL_VERSION = "2025-11-25"
SUPPORTED_PROTOCOL_VERSIONS: tuple[str, ...] = (
    "2025-11-25",
    "2025-06-18",
    "2025-03-26",
    "2024-11-05",
)

RequestId = str | int

# 깨진 프레임에서도 id만큼은 건져서 오류 응답을 보낼 수 있게 해요.
_ID_PATTERN = re.compile(r'"id"\s*:\s*(-?\d+|"(?:[^"\\]|\\.)*")')


@dataclass(slots=True)
class InboundRequest:
    id: RequestId
    method: str
    params: dict[str, Any]


@dataclass(slots=True)
class InboundNotification:
    method: str
    params: dict[str, Any]


@dataclass(slots=True)
class InboundResponse:
    id: RequestId | None
    result: dict[str, Any] | None
    error: dict[str, Any] | None


InboundMessage = InboundRequest | InboundNotification | InboundResponse


def decode_frame(frame: str | bytes) -> Any:
    """원시 프레임을 JSON 값으로 풀어요. 실패하면 `ParseError`를 던져요."""
    text = frame.decode("utf-8", errors="replace") if isinstance(frame, bytes) else frame
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(f"JSON을 해석하지 못했어요: {exc.msg}") from exc


def recover_request_id(frame: str | bytes) -> RequestId | None:
    """깨진 프레임에서 최상위 객체의 `id`만 건져요. 중첩된 `id`는 무시해요."""
    text = frame.decode("utf-8", errors="replace") if isinstance(frame, bytes) else frame
    depth = 0
    index = 0
    while index < len(text):
        char = text[index]
        if char == '"':
            if depth == 1:
                match = _ID_PATTERN.match(text, index)
                if match is not None:
                    return _id_value(match.group(1))
            end = _string_end(text, index)
            if end is None:
                return None
            index = end + 1
            continue
        if char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
        index += 1
    return None


def _string_end(text: str, start: int) -> int | None:
    index = start + 1
    while index < len(text):
        char = text[index]
        if char == "\\":
            index += 2
            continue
        if char == '"':
            return index
        index += 1
    return None


def _id_value(raw: str) -> RequestId | None:
    if not raw.startswith('"'):
        return int(raw)
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, str) else None


def parse_message(payload: Any) -> InboundMessage:
    """JSON 값 하나를 요청/알림/응답 중 하나로 분류해요."""
    if not isinstance(payload, dict):
        raise InvalidRequestError("JSON-RPC 메시지는 객체여야 해요.")

    try:
        if "method" in payload:
            if "id" in payload:
                request = JsonRpcRequest.model_validate(payload)
                return InboundRequest(id=request.id, method=request.method, params=request.params or {})
            notification = JsonRpcNotification.model_validate(payload)
            return InboundNotification(method=notification.method, params=notification.params or {})
        if "result" in payload or "error" in payload:
            response = JsonRpcResponse.model_validate(payload)
            error = response.error.model_dump(exclude_none=True) if response.error is not None else None
            return InboundResponse(id=response.id, result=response.result, error=error)
    except PydanticValidationError as exc:
        raise InvalidRequestError(f"JSON-RPC 메시지 형식이 올바르지 않아요: {_first_error(exc)}") from exc

    raise InvalidRequestError("method도 result/error도 없는 메시지예요.")


def request_id_of(payload: Any) -> RequestId | None:
    if not isinstance(payload, dict):
        return None
    value = payload.get("id")
    if isinstance(value, bool):
        return None
    return value if isinstance(value, (str, int)) else None


def build_request(request_id: RequestId, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def build_notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        message["params"] = params
    return message


def build_result(request_id: RequestId, result: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def build_error(request_id: RequestId | None, error: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


def is_response(message: dict[str, Any]) -> bool:
    return "method" not in message and ("result" in message or "error" in message)


def encode_message(message: dict[str, Any] | list[dict[str, Any]]) -> str:
    return json.dumps(message, ensure_ascii=False, separators=(",", ":"))


def _first_error(exc: PydanticValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg', '')}" if location else str(first.get("msg", ""))
