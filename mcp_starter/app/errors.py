"""MCP 서버 코어가 던지는 오류 모음이에요.

프로토콜 오류는 JSON-RPC 오류 봉투로, `ToolError`는 `isError` 결과로 바뀌어요.
"""

from __future__ import annotations

from typing import Any

from libs.common.errors import DomainError, NotFoundError, TimeoutError, ValidationError

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
NOT_INITIALIZED = -32000
RESOURCE_NOT_FOUND = -32002
REQUEST_CANCELLED = -32800

__all__ = [
    "CapabilityNotSupportedError",
    "DuplicateNameError",
    "ElicitationFailedError",
    "InternalError",
    "InvalidParamsError",
    "InvalidRequestError",
    "MethodNotFoundError",
    "NotFoundError",
    "NotInitializedError",
    "ParseError",
    "RequestCancelledError",
    "SamplingFailedError",
    "ToolError",
    "UnsupportedVersionError",
]


class ParseError(DomainError):
    rpc_code = PARSE_ERROR

    def __init__(self, message: str = "JSON을 해석하지 못했어요.") -> None:
        super().__init__("PARSE_ERROR", message)


class InvalidRequestError(DomainError):
    rpc_code = INVALID_REQUEST

    def __init__(self, message: str = "잘못된 JSON-RPC 요청이에요.") -> None:
        super().__init__("INVALID_REQUEST", message)


class MethodNotFoundError(DomainError):
    rpc_code = METHOD_NOT_FOUND

    def __init__(self, method: str) -> None:
        super().__init__("METHOD_NOT_FOUND", f"지원하지 않는 메서드예요: {method}", data={"method": method})
        self.method = method


class InvalidParamsError(ValidationError):
    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, data={"field": field} if field else None)
        self.field = field


class InternalError(DomainError):
    rpc_code = INTERNAL_ERROR
    http_status = 500

    def __init__(self, message: str = "예상하지 못한 내부 오류가 발생했어요.") -> None:
        super().__init__("INTERNAL_ERROR", message, retryable=True)


class NotInitializedError(DomainError):
    rpc_code = NOT_INITIALIZED

    def __init__(self, method: str) -> None:
        super().__init__(
            "NOT_INITIALIZED",
            f"세션이 아직 초기화되지 않았어요. 먼저 initialize를 호출해야 해요: {method}",
            data={"method": method},
        )


class UnsupportedVersionError(DomainError):
    rpc_code = INVALID_PARAMS

    def __init__(self, requested: str, supported: tuple[str, ...]) -> None:
        super().__init__(
            "UNSUPPORTED_VERSION",
            f"지원하지 않는 프로토콜 버전이에요: {requested}",
            data={"requested": requested, "supported": list(supported)},
        )
        self.requested = requested


class RequestCancelledError(DomainError):
    rpc_code = REQUEST_CANCELLED

    def __init__(self, request_id: Any) -> None:
        super().__init__("REQUEST_CANCELLED", "요청이 취소됐어요.", data={"requestId": request_id})


class DuplicateNameError(DomainError):
    rpc_code = INVALID_PARAMS
    http_status = 409

    def __init__(self, kind: str, key: str) -> None:
        super().__init__("DUPLICATE_NAME", f"이미 등록된 {kind}예요: {key}", data={"kind": kind, "key": key})
        self.kind = kind
        self.key = key


class CapabilityNotSupportedError(DomainError):
    def __init__(self, capability: str) -> None:
        super().__init__(
            "CAPABILITY_NOT_SUPPORTED",
            f"클라이언트가 {capability} 기능을 지원하지 않아요.",
            data={"capability": capability},
        )
        self.capability = capability


class SamplingFailedError(TimeoutError):
    def __init__(self, message: str = "샘플링 요청이 실패했어요.") -> None:
        super().__init__(message)
        self.error_code = "SAMPLING_FAILED"


class ElicitationFailedError(TimeoutError):
    def __init__(self, message: str = "사용자 입력 요청이 실패했어요.") -> None:
        super().__init__(message)
        self.error_code = "ELICITATION_FAILED"


class ToolError(Exception):
    """핸들러가 업무 수준의 실패를 알릴 때 던져요. 클라이언트에는 `isError` 결과로 전달돼요."""
