from __future__ import annotations

from dataclasses import dataclass
from typing import Any

INTERNAL_ERROR_CODE = -32603
INVALID_PARAMS_CODE = -32602
NOT_FOUND_CODE = -32002


@dataclass(slots=True)
class ErrorEnvelope:
    code: int
    message: str
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data:
            payload["data"] = self.data
        return payload


class DomainError(Exception):
    rpc_code: int = INTERNAL_ERROR_CODE
    http_status: int = 400

    def __init__(
        self,
        error_code: str,
        message: str,
        retryable: bool = False,
        data: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.retryable = retryable
        self.data = data

    def to_envelope(self) -> ErrorEnvelope:
        return build_error_envelope(self.rpc_code, self.message, self.data)


class ValidationError(DomainError):
    rpc_code = INVALID_PARAMS_CODE

    def __init__(self, message: str = "검증에 실패했어요.", data: dict[str, Any] | None = None) -> None:
        super().__init__("VALIDATION_FAILED", message, retryable=False, data=data)


class TimeoutError(DomainError):
    def __init__(self, message: str = "작업 시간이 초과됐어요.") -> None:
        super().__init__("TIMEOUT", message, retryable=True)


class NotFoundError(DomainError):
    rpc_code = NOT_FOUND_CODE
    http_status = 404

    def __init__(self, message: str = "대상을 찾지 못했어요.", data: dict[str, Any] | None = None) -> None:
        super().__init__("NOT_FOUND", message, retryable=False, data=data)


class ConfigurationError(DomainError):
    http_status = 500

    def __init__(self, message: str = "설정이 올바르지 않아요.") -> None:
        super().__init__("CONFIGURATION_ERROR", message, retryable=False)


def build_error_envelope(code: int, message: str, data: dict[str, Any] | None = None) -> ErrorEnvelope:
    return ErrorEnvelope(code=code, message=message, data=data)
