from __future__ import annotations

import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from libs.common.errors import INTERNAL_ERROR_CODE, DomainError
from libs.common.logging import get_logger

JSONRPC_VERSION = "2.0"


def register_exception_handlers(app: FastAPI, logger_name: str) -> None:
    """HTTP 계층에서 올라온 예외를 JSON-RPC 오류 본문으로 바꿔요."""
    logger = get_logger(logger_name)

    @app.exception_handler(DomainError)
    async def handle_domain_error(request: Request, exc: DomainError) -> JSONResponse:
        trace_id = str(uuid.uuid4())
        logger.warning(
            "domain_error",
            path=request.url.path,
            method=request.method,
            trace_id=trace_id,
            error_code=exc.error_code,
            message=exc.message,
            retryable=exc.retryable,
        )
        return JSONResponse(
            status_code=exc.http_status,
            content={
                "jsonrpc": JSONRPC_VERSION,
                "id": None,
                "error": exc.to_envelope().to_dict(),
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        trace_id = str(uuid.uuid4())
        logger.exception(
            "unhandled_error",
            path=request.url.path,
            method=request.method,
            trace_id=trace_id,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content={
                "jsonrpc": JSONRPC_VERSION,
                "id": None,
                "error": {
                    "code": INTERNAL_ERROR_CODE,
                    "message": "예상하지 못한 내부 오류가 발생했어요.",
                    "data": {"trace_id": trace_id},
                },
            },
        )
