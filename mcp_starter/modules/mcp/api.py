"""Streamable HTTP 전송이에요.

POST 한 번이 JSON-RPC 메시지 하나(또는 배치)를 실어 나르고, 응답은 JSON 본문이나
SSE 스트림으로 돌아가요. 세션은 `Mcp-Session-Id` 헤더로 이어져요.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse

from libs.common.logging import get_logger
from mcp_starter.app.errors import InvalidRequestError, ParseError
from mcp_starter.app.protocol import build_error, decode_frame, encode_message, is_response, recover_request_id
from mcp_starter.app.server import McpServer
from mcp_starter.app.session import McpSession, SessionState, drain
from mcp_starter.modules.common.deps import get_server

logger = get_logger("mcp_starter.http")

SESSION_HEADER = "Mcp-Session-Id"
EVENT_STREAM = "text/event-stream"
SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}

_END = object()


class HttpExchange:
    """HTTP 교환 하나에 묶인 출구예요. 세션이 보낸 메시지를 큐에 쌓아 두어요.

    JSON 응답 모드에서는 클라이언트에게 요청을 보낼 통로가 없어서 `accepts_requests`가 False예요.
    """

    def __init__(self, *, accepts_requests: bool) -> None:
        self._accepts_requests = accepts_requests
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._finished = False

    @property
    def accepts_requests(self) -> bool:
        return self._accepts_requests

    def send(self, message: dict[str, Any]) -> None:
        if self._finished:
            return
        self._queue.put_nowait(message)

    def finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        self._queue.put_nowait(_END)

    def drain_nowait(self) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        while not self._queue.empty():
            message = self._queue.get_nowait()
            if message is not _END:
                messages.append(message)
        return messages

    async def events(self) -> AsyncIterator[str]:
        while True:
            message = await self._queue.get()
            if message is _END:
                return
            yield format_sse(message)


def format_sse(message: dict[str, Any]) -> str:
    return f"event: message\ndata: {encode_message(message)}\n\n"


def _wants_event_stream(request: Request) -> bool:
    return EVENT_STREAM in request.headers.get("accept", "")


def _messages_of(payload: Any) -> list[Any]:
    return payload if isinstance(payload, list) else [payload]


def _is_request(message: Any) -> bool:
    return isinstance(message, dict) and "method" in message and "id" in message


def _is_initialize(message: Any) -> bool:
    return _is_request(message) and message.get("method") == "initialize"


async def _resolve_session(server: McpServer, request: Request, payload: Any) -> tuple[McpSession, bool]:
    session_id = request.headers.get(SESSION_HEADER)
    if session_id:
        return await server.get_session(session_id), False
    if any(_is_initialize(message) for message in _messages_of(payload)):
        return await server.create_session(), True
    raise InvalidRequestError(f"{SESSION_HEADER} 헤더가 필요해요. 먼저 initialize를 호출해 주세요.")


def build_mcp_router(endpoint_path: str) -> APIRouter:
    router = APIRouter()

    @router.post(endpoint_path)
    async def post_message(request: Request) -> Response:
        server = get_server(request)
        body = await request.body()
        try:
            payload = decode_frame(body)
        except ParseError as exc:
            logger.info("http_parse_error", error=exc.message)
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content=build_error(recover_request_id(body), exc.to_envelope().to_dict()),
            )

        session, created = await _resolve_session(server, request, payload)
        has_requests = any(_is_request(message) for message in _messages_of(payload))
        if not has_requests:
            await session.receive(payload)
            return Response(status_code=status.HTTP_202_ACCEPTED, headers={SESSION_HEADER: session.session_id})

        streaming = _wants_event_stream(request)
        exchange = HttpExchange(accepts_requests=streaming)
        tasks = await session.receive(payload, exchange)

        headers = {SESSION_HEADER: session.session_id}
        if created and session.state is SessionState.UNINITIALIZED:
            # initialize가 거절되면 만든 세션을 남기지 않아요.
            await server.close_session(session.session_id)
            headers = {}

        if streaming:
            return StreamingResponse(
                _stream_exchange(exchange, tasks),
                media_type=EVENT_STREAM,
                headers={**SSE_HEADERS, **headers},
            )

        await drain(tasks)
        responses = [message for message in exchange.drain_nowait() if is_response(message)]
        if not responses:
            return Response(status_code=status.HTTP_202_ACCEPTED, headers=headers)
        content: Any = responses if isinstance(payload, list) else responses[0]
        return JSONResponse(content=content, headers=headers)

    @router.get(endpoint_path)
    async def open_stream(request: Request) -> StreamingResponse:
        server = get_server(request)
        session = await server.get_session(_require_session_header(request))
        stream = HttpExchange(accepts_requests=True)
        previous = session.default_sink
        if isinstance(previous, HttpExchange):
            previous.finish()
        session.attach_sink(stream)
        logger.info("standalone_stream_opened", session_id=session.session_id)
        return StreamingResponse(
            _stream_standalone(session, stream),
            media_type=EVENT_STREAM,
            headers={**SSE_HEADERS, SESSION_HEADER: session.session_id},
        )

    @router.delete(endpoint_path)
    async def delete_session(request: Request) -> Response:
        server = get_server(request)
        session = await server.get_session(_require_session_header(request))
        stream = session.default_sink
        await server.close_session(session.session_id)
        if isinstance(stream, HttpExchange):
            stream.finish()
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return router


def _require_session_header(request: Request) -> str:
    session_id = request.headers.get(SESSION_HEADER)
    if not session_id:
        raise InvalidRequestError(f"{SESSION_HEADER} 헤더가 필요해요.")
    return session_id


async def _stream_exchange(exchange: HttpExchange, tasks: list[asyncio.Task[None]]) -> AsyncIterator[str]:
    async def finish_when_done() -> None:
        await drain(tasks)
        exchange.finish()

    closer = asyncio.create_task(finish_when_done())
    try:
        async for event in exchange.events():
            yield event
    finally:
        closer.cancel()


async def _stream_standalone(session: McpSession, stream: HttpExchange) -> AsyncIterator[str]:
    try:
        async for event in stream.events():
            yield event
    finally:
        if session.default_sink is stream:
            session.attach_sink(None)
        logger.info("standalone_stream_closed", session_id=session.session_id)
