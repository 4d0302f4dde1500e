"""줄 단위 JSON-RPC를 stdin/stdout으로 주고받는 전송 계층이에요.

stdout은 프로토콜 프레임 전용이라서 로그는 반드시 stderr로 보내야 해요.
stdin이 닫히면 세션을 닫고(진행 중인 요청은 응답 없이 버려요) 남은 출력을 비운 뒤 끝나요.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any, Protocol

from libs.common.logging import get_logger
from mcp_starter.app.protocol import encode_message
from mcp_starter.app.server import McpServer

logger = get_logger("mcp_starter.stdio")

# 큰 도구 인자도 한 줄로 들어오므로 기본 64KiB보다 넉넉하게 잡아요.
DEFAULT_FRAME_LIMIT = 16 * 1024 * 1024

_CLOSE = object()


class FrameWriter(Protocol):
    """`asyncio.StreamWriter`처럼 쓰고 비울 수 있는 출력이에요."""

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


class StdioSink:
    """세션이 보낸 메시지를 순서대로 한 줄씩 써요. 느린 출력은 `drain`에서 기다려요."""

    accepts_requests = True

    def __init__(self, writer: FrameWriter) -> None:
        self._writer = writer
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._broken = False

    def send(self, message: dict[str, Any]) -> None:
        if self._broken:
            return
        self._queue.put_nowait(message)

    async def run(self) -> None:
        while True:
            message = await self._queue.get()
            if message is _CLOSE:
                return
            if self._broken:
                continue
            try:
                self._writer.write((encode_message(message) + "\n").encode("utf-8"))
                await self._writer.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                # 출력이 끊겨도 프로세스는 죽지 않고 입력이 닫힐 때까지 기다려요.
                self._broken = True
                logger.warning("stdout_write_failed", error=str(exc))

    def close(self) -> None:
        self._queue.put_nowait(_CLOSE)


async def open_stdout_writer() -> asyncio.StreamWriter:
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, sys.stdout)
    return asyncio.StreamWriter(transport, protocol, None, loop)


async def open_stdin_reader(limit: int = DEFAULT_FRAME_LIMIT) -> asyncio.StreamReader:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=limit)
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    return reader


class StdioTransport:
    def __init__(
        self,
        server: McpServer,
        *,
        reader: asyncio.StreamReader | None = None,
        writer: FrameWriter | None = None,
    ) -> None:
        self._server = server
        self._reader = reader
        self._writer = writer

    async def serve(self) -> None:
        reader = self._reader if self._reader is not None else await open_stdin_reader()
        sink = StdioSink(self._writer if self._writer is not None else await open_stdout_writer())
        session = await self._server.create_session(default_sink=sink)
        writer = asyncio.create_task(sink.run())
        logger.info("stdio_session_started", session_id=session.session_id)

        try:
            while True:
                try:
                    line = await reader.readline()
                except ValueError as exc:
                    # 한도를 넘는 줄은 버려지고 다음 줄부터 다시 읽어요.
                    logger.warning("stdio_frame_too_large", session_id=session.session_id, error=str(exc))
                    continue
                if not line:
                    break
                frame = line.strip()
                if not frame:
                    continue
                await session.receive_frame(frame)
        finally:
            logger.info("stdio_input_closed", session_id=session.session_id)
            await self._server.close_session(session.session_id)
            sink.close()
            await writer


async def serve_stdio(server: McpServer) -> None:
    await StdioTransport(server).serve()
