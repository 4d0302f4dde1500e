"""레지스트리와 세션 저장소를 묶는 서버 객체예요.

전송 계층(stdio, HTTP)은 이 객체에서 세션을 만들고 찾아요.
레지스트리가 바뀌면 준비된 모든 세션에 목록 변경 알림을 보내요.
"""

from __future__ import annotations

import asyncio
import contextlib

from libs.common.logging import get_logger
from mcp_starter.app.engine import InvocationEngine
from mcp_starter.app.registry import CapabilityKind, CapabilityRegistry
from mcp_starter.app.session import McpSession, MessageSink, ServerInfo
from mcp_starter.app.store import InMemorySessionStore, SessionNotFoundError

logger = get_logger("mcp_starter.server")


class McpServer:
    def __init__(
        self,
        *,
        registry: CapabilityRegistry,
        server_info: ServerInfo,
        client_request_timeout_seconds: float = 60.0,
        page_size: int = 50,
    ) -> None:
        self._registry = registry
        self._server_info = server_info
        self._engine = InvocationEngine(registry)
        self._store = InMemorySessionStore()
        self._client_request_timeout_seconds = client_request_timeout_seconds
        self._page_size = page_size
        registry.add_listener(self._broadcast_list_changed)

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    @property
    def server_info(self) -> ServerInfo:
        return self._server_info

    @property
    def store(self) -> InMemorySessionStore:
        return self._store

    async def create_session(self, default_sink: MessageSink | None = None) -> McpSession:
        session = McpSession(
            engine=self._engine,
            server_info=self._server_info,
            default_sink=default_sink,
            client_request_timeout_seconds=self._client_request_timeout_seconds,
            page_size=self._page_size,
        )
        await self._store.add(session)
        logger.info("session_created", session_id=session.session_id, active_sessions=len(self._store))
        return session

    async def get_session(self, session_id: str) -> McpSession:
        return await self._store.get(session_id)

    async def close_session(self, session_id: str) -> None:
        session = await self._store.remove(session_id)
        await session.close()

    async def close_all(self) -> None:
        for session in self._store.snapshot():
            await self.close_session(session.session_id)

    async def expire_idle_sessions(self, idle_timeout_seconds: float, *, now: float | None = None) -> list[str]:
        """출구가 붙어 있지 않고 오래 조용한 세션을 닫아요.

        출구가 붙은 세션(stdio, 열린 GET 스트림)은 연결이 살아 있는 것으로 봐요.
        """
        expired: list[str] = []
        for session in self._store.snapshot():
            if session.default_sink is not None or session.idle_seconds(now) < idle_timeout_seconds:
                continue
            with contextlib.suppress(SessionNotFoundError):
                await self.close_session(session.session_id)
                expired.append(session.session_id)
        if expired:
            logger.info("idle_sessions_expired", count=len(expired), active_sessions=len(self._store))
        return expired

    def _broadcast_list_changed(self, kind: CapabilityKind) -> None:
        sessions = [session for session in self._store.snapshot() if session.is_ready]
        for session in sessions:
            session.notify_list_changed(kind)
        logger.info("list_changed_broadcast", kind=kind.value, sessions=len(sessions))


class IdleSessionReaper:
    """주기적으로 `expire_idle_sessions`를 돌려요. DELETE 없이 떠난 HTTP 클라이언트의 세션을 치워요."""

    def __init__(self, server: McpServer, *, idle_timeout_seconds: float, sweep_interval_seconds: float) -> None:
        self._server = server
        self._idle_timeout_seconds = idle_timeout_seconds
        self._sweep_interval_seconds = sweep_interval_seconds
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval_seconds)
            try:
                await self._server.expire_idle_sessions(self._idle_timeout_seconds)
            except Exception:
                logger.exception("idle_session_sweep_failed")
