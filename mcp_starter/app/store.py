from __future__ import annotations

import asyncio

from libs.common.errors import NotFoundError
from mcp_starter.app.session import McpSession


class SessionNotFoundError(NotFoundError):
    """요청한 세션을 찾을 수 없어요."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"세션을 찾을 수 없어요: {session_id!r}", data={"reason": "unknown", "key": session_id})
        self.session_id = session_id


class InMemorySessionStore:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._sessions: dict[str, McpSession] = {}

    async def add(self, session: McpSession) -> McpSession:
        async with self._lock:
            self._sessions[session.session_id] = session
            return session

    def _require(self, session_id: str) -> McpSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def get(self, session_id: str) -> McpSession:
        async with self._lock:
            return self._require(session_id)

    async def remove(self, session_id: str) -> McpSession:
        async with self._lock:
            session = self._require(session_id)
            del self._sessions[session_id]
            return session

    def snapshot(self) -> list[McpSession]:
        """락 없이 현재 세션 목록을 복사해요. 알림 방송처럼 동기 콜백에서 써요."""
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)
