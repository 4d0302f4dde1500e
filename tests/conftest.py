from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from mcp_starter.app.elements import tools as starter_tools
from mcp_starter.app.elements.defaults import build_default_registry
from mcp_starter.app.engine import InvocationEngine
from mcp_starter.app.registry import CapabilityRegistry
from mcp_starter.app.server import McpServer
from mcp_starter.app.session import McpSession, ServerInfo
from mcp_starter.app.settings import Settings

PROTOCOL_VERSION = "2025-06-18"


class RecordingSink:
    """세션이 보낸 메시지를 순서대로 모아 두는 테스트용 출구예요."""

    def __init__(self, *, accepts_requests: bool = True) -> None:
        self.accepts_requests = accepts_requests
        self.messages: list[dict[str, Any]] = []

    def send(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    def responses(self) -> list[dict[str, Any]]:
        return [message for message in self.messages if "method" not in message]

    def response_for(self, request_id: Any) -> dict[str, Any] | None:
        for message in self.responses():
            if message.get("id") == request_id:
                return message
        return None

    def with_method(self, method: str) -> list[dict[str, Any]]:
        return [message for message in self.messages if message.get("method") == method]


@pytest.fixture
def test_settings() -> Settings:
    return Settings(server_name="mcp-starter-test", server_version="9.9.9", page_size=50)


@pytest.fixture
def registry(test_settings: Settings) -> CapabilityRegistry:
    """각 테스트용으로 새로 만든 기본 레지스트리예요."""
    return build_default_registry(test_settings)


@pytest.fixture(autouse=True)
def fast_long_task(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(starter_tools, "LONG_TASK_STEP_SECONDS", 0.01)


@pytest.fixture
def server(registry: CapabilityRegistry) -> McpServer:
    return McpServer(
        registry=registry,
        server_info=ServerInfo(name="mcp-starter-test", version="9.9.9", instructions="test instructions"),
        client_request_timeout_seconds=0.5,
    )


def make_session(registry: CapabilityRegistry, **kwargs: Any) -> McpSession:
    return McpSession(
        engine=InvocationEngine(registry),
        server_info=ServerInfo(name="mcp-starter-test", version="9.9.9"),
        **kwargs,
    )


def request(request_id: Any, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        message["params"] = params
    return message


async def initialize(
    session: McpSession,
    sink: RecordingSink,
    capabilities: dict[str, Any] | None = None,
    *,
    version: str = PROTOCOL_VERSION,
) -> dict[str, Any]:
    """initialize와 initialized를 보내 세션을 준비 상태로 만들어요."""
    await session.receive(
        request(
            "init",
            "initialize",
            {
                "protocolVersion": version,
                "capabilities": capabilities or {},
                "clientInfo": {"name": "pytest", "version": "1.0"},
            },
        ),
        sink,
    )
    await session.receive(notification("notifications/initialized"), sink)
    response = sink.response_for("init")
    assert response is not None
    return response


async def call(session: McpSession, sink: RecordingSink, request_id: Any, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    tasks = await session.receive(request(request_id, method, params), sink)
    await settle(tasks)
    response = sink.response_for(request_id)
    assert response is not None, f"{method} 응답이 없어요."
    return response


async def settle(tasks: list[asyncio.Task[None]]) -> None:
    """요청 태스크가 끝나고 완료 콜백까지 돌 때까지 기다려요."""
    if tasks:
        await asyncio.wait(tasks)
    await asyncio.sleep(0)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)
