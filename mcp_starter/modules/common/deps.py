from __future__ import annotations

from fastapi import HTTPException, Request, status

from mcp_starter.app.server import McpServer
from mcp_starter.app.settings import Settings, settings


def get_settings(request: Request) -> Settings:
    configured = getattr(request.app.state, "settings", None)
    if isinstance(configured, Settings):
        return configured
    return settings


def get_server(request: Request) -> McpServer:
    server = getattr(request.app.state, "mcp_server", None)
    if not isinstance(server, McpServer):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="MCP 서버를 사용할 수 없어요.")
    return server
