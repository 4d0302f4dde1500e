from __future__ import annotations

from dataclasses import dataclass

from mcp_starter.app.elements.defaults import INSTRUCTIONS, build_default_registry
from mcp_starter.app.registry import CapabilityRegistry
from mcp_starter.app.server import IdleSessionReaper, McpServer
from mcp_starter.app.session import ServerInfo
from mcp_starter.app.settings import Settings


@dataclass(slots=True)
class RuntimeComponents:
    settings: Settings
    registry: CapabilityRegistry
    server: McpServer
    reaper: IdleSessionReaper


def build_runtime_components(settings: Settings, registry: CapabilityRegistry | None = None) -> RuntimeComponents:
    registry = registry if registry is not None else build_default_registry(settings)
    server = McpServer(
        registry=registry,
        server_info=ServerInfo(
            name=settings.server_name,
            version=settings.server_version,
            instructions=INSTRUCTIONS,
        ),
        client_request_timeout_seconds=settings.client_request_timeout_seconds,
        page_size=settings.page_size,
    )
    reaper = IdleSessionReaper(
        server,
        idle_timeout_seconds=settings.session_idle_timeout_seconds,
        sweep_interval_seconds=settings.session_sweep_interval_seconds,
    )
    return RuntimeComponents(settings=settings, registry=registry, server=server, reaper=reaper)
