from __future__ import annotations

from mcp_starter.modules.common.deps import get_server, get_settings

__all__ = [
    "get_server",
    "get_settings",
]
