from __future__ import annotations

from mcp_starter.bootstrap.container import RuntimeComponents, build_runtime_components
from mcp_starter.bootstrap.lifespan import create_lifespan

__all__ = [
    "RuntimeComponents",
    "build_runtime_components",
    "create_lifespan",
]
