from mcp_starter.app.elements.defaults import INSTRUCTIONS, build_default_registry

__all__ = [
    "INSTRUCTIONS",
    "build_default_registry",
]
