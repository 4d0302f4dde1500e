from __future__ import annotations

from fastapi import APIRouter


def build_api_router(endpoint_path: str) -> APIRouter:
    from mcp_starter.modules.health.api import router as health_router
    from mcp_starter.modules.mcp.api import build_mcp_router

    api_router = APIRouter()
    api_router.include_router(health_router)
    api_router.include_router(build_mcp_router(endpoint_path))
    return api_router


__all__ = ["build_api_router"]
