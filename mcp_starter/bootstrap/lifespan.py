from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from libs.common.logging import get_logger
from mcp_starter.bootstrap.container import RuntimeComponents

logger = get_logger("mcp_starter.lifespan")


def create_lifespan(runtime: RuntimeComponents):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "http_server_started",
            server=runtime.settings.server_name,
            version=runtime.settings.server_version,
            endpoint=runtime.settings.endpoint_path,
            capabilities=len(runtime.registry),
        )
        await runtime.reaper.start()
        try:
            yield
        finally:
            await runtime.reaper.stop()
            await runtime.server.close_all()
            logger.info("http_server_stopped")

    return lifespan
