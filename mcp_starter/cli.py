from __future__ import annotations

import asyncio
import contextlib
import sys

import uvicorn

from libs.common.logging import configure_logging
from mcp_starter.app.settings import settings
from mcp_starter.app.stdio import serve_stdio
from mcp_starter.bootstrap import build_runtime_components


def _run(*, reload_enabled: bool) -> None:
    uvicorn.run(
        "mcp_starter.app.main:app",
        host=settings.host,
        port=settings.port,
        reload=reload_enabled,
    )


def main() -> None:
    _run(reload_enabled=False)


def main_dev() -> None:
    _run(reload_enabled=True)


def main_stdio() -> None:
    # stdout은 프로토콜 프레임 전용이에요.
    configure_logging(settings.log_level, stream=sys.stderr)
    runtime = build_runtime_components(settings)
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(serve_stdio(runtime.server))
