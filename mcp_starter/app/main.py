from __future__ import annotations

from fastapi import FastAPI

from libs.common.http_handlers import register_exception_handlers
from libs.common.logging import configure_logging
from mcp_starter.app.registry import CapabilityRegistry
from mcp_starter.app.settings import Settings, settings
from mcp_starter.bootstrap import build_runtime_components, create_lifespan
from mcp_starter.modules import build_api_router


def create_app(app_settings: Settings = settings, registry: CapabilityRegistry | None = None) -> FastAPI:
    # 컴포넌트는 lifespan 밖에서 만들어요. lifespan 없이 띄운 ASGI 앱에서도 바로 쓸 수 있어요.
    runtime = build_runtime_components(app_settings, registry)
    app = FastAPI(
        title=app_settings.server_name,
        version=app_settings.server_version,
        lifespan=create_lifespan(runtime),
    )
    app.state.settings = app_settings
    app.state.registry = runtime.registry
    app.state.mcp_server = runtime.server
    app.include_router(build_api_router(app_settings.endpoint_path))
    register_exception_handlers(app, "mcp_starter.errors")
    return app


configure_logging(settings.log_level)
app = create_app()
