from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MCP_",
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
    )

    server_name: str = "mcp-starter"
    server_version: str = "1.0.0"
    host: str = "0.0.0.0"
    # 호스팅 환경이 주입하는 PORT를 우선으로 봐요.
    port: int = Field(default=3000, validation_alias=AliasChoices("PORT", "MCP_PORT"))
    endpoint_path: str = "/mcp"
    client_request_timeout_seconds: float = 60.0
    page_size: int = 50
    # DELETE 없이 떠난 HTTP 세션은 이 시간만큼 조용하면 닫아요.
    session_idle_timeout_seconds: float = 1800.0
    session_sweep_interval_seconds: float = 60.0
    log_level: str = "INFO"

    @field_validator("client_request_timeout_seconds", "session_idle_timeout_seconds", "session_sweep_interval_seconds")
    @classmethod
    def _check_positive_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("시간 설정은 0보다 커야 해요.")
        return value

    @field_validator("page_size")
    @classmethod
    def _check_page_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("page_size는 1 이상이어야 해요.")
        return value

    @field_validator("endpoint_path")
    @classmethod
    def _check_endpoint_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("endpoint_path는 '/'로 시작해야 해요.")
        return value.rstrip("/") or "/"

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.upper()


settings = Settings()
