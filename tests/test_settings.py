from __future__ import annotations

import pytest
from pydantic import ValidationError

from mcp_starter.app.settings import Settings


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PORT", raising=False)
    monkeypatch.delenv("MCP_PORT", raising=False)
    settings = Settings(_env_file=None)

    assert settings.port == 3000
    assert settings.endpoint_path == "/mcp"
    assert settings.client_request_timeout_seconds == 60.0


def test_port_is_read_from_hosting_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "8123")
    assert Settings(_env_file=None).port == 8123


def test_prefixed_env_is_read(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MCP_SERVER_NAME", "from-env")
    monkeypatch.setenv("MCP_LOG_LEVEL", "debug")
    settings = Settings(_env_file=None)

    assert settings.server_name == "from-env"
    assert settings.log_level == "DEBUG"


def test_endpoint_path_is_normalized() -> None:
    assert Settings(_env_file=None, endpoint_path="/rpc/").endpoint_path == "/rpc"


@pytest.mark.parametrize(
    "overrides",
    [
        {"client_request_timeout_seconds": 0},
        {"page_size": 0},
        {"endpoint_path": "mcp"},
    ],
)
def test_invalid_settings_are_rejected(overrides: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **overrides)


def test_session_expiry_settings_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, session_idle_timeout_seconds=0)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, session_sweep_interval_seconds=-1)
