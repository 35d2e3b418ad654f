"""Client configuration loaded from SANDBOXCHAT_* environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChatSettings(BaseSettings):
    """Sandbox chat client settings.

    All fields are read from environment variables with the ``SANDBOXCHAT_``
    prefix.  For example, ``SANDBOXCHAT_LOG_LEVEL=DEBUG`` maps to ``log_level``.
    """

    model_config = SettingsConfigDict(
        env_prefix="SANDBOXCHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    configure_logging: bool = True
    """Install the loguru sink on ``ChatApp.start``.  Turn off when the host process owns logging."""

    # -- Provisioning service --------------------------------------------------
    provisioning_url: str = "http://localhost:8787/api/workspaces"
    """Base URL of the workspace provisioning API."""

    api_key: SecretStr | None = None
    """Sent as a bearer token on provisioning and agent-server requests when set."""

    request_timeout: float = 30.0

    poll_interval: float = 0.0
    """Seconds between background workspace list refreshes.  ``0`` disables polling."""

    # -- Workspace selection ---------------------------------------------------
    local_workspace_id: str = "local"

    auto_provision: bool = True
    """Create a default workspace when the list comes back empty."""

    default_repo_url: str = "https://github.com/deloreyj/worker-app-boilerplate"
    default_branch: str = "main"

    # -- Live connection -------------------------------------------------------
    reconnect_delay: float = 3.0
    max_retries: int = 3
    """Consecutive connection failures before the driver gives up."""

    default_session_title: str = "New Conversation"

    # -- Helpers ---------------------------------------------------------------

    def auth_headers(self) -> dict[str, str]:
        if self.api_key is None:
            return {}
        return {"Authorization": f"Bearer {self.api_key.get_secret_value()}"}


@lru_cache(maxsize=1)
def get_settings() -> ChatSettings:
    """Return a cached settings instance.

    Call ``get_settings.cache_clear()`` in tests to force a re-read after
    overriding env vars.
    """
    return ChatSettings()
