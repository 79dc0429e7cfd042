"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Ephemera configuration. All values come from environment variables."""

    # Database
    database_path: Path = Field(default=Path("data/ephemera.db"))
    storage_retry_attempts: int = Field(default=3)

    # Message lifecycle
    message_ttl_hours: int = Field(default=3)
    snapshot_view_cap: int = Field(default=2)
    close_grace_seconds: int = Field(default=10)
    preview_max_chars: int = Field(default=50)

    # Presence
    presence_stale_seconds: int = Field(default=30)
    typing_idle_seconds: int = Field(default=3)
    presence_sweep_seconds: int = Field(default=5)

    # Reaper
    reaper_interval_seconds: int = Field(default=30)
    sweep_secret: str = Field(default="")

    # HTTP
    http_host: str = Field(default="0.0.0.0")
    http_port: int = Field(default=8080)

    # Push relay (notification transport)
    push_relay_url: str = Field(default="")
    push_relay_token: str = Field(default="")

    # Profile service (display names, vault credentials)
    profile_service_url: str = Field(default="")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)


settings = Settings()
