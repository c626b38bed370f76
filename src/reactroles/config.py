"""Application settings via pydantic-settings. Loads from environment and .env file."""

from __future__ import annotations

from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings

from reactroles.core.boot import DEFAULT_READY_QUIET_SECONDS
from reactroles.core.debounce import DEFAULT_DEBOUNCE_SECONDS

StorageBackend = Literal["json", "database", "none"]


class Settings(BaseSettings):
    """reactroles configuration.

    All values can be overridden via environment variables or .env file.
    """

    # Discord
    discord_bot_token: str = ""
    discord_guild_id: str = ""
    discord_enabled: bool = False

    # Environment
    reactroles_env: str = "development"

    # Storage
    reactroles_storage: StorageBackend = "json"
    reactroles_json_path: str = "reaction_roles.json"
    database_url: str = "sqlite+aiosqlite:///reactroles.db"
    reactroles_hard_delete: bool = False  # Default: disabled bindings stay in the store

    # Timing (process-wide, not per binding)
    reactroles_debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    reactroles_ready_quiet_seconds: float = DEFAULT_READY_QUIET_SECONDS

    # Logging
    reactroles_log_level: str = "INFO"
    reactroles_debug: bool = False

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _check_storage(self) -> Settings:
        """JSON storage needs a file path."""
        if self.reactroles_storage == "json" and not self.reactroles_json_path.strip():
            msg = "REACTROLES_JSON_PATH must be set when REACTROLES_STORAGE=json"
            raise ValueError(msg)
        return self

    @model_validator(mode="after")
    def _check_timings(self) -> Settings:
        if self.reactroles_debounce_seconds <= 0:
            msg = "REACTROLES_DEBOUNCE_SECONDS must be positive"
            raise ValueError(msg)
        if self.reactroles_ready_quiet_seconds < 0:
            msg = "REACTROLES_READY_QUIET_SECONDS must not be negative"
            raise ValueError(msg)
        return self

