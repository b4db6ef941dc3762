from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "SceneTracker"
    # Local SQLite by default; point at postgresql+asyncpg://... in production
    database_url: str = "sqlite+aiosqlite:///./scenetracker.db"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None  # stderr only when unset

    # Text format used when a tracker is rendered into a prompt: "yaml" or "json"
    tracker_format: str = "yaml"

    # How many quarantined paths to list when a model response has unknown keys
    extra_field_log_limit: int = 12

    # Prompt assembly: how many recent messages are shown to the model
    number_of_messages: int = 5
    # Who the participant policy names: "both", "user", "character" or "none"
    participant_target: str = "both"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings():
    return Settings()
