from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")
    """Application runtime configuration."""

    app_name: str = "TeamClock"
    host: str = os.getenv("TT_HOST", "127.0.0.1")
    port: int = int(os.getenv("TT_PORT", "8080"))
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            origin.strip()
            for origin in os.getenv("TT_CORS_ORIGINS", "http://127.0.0.1:3000,http://localhost:3000").split(",")
            if origin.strip()
        ]
    )

    sqlite_path: Path = Path(os.getenv("TT_SQLITE_PATH", "./data/teamclock.db"))

    timezone: str = os.getenv("TZ", "Europe/Berlin")
    log_level: str = os.getenv("TT_LOG_LEVEL", "INFO")

    token_secret: str = os.getenv("TT_TOKEN_SECRET", "change-me")
    session_ttl_hours: int = int(os.getenv("TT_SESSION_TTL_HOURS", "720"))
    password_min_length: int = int(os.getenv("TT_PASSWORD_MIN_LENGTH", "6"))

    admin_email: Optional[str] = os.getenv("TT_ADMIN_EMAIL")
    admin_password: Optional[str] = os.getenv("TT_ADMIN_PASSWORD")
    admin_name: str = os.getenv("TT_ADMIN_NAME", "Administrator")

    team_entries_limit: int = int(os.getenv("TT_TEAM_ENTRIES_LIMIT", "100"))

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        if not value:
            return []
        return [origin.strip() for origin in value.split(",") if origin.strip()]

    @field_validator("password_min_length", "team_entries_limit")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)


settings = Settings()

settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
