"""
Runtime configuration for the chat sync client.

Values come from the environment, with defaults loaded from a ``.env`` file
in the project root when one exists.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[1]

ENV_PATH = BASE_DIR / ".env"

# Platform-provided variables win over .env defaults
load_dotenv(dotenv_path=ENV_PATH, override=False)


class Settings(BaseSettings):
    app_name: str = Field(default="chatsync", alias="APP_NAME")

    # Remote data gateway; without a URL the in-process gateway is used
    mongodb_url: str | None = Field(default=None, alias="MONGODB_URL")
    mongodb_db: str = Field(default="chatsync", alias="MONGODB_DB")
    mongodb_timeout_ms: int = Field(default=5000, alias="MONGODB_TIMEOUT_MS")

    # Change signals for live subscriptions
    redis_url: str | None = Field(default=None, alias="REDIS_URL")

    # Push delivery
    fcm_service_account_file: str | None = Field(default=None, alias="FCM_SERVICE_ACCOUNT_FILE")
    fcm_project_id: str | None = Field(default=None, alias="FCM_PROJECT_ID")
    fcm_device_tokens: str = Field(default="", alias="FCM_DEVICE_TOKENS")
    notification_fallback_title: str = Field(default="Someone", alias="NOTIFICATION_FALLBACK_TITLE")

    # Local key-value state
    state_dir: Path = Field(default=Path.home() / ".chatsync", alias="STATE_DIR")

    verification_digits: int = Field(default=4, alias="VERIFICATION_DIGITS")
    verification_interval: int = Field(default=300, alias="VERIFICATION_INTERVAL")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, alias="LOG_FILE")
    log_max_bytes: int = Field(default=5 * 1024 * 1024, alias="LOG_MAX_BYTES")
    log_backup_count: int = Field(default=3, alias="LOG_BACKUP_COUNT")

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def device_tokens(self) -> List[str]:
        return [token.strip() for token in self.fcm_device_tokens.split(",") if token.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings"]
