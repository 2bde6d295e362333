"""Application configuration."""

import os
from datetime import timedelta

from pydantic_settings import BaseSettings, SettingsConfigDict

from session_automation.services.tokens import TokenPruneMode

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    cron_secret: str
    fcm_project_id: str
    fcm_credentials_info: dict[str, str] | None = None
    fcm_credentials_file: str | None = None
    fcm_base_url: str = "https://fcm.googleapis.com/v1"
    sessions_table: str = "sessions"
    archived_sessions_table: str = "archived_sessions"
    users_table: str = "users"
    archive_retention_days: int = 7
    token_max_age_days: int = 120
    transition_batch_size: int = 500
    archive_batch_size: int = 250
    max_concurrent_sends: int = 20
    token_prune_mode: TokenPruneMode = TokenPruneMode.SNAPSHOT
    token_prune_max_attempts: int = 3
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @property
    def archive_retention(self) -> timedelta:
        return timedelta(days=self.archive_retention_days)

    @property
    def token_max_age(self) -> timedelta:
        return timedelta(days=self.token_max_age_days)
