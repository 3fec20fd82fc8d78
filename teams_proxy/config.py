"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars that don't match field names
    )

    # Application
    app_name: str = "Teams Proxy"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"

    # API
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = ["*"]

    # Microsoft Graph
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    graph_token_url: str = ""
    graph_client_id: str = ""
    graph_client_secret: SecretStr = Field(default=SecretStr(""))
    graph_scope: str = "https://graph.microsoft.com/.default"
    graph_static_token: SecretStr = Field(default=SecretStr(""))  # Skips client credentials when set
    graph_token_expiry_skew_seconds: int = 300

    # Retry policy
    retry_max_retries: int = 3
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 30000
    retry_timeout_ms: int = 30000
    retry_max_jitter_ms: int = 1000
    retry_status_codes: list[int] = [429, 502, 503, 504]

    # Message statistics
    stats_channel_allow_list: list[str] = ["general", "main"]
    stats_recent_days: int = 30
    stats_reply_concurrency: int = 5
    stats_count_questions: bool = True
    stats_request_budget: int | None = None  # None = unlimited outbound calls per run
    stats_page_size: int = 50

    # Membership
    allowed_user_domains: list[str] = ["example.com"]

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    stats_ttl_seconds: int = 86400  # 24 hours

    # Celery
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"
    stats_collection_interval_seconds: int = 21600  # 6 hours

    # Team creation
    team_owner_mail_prefix: str = "admin_"
    team_primary_owner_mail_prefix: str = "admin_ac"
    team_photo_path: str | None = None  # PNG uploaded to new teams
    team_provisioning_delay_seconds: float = 2.0

    # Observability
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
