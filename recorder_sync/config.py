"""Application configuration."""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./data/recorder_sync.db"

    # Encryption of stored OAuth tokens (validated at startup by EncryptionService)
    encryption_key: Optional[str] = None

    # Freesound
    freesound_api_base: str = "https://freesound.org/apiv2"
    freesound_oauth_proxy_url: str = ""
    freesound_client_id: str = ""
    freesound_redirect_uri: str = "http://localhost:8000/api/auth/callback"
    request_timeout_seconds: float = 30.0

    # Uploads
    sync_tag: str = "sound-recorder-sync"
    sync_license: str = "Creative Commons 0"
    default_bst_category: str = "fx-other"

    # Sync timing
    sync_debounce_ms: int = 5000
    sync_min_interval_ms: int = 60000
    rate_limit_backoff_ms: int = 60000
    initial_sync_delay_ms: int = 1000

    # API retry on 429
    api_max_retries: int = 3
    api_initial_backoff_seconds: float = 5

    # Application
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"


settings = Settings()
