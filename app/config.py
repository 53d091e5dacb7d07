"""
Queue Pulse Configuration

All environment variables and settings for the queue telemetry service.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ==========================================================================
    # APP
    # ==========================================================================
    app_name: str = "Queue Pulse"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # ==========================================================================
    # TELEPHONY PLATFORM
    # ==========================================================================
    telephony_region: str = "mec1.pure.cloud"
    telephony_client_id: str | None = None  # Optional: auto-connect on startup
    telephony_client_secret: str | None = None
    telephony_queue_name: str | None = None
    http_timeout_seconds: float = 30.0

    # ==========================================================================
    # DASHBOARD BEHAVIOR
    # ==========================================================================
    poll_interval_seconds: int = 300  # 5 minutes
    mos_alert_threshold: float = 4.5

    # ==========================================================================
    # LLM (forensics narrative)
    # ==========================================================================
    google_ai_api_key: str | None = None
    forensics_model: str = "gemini/gemini-3-pro-preview"
    forensics_fallback_model: str | None = "gemini/gemini-3-flash-preview"
    forensics_max_points: int = 50
    forensics_timeout_seconds: int = 120

    # ==========================================================================
    # CORS
    # ==========================================================================
    cors_origins: str = "*"

    # ==========================================================================
    # SERVER
    # ==========================================================================
    host: str = "0.0.0.0"
    port: int = 8000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
