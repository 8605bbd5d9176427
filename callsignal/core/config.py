"""Application configuration."""
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Logging
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite+aiosqlite:///./callsignal.db"

    # Connection quality
    quality_poll_interval: float = 2.0  # seconds between stats samples

    # Ringback
    ringback_settle_delay: float = 0.1  # pause between a forced stop and a restart
    ringback_sample_rate: int = 8000
    ringback_tones: List[float] = [440.0, 480.0]
    ringback_tone_on: float = 0.4
    ringback_tone_off: float = 0.2
    ringback_bursts: int = 3  # bursts rendered per buffer
    ringback_retrigger_margin: float = 0.1
    ringback_gain: float = 0.5

    # Caches
    profile_cache_size: int = 50
    profile_cache_ttl: float = 300.0
    settled_call_memory: int = 128

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
