"""
Call client settings.

Every timer, timeout, storage key and identity field lives on ``Settings``;
services receive the instance explicitly and fall back to ``get_settings()``.
"""

import logging
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """AgriVoice call client settings loaded from environment / .env file.

    Values come from the environment or a `.env` file; SEGMENT_MODE=true
    overrides `segment_mode`.

    Attributes:
        environment: "development" or "production"; selects the backend URL.
        recordings_dir: Directory that receives one audio file per recording.
        database_url: Async SQLAlchemy connection string for the key-value store.
        segment_interval: Seconds between automatic segment cuts (0 = manual only).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Backend ---
    environment: str = "development"
    development_api_url: str = "http://localhost:8000"
    production_api_url: str = "https://your-api.com"
    api_base_url_override: str = ""  # Wins over the environment URLs when set

    # Per-operation request timeouts (seconds)
    health_timeout: float = 5.0
    call_end_timeout: float = 10.0
    upload_timeout: float = 60.0
    voice_query_timeout: float = 30.0
    default_timeout: float = 30.0

    # --- Timers (seconds) ---
    health_poll_interval: float = 15.0
    connect_delay: float = 2.0  # Simulated connecting -> connected delay
    duration_tick: float = 1.0
    voice_query_duration: float = 8.0  # Fixed clip length, not user-terminated
    segment_restart_delay: float = 0.1  # Gap between segment stop and next start
    segment_interval: float = 0.0

    # --- Recording ---
    recordings_dir: str = "data/call_recordings"
    recording_format: str = "m4a"
    recording_mime_type: str = "audio/mp4"
    auto_record: bool = True
    segment_mode: bool = False

    # --- Storage ---
    database_url: str = "sqlite+aiosqlite:///data/agrivoice.db"
    recordings_index_key: str = "savedRecordings"
    auto_record_key: str = "autoRecord"

    # --- Identity (fixed, no authentication) ---
    user_id: str = "user_123"
    default_language: str = "en"
    district: str = "Guntur"
    state: str = "Andhra Pradesh"
    current_crop: str = "rice"
    query_choice: int = 1

    # --- Application ---
    log_level: str = "INFO"

    @property
    def api_base_url(self) -> str:
        """Backend base URL for the active environment."""
        if self.api_base_url_override:
            return self.api_base_url_override
        if self.environment == "production":
            return self.production_api_url
        return self.development_api_url


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read from the environment once."""
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """Install a root handler and apply the configured level to the agrivoice loggers."""
    level = (level or get_settings().log_level).upper()
    logging.getLogger("agrivoice").setLevel(level)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
