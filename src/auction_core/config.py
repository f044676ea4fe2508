"""Application settings loaded from environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine and API settings.

    Every field can be overridden with an ``AUCTION_``-prefixed environment
    variable, e.g. ``AUCTION_STALL_WINDOW_HOURS=2``.
    """

    model_config = SettingsConfigDict(env_prefix="AUCTION_", env_file=".env", extra="ignore")

    # Database
    database_url: str = "sqlite:///./auction_core.db"

    # API
    cors_origins: list[str] = ["*"]

    # Auction timing
    auction_duration_hours: float = 24.0
    stall_window_hours: float = 4.0

    # Background sweep
    sweep_enabled: bool = True
    sweep_interval_seconds: int = 300

    # Per-task lock striping
    lock_stripes: int = 64

    # Display
    currency_suffix: str = "сум"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
