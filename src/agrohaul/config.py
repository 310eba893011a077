"""Configuration management for AgroHaul dispatch system."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    APP_NAME: str = "AgroHaul Dispatch"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # ==========================================================================
    # Logging
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = Field(default=False, description="Render log lines as JSON")

    # ==========================================================================
    # Database
    # ==========================================================================
    DATABASE_URL: str = "sqlite:///data/agrohaul.db"
    IDENTITY_UPDATE_ATTEMPTS: int = 5  # Optimistic writes on rating/earnings counters
    CLAIM_ATTEMPTS: int = 3  # Re-reads while a pending booking only moved its version

    # ==========================================================================
    # Pricing
    # ==========================================================================
    CURRENCY: str = "INR"
    EARTH_RADIUS_KM: float = 6371.0

    # ==========================================================================
    # Matching
    # ==========================================================================
    DEFAULT_SEARCH_RADIUS_KM: float = 50.0
    MAX_SEARCH_RADIUS_KM: float = 200.0
    NEARBY_RESULT_LIMIT: int = 20
    MAX_NEARBY_RESULT_LIMIT: int = 100

    # ==========================================================================
    # Bookings
    # ==========================================================================
    BOOKING_REF_PREFIX: str = "BKG"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience alias
settings = get_settings()
