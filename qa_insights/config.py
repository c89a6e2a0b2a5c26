"""
Application configuration using Pydantic Settings.

Loads configuration from environment variables with .env file support.
"""
from functools import lru_cache
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./qa_insights.db"

    @field_validator('DATABASE_URL')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate DATABASE_URL has an allowed scheme to prevent injection."""
        allowed_schemes = ('sqlite:///', 'postgresql://', 'mysql://', 'mysql+pymysql://')
        if not v.startswith(allowed_schemes):
            raise ValueError(
                f'Invalid database URL scheme. Allowed schemes: {", ".join(allowed_schemes)}'
            )
        return v

    # Application
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # CORS
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:8080"

    # Security
    API_KEY: str = ""  # Optional API key for project reports
    ADMIN_API_KEY: str = ""  # Optional admin API key for cross-project reports

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PER_MINUTE: int = 100

    # Caching
    CACHE_ENABLED: bool = True
    CACHE_TTL_SECONDS: int = 300  # 5 minutes default TTL
    REDIS_URL: str = ""  # If empty, uses in-memory cache

    # Report defaults (applied when the request omits a parameter)
    DEFAULT_STALE_DAYS_THRESHOLD: int = 30
    DEFAULT_MIN_EXECUTIONS_FOR_RATE: int = 5
    DEFAULT_LOOKBACK_DAYS: int = 90  # 0 = all time
    DEFAULT_CONSECUTIVE_RUNS: int = 10
    DEFAULT_FLIP_THRESHOLD: int = 5
    FLAKY_CHART_DISPLAY_LIMIT: int = 50  # Max flaky tests ranked for charting

    @field_validator('FLAKY_CHART_DISPLAY_LIMIT')
    @classmethod
    def validate_display_limit(cls, v: int) -> int:
        """Display limit must be positive."""
        if v < 1:
            raise ValueError('FLAKY_CHART_DISPLAY_LIMIT must be at least 1')
        return v

    # Model configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra='ignore'  # Allow extra fields in .env without validation errors
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.

    Returns:
        Settings instance
    """
    return Settings()
