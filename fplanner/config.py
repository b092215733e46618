"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # FPL API
    fpl_api_base_url: str = "https://fantasy.premierleague.com/api"
    request_timeout: float = 10.0
    requests_per_second: float = 10.0
    max_concurrent_requests: int = 10

    # CORS - comma-separated list of allowed origins
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Logging
    log_level: str = "INFO"

    # Reference data cache TTL in seconds
    cache_ttl_bootstrap: int = 300  # 5 minutes for bootstrap-static
    cache_ttl_fixtures: int = 600  # 10 minutes for fixtures

    # Cohort sampling
    overall_league_id: int = 314
    entries_per_page: int = 50
    sample_pages_per_band: int = 8
    max_entries_per_band: int = 500
    max_concurrent_fetches: int = 5

    # Cohort cache TTL in seconds
    cohort_ttl_default: int = 6 * 60 * 60  # live/upcoming gameweeks
    cohort_ttl_finished: int = 3 * 60 * 60  # finished, snapshot not yet final

    # Cohort scheduler (seconds)
    cohort_scheduler_enabled: bool = True
    cohort_scheduler_poll: int = 15 * 60
    cohort_post_gw_delay: int = 2 * 60 * 60
    cohort_scheduler_retry: int = 30 * 60

    # Cold storage: "none", "s3", "postgres" or "memory"
    storage_backend: str = "none"
    aws_s3_bucket: str = "fplanner-cache"
    aws_region: str = "us-east-1"
    aws_s3_prefix: str = ""

    # Database (postgres storage backend)
    database_url: str = ""

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
