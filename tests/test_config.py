"""Unit tests for configuration module."""

import os
from unittest.mock import patch

from fplanner.config import Settings, get_settings
from fplanner.services.cohorts import CohortConfig


class TestSettings:
    """Tests for Settings configuration class."""

    def test_default_values(self):
        """Settings should have sensible defaults."""
        settings = Settings(_env_file=None)

        assert settings.fpl_api_base_url == "https://fantasy.premierleague.com/api"
        assert settings.log_level == "INFO"
        assert settings.cache_ttl_bootstrap == 300
        assert settings.cache_ttl_fixtures == 600
        assert settings.overall_league_id == 314
        assert settings.max_concurrent_fetches == 5
        assert settings.cohort_ttl_default == 6 * 60 * 60
        assert settings.cohort_ttl_finished == 3 * 60 * 60
        assert settings.cohort_post_gw_delay == 2 * 60 * 60
        assert settings.storage_backend == "none"

    def test_cors_origins_list_multiple(self):
        settings = Settings(cors_origins="http://localhost:3000, https://app.example.com")

        assert settings.cors_origins_list == ["http://localhost:3000", "https://app.example.com"]

    def test_cors_origins_list_strips_whitespace(self):
        settings = Settings(cors_origins="  http://a.com  ,  http://b.com  ")

        assert settings.cors_origins_list == ["http://a.com", "http://b.com"]

    def test_env_override(self):
        """Environment variables should override defaults."""
        with patch.dict(
            os.environ,
            {
                "STORAGE_BACKEND": "s3",
                "AWS_S3_BUCKET": "planner-archive",
                "MAX_CONCURRENT_FETCHES": "8",
            },
        ):
            settings = Settings()

        assert settings.storage_backend == "s3"
        assert settings.aws_s3_bucket == "planner-archive"
        assert settings.max_concurrent_fetches == 8


class TestGetSettings:
    def test_returns_cached_instance(self):
        get_settings.cache_clear()

        assert get_settings() is get_settings()


class TestCohortConfigFromSettings:
    def test_maps_sampling_and_ttl_settings(self):
        settings = Settings(
            entries_per_page=25,
            sample_pages_per_band=4,
            max_entries_per_band=100,
            max_concurrent_fetches=2,
            cohort_ttl_default=60,
            cohort_ttl_finished=30,
        )

        config = CohortConfig.from_settings(settings)

        assert config.entries_per_page == 25
        assert config.sample_pages_per_band == 4
        assert config.max_entries_per_band == 100
        assert config.max_concurrent_fetches == 2
        assert config.ttl_default == 60
        assert config.ttl_finished == 30
        assert [b.key for b in config.bands] == ["top10k", "top50k", "top100k"]
