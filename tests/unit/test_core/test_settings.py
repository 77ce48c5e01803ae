"""Unit tests for Pydantic Settings v2 storage and logging settings."""
from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from polystore.core.settings import (
    LoggingSettings,
    RetrySettings,
    StorageConfig,
    StorageManagerSettings,
    StorageProviderType,
    create_local_config,
    create_s3_config,
    get_logging_settings,
    get_storage_settings,
)


@pytest.mark.unit
class TestStorageManagerSettings:
    """Test suite for StorageManagerSettings."""

    def test_defaults(self):
        settings = StorageManagerSettings()

        assert settings.default_provider == "local"
        assert settings.providers == {}
        assert settings.enable_caching is True
        assert settings.cache_ttl_seconds == 300
        assert settings.enable_metrics is True
        assert settings.metrics_retention_hours == 24
        assert settings.retry.max_retries == 3
        assert settings.max_concurrency == 10
        assert settings.require_atomic_move is False

    def test_frozen(self):
        """Test that settings instances are frozen (immutable)."""
        settings = StorageManagerSettings()

        with pytest.raises(ValidationError):
            settings.enable_caching = False

    def test_default_provider_must_be_configured(self):
        with pytest.raises(ValidationError, match="default_provider 'primary' is not configured"):
            StorageManagerSettings(
                default_provider="primary",
                providers={"backup": create_local_config("/tmp/backup")},
            )

    def test_empty_providers_allow_any_default(self):
        settings = StorageManagerSettings(default_provider="primary", providers={})

        assert settings.default_provider == "primary"

    def test_metrics_retention_seconds(self):
        settings = StorageManagerSettings(metrics_retention_hours=2)

        assert settings.metrics_retention_seconds == 7200

    @pytest.mark.parametrize(
        "overrides",
        [
            {"cache_ttl_seconds": 0},
            {"max_concurrency": 0},
            {"metrics_retention_hours": -1},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(ValidationError):
            StorageManagerSettings(**overrides)

    def test_loads_from_environment(self, monkeypatch):
        monkeypatch.setenv("STORAGE_DEFAULT_PROVIDER", "primary")
        monkeypatch.setenv(
            "STORAGE_PROVIDERS",
            json.dumps(
                {
                    "primary": {
                        "provider": "local",
                        "bucket_name": "uploads",
                        "credentials": {"base_path": "/var/lib/polystore"},
                    }
                }
            ),
        )
        monkeypatch.setenv("STORAGE_RETRY__MAX_RETRIES", "5")
        monkeypatch.setenv("STORAGE_ENABLE_CACHING", "false")

        settings = StorageManagerSettings()

        assert settings.default_provider == "primary"
        assert settings.providers["primary"].provider is StorageProviderType.LOCAL
        assert settings.providers["primary"].credentials == {"base_path": "/var/lib/polystore"}
        assert settings.retry.max_retries == 5
        assert settings.enable_caching is False


@pytest.mark.unit
class TestRetrySettings:
    def test_bounds(self):
        with pytest.raises(ValidationError):
            RetrySettings(max_retries=11)
        with pytest.raises(ValidationError):
            RetrySettings(base_delay_ms=-1)


@pytest.mark.unit
class TestStorageConfig:
    """Test suite for StorageConfig and its helpers."""

    def test_frozen(self):
        config = create_local_config("/tmp/store")

        with pytest.raises(ValidationError):
            config.bucket_name = "other"

    def test_provider_from_string(self):
        config = StorageConfig(provider="s3", bucket_name="media")

        assert config.provider is StorageProviderType.S3

    def test_unknown_provider(self):
        with pytest.raises(ValidationError):
            StorageConfig(provider="dropbox", bucket_name="media")

    def test_create_local_config(self):
        config = create_local_config("/tmp/store", "uploads")

        assert config.provider is StorageProviderType.LOCAL
        assert config.bucket_name == "uploads"
        assert config.credentials == {"base_path": "/tmp/store"}

    def test_create_s3_config(self):
        config = create_s3_config(
            "AKIA",
            "secret",
            "us-east-1",
            "media",
            session_token="tok",
            endpoint_url="http://localhost:9000",
        )

        assert config.region == "us-east-1"
        assert config.credentials["session_token"] == "tok"
        assert config.options == {"endpoint_url": "http://localhost:9000"}


@pytest.mark.unit
class TestLoggingSettings:
    """Test suite for LoggingSettings."""

    def test_defaults(self):
        settings = LoggingSettings()

        assert settings.level == "INFO"
        assert settings.json_logs is True
        assert settings.logger_levels["botocore"] == "WARNING"

    def test_loads_from_environment(self, monkeypatch):
        monkeypatch.setenv("LOG_JSON_LOGS", "false")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        settings = LoggingSettings()

        assert settings.json_logs is False
        assert settings.level == "DEBUG"

    def test_invalid_level(self):
        with pytest.raises(ValidationError):
            LoggingSettings(level="VERBOSE")


@pytest.mark.unit
class TestSettingsLoaders:
    """Test suite for the cached loaders."""

    def test_storage_settings_are_cached(self):
        assert get_storage_settings() is get_storage_settings()

    def test_logging_settings_are_cached(self):
        assert get_logging_settings() is get_logging_settings()

    def test_cache_is_cleared_between_tests(self, monkeypatch):
        """Test that the autouse fixture forces a reload from the environment."""
        monkeypatch.setenv("STORAGE_MAX_CONCURRENCY", "42")

        assert get_storage_settings().max_concurrency == 42
