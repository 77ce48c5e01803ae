"""Unit tests for the storage backend factory."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from polystore.core.settings.storage import (
    StorageConfig,
    StorageProviderType,
    create_local_config,
    create_s3_config,
)
from polystore.infra.storage.backends import factory
from polystore.infra.storage.backends.factory import (
    create_storage_backend,
    register_backend_builder,
    unregister_backend_builder,
)
from polystore.infra.storage.backends.local import LocalBackend
from polystore.infra.storage.backends.s3 import S3Backend
from polystore.infra.storage.exceptions import (
    StorageConfigError,
    StorageUnsupportedProviderError,
)


@pytest.fixture
def gcs_config() -> StorageConfig:
    return StorageConfig(
        provider=StorageProviderType.GCS,
        bucket_name="media-assets",
        credentials={"project_id": "proj", "key_filename": "/etc/gcs.json"},
    )


@pytest.fixture(autouse=True)
def _reset_builders():
    yield
    for provider in StorageProviderType:
        unregister_backend_builder(provider)


@pytest.mark.unit
class TestCreateStorageBackend:
    """Test create_storage_backend."""

    def test_creates_local_backend(self, tmp_path):
        backend = create_storage_backend(create_local_config(str(tmp_path), "uploads"))

        assert isinstance(backend, LocalBackend)
        assert backend.bucket_name == "uploads"
        assert backend.is_ready is False

    def test_creates_s3_backend(self):
        config = create_s3_config("AKIA", "secret", "us-east-1", "my-bucket")

        backend = create_storage_backend(config)

        assert isinstance(backend, S3Backend)
        assert backend.region == "us-east-1"

    def test_invalid_config_raises(self):
        config = StorageConfig(provider=StorageProviderType.S3, bucket_name="Bad_Bucket")

        with pytest.raises(StorageConfigError) as exc_info:
            create_storage_backend(config)

        errors = exc_info.value.errors
        assert "AWS Access Key ID is required" in errors
        assert "AWS region is required for S3" in errors
        assert "S3 bucket name contains invalid characters" in errors

    def test_validation_can_be_skipped(self, tmp_path):
        config = StorageConfig(
            provider=StorageProviderType.LOCAL,
            credentials={"base_path": str(tmp_path)},
        )

        backend = create_storage_backend(config, validate=False)

        assert isinstance(backend, LocalBackend)

    @pytest.mark.parametrize("provider", ["gcs", "azure", "supabase"])
    def test_providers_without_adapter(self, provider):
        config = StorageConfig(provider=provider, bucket_name="bucket")

        with pytest.raises(StorageUnsupportedProviderError):
            create_storage_backend(config, validate=False)

    def test_registered_builder_is_used(self, gcs_config, fake_backend):
        builder = MagicMock(return_value=fake_backend)
        register_backend_builder("gcs", builder)

        backend = create_storage_backend(gcs_config)

        assert backend is fake_backend
        builder.assert_called_once_with(gcs_config)

    def test_unregister_builder(self, gcs_config, fake_backend):
        register_backend_builder(StorageProviderType.GCS, lambda config: fake_backend)
        unregister_backend_builder("gcs")

        with pytest.raises(StorageUnsupportedProviderError):
            create_storage_backend(gcs_config)


@pytest.mark.unit
class TestConnectionProbe:
    """Test the connection probe helper."""

    @pytest.mark.asyncio
    async def test_healthy_local_config(self, tmp_path):
        assert await factory.test_connection(create_local_config(str(tmp_path))) is True

    @pytest.mark.asyncio
    async def test_invalid_config_returns_false(self):
        config = StorageConfig(provider=StorageProviderType.LOCAL, bucket_name="b")

        assert await factory.test_connection(config) is False

    @pytest.mark.asyncio
    async def test_startup_failure_returns_false_and_shuts_down(self, gcs_config):
        backend = MagicMock()
        backend.startup = AsyncMock(side_effect=ConnectionError("unreachable"))
        backend.shutdown = AsyncMock()
        register_backend_builder("gcs", lambda config: backend)

        assert await factory.test_connection(gcs_config) is False
        backend.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unhealthy_backend(self, gcs_config, make_backend):
        backend = make_backend("gcs", healthy=False)
        register_backend_builder("gcs", lambda config: backend)

        assert await factory.test_connection(gcs_config) is False
