"""Unit tests for the provider registry."""

from __future__ import annotations

import pytest

from polystore.core.settings import StorageConfig
from polystore.infra.storage import (
    EventBus,
    ProviderEventType,
    ProviderRegistry,
    StorageCannotRemoveDefaultError,
    StorageInitializationError,
    StorageProviderNotFoundError,
)
from polystore.infra.storage.exceptions import StorageConfigError


def _config(bucket: str = "bucket") -> StorageConfig:
    return StorageConfig(provider="local", bucket_name=bucket, credentials={"base_path": "/x"})


@pytest.fixture
def registry(make_backend) -> ProviderRegistry:
    return ProviderRegistry(
        "primary",
        backend_factory=lambda config: make_backend(name="local", bucket_name=config.bucket_name),
    )


@pytest.mark.unit
class TestProviderRegistry:
    """Test ProviderRegistry."""

    def test_get_unknown_raises(self, registry):
        with pytest.raises(StorageProviderNotFoundError) as exc_info:
            registry.get("missing")

        assert exc_info.value.code == "PROVIDER_NOT_FOUND"

    def test_get_without_name_returns_default(self, registry, make_backend):
        backend = make_backend()
        registry.register("primary", backend)

        assert registry.get() is backend
        assert registry.get("primary") is backend
        assert registry.default_name == "primary"

    @pytest.mark.asyncio
    async def test_add_starts_and_registers(self, registry):
        backend = await registry.add("primary", _config("b1"))

        assert backend.is_ready
        assert backend.bucket_name == "b1"
        assert registry.list() == ["primary"]
        assert "primary" in registry

    @pytest.mark.asyncio
    async def test_add_replacing_name_shuts_down_previous(self, registry):
        first = await registry.add("backup", _config("b1"))
        second = await registry.add("backup", _config("b2"))

        assert first.is_ready is False
        assert registry.get("backup") is second
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_add_wraps_startup_failure(self, make_backend):
        broken = make_backend()
        broken.fail("startup", ConnectionError("refused"))
        registry = ProviderRegistry("primary", backend_factory=lambda config: broken)

        with pytest.raises(StorageInitializationError) as exc_info:
            await registry.add("primary", _config())

        assert exc_info.value.provider == "primary"
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert registry.list() == []

    @pytest.mark.asyncio
    async def test_add_wraps_invalid_config(self):
        registry = ProviderRegistry("primary")

        with pytest.raises(StorageInitializationError) as exc_info:
            await registry.add("primary", StorageConfig(provider="local"))

        assert isinstance(exc_info.value.cause, StorageConfigError)

    @pytest.mark.asyncio
    async def test_remove_default_is_refused(self, registry):
        await registry.add("primary", _config())

        with pytest.raises(StorageCannotRemoveDefaultError):
            await registry.remove("primary")

        assert registry.list() == ["primary"]

    @pytest.mark.asyncio
    async def test_remove_shuts_down(self, registry):
        await registry.add("primary", _config())
        backup = await registry.add("backup", _config())

        await registry.remove("backup")

        assert backup.is_ready is False
        assert registry.list() == ["primary"]

    @pytest.mark.asyncio
    async def test_remove_unknown_is_noop(self, registry):
        await registry.remove("ghost")

        assert registry.list() == []

    @pytest.mark.asyncio
    async def test_remove_survives_shutdown_error(self, registry):
        backup = await registry.add("backup", _config())
        backup.fail("shutdown", RuntimeError("stuck"))

        await registry.remove("backup")

        assert "backup" not in registry

    @pytest.mark.asyncio
    async def test_clear_shuts_down_everything(self, registry):
        primary = await registry.add("primary", _config())
        backup = await registry.add("backup", _config())

        await registry.clear()

        assert len(registry) == 0
        assert not primary.is_ready
        assert not backup.is_ready

    @pytest.mark.asyncio
    async def test_provider_events(self, make_backend):
        events = EventBus("providers")
        received = []
        events.subscribe(received.append)
        registry = ProviderRegistry(
            "primary",
            backend_factory=lambda config: make_backend(name="local"),
            events=events,
        )

        await registry.add("primary", _config())
        await registry.add("backup", _config())
        await registry.remove("backup")
        await registry.remove("backup")

        assert [(e.type, e.name, e.provider) for e in received] == [
            (ProviderEventType.PROVIDER_ADDED, "primary", "local"),
            (ProviderEventType.PROVIDER_ADDED, "backup", "local"),
            (ProviderEventType.PROVIDER_REMOVED, "backup", "local"),
        ]

    def test_items_preserve_registration_order(self, registry, make_backend):
        a, b = make_backend(), make_backend()
        registry.register("b", b)
        registry.register("a", a)

        assert registry.items() == [("b", b), ("a", a)]
