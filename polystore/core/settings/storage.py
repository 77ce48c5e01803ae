"""Object storage configuration settings.

Environment variables use STORAGE_ prefix and ``__`` for nesting.
Example: STORAGE_DEFAULT_PROVIDER="primary"
         STORAGE_PROVIDERS__PRIMARY__PROVIDER="local"
         STORAGE_PROVIDERS__PRIMARY__BUCKET_NAME="uploads"
         STORAGE_PROVIDERS__PRIMARY__CREDENTIALS__BASE_PATH="/var/lib/polystore"
         STORAGE_RETRY__MAX_RETRIES=5

Supports:
- Local filesystem (development, tests, single-host deployments)
- AWS S3 and S3-compatible services (MinIO, LocalStack)
- GCS, Azure Blob, Supabase (validated, adapters registered separately)
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageProviderType(StrEnum):
    """Kinds of storage backends a StorageConfig can describe."""

    SUPABASE = "supabase"
    S3 = "s3"
    GCS = "gcs"
    AZURE = "azure"
    LOCAL = "local"


class StorageConfig(BaseModel):
    """Describes how to construct one backend instance.

    Created once at startup per configured backend and immutable thereafter.
    The shape of ``credentials`` is backend-specific and opaque to the core.

    Attributes:
        provider: Backend kind
        bucket_name: Logical container name
        region: Optional geographic region
        credentials: Backend-specific credential mapping
        options: Backend-specific tuning options
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    provider: StorageProviderType
    bucket_name: str = Field(default="", description="Logical container name")
    region: str | None = Field(default=None, description="Geographic region")
    credentials: dict[str, Any] = Field(
        default_factory=dict,
        description="Backend-specific credentials (opaque to the core)",
    )
    options: dict[str, Any] = Field(
        default_factory=dict,
        description="Backend-specific options",
    )


class RetrySettings(BaseModel):
    """Retry policy applied to every backend call."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries after the first attempt (total attempts = max_retries + 1)",
    )
    base_delay_ms: int = Field(
        default=1000,
        ge=0,
        description="Base delay between attempts in milliseconds",
    )
    exponential_backoff: bool = Field(
        default=True,
        description="Double the delay on every retry",
    )
    max_jitter_ms: int = Field(
        default=1000,
        ge=0,
        description="Upper bound of the random jitter added to each delay",
    )


class StorageManagerSettings(BaseSettings):
    """Unified storage layer settings.

    Environment variables use STORAGE_ prefix.
    Example: STORAGE_ENABLE_CACHING=false

    Describes:
    - Which providers exist and which one is the default
    - Metadata cache behaviour
    - In-process metric retention
    - Retry and fan-out concurrency
    """

    # ──────────────────────────────────────────────────────────────
    # Providers
    # ──────────────────────────────────────────────────────────────

    default_provider: str = Field(
        default="local",
        min_length=1,
        description="Name of the provider used when no name is given",
    )

    providers: dict[str, StorageConfig] = Field(
        default_factory=dict,
        description="Named provider configurations built at initialization",
    )

    # ──────────────────────────────────────────────────────────────
    # Metadata cache
    # ──────────────────────────────────────────────────────────────

    enable_caching: bool = Field(
        default=True,
        description="Cache metadata lookups for cache_ttl_seconds",
    )

    cache_ttl_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Metadata cache entry lifetime in seconds",
    )

    cache_max_entries: int = Field(
        default=10_000,
        ge=1,
        description="Maximum cached entries before least-recently-used eviction",
    )

    cache_sweep_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Interval between expired-entry sweeps",
    )

    # ──────────────────────────────────────────────────────────────
    # Metrics
    # ──────────────────────────────────────────────────────────────

    enable_metrics: bool = Field(
        default=True,
        description="Record per-operation metrics in memory",
    )

    metrics_retention_hours: float = Field(
        default=24.0,
        gt=0,
        description="Rolling window of retained metrics",
    )

    metrics_max_records: int = Field(
        default=100_000,
        ge=1,
        description="Capacity of the metrics ring buffer",
    )

    metrics_sweep_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Interval between retention sweeps",
    )

    # ──────────────────────────────────────────────────────────────
    # Resilience and concurrency
    # ──────────────────────────────────────────────────────────────

    retry: RetrySettings = Field(default_factory=RetrySettings)

    max_concurrency: int = Field(
        default=10,
        ge=1,
        le=256,
        description="Concurrent per-key operations for delete_many and sync_providers",
    )

    require_atomic_move: bool = Field(
        default=False,
        description="Refuse move on backends without an atomic rename instead of copy+delete",
    )

    # ──────────────────────────────────────────────────────────────
    # Validators
    # ──────────────────────────────────────────────────────────────

    @model_validator(mode="after")
    def _validate_default_provider(self) -> StorageManagerSettings:
        """Ensure the default provider is one of the configured providers.

        An empty provider mapping is allowed so backends can be registered
        programmatically before initialization.
        """
        if self.providers and self.default_provider not in self.providers:
            raise ValueError(
                f"default_provider '{self.default_provider}' is not configured. "
                f"Configured providers: {', '.join(sorted(self.providers))}"
            )
        return self

    # ──────────────────────────────────────────────────────────────
    # Computed Properties
    # ──────────────────────────────────────────────────────────────

    @computed_field  # type: ignore[prop-decorator]
    @property
    def metrics_retention_seconds(self) -> float:
        """Metric retention window in seconds."""
        return self.metrics_retention_hours * 3600

    # ──────────────────────────────────────────────────────────────
    # Model Configuration
    # ──────────────────────────────────────────────────────────────

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        env_ignore_empty=True,
    )


# ──────────────────────────────────────────────────────────────
# Configuration helpers
# ──────────────────────────────────────────────────────────────


def create_local_config(base_path: str, bucket_name: str = "default") -> StorageConfig:
    """Build a StorageConfig for the local filesystem backend."""
    return StorageConfig(
        provider=StorageProviderType.LOCAL,
        bucket_name=bucket_name,
        credentials={"base_path": base_path},
    )


def create_s3_config(
    access_key_id: str,
    secret_access_key: str,
    region: str,
    bucket_name: str,
    session_token: str | None = None,
    endpoint_url: str | None = None,
) -> StorageConfig:
    """Build a StorageConfig for AWS S3 or an S3-compatible endpoint."""
    credentials: dict[str, Any] = {
        "access_key_id": access_key_id,
        "secret_access_key": secret_access_key,
    }
    if session_token:
        credentials["session_token"] = session_token

    options: dict[str, Any] = {}
    if endpoint_url:
        options["endpoint_url"] = endpoint_url

    return StorageConfig(
        provider=StorageProviderType.S3,
        bucket_name=bucket_name,
        region=region,
        credentials=credentials,
        options=options,
    )
