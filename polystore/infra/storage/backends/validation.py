"""Provider configuration validation.

Each provider kind has its own required credentials and bucket naming
rules. Validation collects every problem instead of stopping at the
first one, and separates fatal errors from advisory warnings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from polystore.core.settings.storage import StorageProviderType

if TYPE_CHECKING:
    from polystore.core.settings.storage import StorageConfig

_SUPABASE_BUCKET_RE = re.compile(r"^[a-z0-9][a-z0-9-]*[a-z0-9]$")
_S3_BUCKET_RE = re.compile(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$")
_GCS_BUCKET_RE = re.compile(r"^[a-z0-9][a-z0-9._-]*[a-z0-9]$")
_AZURE_CONTAINER_RE = re.compile(r"^[a-z0-9][a-z0-9-]*[a-z0-9]$")


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a StorageConfig."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


class StorageConfigValidator:
    """Validates a StorageConfig against its provider's rules.

    Example:
        result = StorageConfigValidator().validate(config)
        if not result.valid:
            raise StorageConfigError(result.errors, warnings=result.warnings)
    """

    def validate(self, config: StorageConfig) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        if not config.bucket_name:
            errors.append("Bucket name is required")

        match config.provider:
            case StorageProviderType.SUPABASE:
                self._validate_supabase(config, errors, warnings)
            case StorageProviderType.S3:
                self._validate_s3(config, errors, warnings)
            case StorageProviderType.GCS:
                self._validate_gcs(config, errors, warnings)
            case StorageProviderType.AZURE:
                self._validate_azure(config, errors, warnings)
            case StorageProviderType.LOCAL:
                self._validate_local(config, errors, warnings)
            case _:
                errors.append(f"Unsupported provider: {config.provider}")

        return ValidationResult(errors=errors, warnings=warnings)

    # ========================================================================
    # Provider rules
    # ========================================================================

    @staticmethod
    def _validate_supabase(config: StorageConfig, errors: list[str], warnings: list[str]) -> None:
        creds = config.credentials
        url = creds.get("url")
        if not url:
            errors.append("Supabase URL is required")
        else:
            parsed = urlparse(str(url))
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                errors.append("Invalid Supabase URL format")

        anon_key = creds.get("anon_key")
        service_key = creds.get("service_key")
        if not anon_key and not service_key:
            errors.append("Either anon key or service key is required for Supabase")
        if anon_key and service_key:
            warnings.append("Both anon key and service key provided. Service key will be used.")

        if config.bucket_name and not _SUPABASE_BUCKET_RE.match(config.bucket_name):
            errors.append(
                "Supabase bucket name must contain only lowercase letters, numbers, and hyphens"
            )

    @staticmethod
    def _validate_s3(config: StorageConfig, errors: list[str], warnings: list[str]) -> None:
        creds = config.credentials
        if not creds.get("access_key_id"):
            errors.append("AWS Access Key ID is required")
        if not creds.get("secret_access_key"):
            errors.append("AWS Secret Access Key is required")
        if not config.region:
            errors.append("AWS region is required for S3")

        bucket = config.bucket_name
        if bucket:
            if not 3 <= len(bucket) <= 63:
                errors.append("S3 bucket name must be between 3 and 63 characters")
            if not _S3_BUCKET_RE.match(bucket):
                errors.append("S3 bucket name contains invalid characters")
            if ".." in bucket:
                errors.append("S3 bucket name cannot contain consecutive periods")

        if creds.get("session_token"):
            warnings.append("Using temporary credentials with session token")

    @staticmethod
    def _validate_gcs(config: StorageConfig, errors: list[str], warnings: list[str]) -> None:
        creds = config.credentials
        if not creds.get("project_id"):
            errors.append("Google Cloud Project ID is required")

        key_filename = creds.get("key_filename")
        service_account = creds.get("service_account_key")
        if not key_filename and not service_account:
            errors.append(
                "Either key file path or service account credentials are required for GCS"
            )
        if key_filename and service_account:
            warnings.append(
                "Both key file and service account credentials provided. "
                "Service account credentials will be used."
            )

        bucket = config.bucket_name
        if bucket:
            if not 3 <= len(bucket) <= 63:
                errors.append("GCS bucket name must be between 3 and 63 characters")
            if not _GCS_BUCKET_RE.match(bucket):
                errors.append("GCS bucket name contains invalid characters")

    @staticmethod
    def _validate_azure(config: StorageConfig, errors: list[str], warnings: list[str]) -> None:
        creds = config.credentials
        connection_string = creds.get("connection_string")
        account_name = creds.get("account_name")
        account_key = creds.get("account_key")
        if not connection_string and not (account_name and account_key):
            errors.append(
                "Either connection string or account name + account key are required for Azure"
            )
        if connection_string and (account_name or account_key):
            warnings.append(
                "Both connection string and credentials provided. Connection string will be used."
            )

        bucket = config.bucket_name
        if bucket:
            if not 3 <= len(bucket) <= 63:
                errors.append("Azure container name must be between 3 and 63 characters")
            if not _AZURE_CONTAINER_RE.match(bucket):
                errors.append(
                    "Azure container name must contain only lowercase letters, numbers, and hyphens"
                )

    @staticmethod
    def _validate_local(config: StorageConfig, errors: list[str], warnings: list[str]) -> None:
        if not config.credentials.get("base_path"):
            errors.append("Base path is required for local storage")
        warnings.append("Local storage should only be used for development or testing")
