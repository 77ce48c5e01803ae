"""S3-compatible storage backend implementation.

Implements the StorageBackend protocol for AWS S3, MinIO, LocalStack and
other S3-compatible services using aioboto3.

Config options (``StorageConfig.options``):
    endpoint_url: Custom endpoint for S3-compatible services
    public_url_base: Base URL used by ``get_public_url`` (CDN, website endpoint)
    multipart_threshold: Payload size above which uploads with a progress
        callback are sent as multipart uploads (default 8 MiB)
    part_size: Multipart part size in bytes (default 8 MiB, minimum 5 MiB)
    max_pool_connections, connect_timeout, read_timeout: botocore client tuning
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import aioboto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from polystore.infra.storage.backends.protocol import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MIME_TYPE,
    HttpMethod,
    ListOptions,
    ListResult,
    MultipartPart,
    SignedUrlOptions,
    StorageMetadata,
    StorageObject,
    UploadOptions,
)
from polystore.infra.storage.exceptions import (
    StorageError,
    StorageOperationNotSupportedError,
    map_boto_error,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from polystore.core.settings.storage import StorageConfig
    from polystore.infra.storage.backends.protocol import ByteRange, MetadataUpdate

logger = logging.getLogger(__name__)

MIN_PART_SIZE = 5 * 1024 * 1024
DEFAULT_PART_SIZE = 8 * 1024 * 1024
DEFAULT_MULTIPART_THRESHOLD = 8 * 1024 * 1024
DELETE_BATCH_SIZE = 1000

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})

_PRESIGN_METHODS = {
    HttpMethod.GET: "get_object",
    HttpMethod.PUT: "put_object",
    HttpMethod.DELETE: "delete_object",
}


def _strip_etag(etag: str | None) -> str | None:
    return etag.strip('"') if etag else None


def _metadata_from_head(response: dict[str, Any]) -> StorageMetadata:
    return StorageMetadata(
        size=response.get("ContentLength", 0),
        mime_type=response.get("ContentType") or DEFAULT_MIME_TYPE,
        last_modified=response.get("LastModified"),
        etag=_strip_etag(response.get("ETag")),
        cache_control=response.get("CacheControl"),
        content_encoding=response.get("ContentEncoding"),
        custom_metadata=dict(response.get("Metadata") or {}),
    )


class S3Backend:
    """S3-compatible storage backend.

    Example:
        backend = S3Backend(create_s3_config("AKIA...", "secret", "us-east-1", "uploads"))
        await backend.startup()
        obj = await backend.upload("file.txt", b"data")
        await backend.shutdown()
    """

    def __init__(self, config: StorageConfig, session: aioboto3.Session | None = None) -> None:
        """Initialize S3 backend.

        Args:
            config: Provider config with S3 credentials and bucket
            session: aioboto3 session to use (a new one by default)
        """
        self._config = config
        self._options = dict(config.options)
        self._session = session or aioboto3.Session()
        self._client: Any = None
        self._client_context: Any = None

        part_size = int(self._options.get("part_size", DEFAULT_PART_SIZE))
        self._part_size = max(part_size, MIN_PART_SIZE)
        self._multipart_threshold = int(
            self._options.get("multipart_threshold", DEFAULT_MULTIPART_THRESHOLD)
        )

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def name(self) -> str:
        return "s3"

    @property
    def bucket_name(self) -> str:
        return self._config.bucket_name

    @property
    def region(self) -> str | None:
        return self._config.region

    @property
    def is_ready(self) -> bool:
        return self._client is not None

    @property
    def supports_atomic_move(self) -> bool:
        return False

    @property
    def supports_multipart(self) -> bool:
        return True

    # ========================================================================
    # Lifecycle Management
    # ========================================================================

    async def startup(self) -> None:
        """Initialize S3 client and connection pool."""
        if self._client is not None:
            logger.debug("S3 backend already initialized")
            return

        logger.info(
            "Initializing S3 backend",
            extra={
                "bucket": self.bucket_name,
                "endpoint": self._options.get("endpoint_url"),
                "region": self.region,
            },
        )

        try:
            # Retries are owned by the storage manager's retry policy
            boto_config = Config(
                retries={"max_attempts": 1, "mode": "standard"},
                connect_timeout=self._options.get("connect_timeout", 10),
                read_timeout=self._options.get("read_timeout", 60),
                max_pool_connections=self._options.get("max_pool_connections", 10),
            )
            self._client_context = self._session.client(
                "s3",
                **self._get_client_config(),
                config=boto_config,
            )
            self._client = await self._client_context.__aenter__()
            logger.info("S3 backend initialized successfully")
        except Exception as e:
            self._client_context = None
            self._client = None
            logger.exception("Failed to initialize S3 backend", extra={"error": str(e)})
            raise StorageError(
                f"Failed to initialize S3 backend: {e}",
                code="INITIALIZATION_ERROR",
                provider=self.name,
                cause=e,
                status_code=503,
            ) from e

    async def shutdown(self) -> None:
        """Shutdown S3 client gracefully."""
        if self._client_context is None:
            logger.debug("S3 backend not initialized, nothing to shutdown")
            return

        try:
            await self._client_context.__aexit__(None, None, None)
        except Exception as e:
            logger.warning(f"Error closing S3 client: {e}")
        finally:
            self._client = None
            self._client_context = None

        logger.info("S3 backend shutdown complete")

    async def health_check(self) -> bool:
        if self._client is None:
            return False

        try:
            await self._client.head_bucket(Bucket=self.bucket_name)
            return True
        except Exception as e:
            logger.warning(
                "S3 health check failed",
                extra={"error": str(e), "bucket": self.bucket_name},
            )
            return False

    def _get_client_config(self) -> dict[str, Any]:
        creds = self._config.credentials
        config: dict[str, Any] = {"region_name": self.region}

        if creds.get("access_key_id") and creds.get("secret_access_key"):
            config["aws_access_key_id"] = creds["access_key_id"]
            config["aws_secret_access_key"] = creds["secret_access_key"]
            if creds.get("session_token"):
                config["aws_session_token"] = creds["session_token"]

        if self._options.get("endpoint_url"):
            config["endpoint_url"] = self._options["endpoint_url"]

        return config

    def _ensure_client(self) -> Any:
        if self._client is None:
            raise StorageError(
                "S3 backend not initialized. Call startup() first.",
                code="NOT_INITIALIZED",
                provider=self.name,
                status_code=503,
            )
        return self._client

    def _map_error(self, error: Exception, operation: str, key: str | None = None) -> StorageError:
        if isinstance(error, ClientError):
            return map_boto_error(error, operation=operation, key=key, provider=self.name)
        if isinstance(error, StorageError):
            return error
        return StorageError(
            f"{operation.capitalize()} failed: {error}",
            code="CONNECTION_ERROR" if isinstance(error, BotoCoreError) else "STORAGE_ERROR",
            provider=self.name,
            cause=error,
            status_code=503 if isinstance(error, BotoCoreError) else 500,
            metadata={"key": key, "operation": operation},
        )

    def _to_object(self, key: str, metadata: StorageMetadata, is_public: bool = False) -> StorageObject:
        public_url = self.get_public_url(key)
        return StorageObject(
            key=key,
            size=metadata.size,
            last_modified=metadata.last_modified or datetime.now(UTC),
            etag=metadata.etag,
            metadata=metadata,
            url=public_url,
            public_url=public_url if is_public else None,
        )

    # ========================================================================
    # Core Object Operations
    # ========================================================================

    def _put_args(self, options: UploadOptions) -> dict[str, Any]:
        extra_args: dict[str, Any] = {"ContentType": options.mime_type or DEFAULT_MIME_TYPE}
        if options.cache_control:
            extra_args["CacheControl"] = options.cache_control
        if options.content_encoding:
            extra_args["ContentEncoding"] = options.content_encoding
        if options.custom_metadata:
            extra_args["Metadata"] = dict(options.custom_metadata)
        if options.is_public:
            extra_args["ACL"] = "public-read"
        return extra_args

    async def upload(
        self,
        key: str,
        data: bytes,
        options: UploadOptions | None = None,
    ) -> StorageObject:
        client = self._ensure_client()
        options = options or UploadOptions()

        if options.progress_callback and len(data) > self._multipart_threshold:
            return await self._upload_multipart_with_progress(key, data, options)

        if options.progress_callback:
            options.progress_callback(0)
        try:
            response = await client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                **self._put_args(options),
            )
        except Exception as e:
            logger.exception("Failed to upload object to S3", extra={"key": key, "error": str(e)})
            raise self._map_error(e, "upload", key) from e
        if options.progress_callback:
            options.progress_callback(100)

        logger.debug(
            "Object uploaded to S3",
            extra={"key": key, "bucket": self.bucket_name, "size_bytes": len(data)},
        )
        metadata = StorageMetadata(
            size=len(data),
            mime_type=options.mime_type or DEFAULT_MIME_TYPE,
            last_modified=datetime.now(UTC),
            etag=_strip_etag(response.get("ETag")),
            cache_control=options.cache_control,
            content_encoding=options.content_encoding,
            custom_metadata=dict(options.custom_metadata),
        )
        return self._to_object(key, metadata, is_public=options.is_public)

    async def _upload_multipart_with_progress(
        self,
        key: str,
        data: bytes,
        options: UploadOptions,
    ) -> StorageObject:
        callback = options.progress_callback
        total = len(data)
        upload_id = await self.create_multipart_upload(key, options)
        parts: list[MultipartPart] = []
        try:
            if callback:
                callback(0)
            for offset in range(0, total, self._part_size):
                chunk = data[offset : offset + self._part_size]
                parts.append(await self.upload_part(key, upload_id, len(parts) + 1, chunk))
                if callback:
                    callback(min(100.0, (offset + len(chunk)) * 100 / total))
            obj = await self.complete_multipart_upload(key, upload_id, parts)
        except BaseException:
            await self._abort_quietly(key, upload_id)
            raise
        if options.is_public:
            obj = StorageObject(
                key=obj.key,
                size=obj.size,
                last_modified=obj.last_modified,
                etag=obj.etag,
                metadata=obj.metadata,
                url=obj.url,
                public_url=obj.url,
            )
        return obj

    async def _abort_quietly(self, key: str, upload_id: str) -> None:
        try:
            await self.abort_multipart_upload(key, upload_id)
        except StorageError as e:
            logger.warning(
                "Failed to abort multipart upload",
                extra={"key": key, "upload_id": upload_id, "error": str(e)},
            )

    async def download(self, key: str, byte_range: ByteRange | None = None) -> bytes:
        client = self._ensure_client()
        params: dict[str, Any] = {"Bucket": self.bucket_name, "Key": key}
        if byte_range is not None:
            params["Range"] = byte_range.to_header()

        try:
            response = await client.get_object(**params)
            raw = await response["Body"].read()
        except Exception as e:
            raise self._map_error(e, "download", key) from e
        return bytes(raw)

    async def stream(
        self,
        key: str,
        byte_range: ByteRange | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        client = self._ensure_client()
        params: dict[str, Any] = {"Bucket": self.bucket_name, "Key": key}
        if byte_range is not None:
            params["Range"] = byte_range.to_header()

        try:
            response = await client.get_object(**params)
        except Exception as e:
            raise self._map_error(e, "download", key) from e

        body = response["Body"]
        try:
            while True:
                try:
                    chunk = await body.read(chunk_size)
                except Exception as e:
                    raise self._map_error(e, "download", key) from e
                if not chunk:
                    break
                yield bytes(chunk)
        finally:
            body.close()

    async def delete(self, key: str) -> None:
        client = self._ensure_client()
        try:
            await client.delete_object(Bucket=self.bucket_name, Key=key)
        except Exception as e:
            raise self._map_error(e, "delete", key) from e
        logger.debug("Object deleted from S3", extra={"key": key, "bucket": self.bucket_name})

    async def delete_many(self, keys: Sequence[str]) -> list[str]:
        client = self._ensure_client()
        failed: list[str] = []
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = list(keys[start : start + DELETE_BATCH_SIZE])
            try:
                response = await client.delete_objects(
                    Bucket=self.bucket_name,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except Exception as e:
                raise self._map_error(e, "delete_many") from e
            failed.extend(err["Key"] for err in response.get("Errors", []))
        return failed

    async def exists(self, key: str) -> bool:
        client = self._ensure_client()
        try:
            await client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code", "") in _NOT_FOUND_CODES:
                return False
            raise self._map_error(e, "exists", key) from e
        except Exception as e:
            raise self._map_error(e, "exists", key) from e

    async def get_metadata(self, key: str) -> StorageMetadata:
        client = self._ensure_client()
        try:
            response = await client.head_object(Bucket=self.bucket_name, Key=key)
        except Exception as e:
            raise self._map_error(e, "metadata", key) from e
        return _metadata_from_head(response)

    async def update_metadata(self, key: str, update: MetadataUpdate) -> StorageMetadata:
        client = self._ensure_client()
        merged = update.apply(await self.get_metadata(key))

        params: dict[str, Any] = {
            "Bucket": self.bucket_name,
            "Key": key,
            "CopySource": {"Bucket": self.bucket_name, "Key": key},
            "MetadataDirective": "REPLACE",
            "ContentType": merged.mime_type,
            "Metadata": merged.custom_metadata,
        }
        if merged.cache_control:
            params["CacheControl"] = merged.cache_control
        if merged.content_encoding:
            params["ContentEncoding"] = merged.content_encoding

        try:
            await client.copy_object(**params)
        except Exception as e:
            raise self._map_error(e, "update_metadata", key) from e
        return merged

    # ========================================================================
    # Listing
    # ========================================================================

    async def list(self, options: ListOptions | None = None) -> ListResult:
        client = self._ensure_client()
        options = options or ListOptions()

        params: dict[str, Any] = {"Bucket": self.bucket_name, "MaxKeys": options.max_results}
        if options.prefix:
            params["Prefix"] = options.prefix
        if options.page_token:
            params["ContinuationToken"] = options.page_token
        if options.delimiter:
            params["Delimiter"] = options.delimiter

        try:
            response = await client.list_objects_v2(**params)
        except Exception as e:
            raise self._map_error(e, "list", options.prefix) from e

        contents = response.get("Contents", [])
        metadata: list[StorageMetadata | None] = [None] * len(contents)
        if options.include_metadata and contents:
            metadata = list(
                await asyncio.gather(*(self.get_metadata(item["Key"]) for item in contents))
            )

        objects = [
            StorageObject(
                key=item["Key"],
                size=item.get("Size", 0),
                last_modified=item.get("LastModified") or datetime.now(UTC),
                etag=_strip_etag(item.get("ETag")),
                metadata=meta,
                url=self.get_public_url(item["Key"]),
            )
            for item, meta in zip(contents, metadata, strict=True)
        ]
        return ListResult(
            objects=objects,
            prefixes=[p["Prefix"] for p in response.get("CommonPrefixes", [])],
            next_page_token=response.get("NextContinuationToken"),
            is_truncated=bool(response.get("IsTruncated", False)),
        )

    async def list_by_prefix(self, prefix: str, options: ListOptions | None = None) -> ListResult:
        options = options or ListOptions()
        return await self.list(
            ListOptions(
                prefix=prefix,
                max_results=options.max_results,
                page_token=options.page_token,
                delimiter=options.delimiter,
                include_metadata=options.include_metadata,
            )
        )

    # ========================================================================
    # URLs
    # ========================================================================

    def get_public_url(self, key: str) -> str:
        quoted = quote(key)
        base = self._options.get("public_url_base")
        if base:
            return f"{str(base).rstrip('/')}/{quoted}"
        endpoint = self._options.get("endpoint_url")
        if endpoint:
            return f"{str(endpoint).rstrip('/')}/{self.bucket_name}/{quoted}"
        region = self.region or "us-east-1"
        return f"https://{self.bucket_name}.s3.{region}.amazonaws.com/{quoted}"

    async def get_signed_url(self, key: str, options: SignedUrlOptions | None = None) -> str:
        client = self._ensure_client()
        options = options or SignedUrlOptions()

        params: dict[str, Any] = {"Bucket": self.bucket_name, "Key": key}
        if options.method is HttpMethod.PUT:
            if options.content_type:
                params["ContentType"] = options.content_type
            if options.custom_metadata:
                params["Metadata"] = dict(options.custom_metadata)

        try:
            return await client.generate_presigned_url(
                ClientMethod=_PRESIGN_METHODS[options.method],
                Params=params,
                ExpiresIn=options.expires_in,
            )
        except Exception as e:
            raise self._map_error(e, "url", key) from e

    # ========================================================================
    # Copy / Move
    # ========================================================================

    async def copy(self, source_key: str, dest_key: str) -> StorageObject:
        client = self._ensure_client()
        try:
            await client.copy_object(
                Bucket=self.bucket_name,
                Key=dest_key,
                CopySource={"Bucket": self.bucket_name, "Key": source_key},
            )
        except Exception as e:
            raise self._map_error(e, "copy", source_key) from e
        return self._to_object(dest_key, await self.get_metadata(dest_key))

    async def move(self, source_key: str, dest_key: str) -> StorageObject:
        # S3 has no rename; the manager falls back to copy + delete
        raise StorageOperationNotSupportedError("move", provider=self.name)

    # ========================================================================
    # Multipart Uploads
    # ========================================================================

    async def create_multipart_upload(self, key: str, options: UploadOptions | None = None) -> str:
        client = self._ensure_client()
        try:
            response = await client.create_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                **self._put_args(options or UploadOptions()),
            )
        except Exception as e:
            raise self._map_error(e, "create_multipart_upload", key) from e
        return response["UploadId"]

    async def upload_part(
        self,
        key: str,
        upload_id: str,
        part_number: int,
        data: bytes,
    ) -> MultipartPart:
        client = self._ensure_client()
        try:
            response = await client.upload_part(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=data,
            )
        except Exception as e:
            raise self._map_error(e, "upload_part", key) from e
        return MultipartPart(part_number=part_number, etag=_strip_etag(response["ETag"]) or "")

    async def complete_multipart_upload(
        self,
        key: str,
        upload_id: str,
        parts: Sequence[MultipartPart],
    ) -> StorageObject:
        client = self._ensure_client()
        ordered = sorted(parts, key=lambda p: p.part_number)
        try:
            await client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={
                    "Parts": [{"ETag": f'"{p.etag}"', "PartNumber": p.part_number} for p in ordered]
                },
            )
        except Exception as e:
            raise self._map_error(e, "complete_multipart_upload", key) from e
        return self._to_object(key, await self.get_metadata(key))

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        client = self._ensure_client()
        try:
            await client.abort_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
            )
        except Exception as e:
            raise self._map_error(e, "abort_multipart_upload", key) from e
