"""Local filesystem storage backend.

Layout under ``credentials.base_path``::

    <base_path>/<bucket>/<key>                      object bytes
    <base_path>/<bucket>/.metadata/<md5(key)>.json  sidecar metadata
    <base_path>/<bucket>/.multipart/<upload_id>/    staged multipart parts

Blocking filesystem calls run in worker threads via ``asyncio.to_thread``.
Keys are sanitised: ``..`` segments and leading slashes are stripped, and
the resolved path must stay inside the bucket directory.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
import hashlib
import hmac
import json
import logging
import os
from pathlib import Path
import secrets
import shutil
import time
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, quote, unquote, urlencode, urlparse
import uuid

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
    StorageNotFoundError,
    StorageOperationNotSupportedError,
    map_os_error,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Sequence
    from typing import BinaryIO

    from polystore.core.settings.storage import StorageConfig
    from polystore.infra.storage.backends.protocol import ByteRange, MetadataUpdate

logger = logging.getLogger(__name__)

METADATA_DIR = ".metadata"
MULTIPART_DIR = ".multipart"


def _sanitize_key(key: str) -> str:
    return key.replace("..", "").lstrip("/")


def _mtime(stat: os.stat_result) -> datetime:
    return datetime.fromtimestamp(stat.st_mtime, tz=UTC)


def _stat_etag(path: Path, stat: os.stat_result) -> str:
    return hashlib.md5(f"{path}:{stat.st_mtime_ns}:{stat.st_size}".encode()).hexdigest()


def _require_file(path: Path) -> None:
    # A key naming a directory of other keys is not an object
    if not path.is_file():
        raise FileNotFoundError(str(path))


class LocalBackend:
    """Storage backend for the local filesystem.

    Implements the full StorageBackend protocol, including atomic move
    (rename) and multipart uploads. Intended for development, tests and
    single-host deployments.

    Example:
        backend = LocalBackend(create_local_config("/var/lib/polystore", "uploads"))
        await backend.startup()
        await backend.upload("docs/readme.txt", b"hello")
    """

    def __init__(self, config: StorageConfig) -> None:
        """Initialize local backend.

        Args:
            config: Config with ``credentials["base_path"]``; an optional
                ``credentials["signing_secret"]`` keys signed URLs.
        """
        self._config = config
        base_path = config.credentials.get("base_path")
        if not base_path:
            raise StorageError(
                "Base path is required for local storage",
                code="INVALID_CONFIG",
                provider=self.name,
                status_code=400,
            )
        self._root = Path(base_path).expanduser().resolve() / config.bucket_name
        secret = config.credentials.get("signing_secret") or secrets.token_hex(32)
        self._signing_key = str(secret).encode()
        self._ready = False

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def name(self) -> str:
        return "local"

    @property
    def bucket_name(self) -> str:
        return self._config.bucket_name

    @property
    def region(self) -> str | None:
        return self._config.region

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def supports_atomic_move(self) -> bool:
        return True

    @property
    def supports_multipart(self) -> bool:
        return True

    @property
    def root(self) -> Path:
        """Directory holding this bucket's objects."""
        return self._root

    # ========================================================================
    # Lifecycle Management
    # ========================================================================

    async def startup(self) -> None:
        if self._ready:
            return

        def _create_dirs() -> None:
            (self._root / METADATA_DIR).mkdir(parents=True, exist_ok=True)
            (self._root / MULTIPART_DIR).mkdir(parents=True, exist_ok=True)

        try:
            await asyncio.to_thread(_create_dirs)
        except OSError as e:
            raise map_os_error(e, str(self._root), provider=self.name, operation="startup") from e
        self._ready = True
        logger.info("Local storage backend started", extra={"root": str(self._root)})

    async def shutdown(self) -> None:
        self._ready = False
        logger.info("Local storage backend shut down", extra={"root": str(self._root)})

    async def health_check(self) -> bool:
        def _check() -> bool:
            return self._root.is_dir() and os.access(self._root, os.R_OK | os.W_OK)

        return await asyncio.to_thread(_check)

    # ========================================================================
    # Paths
    # ========================================================================

    def _object_path(self, key: str) -> Path:
        sanitized = _sanitize_key(key)
        if not sanitized:
            raise StorageError(
                f"Invalid object key: {key!r}",
                code="INVALID_KEY",
                provider=self.name,
                status_code=400,
                metadata={"key": key},
            )
        path = (self._root / sanitized).resolve()
        if not path.is_relative_to(self._root):
            raise StorageError(
                f"Invalid object key: {key!r}",
                code="INVALID_KEY",
                provider=self.name,
                status_code=400,
                metadata={"key": key},
            )
        return path

    def _metadata_path(self, key: str) -> Path:
        digest = hashlib.md5(_sanitize_key(key).encode()).hexdigest()
        return self._root / METADATA_DIR / f"{digest}.json"

    # ========================================================================
    # Sidecar metadata
    # ========================================================================

    def _write_metadata(self, key: str, metadata: StorageMetadata) -> None:
        payload = {
            "key": _sanitize_key(key),
            "size": metadata.size,
            "mime_type": metadata.mime_type,
            "last_modified": metadata.last_modified.isoformat() if metadata.last_modified else None,
            "etag": metadata.etag,
            "cache_control": metadata.cache_control,
            "content_encoding": metadata.content_encoding,
            "custom_metadata": metadata.custom_metadata,
        }
        path = self._metadata_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload), encoding="utf-8")

    def _read_metadata(self, key: str) -> StorageMetadata:
        path = self._object_path(key)
        _require_file(path)
        stat = path.stat()
        try:
            raw = json.loads(self._metadata_path(key).read_text(encoding="utf-8"))
        except (FileNotFoundError, json.JSONDecodeError):
            return StorageMetadata(
                size=stat.st_size,
                mime_type=DEFAULT_MIME_TYPE,
                last_modified=_mtime(stat),
                etag=_stat_etag(path, stat),
            )
        last_modified = raw.get("last_modified")
        return StorageMetadata(
            size=stat.st_size,
            mime_type=raw.get("mime_type") or DEFAULT_MIME_TYPE,
            last_modified=datetime.fromisoformat(last_modified) if last_modified else _mtime(stat),
            etag=raw.get("etag") or _stat_etag(path, stat),
            cache_control=raw.get("cache_control"),
            content_encoding=raw.get("content_encoding"),
            custom_metadata=dict(raw.get("custom_metadata") or {}),
        )

    def _to_object(self, key: str, metadata: StorageMetadata, is_public: bool = False) -> StorageObject:
        url = self.get_public_url(key)
        return StorageObject(
            key=key,
            size=metadata.size,
            last_modified=metadata.last_modified or datetime.now(UTC),
            etag=metadata.etag,
            metadata=metadata,
            url=url,
            public_url=url if is_public else None,
        )

    async def _run(self, func: Callable[..., Any], *args: Any, key: str, operation: str) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except OSError as e:
            raise map_os_error(e, key, provider=self.name, operation=operation) from e

    # ========================================================================
    # Core Object Operations
    # ========================================================================

    async def upload(
        self,
        key: str,
        data: bytes,
        options: UploadOptions | None = None,
    ) -> StorageObject:
        options = options or UploadOptions()
        path = self._object_path(key)

        def _write() -> StorageMetadata:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            stat = path.stat()
            metadata = StorageMetadata(
                size=stat.st_size,
                mime_type=options.mime_type or DEFAULT_MIME_TYPE,
                last_modified=_mtime(stat),
                etag=hashlib.md5(data).hexdigest(),
                cache_control=options.cache_control,
                content_encoding=options.content_encoding,
                custom_metadata=dict(options.custom_metadata),
            )
            self._write_metadata(key, metadata)
            return metadata

        if options.progress_callback:
            options.progress_callback(0)
        metadata = await self._run(_write, key=key, operation="upload")
        if options.progress_callback:
            options.progress_callback(100)

        return self._to_object(key, metadata, is_public=options.is_public)

    async def download(self, key: str, byte_range: ByteRange | None = None) -> bytes:
        path = self._object_path(key)

        def _read() -> bytes:
            _require_file(path)
            if byte_range is None:
                return path.read_bytes()
            with path.open("rb") as f:
                f.seek(byte_range.start)
                if byte_range.end is None:
                    return f.read()
                return f.read(byte_range.end - byte_range.start + 1)

        return await self._run(_read, key=key, operation="download")

    async def stream(
        self,
        key: str,
        byte_range: ByteRange | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        path = self._object_path(key)
        def _open() -> BinaryIO:
            _require_file(path)
            return path.open("rb")

        f = await self._run(_open, key=key, operation="download")
        try:
            remaining: int | None = None
            if byte_range is not None:
                await asyncio.to_thread(f.seek, byte_range.start)
                if byte_range.end is not None:
                    remaining = byte_range.end - byte_range.start + 1
            while remaining is None or remaining > 0:
                size = chunk_size if remaining is None else min(chunk_size, remaining)
                chunk = await asyncio.to_thread(f.read, size)
                if not chunk:
                    break
                if remaining is not None:
                    remaining -= len(chunk)
                yield chunk
        finally:
            await asyncio.to_thread(f.close)

    async def delete(self, key: str) -> None:
        path = self._object_path(key)

        def _delete() -> None:
            _require_file(path)
            path.unlink()
            self._metadata_path(key).unlink(missing_ok=True)

        await self._run(_delete, key=key, operation="delete")

    async def delete_many(self, keys: Sequence[str]) -> list[str]:
        raise StorageOperationNotSupportedError("delete_many", provider=self.name)

    async def exists(self, key: str) -> bool:
        path = self._object_path(key)
        return await asyncio.to_thread(path.is_file)

    async def get_metadata(self, key: str) -> StorageMetadata:
        return await self._run(self._read_metadata, key, key=key, operation="metadata")

    async def update_metadata(self, key: str, update: MetadataUpdate) -> StorageMetadata:
        def _update() -> StorageMetadata:
            merged = update.apply(self._read_metadata(key))
            self._write_metadata(key, merged)
            return merged

        return await self._run(_update, key=key, operation="update_metadata")

    # ========================================================================
    # Listing
    # ========================================================================

    def _walk_keys(self, prefix: str) -> list[str]:
        keys: list[str] = []
        for dirpath, dirnames, filenames in os.walk(self._root):
            # Skip hidden files/directories (.metadata, .multipart)
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            rel_dir = Path(dirpath).relative_to(self._root)
            for filename in filenames:
                if filename.startswith("."):
                    continue
                key = (rel_dir / filename).as_posix() if rel_dir.parts else filename
                if key.startswith(prefix):
                    keys.append(key)
        keys.sort()
        return keys

    async def list(self, options: ListOptions | None = None) -> ListResult:
        options = options or ListOptions()
        prefix = _sanitize_key(options.prefix or "")

        def _list() -> ListResult:
            keys = self._walk_keys(prefix)
            if options.page_token:
                keys = [k for k in keys if k > options.page_token]

            objects: list[StorageObject] = []
            prefixes: list[str] = []
            next_token: str | None = None
            for key in keys:
                # Keys sharing a common prefix sort contiguously
                if len(objects) >= options.max_results:
                    next_token = objects[-1].key
                    break
                if options.delimiter:
                    rest = key[len(prefix) :]
                    idx = rest.find(options.delimiter)
                    if idx >= 0:
                        common = prefix + rest[: idx + len(options.delimiter)]
                        if common not in prefixes:
                            prefixes.append(common)
                        continue
                path = self._root / key
                stat = path.stat()
                metadata = self._read_metadata(key) if options.include_metadata else None
                objects.append(
                    StorageObject(
                        key=key,
                        size=stat.st_size,
                        last_modified=_mtime(stat),
                        etag=metadata.etag if metadata else _stat_etag(path, stat),
                        metadata=metadata,
                        url=self.get_public_url(key),
                    )
                )

            return ListResult(
                objects=objects,
                prefixes=prefixes,
                next_page_token=next_token,
                is_truncated=next_token is not None,
            )

        return await self._run(_list, key=prefix, operation="list")

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
        return self._object_path(key).as_uri()

    async def get_signed_url(self, key: str, options: SignedUrlOptions | None = None) -> str:
        options = options or SignedUrlOptions()
        sanitized = _sanitize_key(key)
        expires = int(time.time()) + options.expires_in
        signature = self._sign(sanitized, expires, options.method)
        query = urlencode({"expires": expires, "method": options.method.value, "signature": signature})
        return f"local://{self.bucket_name}/{quote(sanitized)}?{query}"

    def verify_signed_url(self, url: str, now: float | None = None) -> bool:
        """Check the signature and expiry of a URL from ``get_signed_url``."""
        parsed = urlparse(url)
        if parsed.scheme != "local" or parsed.netloc != self.bucket_name:
            return False
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        try:
            expires = int(params["expires"])
            method = HttpMethod(params.get("method", HttpMethod.GET.value))
            signature = params["signature"]
        except (KeyError, ValueError):
            return False
        if expires < (time.time() if now is None else now):
            return False
        expected = self._sign(unquote(parsed.path.lstrip("/")), expires, method)
        return hmac.compare_digest(expected, signature)

    def _sign(self, key: str, expires: int, method: HttpMethod) -> str:
        message = f"{self.bucket_name}/{key}:{expires}:{method.value}".encode()
        return hmac.new(self._signing_key, message, hashlib.sha256).hexdigest()

    # ========================================================================
    # Copy / Move
    # ========================================================================

    async def copy(self, source_key: str, dest_key: str) -> StorageObject:
        source = self._object_path(source_key)
        dest = self._object_path(dest_key)

        def _copy() -> StorageMetadata:
            metadata = self._read_metadata(source_key)
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, dest)
            self._write_metadata(dest_key, metadata)
            return self._read_metadata(dest_key)

        metadata = await self._run(_copy, key=source_key, operation="copy")
        return self._to_object(dest_key, metadata)

    async def move(self, source_key: str, dest_key: str) -> StorageObject:
        source = self._object_path(source_key)
        dest = self._object_path(dest_key)

        def _move() -> StorageMetadata:
            metadata = self._read_metadata(source_key)
            dest.parent.mkdir(parents=True, exist_ok=True)
            os.replace(source, dest)
            self._write_metadata(dest_key, metadata)
            self._metadata_path(source_key).unlink(missing_ok=True)
            return self._read_metadata(dest_key)

        metadata = await self._run(_move, key=source_key, operation="move")
        return self._to_object(dest_key, metadata)

    # ========================================================================
    # Multipart Uploads
    # ========================================================================

    def _upload_dir(self, upload_id: str) -> Path:
        if not upload_id or "/" in upload_id or upload_id.startswith("."):
            raise StorageNotFoundError(upload_id, provider=self.name)
        return self._root / MULTIPART_DIR / upload_id

    async def create_multipart_upload(self, key: str, options: UploadOptions | None = None) -> str:
        options = options or UploadOptions()
        self._object_path(key)
        upload_id = uuid.uuid4().hex
        upload_dir = self._upload_dir(upload_id)

        def _create() -> None:
            upload_dir.mkdir(parents=True)
            manifest = {
                "key": _sanitize_key(key),
                "mime_type": options.mime_type,
                "cache_control": options.cache_control,
                "content_encoding": options.content_encoding,
                "custom_metadata": options.custom_metadata,
            }
            (upload_dir / "manifest.json").write_text(json.dumps(manifest), encoding="utf-8")

        await self._run(_create, key=key, operation="create_multipart_upload")
        return upload_id

    async def upload_part(
        self,
        key: str,
        upload_id: str,
        part_number: int,
        data: bytes,
    ) -> MultipartPart:
        if part_number < 1:
            raise ValueError("part_number must be >= 1")
        upload_dir = self._upload_dir(upload_id)

        def _write_part() -> str:
            if not upload_dir.is_dir():
                raise FileNotFoundError(str(upload_dir))
            (upload_dir / f"{part_number:05d}.part").write_bytes(data)
            return hashlib.md5(data).hexdigest()

        etag = await self._run(_write_part, key=key, operation="upload_part")
        return MultipartPart(part_number=part_number, etag=etag)

    async def complete_multipart_upload(
        self,
        key: str,
        upload_id: str,
        parts: Sequence[MultipartPart],
    ) -> StorageObject:
        upload_dir = self._upload_dir(upload_id)
        dest = self._object_path(key)

        def _complete() -> StorageMetadata:
            manifest = json.loads((upload_dir / "manifest.json").read_text(encoding="utf-8"))
            digest = hashlib.md5()
            dest.parent.mkdir(parents=True, exist_ok=True)
            with dest.open("wb") as out:
                for part in sorted(parts, key=lambda p: p.part_number):
                    chunk = (upload_dir / f"{part.part_number:05d}.part").read_bytes()
                    if hashlib.md5(chunk).hexdigest() != part.etag:
                        raise StorageError(
                            f"ETag mismatch for part {part.part_number}",
                            code="INVALID_PART",
                            provider=self.name,
                            status_code=400,
                            metadata={"key": key, "upload_id": upload_id},
                        )
                    digest.update(chunk)
                    out.write(chunk)
            stat = dest.stat()
            metadata = StorageMetadata(
                size=stat.st_size,
                mime_type=manifest.get("mime_type") or DEFAULT_MIME_TYPE,
                last_modified=_mtime(stat),
                etag=f"{digest.hexdigest()}-{len(parts)}",
                cache_control=manifest.get("cache_control"),
                content_encoding=manifest.get("content_encoding"),
                custom_metadata=dict(manifest.get("custom_metadata") or {}),
            )
            self._write_metadata(key, metadata)
            shutil.rmtree(upload_dir, ignore_errors=True)
            return metadata

        metadata = await self._run(_complete, key=key, operation="complete_multipart_upload")
        return self._to_object(key, metadata)

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        upload_dir = self._upload_dir(upload_id)
        await self._run(shutil.rmtree, upload_dir, key=key, operation="abort_multipart_upload")
