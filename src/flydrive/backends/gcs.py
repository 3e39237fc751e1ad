"""Google Cloud Storage driver.

All google-cloud-storage calls are wrapped in asyncio.to_thread() because
the SDK is synchronous.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import timedelta, timezone
from typing import Any, TypeVar
from urllib.parse import quote

import requests
from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import storage

from flydrive.backends.base import DEFAULT_SIGNED_URL_EXPIRY, BaseStorage, coerce_content
from flydrive.exceptions import (
    BackendUnavailable,
    ConfigError,
    FileNotFound,
    FlydriveError,
    SigningError,
    WriteError,
)
from flydrive.protocols.storage import (
    Content,
    ContentResult,
    DeleteResult,
    ExistsResult,
    FileEntry,
    SignedUrlResult,
    StatResult,
)
from flydrive.streams import ByteStream, spool

T = TypeVar("T")

CHUNK_SIZE = 256 * 1024

PUBLIC_URL = "https://storage.googleapis.com"

_GCS_ERRORS = (
    api_exceptions.GoogleAPIError,
    auth_exceptions.GoogleAuthError,
    requests.exceptions.RequestException,
)

_UNAVAILABLE = (
    api_exceptions.ServiceUnavailable,
    api_exceptions.GatewayTimeout,
    api_exceptions.RetryError,
    auth_exceptions.TransportError,
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
)

_PUT_OPTIONS = frozenset({"content_type", "cache_control", "content_disposition", "metadata"})


def _translate(
    error: Exception,
    path: str,
    kind: type[FlydriveError],
    not_found: bool = True,
) -> FlydriveError:
    """Map a google-cloud-storage failure onto the storage error taxonomy."""
    if not_found and isinstance(error, api_exceptions.NotFound):
        return FileNotFound(path, error)
    if isinstance(error, _UNAVAILABLE):
        return BackendUnavailable(f"GCS unreachable: {error}", path, error)
    return kind(f"GCS {kind.__name__} on {path}: {error}", path, error)


class GCSStorage(BaseStorage):
    """Google Cloud Storage driver.

    Keys are flat; "directories" only exist as a listing convention. An
    optional ``prefix`` scopes the disk to part of the bucket and is never
    exposed in returned paths.
    """

    name = "gcs"

    def __init__(
        self,
        bucket: str | None = None,
        prefix: str = "",
        project: str | None = None,
        key_filename: str | None = None,
        credentials: dict[str, Any] | None = None,
        public_url: str = PUBLIC_URL,
        signed_url_expiry: int = DEFAULT_SIGNED_URL_EXPIRY,
        client: Any = None,
        **kwargs: Any,
    ) -> None:
        """Initialize GCS storage.

        Args:
            bucket: Bucket name
            prefix: Object name prefix for all objects
            project: Google Cloud project
            key_filename: Path to a service account JSON key
            credentials: Parsed service account JSON key
            public_url: Base URL objects are publicly served from
            signed_url_expiry: Default signed URL lifetime in seconds
            client: Pre-built storage.Client to use instead of creating one
            **kwargs: Ignored

        Raises:
            ConfigError: If bucket is missing or credentials cannot be loaded
        """
        super().__init__(signed_url_expiry)
        if not bucket:
            raise ConfigError("GCSStorage requires bucket")

        self.bucket_name = bucket
        self.prefix = prefix.strip("/") + "/" if prefix.strip("/") else ""
        self.public_url = public_url.rstrip("/")

        if client is None:
            try:
                if key_filename:
                    client = storage.Client.from_service_account_json(key_filename, project=project)
                elif credentials:
                    client = storage.Client.from_service_account_info(credentials, project=project)
                else:
                    client = storage.Client(project=project)
            except (auth_exceptions.GoogleAuthError, OSError, ValueError) as e:
                raise ConfigError(f"Cannot create GCS client: {e}", original=e) from e
        self._client = client
        self._bucket = client.bucket(bucket)

    def __repr__(self) -> str:
        return f"GCSStorage(bucket={self.bucket_name!r}, prefix={self.prefix!r})"

    def driver(self) -> Any:
        return self._client

    def _blob(self, path: str) -> tuple[str, Any]:
        """Return the normalized path and a blob handle (no network call)."""
        key = self._key(path)
        return key, self._bucket.blob(self.prefix + key)

    async def _call(
        self,
        operation: str,
        path: str,
        kind: type[FlydriveError],
        func: Callable[..., T],
        /,
        *args: Any,
        **kwargs: Any,
    ) -> T:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except _GCS_ERRORS as e:
            raise self._fail(operation, _translate(e, path, kind)) from e

    async def put(self, path: str, content: Content, **options: Any) -> None:
        """Upload an object.

        Options: content_type, cache_control, content_disposition, metadata.
        """
        unknown = set(options) - _PUT_OPTIONS
        if unknown:
            raise TypeError(f"Unsupported put options: {', '.join(sorted(unknown))}")

        key, blob = self._blob(path)
        if options.get("cache_control"):
            blob.cache_control = options["cache_control"]
        if options.get("content_disposition"):
            blob.content_disposition = options["content_disposition"]
        if options.get("metadata"):
            blob.metadata = {str(k): str(v) for k, v in options["metadata"].items()}
        content_type = options.get("content_type")

        data = coerce_content(content)
        if isinstance(data, bytes):
            await self._call("put", key, WriteError, blob.upload_from_string, data, content_type=content_type)
            return

        buffer = await spool(data)
        try:
            await self._call("put", key, WriteError, blob.upload_from_file, buffer, content_type=content_type)
        finally:
            buffer.close()

    async def get_buffer(self, path: str) -> ContentResult:
        key, blob = self._blob(path)
        content = await self._call("get", key, BackendUnavailable, blob.download_as_bytes)
        return ContentResult(content=content, raw=blob)

    async def _existing_blob(self, operation: str, key: str) -> Any:
        blob = await self._call(operation, key, BackendUnavailable, self._bucket.get_blob, self.prefix + key)
        if blob is None:
            raise self._fail(operation, FileNotFound(key))
        return blob

    async def get_stream(self, path: str) -> ByteStream:
        key = self._key(path)
        blob = await self._existing_blob("get_stream", key)
        reader = await self._call("get_stream", key, BackendUnavailable, blob.open, "rb", chunk_size=CHUNK_SIZE)
        return ByteStream(self._read_chunks(reader, key), on_close=reader.close)

    async def _read_chunks(self, reader: Any, key: str) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._call("get_stream", key, BackendUnavailable, reader.read, CHUNK_SIZE)
            if not chunk:
                return
            yield chunk

    async def get_stat(self, path: str) -> StatResult:
        key = self._key(path)
        blob = await self._existing_blob("get_stat", key)
        return StatResult(
            size=int(blob.size or 0),
            modified=blob.updated.astimezone(timezone.utc),
            raw=blob,
        )

    async def exists(self, path: str) -> ExistsResult:
        key, blob = self._blob(path)
        return ExistsResult(exists=await self._call("exists", key, BackendUnavailable, blob.exists))

    async def delete(self, path: str) -> DeleteResult:
        key, blob = self._blob(path)
        try:
            await asyncio.to_thread(blob.delete)
        except api_exceptions.NotFound:
            return DeleteResult(was_deleted=False)
        except _GCS_ERRORS as e:
            raise self._fail("delete", _translate(e, key, WriteError)) from e
        return DeleteResult(was_deleted=True)

    async def copy(self, src: str, dest: str) -> None:
        """Server-side copy; no bytes pass through this process."""
        src_key, source = self._blob(src)
        dest_key = self._key(dest)
        await self._call(
            "copy", src_key, WriteError, self._bucket.copy_blob,
            source, self._bucket, new_name=self.prefix + dest_key,
        )

    def get_url(self, path: str) -> str:
        key = self._key(path)
        return f"{self.public_url}/{self.bucket_name}/{quote(self.prefix + key)}"

    async def get_signed_url(
        self,
        path: str,
        expiry: timedelta | int | None = None,
    ) -> SignedUrlResult:
        key, blob = self._blob(path)
        lifetime = self._expiry(expiry)
        try:
            url = await asyncio.to_thread(
                blob.generate_signed_url, version="v4", expiration=lifetime, method="GET"
            )
        # Token-only credentials (e.g. metadata server) raise AttributeError: nothing to sign with
        except (*_GCS_ERRORS, AttributeError, ValueError) as e:
            raise self._fail("get_signed_url", SigningError(f"Cannot sign {key}: {e}", key, e)) from e
        return SignedUrlResult(signed_url=url, expiry=lifetime)

    def _list_page(self, prefix: str, page_token: str | None) -> tuple[list[str], str | None]:
        iterator = self._client.list_blobs(self._bucket, prefix=prefix, page_token=page_token)
        page = next(iterator.pages, None)
        names = [blob.name for blob in page] if page is not None else []
        return names, iterator.next_page_token

    async def _list(self, prefix: str) -> AsyncIterator[FileEntry]:
        """Page through list_blobs, one request per exhausted page."""
        page_token = None
        while True:
            try:
                names, page_token = await asyncio.to_thread(
                    self._list_page, self.prefix + prefix, page_token
                )
            except _GCS_ERRORS as e:
                raise self._fail(
                    "flat_list", _translate(e, prefix, BackendUnavailable, not_found=False)
                ) from e

            for name in names:
                key = name[len(self.prefix):]
                # Zero-byte "folder" placeholders are not files
                if key and not key.endswith("/"):
                    yield FileEntry(path=key)

            if not page_token:
                return
