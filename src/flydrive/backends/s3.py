"""S3-compatible storage driver.

Works with AWS S3, MinIO, Cloudflare R2 and any S3-compatible service.

All boto3 calls are wrapped in asyncio.to_thread() because boto3 is
synchronous.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import timedelta, timezone
from typing import Any, TypeVar
from urllib.parse import quote

import boto3
from boto3.exceptions import Boto3Error
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

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

CHUNK_SIZE = 64 * 1024

_S3_ERRORS = (ClientError, BotoCoreError, Boto3Error)

# head_object reports a bare status code instead of NoSuchKey
_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFound", "404"})

_PUT_OPTIONS = {
    "content_type": "ContentType",
    "cache_control": "CacheControl",
    "content_disposition": "ContentDisposition",
    "metadata": "Metadata",
}


def _error_code(error: Exception) -> str:
    if isinstance(error, ClientError):
        return str(error.response.get("Error", {}).get("Code", ""))
    return ""


def _is_not_found(error: Exception) -> bool:
    return _error_code(error) in _NOT_FOUND_CODES


def _translate(
    error: Exception,
    path: str,
    kind: type[FlydriveError],
    not_found: bool = True,
) -> FlydriveError:
    """Map a boto3/botocore failure onto the storage error taxonomy."""
    if not_found and _is_not_found(error):
        return FileNotFound(path, error)
    if isinstance(error, (HTTPClientError, BotoConnectionError)):
        return BackendUnavailable(f"S3 endpoint unreachable: {error}", path, error)
    return kind(f"S3 {kind.__name__} on {path}: {error}", path, error)


def _put_extra_args(options: dict[str, Any]) -> dict[str, Any]:
    unknown = set(options) - set(_PUT_OPTIONS)
    if unknown:
        raise TypeError(f"Unsupported put options: {', '.join(sorted(unknown))}")
    extra = {_PUT_OPTIONS[name]: value for name, value in options.items() if value is not None}
    if "Metadata" in extra:
        extra["Metadata"] = {str(k): str(v) for k, v in extra["Metadata"].items()}
    return extra


class S3Storage(BaseStorage):
    """S3-compatible object storage driver.

    Keys are flat; "directories" only exist as a listing convention. An
    optional ``prefix`` scopes the disk to part of the bucket and is never
    exposed in returned paths.
    """

    name = "s3"

    def __init__(
        self,
        bucket: str | None = None,
        prefix: str = "",
        region: str | None = None,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        public_url: str | None = None,
        signed_url_expiry: int = DEFAULT_SIGNED_URL_EXPIRY,
        client: Any = None,
        **kwargs: Any,
    ) -> None:
        """Initialize S3 storage.

        Args:
            bucket: S3 bucket name
            prefix: Key prefix for all objects (e.g. "tenant-a/")
            region: AWS region
            endpoint_url: S3 endpoint URL (for MinIO, R2 or custom S3)
            access_key: AWS access key ID. Falls back to the default chain.
            secret_key: AWS secret access key
            public_url: Base URL objects are publicly served from
            signed_url_expiry: Default presigned URL lifetime in seconds
            client: Pre-built boto3 S3 client to use instead of creating one
            **kwargs: Ignored

        Raises:
            ConfigError: If bucket is missing
        """
        super().__init__(signed_url_expiry)
        if not bucket:
            raise ConfigError("S3Storage requires bucket")

        self.bucket = bucket
        self.prefix = prefix.strip("/") + "/" if prefix.strip("/") else ""
        self.region = region
        self.endpoint_url = endpoint_url.rstrip("/") if endpoint_url else None
        self.public_url = public_url.rstrip("/") if public_url else None

        if client is None:
            client_kwargs: dict[str, Any] = {"config": BotoConfig(region_name=region)}
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            if access_key:
                client_kwargs["aws_access_key_id"] = access_key
            if secret_key:
                client_kwargs["aws_secret_access_key"] = secret_key
            client = boto3.client("s3", **client_kwargs)
        self._client = client

    def __repr__(self) -> str:
        return f"S3Storage(bucket={self.bucket!r}, prefix={self.prefix!r})"

    def driver(self) -> Any:
        return self._client

    def _object_key(self, path: str) -> tuple[str, str]:
        """Return the normalized path and the full bucket key."""
        key = self._key(path)
        return key, self.prefix + key

    async def _call(
        self,
        operation: str,
        path: str,
        kind: type[FlydriveError],
        func: Callable[..., T],
        /,
        **kwargs: Any,
    ) -> T:
        try:
            return await asyncio.to_thread(func, **kwargs)
        except _S3_ERRORS as e:
            raise self._fail(operation, _translate(e, path, kind)) from e

    async def put(self, path: str, content: Content, **options: Any) -> None:
        """Upload an object.

        Options: content_type, cache_control, content_disposition, metadata.
        """
        key, full_key = self._object_key(path)
        extra = _put_extra_args(options)
        data = coerce_content(content)

        if isinstance(data, bytes):
            await self._call(
                "put", key, WriteError, self._client.put_object,
                Bucket=self.bucket, Key=full_key, Body=data, **extra,
            )
            return

        buffer = await spool(data)
        try:
            await self._call(
                "put", key, WriteError, self._client.upload_fileobj,
                Fileobj=buffer, Bucket=self.bucket, Key=full_key, ExtraArgs=extra or None,
            )
        finally:
            buffer.close()

    def _read_object(self, full_key: str) -> tuple[bytes, dict[str, Any]]:
        response = self._client.get_object(Bucket=self.bucket, Key=full_key)
        body = response.pop("Body")
        try:
            return body.read(), response
        finally:
            body.close()

    async def get_buffer(self, path: str) -> ContentResult:
        key, full_key = self._object_key(path)
        content, response = await self._call(
            "get", key, BackendUnavailable, self._read_object, full_key=full_key,
        )
        return ContentResult(content=content, raw=response)

    async def get_stream(self, path: str) -> ByteStream:
        key, full_key = self._object_key(path)
        response = await self._call(
            "get_stream", key, BackendUnavailable, self._client.get_object,
            Bucket=self.bucket, Key=full_key,
        )
        body = response["Body"]
        return ByteStream(self._iter_body(body, key), on_close=body.close)

    async def _iter_body(self, body: Any, key: str) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._call("get_stream", key, BackendUnavailable, body.read, amt=CHUNK_SIZE)
            if not chunk:
                return
            yield chunk

    async def get_stat(self, path: str) -> StatResult:
        key, full_key = self._object_key(path)
        response = await self._call(
            "get_stat", key, BackendUnavailable, self._client.head_object,
            Bucket=self.bucket, Key=full_key,
        )
        return StatResult(
            size=int(response["ContentLength"]),
            modified=response["LastModified"].astimezone(timezone.utc),
            raw=response,
        )

    async def exists(self, path: str) -> ExistsResult:
        key, full_key = self._object_key(path)
        try:
            response = await asyncio.to_thread(
                self._client.head_object, Bucket=self.bucket, Key=full_key
            )
        except _S3_ERRORS as e:
            if _is_not_found(e):
                return ExistsResult(exists=False)
            raise self._fail("exists", _translate(e, key, BackendUnavailable)) from e
        return ExistsResult(exists=True, raw=response)

    async def delete(self, path: str) -> DeleteResult:
        """Delete an object.

        S3 deletes are idempotent and do not report whether anything was
        removed, so existence is checked first.
        """
        key, full_key = self._object_key(path)
        if not (await self.exists(key)).exists:
            return DeleteResult(was_deleted=False)
        response = await self._call(
            "delete", key, WriteError, self._client.delete_object,
            Bucket=self.bucket, Key=full_key,
        )
        return DeleteResult(was_deleted=True, raw=response)

    async def copy(self, src: str, dest: str) -> None:
        """Server-side copy; no bytes pass through this process."""
        src_key, src_full = self._object_key(src)
        _, dest_full = self._object_key(dest)
        await self._call(
            "copy", src_key, WriteError, self._client.copy_object,
            Bucket=self.bucket,
            Key=dest_full,
            CopySource={"Bucket": self.bucket, "Key": src_full},
        )

    def get_url(self, path: str) -> str:
        _, full_key = self._object_key(path)
        if self.public_url:
            return f"{self.public_url}/{quote(full_key)}"
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{quote(full_key)}"
        region = self.region or "us-east-1"
        return f"https://{self.bucket}.s3.{region}.amazonaws.com/{quote(full_key)}"

    async def get_signed_url(
        self,
        path: str,
        expiry: timedelta | int | None = None,
    ) -> SignedUrlResult:
        key, full_key = self._object_key(path)
        lifetime = self._expiry(expiry)
        url = await self._call(
            "get_signed_url", key, SigningError, self._client.generate_presigned_url,
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": full_key},
            ExpiresIn=int(lifetime.total_seconds()),
        )
        return SignedUrlResult(signed_url=url, expiry=lifetime)

    async def _list(self, prefix: str) -> AsyncIterator[FileEntry]:
        """Page through list_objects_v2, one request per exhausted page."""
        params: dict[str, Any] = {"Bucket": self.bucket, "Prefix": self.prefix + prefix}
        while True:
            try:
                page = await asyncio.to_thread(self._client.list_objects_v2, **params)
            except _S3_ERRORS as e:
                raise self._fail(
                    "flat_list", _translate(e, prefix, BackendUnavailable, not_found=False)
                ) from e

            for obj in page.get("Contents", []):
                key = obj["Key"][len(self.prefix):]
                # Zero-byte "folder" markers are not files
                if key and not key.endswith("/"):
                    yield FileEntry(path=key)

            token = page.get("NextContinuationToken")
            if not page.get("IsTruncated") or not token:
                return
            params["ContinuationToken"] = token
