"""Base class for storage drivers.

Holds the behaviour every backend shares: path normalization, decoding,
content coercion and the copy-then-delete move. Concrete drivers only
implement the backend round trips and their error translation.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, AsyncIterator
from datetime import timedelta
from typing import Any

from flydrive.exceptions import (
    DecodeError,
    FileNotFound,
    FlydriveError,
    PartialMoveError,
    SigningError,
)
from flydrive.observability import get_logger
from flydrive.protocols.storage import (
    Content,
    ContentResult,
    DeleteResult,
    ExistsResult,
    FileEntry,
    SignedUrlResult,
    StatResult,
)
from flydrive.streams import ByteStream, EntryStream
from flydrive.utils.validation import normalize_path, normalize_prefix

logger = get_logger(__name__)

DEFAULT_SIGNED_URL_EXPIRY = 900


def coerce_content(content: Content) -> bytes | AsyncIterable[bytes]:
    """Turn put() content into bytes, or pass an async byte source through."""
    if isinstance(content, str):
        return content.encode("utf-8")
    if isinstance(content, (bytes, bytearray, memoryview)):
        return bytes(content)
    if hasattr(content, "__aiter__"):
        return content
    raise TypeError(
        f"Content must be bytes, str or an async iterable of bytes, got {type(content).__name__}"
    )


class BaseStorage(ABC):
    """Common implementation of the storage contract."""

    #: Driver name used in logs
    name = "base"

    def __init__(self, signed_url_expiry: int = DEFAULT_SIGNED_URL_EXPIRY) -> None:
        self.signed_url_expiry = timedelta(seconds=signed_url_expiry)

    def _key(self, path: str) -> str:
        return normalize_path(path)

    def _fail(self, operation: str, error: FlydriveError) -> FlydriveError:
        """Log a normalized failure and hand it back for raising."""
        logger.warning(
            "Storage operation failed",
            context={
                "driver": self.name,
                "operation": operation,
                "path": error.path,
                "kind": type(error).__name__,
            },
            error=error.original or error,
        )
        return error

    def _expiry(self, expiry: timedelta | int | None) -> timedelta:
        if expiry is None:
            return self.signed_url_expiry
        if not isinstance(expiry, timedelta):
            expiry = timedelta(seconds=expiry)
        if expiry.total_seconds() <= 0:
            raise SigningError(f"Signed URL expiry must be positive, got {expiry}")
        return expiry

    @abstractmethod
    def driver(self) -> Any:
        """Return the native backend handle."""

    @abstractmethod
    async def put(self, path: str, content: Content, **options: Any) -> None:
        """Store content at path, replacing anything already there."""

    async def get(self, path: str, encoding: str | None = None) -> ContentResult:
        """Read content. Decodes strictly when an encoding is given."""
        result = await self.get_buffer(path)
        if encoding is None:
            return result
        try:
            text = result.content.decode(encoding)
        except (UnicodeDecodeError, LookupError) as e:
            raise self._fail("get", DecodeError(self._key(path), encoding, e)) from e
        return ContentResult(content=text, raw=result.raw)

    @abstractmethod
    async def get_buffer(self, path: str) -> ContentResult:
        """Read raw bytes."""

    @abstractmethod
    async def get_stream(self, path: str) -> ByteStream:
        """Open a single-pass byte stream."""

    @abstractmethod
    async def get_stat(self, path: str) -> StatResult:
        """Get size and modification time."""

    @abstractmethod
    async def exists(self, path: str) -> ExistsResult:
        """Check whether an object exists."""

    @abstractmethod
    async def delete(self, path: str) -> DeleteResult:
        """Delete an object. Absence is not an error."""

    @abstractmethod
    async def copy(self, src: str, dest: str) -> None:
        """Copy an object, server-side where the backend allows it."""

    async def move(self, src: str, dest: str) -> None:
        """Move an object as a copy followed by deleting the source.

        Raises:
            PartialMoveError: If the copy landed but the source could not
                be deleted
        """
        if self._key(src) == self._key(dest):
            # Same key: nothing to move
            if not (await self.exists(src)).exists:
                raise self._fail("move", FileNotFound(self._key(src)))
            return

        await self.copy(src, dest)
        try:
            await self.delete(src)
        except FlydriveError as e:
            raise self._fail(
                "move",
                PartialMoveError(self._key(src), self._key(dest), e),
            ) from e

    @abstractmethod
    def get_url(self, path: str) -> str:
        """Build the public URL of an object."""

    @abstractmethod
    async def get_signed_url(
        self,
        path: str,
        expiry: timedelta | int | None = None,
    ) -> SignedUrlResult:
        """Create a time-limited URL."""

    def flat_list(self, prefix: str = "") -> EntryStream:
        """Recursively list every object whose path starts with prefix.

        The listing is lazy: backend pages are only fetched as the
        returned stream is consumed.
        """
        return EntryStream(self._list(normalize_prefix(prefix)))

    @abstractmethod
    def _list(self, prefix: str) -> AsyncIterator[FileEntry]:
        """Yield entries for an already-normalized prefix."""
