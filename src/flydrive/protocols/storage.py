"""Storage protocol for blob storage drivers."""

from collections.abc import AsyncIterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from flydrive.streams import ByteStream, EntryStream

Content = bytes | bytearray | memoryview | str | AsyncIterable[bytes]


@dataclass(frozen=True)
class ExistsResult:
    """Result of an existence check."""

    exists: bool
    raw: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class DeleteResult:
    """Result of a delete. ``was_deleted`` is False when nothing was there."""

    was_deleted: bool
    raw: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class StatResult:
    """Size and modification time of a stored object."""

    size: int
    modified: datetime
    raw: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class ContentResult:
    """Object content, raw bytes or decoded text."""

    content: bytes | str
    raw: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class SignedUrlResult:
    """A time-limited URL."""

    signed_url: str
    expiry: timedelta | None = None


@dataclass(frozen=True)
class FileEntry:
    """A single listing entry, path relative to the disk root."""

    path: str


@runtime_checkable
class Storage(Protocol):
    """Protocol for blob storage drivers (local, S3, GCS)."""

    def driver(self) -> Any:
        """Return the native backend handle."""
        ...

    async def put(self, path: str, content: Content, **options: Any) -> None:
        """Store content at path, replacing anything already there."""
        ...

    async def get(self, path: str, encoding: str | None = None) -> ContentResult:
        """Read content, decoded when an encoding is given."""
        ...

    async def get_buffer(self, path: str) -> ContentResult:
        """Read raw bytes."""
        ...

    async def get_stream(self, path: str) -> "ByteStream":
        """Open a single-pass byte stream."""
        ...

    async def get_stat(self, path: str) -> StatResult:
        """Get size and modification time."""
        ...

    async def exists(self, path: str) -> ExistsResult:
        """Check whether an object exists."""
        ...

    async def delete(self, path: str) -> DeleteResult:
        """Delete an object. Absence is not an error."""
        ...

    async def copy(self, src: str, dest: str) -> None:
        """Copy an object."""
        ...

    async def move(self, src: str, dest: str) -> None:
        """Move an object."""
        ...

    def get_url(self, path: str) -> str:
        """Build the public URL of an object. No network call."""
        ...

    async def get_signed_url(
        self,
        path: str,
        expiry: timedelta | int | None = None,
    ) -> SignedUrlResult:
        """Create a time-limited URL."""
        ...

    def flat_list(self, prefix: str = "") -> "EntryStream":
        """Recursively list every object whose path starts with prefix."""
        ...
