"""Scoped, single-pass streams returned by drivers.

Both stream types wrap an async iterator and release it exactly once,
whether the consumer drains it, breaks out early, or fails:

    async with await disk.get_stream("report.csv") as stream:
        async for chunk in stream:
            ...

    async with disk.flat_list("reports/") as entries:
        async for entry in entries:
            ...
"""

from collections.abc import AsyncIterable, AsyncIterator, Callable
from tempfile import SpooledTemporaryFile
from typing import Any, Generic, TypeVar

from flydrive.protocols.storage import FileEntry

T = TypeVar("T")

# Uploads larger than this spill from memory to a temporary file
SPOOL_MAX_SIZE = 8 * 1024 * 1024


class _ScopedStream(Generic[T]):
    """Async iterator that closes its source when exhausted or released.

    ``on_close`` releases a backend handle the source reads from. It runs
    even when the stream is released before the source was ever started.
    """

    def __init__(
        self,
        source: AsyncIterator[T],
        on_close: Callable[[], Any] | None = None,
    ) -> None:
        self._source = source
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "_ScopedStream[T]":
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._source.__anext__()
        except BaseException:
            await self.aclose()
            raise

    async def aclose(self) -> None:
        """Release the underlying source. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            aclose = getattr(self._source, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            if self._on_close is not None:
                self._on_close()

    async def __aenter__(self) -> "_ScopedStream[T]":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


class ByteStream(_ScopedStream[bytes]):
    """A live sequence of byte chunks read from a backend."""

    async def read(self) -> bytes:
        """Drain the remaining chunks into a single bytes object."""
        chunks = []
        async with self:
            async for chunk in self:
                chunks.append(chunk)
        return b"".join(chunks)


class EntryStream(_ScopedStream[FileEntry]):
    """A lazy listing of file entries."""

    async def paths(self) -> list[str]:
        """Collect the remaining entries as a list of paths."""
        result = []
        async with self:
            async for entry in self:
                result.append(entry.path)
        return result


async def spool(source: AsyncIterable[bytes]) -> SpooledTemporaryFile:
    """Buffer an async byte source into a rewound file object.

    Object-store SDKs upload from blocking file objects, so stream
    content is spooled first. Small payloads stay in memory.
    """
    buffer = SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE)
    try:
        async for chunk in source:
            buffer.write(chunk)
    except BaseException:
        buffer.close()
        raise
    buffer.seek(0)
    return buffer
