"""Local filesystem storage driver."""

import asyncio
import atexit
import errno
import os
import shutil
import time
import uuid
from collections.abc import AsyncIterable, AsyncIterator, Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path
from stat import S_ISREG
from typing import Any, BinaryIO, TypeVar
from urllib.parse import parse_qs, quote, unquote, urlsplit

from flydrive.backends.base import DEFAULT_SIGNED_URL_EXPIRY, BaseStorage, coerce_content
from flydrive.exceptions import (
    BackendUnavailable,
    ConfigError,
    FileNotFound,
    FlydriveError,
    InvalidPath,
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
from flydrive.streams import ByteStream
from flydrive.utils.crypto import sign, verify

T = TypeVar("T")

# Thread pool for async file I/O - configurable via environment
_max_workers = int(os.environ.get("FLYDRIVE_FILE_WORKERS", "16"))
_executor = ThreadPoolExecutor(max_workers=_max_workers, thread_name_prefix="flydrive-local")

# Ensure executor is cleaned up on process exit
atexit.register(_executor.shutdown, wait=False)

CHUNK_SIZE = 64 * 1024

# In-flight writes land in hidden siblings with this suffix and are
# renamed into place, so listings skip them
TEMP_SUFFIX = ".flydrive-tmp"


def _translate(error: OSError, path: str, kind: type[FlydriveError]) -> FlydriveError:
    """Map an OSError onto the storage error taxonomy."""
    if kind is not WriteError and isinstance(
        error, (FileNotFoundError, NotADirectoryError, IsADirectoryError)
    ):
        return FileNotFound(path, error)
    return kind(f"Local {kind.__name__} on {path}: {error}", path, error)


def _temp_sibling(target: Path) -> Path:
    return target.with_name(f".{target.name}.{uuid.uuid4().hex}{TEMP_SUFFIX}")


def _write_bytes(target: Path, data: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    temp = _temp_sibling(target)
    try:
        temp.write_bytes(data)
        os.replace(temp, target)
    except BaseException:
        temp.unlink(missing_ok=True)
        raise


def _open_temp(target: Path) -> tuple[BinaryIO, Path]:
    target.parent.mkdir(parents=True, exist_ok=True)
    temp = _temp_sibling(target)
    return temp.open("xb"), temp


def _copy_file(source: Path, target: Path, key: str) -> None:
    if not source.is_file():
        raise FileNotFound(key)
    target.parent.mkdir(parents=True, exist_ok=True)
    temp = _temp_sibling(target)
    try:
        shutil.copyfile(source, temp)
        os.replace(temp, target)
    except BaseException:
        temp.unlink(missing_ok=True)
        raise


def _rename(source: Path, target: Path, key: str) -> None:
    if not source.is_file():
        raise FileNotFound(key)
    target.parent.mkdir(parents=True, exist_ok=True)
    os.replace(source, target)


def _scan(directory: Path) -> tuple[list[str], list[str]]:
    """Split a directory's entries into file names and subdirectory names."""
    files, dirs = [], []
    with os.scandir(directory) as entries:
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                dirs.append(entry.name)
            elif entry.is_file() and not entry.name.endswith(TEMP_SUFFIX):
                files.append(entry.name)
    return sorted(files), sorted(dirs)


class LocalStorage(BaseStorage):
    """Storage driver over a rooted directory tree.

    Suitable for development and single-server deployments. Public URLs
    are built from ``base_url``; signed URLs need a ``signing_key`` and
    are checked with :meth:`verify_signed_url` by whatever serves them.
    """

    name = "local"

    def __init__(
        self,
        root: str | Path,
        base_url: str | None = None,
        signing_key: str | bytes | None = None,
        signed_url_expiry: int = DEFAULT_SIGNED_URL_EXPIRY,
        **kwargs: Any,
    ) -> None:
        """Initialize local storage.

        Args:
            root: Directory every path is resolved under. Created if missing.
            base_url: URL prefix the root is served from
            signing_key: Secret used to sign URLs
            signed_url_expiry: Default signed URL lifetime in seconds
            **kwargs: Ignored (for compatibility with other drivers)

        Raises:
            ConfigError: If base_url is missing or root cannot be created
        """
        super().__init__(signed_url_expiry)
        if not base_url:
            raise ConfigError("LocalStorage requires base_url to build file URLs")

        self.base_url = base_url.rstrip("/")
        self.signing_key = signing_key.encode() if isinstance(signing_key, str) else signing_key

        try:
            self.root = Path(root).expanduser().resolve()
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"Cannot use {root} as a storage root: {e}", original=e) from e

    def __repr__(self) -> str:
        return f"LocalStorage(root={str(self.root)!r}, base_url={self.base_url!r})"

    def driver(self) -> Path:
        return self.root

    def _resolve(
        self,
        path: str,
        operation: str,
        kind: type[FlydriveError] = BackendUnavailable,
    ) -> tuple[str, Path]:
        """Get the normalized key and filesystem location for a path.

        Symlinks are resolved so a link pointing outside the root is
        rejected as well.
        """
        key = self._key(path)
        target = self.root / key
        try:
            resolved = target.resolve()
        except OSError as e:
            raise self._fail(operation, _translate(e, key, kind)) from e
        try:
            resolved.relative_to(self.root)
        except ValueError:
            raise InvalidPath(path, "resolves outside the storage root")
        return key, target

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        # Run blocking I/O in thread pool
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(_executor, func, *args)

    async def put(self, path: str, content: Content, **options: Any) -> None:
        """Write content atomically; readers never see a partial file."""
        key, target = self._resolve(path, "put", WriteError)
        data = coerce_content(content)
        try:
            if isinstance(data, bytes):
                await self._run(_write_bytes, target, data)
            else:
                await self._write_stream(target, data)
        except OSError as e:
            raise self._fail("put", _translate(e, key, WriteError)) from e

    async def _write_stream(self, target: Path, source: AsyncIterable[bytes]) -> None:
        handle, temp = await self._run(_open_temp, target)
        try:
            async for chunk in source:
                await self._run(handle.write, chunk)
            await self._run(handle.close)
            await self._run(os.replace, temp, target)
        except BaseException:
            handle.close()
            temp.unlink(missing_ok=True)
            raise

    async def get_buffer(self, path: str) -> ContentResult:
        key, target = self._resolve(path, "get")
        try:
            content = await self._run(target.read_bytes)
        except OSError as e:
            raise self._fail("get", _translate(e, key, BackendUnavailable)) from e
        return ContentResult(content=content)

    async def get_stream(self, path: str) -> ByteStream:
        key, target = self._resolve(path, "get_stream")
        try:
            handle = await self._run(target.open, "rb")
        except OSError as e:
            raise self._fail("get_stream", _translate(e, key, BackendUnavailable)) from e
        return ByteStream(self._read_chunks(handle, key), on_close=handle.close)

    async def _read_chunks(self, handle: BinaryIO, key: str) -> AsyncIterator[bytes]:
        while True:
            try:
                chunk = await self._run(handle.read, CHUNK_SIZE)
            except OSError as e:
                raise self._fail("get_stream", _translate(e, key, BackendUnavailable)) from e
            if not chunk:
                return
            yield chunk

    async def get_stat(self, path: str) -> StatResult:
        key, target = self._resolve(path, "get_stat")
        try:
            info = await self._run(target.stat)
        except OSError as e:
            raise self._fail("get_stat", _translate(e, key, BackendUnavailable)) from e
        if not S_ISREG(info.st_mode):
            raise self._fail("get_stat", FileNotFound(key))
        return StatResult(
            size=info.st_size,
            modified=datetime.fromtimestamp(info.st_mtime, tz=timezone.utc),
            raw=info,
        )

    async def exists(self, path: str) -> ExistsResult:
        key, target = self._resolve(path, "exists")
        try:
            found = await self._run(target.is_file)
        except OSError as e:
            raise self._fail("exists", _translate(e, key, BackendUnavailable)) from e
        return ExistsResult(exists=found)

    async def delete(self, path: str) -> DeleteResult:
        key, target = self._resolve(path, "delete", WriteError)
        try:
            await self._run(target.unlink)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return DeleteResult(was_deleted=False)
        except OSError as e:
            raise self._fail("delete", _translate(e, key, WriteError)) from e
        return DeleteResult(was_deleted=True)

    async def copy(self, src: str, dest: str) -> None:
        src_key, source = self._resolve(src, "copy", WriteError)
        dest_key, target = self._resolve(dest, "copy", WriteError)
        try:
            await self._run(_copy_file, source, target, src_key)
        except FileNotFound as e:
            raise self._fail("copy", e)
        except OSError as e:
            raise self._fail("copy", _translate(e, dest_key, WriteError)) from e

    async def move(self, src: str, dest: str) -> None:
        """Move with a native rename; falls back to copy + delete across devices."""
        src_key, source = self._resolve(src, "move", WriteError)
        dest_key, target = self._resolve(dest, "move", WriteError)
        try:
            await self._run(_rename, source, target, src_key)
        except FileNotFound as e:
            raise self._fail("move", e)
        except OSError as e:
            if e.errno == errno.EXDEV:
                await super().move(src, dest)
                return
            raise self._fail("move", _translate(e, dest_key, WriteError)) from e

    def get_url(self, path: str) -> str:
        return f"{self.base_url}/{quote(self._key(path))}"

    def _signature_payload(self, key: str, expires: int) -> str:
        return f"{key}\n{expires}"

    async def get_signed_url(
        self,
        path: str,
        expiry: timedelta | int | None = None,
    ) -> SignedUrlResult:
        """Sign a URL with HMAC-SHA256 over the key and expiry time."""
        key = self._key(path)
        if not self.signing_key:
            raise self._fail(
                "get_signed_url",
                SigningError("LocalStorage has no signing_key configured", key),
            )
        lifetime = self._expiry(expiry)
        expires = int(time.time() + lifetime.total_seconds())
        signature = sign(self.signing_key, self._signature_payload(key, expires))
        return SignedUrlResult(
            signed_url=f"{self.get_url(key)}?expires={expires}&signature={signature}",
            expiry=lifetime,
        )

    def verify_signed_url(self, url: str, now: float | None = None) -> bool:
        """Check that a URL was signed by this disk and has not expired."""
        if not self.signing_key:
            return False

        parts = urlsplit(url)
        base = urlsplit(self.base_url)
        base_path = base.path.rstrip("/") + "/"
        if (parts.scheme, parts.netloc) != (base.scheme, base.netloc):
            return False
        if not parts.path.startswith(base_path):
            return False

        query = parse_qs(parts.query)
        try:
            expires = int(query["expires"][0])
            signature = query["signature"][0]
        except (KeyError, IndexError, ValueError):
            return False
        if expires < (time.time() if now is None else now):
            return False

        key = unquote(parts.path[len(base_path):])
        return verify(self.signing_key, self._signature_payload(key, expires), signature)

    async def _list(self, prefix: str) -> AsyncIterator[FileEntry]:
        """Walk the tree one directory scan at a time, pruning by prefix."""
        head = prefix.rpartition("/")[0]
        pending = [head]
        while pending:
            relative = pending.pop()
            directory = self.root / relative if relative else self.root
            try:
                files, dirs = await self._run(_scan, directory)
            except (FileNotFoundError, NotADirectoryError):
                continue
            except OSError as e:
                raise self._fail("flat_list", _translate(e, prefix, BackendUnavailable)) from e

            for name in files:
                key = f"{relative}/{name}" if relative else name
                if key.startswith(prefix):
                    yield FileEntry(path=key)

            children = []
            for name in dirs:
                child = f"{relative}/{name}" if relative else name
                if child.startswith(prefix) or prefix.startswith(child + "/"):
                    children.append(child)
            # Reversed so the stack pops subdirectories in sorted order
            pending.extend(reversed(children))
