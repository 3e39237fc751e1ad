"""Behaviour every storage driver must share, run against each backend."""

import uuid
from datetime import datetime, timedelta

import pytest

from flydrive.exceptions import DecodeError, FileNotFound, InvalidPath
from flydrive.protocols import (
    ContentResult,
    DeleteResult,
    ExistsResult,
    SignedUrlResult,
    Storage,
)
from flydrive.streams import ByteStream, EntryStream

TEST_STRING = "test-data"


@pytest.fixture
def folder() -> str:
    """Isolate each test under its own folder."""
    return uuid.uuid4().hex


@pytest.fixture
def test_file(folder) -> str:
    return f"{folder}/test.txt"


@pytest.fixture
def other_file(folder) -> str:
    return f"{folder}/sub/dir/other.txt"


async def _sorted_paths(stream: EntryStream) -> list[str]:
    return sorted(await stream.paths())


class TestDriverContract:
    """Tests for the shared storage contract."""

    def test_satisfies_protocol(self, storage):
        """Every driver satisfies the Storage protocol."""
        assert isinstance(storage, Storage)

    @pytest.mark.asyncio
    async def test_unwritten_path_does_not_exist(self, storage, test_file):
        """A path never written reports exists=False and fails to read."""
        assert await storage.exists(test_file) == ExistsResult(exists=False)

        with pytest.raises(FileNotFound) as exc_info:
            await storage.get(test_file)
        assert exc_info.value.path == test_file

    @pytest.mark.asyncio
    async def test_put_string_and_get_text(self, storage, test_file):
        """A string round-trips through put and get with an encoding."""
        await storage.put(test_file, "this-is-a-test")

        result = await storage.get(test_file, "utf-8")
        assert result == ContentResult(content="this-is-a-test")

    @pytest.mark.asyncio
    async def test_put_bytes_and_get_bytes(self, storage, test_file):
        """Bytes round-trip unchanged when no encoding is given."""
        data = bytes(range(256))
        await storage.put(test_file, data)

        result = await storage.get(test_file)
        assert result.content == data

    @pytest.mark.asyncio
    async def test_get_buffer(self, storage, test_file):
        """get_buffer always returns bytes."""
        await storage.put(test_file, TEST_STRING)

        result = await storage.get_buffer(test_file)
        assert isinstance(result.content, bytes)
        assert result.content.decode() == TEST_STRING

    @pytest.mark.asyncio
    async def test_get_invalid_sequence_raises_decode_error(self, storage, test_file):
        """Invalid byte sequences raise DecodeError instead of being replaced."""
        await storage.put(test_file, b"\xff\xfe\xfa")

        with pytest.raises(DecodeError):
            await storage.get(test_file, "utf-8")

        # The same object is still readable as bytes
        assert (await storage.get_buffer(test_file)).content == b"\xff\xfe\xfa"

    @pytest.mark.asyncio
    async def test_put_overwrites(self, storage, test_file):
        """A second put fully replaces the first."""
        await storage.put(test_file, "a much longer first version")
        await storage.put(test_file, "short")

        assert (await storage.get(test_file, "utf-8")).content == "short"

    @pytest.mark.asyncio
    async def test_put_from_stream(self, storage, test_file, other_file):
        """A stream from get_stream can be written straight back."""
        await storage.put(test_file, TEST_STRING)

        stream = await storage.get_stream(test_file)
        await storage.put(other_file, stream)

        assert (await storage.get(other_file, "utf-8")).content == TEST_STRING
        assert stream.closed

    @pytest.mark.asyncio
    async def test_put_from_async_generator(self, storage, test_file):
        """Any async iterable of bytes is accepted as content."""
        async def chunks():
            yield b"hello "
            yield b"world"

        await storage.put(test_file, chunks())
        assert (await storage.get(test_file, "utf-8")).content == "hello world"

    @pytest.mark.asyncio
    async def test_put_rejects_unsupported_content(self, storage, test_file):
        """Content must be bytes, str or an async byte iterable."""
        with pytest.raises(TypeError):
            await storage.put(test_file, 42)

    @pytest.mark.asyncio
    async def test_get_stream(self, storage, test_file):
        """A stream yields the stored bytes."""
        await storage.put(test_file, TEST_STRING)

        stream = await storage.get_stream(test_file)
        assert isinstance(stream, ByteStream)
        assert await stream.read() == TEST_STRING.encode()

    @pytest.mark.asyncio
    async def test_get_stream_missing_fails_before_streaming(self, storage):
        """A missing object fails when the stream is opened."""
        with pytest.raises(FileNotFound):
            await storage.get_stream("missing/file.txt")

    @pytest.mark.asyncio
    async def test_get_stream_released_on_early_exit(self, storage, test_file, stream_handles):
        """Leaving an async with block closes the backend handle."""
        await storage.put(test_file, b"x" * 1024)

        async with await storage.get_stream(test_file) as stream:
            async for _ in stream:
                break
        assert stream.closed
        assert stream_handles[-1].closed

    @pytest.mark.asyncio
    async def test_get_stream_released_before_reading(self, storage, test_file, stream_handles):
        """A stream released without being read still closes its handle."""
        await storage.put(test_file, TEST_STRING)

        async with await storage.get_stream(test_file):
            pass
        assert stream_handles[-1].closed

        stream = await storage.get_stream(test_file)
        await stream.aclose()
        assert stream_handles[-1].closed

    @pytest.mark.asyncio
    async def test_get_stream_drained_closes_handle(self, storage, test_file, stream_handles):
        await storage.put(test_file, TEST_STRING)

        assert await (await storage.get_stream(test_file)).read() == TEST_STRING.encode()
        assert stream_handles[-1].closed

    @pytest.mark.asyncio
    async def test_get_stat(self, storage, test_file):
        """Stat reports size and an aware modification time."""
        await storage.put(test_file, TEST_STRING)

        stat = await storage.get_stat(test_file)
        assert stat.size == len(TEST_STRING)
        assert isinstance(stat.modified, datetime)
        assert stat.modified.utcoffset() == timedelta(0)

    @pytest.mark.asyncio
    async def test_get_stat_missing(self, storage):
        """Stat of a missing object raises FileNotFound."""
        with pytest.raises(FileNotFound):
            await storage.get_stat("missing.txt")

    @pytest.mark.asyncio
    async def test_delete(self, storage, test_file):
        """Deleting an existing object reports was_deleted=True."""
        await storage.put(test_file, TEST_STRING)

        assert await storage.delete(test_file) == DeleteResult(was_deleted=True)
        assert (await storage.exists(test_file)).exists is False

    @pytest.mark.asyncio
    async def test_delete_missing(self, storage):
        """Deleting a missing object is a successful no-op."""
        assert await storage.delete("not-exist") == DeleteResult(was_deleted=False)

    @pytest.mark.asyncio
    async def test_copy(self, storage, test_file, other_file):
        """Copy duplicates content and leaves the source in place."""
        await storage.put(test_file, TEST_STRING)

        await storage.copy(test_file, other_file)

        assert (await storage.get(other_file, "utf-8")).content == TEST_STRING
        assert (await storage.exists(test_file)).exists is True

    @pytest.mark.asyncio
    async def test_copy_missing_source(self, storage, other_file):
        """Copying a missing object raises FileNotFound for the source."""
        with pytest.raises(FileNotFound) as exc_info:
            await storage.copy("missing.txt", other_file)
        assert exc_info.value.path == "missing.txt"

    @pytest.mark.asyncio
    async def test_move(self, storage, test_file, other_file):
        """Move relocates content and removes the source."""
        await storage.put(test_file, TEST_STRING)

        await storage.move(test_file, other_file)

        assert (await storage.get(other_file, "utf-8")).content == TEST_STRING
        assert (await storage.exists(test_file)).exists is False

    @pytest.mark.asyncio
    async def test_move_missing_source(self, storage, other_file):
        """Moving a missing object raises FileNotFound."""
        with pytest.raises(FileNotFound):
            await storage.move("missing.txt", other_file)

    @pytest.mark.asyncio
    async def test_move_onto_itself(self, storage, test_file):
        """Moving an object onto its own path keeps it."""
        await storage.put(test_file, TEST_STRING)

        await storage.move(test_file, f"/{test_file}")

        assert (await storage.get(test_file, "utf-8")).content == TEST_STRING

    @pytest.mark.asyncio
    async def test_move_missing_onto_itself(self, storage):
        with pytest.raises(FileNotFound):
            await storage.move("missing.txt", "missing.txt")

    @pytest.mark.asyncio
    async def test_get_signed_url(self, storage, test_file):
        """Signed URLs reference the object and report their lifetime."""
        await storage.put(test_file, TEST_STRING)

        result = await storage.get_signed_url(test_file, expiry=60)

        assert isinstance(result, SignedUrlResult)
        assert test_file in result.signed_url
        assert result.expiry == timedelta(seconds=60)

    def test_get_url_is_deterministic(self, storage, test_file):
        """get_url is pure string composition."""
        url = storage.get_url(test_file)
        assert url == storage.get_url(f"/{test_file}")
        assert url.endswith(test_file)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["../escape.txt", "a/../../escape.txt", "", "/", "bad\\path"])
    async def test_invalid_paths(self, storage, path):
        """Paths that are empty or escape the root are rejected."""
        with pytest.raises(InvalidPath):
            await storage.put(path, TEST_STRING)

    @pytest.mark.asyncio
    async def test_leading_slash_is_ignored(self, storage, test_file):
        """'/a/b' and 'a/b' name the same object."""
        await storage.put(f"/{test_file}", TEST_STRING)
        assert (await storage.exists(test_file)).exists is True


class TestFlatList:
    """Tests for prefix listing across drivers."""

    @pytest.mark.asyncio
    async def test_empty(self, storage):
        """Listing with nothing stored yields nothing."""
        assert await storage.flat_list().paths() == []

    @pytest.mark.asyncio
    async def test_prefix_that_does_not_exist(self, storage, test_file):
        """A prefix matching nothing yields an empty listing, not an error."""
        await storage.put(test_file, TEST_STRING)
        assert await storage.flat_list("/dummy/path").paths() == []

    @pytest.mark.asyncio
    async def test_no_prefix(self, storage, test_file, other_file):
        """Without a prefix every object is listed recursively."""
        await storage.put(test_file, TEST_STRING)
        await storage.put(other_file, TEST_STRING)

        assert await _sorted_paths(storage.flat_list()) == [other_file, test_file]

    @pytest.mark.asyncio
    async def test_folder_prefix(self, storage, folder, test_file, other_file):
        """A folder prefix lists everything under it."""
        await storage.put(test_file, TEST_STRING)
        await storage.put(other_file, TEST_STRING)
        await storage.put("elsewhere/file.txt", TEST_STRING)

        assert await _sorted_paths(storage.flat_list(folder)) == [other_file, test_file]

    @pytest.mark.asyncio
    async def test_subfolder_prefix(self, storage, folder, test_file, other_file):
        """A trailing slash prefix lists only that subtree."""
        await storage.put(test_file, TEST_STRING)
        await storage.put(other_file, TEST_STRING)

        assert await _sorted_paths(storage.flat_list(f"{folder}/sub/")) == [other_file]

    @pytest.mark.asyncio
    async def test_filename_prefix(self, storage, folder, test_file, other_file):
        """Prefixes match partial file names, not just whole segments."""
        await storage.put(test_file, TEST_STRING)
        await storage.put(other_file, TEST_STRING)

        assert await _sorted_paths(storage.flat_list(f"{folder}/te")) == [test_file]

    @pytest.mark.asyncio
    async def test_partial_directory_prefix(self, storage, folder, other_file):
        """Prefixes match partial directory names."""
        await storage.put(other_file, TEST_STRING)

        assert await _sorted_paths(storage.flat_list(f"{folder}/su")) == [other_file]

    @pytest.mark.asyncio
    async def test_leading_slash_prefix(self, storage, folder, test_file):
        """A single leading slash on the prefix is ignored."""
        await storage.put(test_file, TEST_STRING)

        assert await storage.flat_list(f"/{folder}").paths() == [test_file]

    @pytest.mark.asyncio
    async def test_relisting_issues_fresh_listing(self, storage, test_file, other_file):
        """Each call lists the current state."""
        await storage.put(test_file, TEST_STRING)
        assert await storage.flat_list().paths() == [test_file]

        await storage.put(other_file, TEST_STRING)
        assert await _sorted_paths(storage.flat_list()) == [other_file, test_file]

    @pytest.mark.asyncio
    async def test_early_exit_closes_listing(self, storage, folder):
        """Breaking out of a listing releases it."""
        for i in range(5):
            await storage.put(f"{folder}/file-{i}.txt", TEST_STRING)

        async with storage.flat_list(folder) as entries:
            async for entry in entries:
                assert entry.path.startswith(folder)
                break
        assert entries.closed

    @pytest.mark.asyncio
    async def test_prefix_dot_and_empty_segments(self, storage, folder, other_file):
        """'.' and doubled '/' in a prefix match the same keys as the clean form."""
        await storage.put(other_file, TEST_STRING)

        assert await storage.flat_list(f"./{folder}//sub/./di").paths() == [other_file]

    def test_prefix_with_parent_segment_rejected(self, storage):
        """Listing prefixes may not climb out of the root."""
        with pytest.raises(InvalidPath):
            storage.flat_list("../")
