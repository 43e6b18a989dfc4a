"""Tests for the local filesystem storage backend."""

import asyncio
import errno
import io
import threading

import pytest

from catalog_assets.lib.exceptions import (
    AssetNotFound,
    InvalidKey,
    StorageQuotaExceeded,
    StorageUnavailable,
)
from catalog_assets.lib.storage.base import StorageBackend
from catalog_assets.lib.storage.local import TMP_DIRNAME, LocalStorageBackend

from conftest import StallingTailStream, TrackingStream


class FailingStream(TrackingStream):
    """Yields one chunk, then fails with the given OSError."""

    def __init__(self, error: OSError) -> None:
        super().__init__(b"x" * 10)
        self._error = error
        self._reads = 0

    def read(self, size=-1):
        self._reads += 1
        if self._reads > 1:
            raise self._error
        return super().read(size)


class BlockingStream(TrackingStream):
    """Blocks its first read until released, so a write can be cancelled mid-flight."""

    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self.started = threading.Event()
        self.release = threading.Event()

    def read(self, size=-1):
        self.started.set()
        self.release.wait(timeout=5)
        return super().read(size)


async def _list(backend, prefix="", recursive=False):
    return [key async for key in backend.list_keys(prefix, recursive=recursive)]


def _tmp_files(backend):
    tmp_dir = backend.base_path / TMP_DIRNAME
    return list(tmp_dir.iterdir()) if tmp_dir.exists() else []


class TestPutGet:
    def test_satisfies_protocol(self, local_backend):
        assert isinstance(local_backend, StorageBackend)

    @pytest.mark.asyncio
    async def test_put_then_get(self, local_backend):
        stored = await local_backend.put("T1/product-image/P1/a.jpg", io.BytesIO(b"hello"), "image/jpeg")

        assert stored.size == 5
        assert stored.content_type == "image/jpeg"
        with await local_backend.get("T1/product-image/P1/a.jpg") as stream:
            assert stream.read() == b"hello"

    @pytest.mark.asyncio
    async def test_put_closes_stream_once(self, local_backend):
        stream = TrackingStream(b"data")
        await local_backend.put("T1/download/P1/a.pdf", stream, "application/pdf")
        assert stream.close_calls == 1

    @pytest.mark.asyncio
    async def test_put_overwrites(self, local_backend):
        await local_backend.put("T1/download/P1/a.pdf", io.BytesIO(b"old"), "application/pdf")
        await local_backend.put("T1/download/P1/a.pdf", io.BytesIO(b"new"), "application/pdf")

        with await local_backend.get("T1/download/P1/a.pdf") as stream:
            assert stream.read() == b"new"

    @pytest.mark.asyncio
    async def test_put_leaves_no_temp_files(self, local_backend):
        await local_backend.put("T1/download/P1/a.pdf", io.BytesIO(b"x" * 200_000), "application/pdf")
        assert _tmp_files(local_backend) == []

    @pytest.mark.asyncio
    async def test_get_missing_raises_not_found(self, local_backend):
        with pytest.raises(AssetNotFound) as exc_info:
            await local_backend.get("T1/download/P1/missing.pdf")
        assert exc_info.value.key == "T1/download/P1/missing.pdf"

    @pytest.mark.asyncio
    async def test_get_folder_raises_not_found(self, local_backend):
        await local_backend.put("T1/download/P1/a.pdf", io.BytesIO(b"x"), "application/pdf")
        with pytest.raises(AssetNotFound):
            await local_backend.get("T1/download/P1")

    @pytest.mark.asyncio
    async def test_exists(self, local_backend):
        await local_backend.put("T1/download/P1/a.pdf", io.BytesIO(b"x"), "application/pdf")
        assert await local_backend.exists("T1/download/P1/a.pdf")
        assert not await local_backend.exists("T1/download/P1/b.pdf")
        assert not await local_backend.exists("T1/download/P1")

    @pytest.mark.asyncio
    async def test_get_url(self, tmp_path):
        backend = LocalStorageBackend(tmp_path, base_url="https://cdn.example.com/files/")
        assert await backend.get_url("T1/download/P1/a.pdf") == "https://cdn.example.com/files/T1/download/P1/a.pdf"


class TestFailedPut:
    @pytest.mark.asyncio
    async def test_io_error_leaves_nothing_and_closes_stream(self, local_backend):
        stream = FailingStream(OSError(errno.EIO, "read failed"))

        with pytest.raises(StorageUnavailable):
            await local_backend.put("T1/download/P1/a.pdf", stream, "application/pdf")

        assert stream.close_calls == 1
        assert not await local_backend.exists("T1/download/P1/a.pdf")
        assert _tmp_files(local_backend) == []

    @pytest.mark.asyncio
    async def test_failed_overwrite_keeps_old_content(self, local_backend):
        await local_backend.put("T1/download/P1/a.pdf", io.BytesIO(b"old"), "application/pdf")

        with pytest.raises(StorageUnavailable):
            await local_backend.put(
                "T1/download/P1/a.pdf", FailingStream(OSError(errno.EIO, "boom")), "application/pdf"
            )

        with await local_backend.get("T1/download/P1/a.pdf") as stream:
            assert stream.read() == b"old"

    @pytest.mark.asyncio
    async def test_no_space_maps_to_quota(self, local_backend):
        stream = FailingStream(OSError(errno.ENOSPC, "No space left on device"))

        with pytest.raises(StorageQuotaExceeded):
            await local_backend.put("T1/download/P1/a.pdf", stream, "application/pdf")
        assert stream.close_calls == 1

    @pytest.mark.asyncio
    async def test_cancelled_put_leaves_nothing(self, local_backend):
        stream = BlockingStream(b"payload")
        task = asyncio.create_task(local_backend.put("T1/download/P1/a.pdf", stream, "application/pdf"))

        await asyncio.to_thread(stream.started.wait, 5)
        task.cancel()
        while not task.done():
            await asyncio.sleep(0.01)
        stream.release.set()

        with pytest.raises(asyncio.CancelledError):
            await task

        for _ in range(100):
            if stream.closed:
                break
            await asyncio.sleep(0.01)

        assert stream.close_calls == 1
        assert not await local_backend.exists("T1/download/P1/a.pdf")
        assert _tmp_files(local_backend) == []

    @pytest.mark.asyncio
    async def test_cancel_during_final_read_leaves_nothing(self, local_backend):
        stream = StallingTailStream(b"payload")
        task = asyncio.create_task(local_backend.put("T1/download/P1/a.pdf", stream, "application/pdf"))

        await asyncio.to_thread(stream.at_eof.wait, 5)
        task.cancel()
        while not task.done():
            await asyncio.sleep(0.01)
        stream.release.set()

        with pytest.raises(asyncio.CancelledError):
            await task

        for _ in range(100):
            if stream.closed:
                break
            await asyncio.sleep(0.01)

        assert stream.close_calls == 1
        assert not await local_backend.exists("T1/download/P1/a.pdf")
        assert _tmp_files(local_backend) == []


class TestInvalidKeys:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "key",
        ["", "../escape.txt", "T1/../../escape.txt", "T1//a.txt", "T1/./a.txt", "a\\b.txt", f"{TMP_DIRNAME}/x"],
    )
    async def test_put_rejects_and_closes_stream(self, local_backend, key):
        stream = TrackingStream(b"x")
        with pytest.raises(InvalidKey):
            await local_backend.put(key, stream, "text/plain")
        assert stream.close_calls == 1

    @pytest.mark.asyncio
    async def test_get_rejects_traversal(self, local_backend):
        with pytest.raises(InvalidKey):
            await local_backend.get("../outside")


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, local_backend):
        await local_backend.put("T1/download/P1/a.pdf", io.BytesIO(b"x"), "application/pdf")

        await local_backend.delete("T1/download/P1/a.pdf")
        await local_backend.delete("T1/download/P1/a.pdf")

        assert not await local_backend.exists("T1/download/P1/a.pdf")

    @pytest.mark.asyncio
    async def test_delete_prunes_empty_folders(self, local_backend):
        await local_backend.put("T1/download/P1/a.pdf", io.BytesIO(b"x"), "application/pdf")
        await local_backend.delete("T1/download/P1/a.pdf")

        assert not (local_backend.base_path / "T1").exists()
        assert local_backend.base_path.exists()

    @pytest.mark.asyncio
    async def test_delete_of_folder_removes_nothing(self, local_backend):
        await local_backend.put("T1/download/P1/a.pdf", io.BytesIO(b"x"), "application/pdf")
        await local_backend.put("T1/download/P1/b.pdf", io.BytesIO(b"y"), "application/pdf")

        await local_backend.delete("T1/download/P1")

        assert await _list(local_backend, "T1/download/P1/") == ["T1/download/P1/a.pdf", "T1/download/P1/b.pdf"]

    @pytest.mark.asyncio
    async def test_delete_prefix_is_recursive_and_exact(self, local_backend):
        for key in (
            "T1/download/P1/a.pdf",
            "T1/download/P1/nested/b.pdf",
            "T1/download/P10/c.pdf",
        ):
            await local_backend.put(key, io.BytesIO(b"x"), "application/pdf")

        removed = await local_backend.delete_prefix("T1/download/P1/")

        assert removed == 2
        assert await _list(local_backend, "T1/download/", recursive=True) == ["T1/download/P10/c.pdf"]

    @pytest.mark.asyncio
    async def test_delete_prefix_refuses_empty_prefix(self, local_backend):
        await local_backend.put("T1/download/P1/a.pdf", io.BytesIO(b"x"), "application/pdf")
        with pytest.raises(InvalidKey):
            await local_backend.delete_prefix("")
        assert await local_backend.exists("T1/download/P1/a.pdf")

    @pytest.mark.asyncio
    async def test_delete_prefix_of_missing_folder(self, local_backend):
        assert await local_backend.delete_prefix("T1/download/none/") == 0


class TestListKeys:
    @pytest.mark.asyncio
    async def test_non_recursive_by_default(self, local_backend):
        for key in (
            "T1/download/P1/a.pdf",
            "T1/download/P1/sub/deep.pdf",
            "T1/download/P10/other.pdf",
        ):
            await local_backend.put(key, io.BytesIO(b"x"), "application/pdf")

        assert await _list(local_backend, "T1/download/P1/") == ["T1/download/P1/a.pdf"]

    @pytest.mark.asyncio
    async def test_recursive(self, local_backend):
        for key in ("T1/download/P1/a.pdf", "T1/download/P1/sub/deep.pdf"):
            await local_backend.put(key, io.BytesIO(b"x"), "application/pdf")

        assert await _list(local_backend, "T1/download/P1/", recursive=True) == [
            "T1/download/P1/a.pdf",
            "T1/download/P1/sub/deep.pdf",
        ]

    @pytest.mark.asyncio
    async def test_missing_prefix_lists_nothing(self, local_backend):
        assert await _list(local_backend, "T9/download/P1/") == []

    @pytest.mark.asyncio
    async def test_temp_area_is_never_listed(self, local_backend):
        await local_backend.put("T1/download/P1/a.pdf", io.BytesIO(b"x"), "application/pdf")
        (local_backend.base_path / TMP_DIRNAME).mkdir(exist_ok=True)
        (local_backend.base_path / TMP_DIRNAME / "leftover").write_bytes(b"x")

        assert await _list(local_backend, "", recursive=True) == ["T1/download/P1/a.pdf"]
