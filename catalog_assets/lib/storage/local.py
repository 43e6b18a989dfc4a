"""Local filesystem storage backend."""

from __future__ import annotations

import asyncio
import errno
import hashlib
import os
import tempfile
import threading
from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO

from catalog_assets.lib.exceptions import (
    AssetNotFound,
    InvalidKey,
    StorageQuotaExceeded,
    StorageUnavailable,
)
from catalog_assets.lib.storage.base import CHUNK_SIZE, StoredFile, is_direct_child, require_prefix

# Uploads are staged here, then renamed into place. The name contains a
# character the key builder always percent-encodes, so no key can collide.
TMP_DIRNAME = "#tmp"

_QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}
_MISSING = (FileNotFoundError, IsADirectoryError, NotADirectoryError)


class _WriteCancelled(Exception):
    pass


@contextmanager
def _translate_os_errors(key: str) -> Iterator[None]:
    try:
        yield
    except OSError as exc:
        if exc.errno in _QUOTA_ERRNOS:
            raise StorageQuotaExceeded(f"No space left writing {key!r}", key=key) from exc
        raise StorageUnavailable(f"Filesystem error on {key!r}: {exc}", key=key) from exc


class LocalStorageBackend:
    """Store objects as files under a root directory, one file per key."""

    def __init__(self, base_path: Path, base_url: str = "/assets") -> None:
        self._base_path = Path(base_path)
        self._base_url = base_url

    @property
    def base_path(self) -> Path:
        return self._base_path

    async def put(self, key: str, stream: BinaryIO, content_type: str) -> StoredFile:
        try:
            path = self._key_to_path(key)
        except InvalidKey:
            stream.close()
            raise

        cancelled = threading.Event()
        try:
            size, digest = await asyncio.to_thread(
                self._write_stream, key, path, stream, cancelled
            )
        except asyncio.CancelledError:
            # The worker thread notices between chunks and discards its temp file.
            cancelled.set()
            raise

        return StoredFile(key=key, content_type=content_type, size=size, content_hash=digest)

    async def get(self, key: str) -> BinaryIO:
        path = self._key_to_path(key)
        return await asyncio.to_thread(self._open, key, path)

    async def delete(self, key: str) -> None:
        path = self._key_to_path(key)
        await asyncio.to_thread(self._unlink, key, path)

    async def delete_prefix(self, prefix: str) -> int:
        require_prefix(prefix)
        keys = [key async for key in self.list_keys(prefix, recursive=True)]
        for key in keys:
            await self.delete(key)
        return len(keys)

    async def exists(self, key: str) -> bool:
        path = self._key_to_path(key)
        return await asyncio.to_thread(path.is_file)

    async def list_keys(self, prefix: str = "", *, recursive: bool = False) -> AsyncIterator[str]:
        directory, _, _ = prefix.rpartition("/")
        root = self._key_to_path(directory) if directory else self._base_path
        for key in await asyncio.to_thread(self._walk, root, recursive):
            if not key.startswith(prefix):
                continue
            if recursive or is_direct_child(key, prefix):
                yield key

    async def get_url(self, key: str) -> str:
        return f"{self._base_url.rstrip('/')}/{key}"

    async def close(self) -> None:
        """No persistent resources to clean up."""

    # -- internal helpers --

    def _key_to_path(self, key: str) -> Path:
        """Map a key onto the filesystem, refusing anything that escapes the root."""
        parts = key.split("/")
        if (
            not key
            or "\x00" in key
            or "\\" in key
            or parts[0] == TMP_DIRNAME
            or any(part in ("", ".", "..") for part in parts)
        ):
            raise InvalidKey(f"Key {key!r} is not a valid local storage path", key=key)
        return self._base_path.joinpath(*parts)

    def _path_to_key(self, path: Path) -> str:
        return "/".join(path.relative_to(self._base_path).parts)

    def _write_stream(
        self,
        key: str,
        path: Path,
        stream: BinaryIO,
        cancelled: threading.Event,
    ) -> tuple[int, str]:
        hasher = hashlib.sha256()
        size = 0
        tmp_path: Path | None = None
        try:
            with _translate_os_errors(key):
                tmp_dir = self._base_path / TMP_DIRNAME
                tmp_dir.mkdir(parents=True, exist_ok=True)
                fd, name = tempfile.mkstemp(dir=tmp_dir)
                tmp_path = Path(name)
                with os.fdopen(fd, "wb") as out:
                    while chunk := stream.read(CHUNK_SIZE):
                        if cancelled.is_set():
                            raise _WriteCancelled(key)
                        out.write(chunk)
                        hasher.update(chunk)
                        size += len(chunk)
                    out.flush()
                    os.fsync(out.fileno())
                # The caller may have given up while the last read hit EOF.
                if cancelled.is_set():
                    raise _WriteCancelled(key)
                self._move_into_place(tmp_path, path)
                tmp_path = None
        finally:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            stream.close()
        return size, hasher.hexdigest()

    @staticmethod
    def _move_into_place(source: Path, target: Path) -> None:
        # A concurrent delete may prune the freshly created parent; retry once.
        for attempt in range(2):
            target.parent.mkdir(parents=True, exist_ok=True)
            try:
                os.replace(source, target)
                return
            except FileNotFoundError:
                if attempt:
                    raise

    @staticmethod
    def _open(key: str, path: Path) -> BinaryIO:
        try:
            return open(path, "rb")
        except _MISSING as exc:
            raise AssetNotFound(key) from exc
        except OSError as exc:
            raise StorageUnavailable(f"Filesystem error on {key!r}: {exc}", key=key) from exc

    def _unlink(self, key: str, path: Path) -> None:
        with _translate_os_errors(key):
            if path.is_dir():
                # A folder is not an object; use delete_prefix to empty it.
                return
            path.unlink(missing_ok=True)
            self._prune_empty_dirs(path.parent)

    def _prune_empty_dirs(self, directory: Path) -> None:
        while directory != self._base_path and directory.is_relative_to(self._base_path):
            try:
                directory.rmdir()
            except OSError:
                return
            directory = directory.parent

    def _walk(self, root: Path, recursive: bool) -> list[str]:
        if not root.is_dir():
            return []
        tmp_dir = self._base_path / TMP_DIRNAME
        if recursive:
            paths = (
                p for p in root.rglob("*")
                if p.is_file() and not p.is_relative_to(tmp_dir)
            )
        else:
            paths = (p for p in root.iterdir() if p.is_file())
        return sorted(self._path_to_key(p) for p in paths)
