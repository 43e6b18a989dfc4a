"""Storage backend protocol and common types."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import BinaryIO, Protocol, runtime_checkable

from catalog_assets.lib.exceptions import InvalidKey

CHUNK_SIZE = 64 * 1024


@dataclass
class StoredFile:
    """Metadata for an object written to a backend."""

    key: str
    content_type: str
    size: int
    content_hash: str


@runtime_checkable
class StorageBackend(Protocol):
    """Interface for pluggable asset storage backends.

    Keys are opaque strings; ``/`` is treated as a folder separator only for
    non-recursive listing.
    """

    async def put(self, key: str, stream: BinaryIO, content_type: str) -> StoredFile:
        """Store the stream under the given key.

        The backend owns ``stream`` and closes it exactly once, whether the
        write succeeds, fails or is cancelled. A failed write leaves nothing
        retrievable at ``key``.
        """
        ...

    async def get(self, key: str) -> BinaryIO:
        """Open the object for reading. The caller closes the stream."""
        ...

    async def delete(self, key: str) -> None:
        """Remove a key. Deleting a missing key succeeds."""
        ...

    async def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with ``prefix`` and return how many."""
        ...

    async def exists(self, key: str) -> bool:
        """Check whether a key exists in storage."""
        ...

    def list_keys(self, prefix: str = "", *, recursive: bool = False) -> AsyncIterator[str]:
        """Yield keys starting with ``prefix``.

        Unless ``recursive`` is set, only keys directly below the prefix are
        yielded, never keys nested in deeper folders.
        """
        ...

    async def get_url(self, key: str) -> str:
        """Return a public or signed URL for the key."""
        ...

    async def close(self) -> None:
        """Release resources held by the backend."""
        ...


def is_direct_child(key: str, prefix: str) -> bool:
    """True when ``key`` sits directly under ``prefix`` with no deeper folder."""
    return key.startswith(prefix) and "/" not in key[len(prefix):]


def require_prefix(prefix: str) -> None:
    """Refuse prefix deletes that would empty the whole store."""
    if not prefix:
        raise InvalidKey("Refusing to delete with an empty prefix")
