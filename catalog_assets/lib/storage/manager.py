"""Asset manager: logical asset CRUD over a configured storage backend."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import aclosing, asynccontextmanager
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from catalog_assets.lib import observability
from catalog_assets.lib.exceptions import InvalidKey, StorageUnavailable
from catalog_assets.lib.hooks import (
    AFTER_ASSET_DELETE,
    AFTER_ASSET_PUT,
    AFTER_OWNER_PURGE,
    ASSET_CONTENT_TYPE,
    BEFORE_ASSET_PUT,
    HookRegistry,
    hooks as default_hooks,
)
from catalog_assets.lib.storage.keys import AssetKeyBuilder
from catalog_assets.lib.storage.local import LocalStorageBackend
from catalog_assets.lib.storage.models import Asset, ContentCategory, SizeVariant

if TYPE_CHECKING:
    from catalog_assets.config import StorageConfig
    from catalog_assets.lib.storage.base import StorageBackend

logger = logging.getLogger(__name__)

# Sentinel meaning "use the manager's configured operation timeout"
DEFAULT_TIMEOUT: float = -1.0


def create_storage_backend(config: StorageConfig) -> StorageBackend:
    """Instantiate the storage backend named by the configuration."""
    backend_type = config.backend

    if backend_type == "local-fs":
        return LocalStorageBackend(
            base_path=Path(config.bucket_or_root_path),
            base_url=config.public_url or "/assets",
        )

    if backend_type == "object-store-a":
        from catalog_assets.lib.storage.s3 import S3StorageBackend

        return S3StorageBackend(config)

    if backend_type == "object-store-b":
        from catalog_assets.lib.storage.gcs import GCSStorageBackend

        return GCSStorageBackend(config)

    raise ValueError(
        f"Unknown storage backend '{backend_type}'. "
        "Use 'local-fs', 'object-store-a' or 'object-store-b'."
    )


class AssetListing:
    """Restartable async view of one owner's stored assets.

    Every ``async for`` issues a fresh backend listing, so items stream in as
    the backend pages them and a second pass sees current state. Each step
    of the backend listing is bounded by the manager's operation timeout.
    """

    def __init__(
        self,
        manager: AssetManager,
        tenant_code: str,
        content_category: ContentCategory,
        owner_id: str,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> None:
        self._manager = manager
        self._tenant_code = tenant_code
        self._content_category = content_category
        self._owner_id = owner_id
        self._timeout = timeout

    def __aiter__(self) -> AsyncIterator[Asset]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Asset]:
        keys = self._manager.keys
        prefix = keys.build_prefix(self._tenant_code, self._content_category, self._owner_id)
        async with aclosing(self._manager.backend.list_keys(prefix)) as listed:
            while True:
                async with self._manager._bounded("list", prefix, self._timeout):
                    try:
                        key = await anext(listed)
                    except StopAsyncIteration:
                        break
                try:
                    identity = keys.parse_key(key)
                except InvalidKey:
                    logger.debug("Skipping foreign key %r under %r", key, prefix)
                    continue
                if (
                    identity.tenant_code != self._tenant_code
                    or identity.content_category != self._content_category
                    or identity.owner_id != self._owner_id
                ):
                    logger.debug("Skipping key %r outside owner %r", key, self._owner_id)
                    continue
                yield Asset.from_identity(identity)

    async def collect(self) -> list[Asset]:
        return [asset async for asset in self]


class AssetManager:
    """CRUD over logical assets; hides key derivation and the active backend."""

    def __init__(
        self,
        backend: StorageBackend,
        keys: AssetKeyBuilder | None = None,
        *,
        operation_timeout: float | None = None,
        hooks: HookRegistry | None = None,
    ) -> None:
        self._backend = backend
        self._keys = keys or AssetKeyBuilder()
        self._operation_timeout = operation_timeout
        self._hooks = hooks or default_hooks

    @classmethod
    def from_config(cls, config: StorageConfig, **kwargs) -> AssetManager:
        kwargs.setdefault("operation_timeout", config.operation_timeout)
        return cls(create_storage_backend(config), **kwargs)

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def keys(self) -> AssetKeyBuilder:
        return self._keys

    async def put_asset(
        self,
        asset: Asset,
        content: BinaryIO,
        *,
        variants: Mapping[SizeVariant, BinaryIO] | None = None,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> Asset:
        """Store ``content`` as ``asset``, plus any pre-rendered ``variants``.

        Returns the asset with its byte length and content type as stored.
        Every supplied stream is closed, whatever the outcome.
        """
        pending = [(asset, content)]
        for size_variant, stream in (variants or {}).items():
            pending.append((asset.with_variant(size_variant), stream))

        stored: Asset | None = None
        try:
            while pending:
                target, stream = pending.pop(0)
                result = await self._put_one(target, stream, timeout)
                if stored is None:
                    stored = result
        finally:
            for _, stream in pending:
                stream.close()
        return stored

    async def _put_one(self, asset: Asset, stream: BinaryIO, timeout: float | None) -> Asset:
        try:
            key = self._keys.build_identity_key(asset.identity)
            content_type = await self._hooks.apply_filters(
                ASSET_CONTENT_TYPE, asset.content_type, asset=asset
            )
            await self._hooks.do_action(BEFORE_ASSET_PUT, asset=asset, key=key)
        except BaseException:
            stream.close()
            raise

        async with self._bounded("put", key, timeout):
            stored = await self._backend.put(key, stream, content_type)

        result = replace(asset, content_type=stored.content_type, byte_length=stored.size)
        logger.debug("Stored %s (%d bytes)", key, stored.size)
        await self._hooks.do_action(AFTER_ASSET_PUT, asset=result, key=key)
        return result

    async def get_asset(
        self,
        tenant_code: str,
        content_category: ContentCategory,
        owner_id: str,
        file_name: str,
        size_variant: SizeVariant = SizeVariant.ORIGINAL,
        *,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> BinaryIO:
        """Open one stored asset for reading. Raises AssetNotFound."""
        key = self._keys.build_key(tenant_code, content_category, owner_id, file_name, size_variant)
        async with self._bounded("get", key, timeout):
            return await self._backend.get(key)

    async def asset_exists(
        self,
        tenant_code: str,
        content_category: ContentCategory,
        owner_id: str,
        file_name: str,
        size_variant: SizeVariant = SizeVariant.ORIGINAL,
        *,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> bool:
        key = self._keys.build_key(tenant_code, content_category, owner_id, file_name, size_variant)
        async with self._bounded("exists", key, timeout):
            return await self._backend.exists(key)

    async def get_asset_url(
        self,
        tenant_code: str,
        content_category: ContentCategory,
        owner_id: str,
        file_name: str,
        size_variant: SizeVariant = SizeVariant.ORIGINAL,
        *,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> str:
        """Return the public or signed URL for an asset."""
        key = self._keys.build_key(tenant_code, content_category, owner_id, file_name, size_variant)
        async with self._bounded("get_url", key, timeout):
            return await self._backend.get_url(key)

    def list_assets(
        self,
        tenant_code: str,
        content_category: ContentCategory,
        owner_id: str,
        *,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> AssetListing:
        return AssetListing(
            self, tenant_code, ContentCategory(content_category), owner_id, timeout
        )

    async def delete_asset(
        self,
        tenant_code: str,
        content_category: ContentCategory,
        owner_id: str,
        file_name: str,
        *,
        size_variants: Iterable[SizeVariant] | None = None,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> None:
        """Delete the size variants of one file name, leaving its siblings alone.

        Without ``size_variants`` every variant goes.
        """
        size_variants = tuple(SizeVariant if size_variants is None else size_variants)
        for size_variant in size_variants:
            key = self._keys.build_key(
                tenant_code, content_category, owner_id, file_name, size_variant
            )
            async with self._bounded("delete", key, timeout):
                await self._backend.delete(key)
        await self._hooks.do_action(
            AFTER_ASSET_DELETE,
            tenant_code=tenant_code,
            content_category=ContentCategory(content_category),
            owner_id=owner_id,
            file_name=file_name,
            size_variants=size_variants,
        )

    async def delete_all_for_owner(
        self,
        tenant_code: str,
        content_category: ContentCategory,
        owner_id: str,
        *,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> int:
        """Folder delete: remove every object under the owner's prefix."""
        prefix = self._keys.build_prefix(tenant_code, content_category, owner_id)
        async with self._bounded("delete_prefix", prefix, timeout):
            removed = await self._backend.delete_prefix(prefix)
        logger.info("Removed %d object(s) under %s", removed, prefix)
        await self._hooks.do_action(AFTER_OWNER_PURGE, prefix=prefix, removed=removed)
        return removed

    async def close(self) -> None:
        await self._backend.close()

    @asynccontextmanager
    async def _bounded(self, operation: str, key: str, timeout: float | None):
        """Bound one backend call by a timeout and trace it.

        Backend errors already belong to the storage taxonomy and pass through;
        an expired timeout becomes StorageUnavailable.
        """
        if timeout == DEFAULT_TIMEOUT:
            timeout = self._operation_timeout
        with observability.span(f"storage.{operation}", key=key):
            try:
                async with asyncio.timeout(timeout):
                    yield
            except TimeoutError as exc:
                raise StorageUnavailable(
                    f"Storage {operation} on {key!r} timed out after {timeout}s", key=key
                ) from exc
