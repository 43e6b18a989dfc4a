"""Shared pytest fixtures."""

import io
import threading
from collections import defaultdict
from collections.abc import Sequence

import pytest

from catalog_assets.lib.exceptions import StorageUnavailable
from catalog_assets.lib.hooks import HookRegistry, hooks
from catalog_assets.lib.storage.local import LocalStorageBackend
from catalog_assets.lib.storage.manager import AssetManager
from catalog_assets.lib.storage.models import Asset, AssetOutcome, ContentCategory, SizeVariant


class TrackingStream(io.BytesIO):
    """BytesIO that counts how often it was closed."""

    def __init__(self, data: bytes = b"") -> None:
        super().__init__(data)
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1
        super().close()


class StallingTailStream(TrackingStream):
    """Returns its data at once, then blocks the EOF read until released."""

    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self.at_eof = threading.Event()
        self.release = threading.Event()

    def read(self, size=-1):
        chunk = super().read(size)
        if not chunk:
            self.at_eof.set()
            self.release.wait(timeout=5)
        return chunk


class InMemoryAssetRepository:
    """Dict-backed metadata store that remembers every outcome batch."""

    def __init__(self, assets: Sequence[Asset] = ()) -> None:
        self.rows: dict = {asset.identity: asset for asset in assets}
        self.batches: list[list[AssetOutcome]] = []
        self.fail_list = False

    async def list_for_owner(self, tenant_code, content_category, owner_id) -> list[Asset]:
        if self.fail_list:
            raise StorageUnavailable("metadata store offline")
        return [
            asset for asset in self.rows.values()
            if (asset.tenant_code, asset.content_category, asset.owner_id)
            == (tenant_code, content_category, owner_id)
        ]

    async def record_outcome(self, outcomes: Sequence[AssetOutcome]) -> None:
        self.batches.append(list(outcomes))
        for outcome in outcomes:
            if outcome.exists:
                self.rows[outcome.asset.identity] = outcome.asset
            else:
                self.rows.pop(outcome.asset.identity, None)


class FaultyBackend:
    """Wraps a real backend and injects failures into chosen calls."""

    def __init__(self, inner, *, fail_puts=(), fail_deletes=False, error=StorageUnavailable):
        self.inner = inner
        self.fail_puts = set(fail_puts)
        self.fail_deletes = fail_deletes
        self.error = error
        self.put_calls = 0
        self.calls: list[tuple[str, str]] = []

    async def put(self, key, stream, content_type):
        self.put_calls += 1
        self.calls.append(("put", key))
        if self.put_calls in self.fail_puts:
            stream.close()
            raise self.error(f"injected put failure for {key!r}", key=key)
        return await self.inner.put(key, stream, content_type)

    async def delete(self, key):
        self.calls.append(("delete", key))
        if self.fail_deletes:
            raise self.error(f"injected delete failure for {key!r}", key=key)
        await self.inner.delete(key)

    def __getattr__(self, name):
        return getattr(self.inner, name)


def make_asset(file_name="front.jpg", owner_id="P100", size_variant=SizeVariant.ORIGINAL, **kwargs):
    return Asset(
        tenant_code=kwargs.pop("tenant_code", "T1"),
        content_category=kwargs.pop("content_category", ContentCategory.PRODUCT_IMAGE),
        owner_id=owner_id,
        file_name=file_name,
        size_variant=size_variant,
        content_type=kwargs.pop("content_type", "image/jpeg"),
        **kwargs,
    )


@pytest.fixture
def local_backend(tmp_path):
    return LocalStorageBackend(tmp_path / "store")


@pytest.fixture
def registry():
    """A fresh hook registry so tests never see each other's handlers."""
    return HookRegistry()


@pytest.fixture
def manager(local_backend, registry):
    return AssetManager(local_backend, hooks=registry)


@pytest.fixture
def repository():
    return InMemoryAssetRepository()


@pytest.fixture
def clean_hooks():
    """Save and restore global hooks state around a test."""
    original_filters = hooks._filters
    original_actions = hooks._actions
    hooks._filters = defaultdict(list, {k: list(v) for k, v in original_filters.items()})
    hooks._actions = defaultdict(list, {k: list(v) for k, v in original_actions.items()})
    yield
    hooks._filters = original_filters
    hooks._actions = original_actions
