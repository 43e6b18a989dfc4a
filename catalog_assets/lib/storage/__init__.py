"""Pluggable asset storage over local disk and object stores."""

from catalog_assets.lib.storage.base import StorageBackend, StoredFile
from catalog_assets.lib.storage.keys import AssetKeyBuilder
from catalog_assets.lib.storage.local import LocalStorageBackend
from catalog_assets.lib.storage.manager import AssetListing, AssetManager, create_storage_backend
from catalog_assets.lib.storage.models import (
    Asset,
    AssetIdentity,
    AssetOutcome,
    ContentCategory,
    SizeVariant,
)

__all__ = [
    "Asset",
    "AssetIdentity",
    "AssetKeyBuilder",
    "AssetListing",
    "AssetManager",
    "AssetOutcome",
    "ContentCategory",
    "LocalStorageBackend",
    "SizeVariant",
    "StorageBackend",
    "StoredFile",
    "create_storage_backend",
]
