"""Asset identity and metadata types."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, replace
from enum import Enum
from typing import NamedTuple

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class ContentCategory(str, Enum):
    """What kind of content an asset is, which also selects its key segment."""

    PRODUCT_IMAGE = "PRODUCT_IMAGE"
    DOWNLOAD = "DOWNLOAD"
    MANUFACTURER_LOGO = "MANUFACTURER_LOGO"
    STORE_LOGO = "STORE_LOGO"
    STATIC_FILE = "STATIC_FILE"

    @property
    def segment(self) -> str:
        return self.value.lower().replace("_", "-")

    @classmethod
    def from_segment(cls, segment: str) -> ContentCategory:
        for category in cls:
            if category.segment == segment:
                return category
        raise ValueError(f"Unknown content category segment: {segment!r}")


class SizeVariant(str, Enum):
    ORIGINAL = "ORIGINAL"
    LARGE = "LARGE"
    SMALL = "SMALL"


class AssetIdentity(NamedTuple):
    """The tuple that uniquely identifies one stored asset."""

    tenant_code: str
    content_category: ContentCategory
    owner_id: str
    file_name: str
    size_variant: SizeVariant = SizeVariant.ORIGINAL


@dataclass(frozen=True)
class Asset:
    """One physical binary object and what is known about it."""

    tenant_code: str
    content_category: ContentCategory
    owner_id: str
    file_name: str
    size_variant: SizeVariant = SizeVariant.ORIGINAL
    content_type: str = DEFAULT_CONTENT_TYPE
    byte_length: int | None = None

    @property
    def identity(self) -> AssetIdentity:
        return AssetIdentity(
            self.tenant_code,
            self.content_category,
            self.owner_id,
            self.file_name,
            self.size_variant,
        )

    def with_variant(self, size_variant: SizeVariant) -> Asset:
        return replace(self, size_variant=size_variant, byte_length=None)

    @classmethod
    def from_identity(
        cls,
        identity: AssetIdentity,
        content_type: str | None = None,
        byte_length: int | None = None,
    ) -> Asset:
        return cls(
            tenant_code=identity.tenant_code,
            content_category=identity.content_category,
            owner_id=identity.owner_id,
            file_name=identity.file_name,
            size_variant=identity.size_variant,
            content_type=content_type or guess_content_type(identity.file_name),
            byte_length=byte_length,
        )


@dataclass(frozen=True)
class AssetOutcome:
    """What the metadata store should record about one asset after a save."""

    asset: Asset
    key: str
    exists: bool


def guess_content_type(file_name: str) -> str:
    return mimetypes.guess_type(file_name)[0] or DEFAULT_CONTENT_TYPE
