"""Metadata row for one stored asset."""

from __future__ import annotations

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from catalog_assets.db.base import Base


class AssetRecord(Base):
    """Which key holds one (tenant, category, owner, file, variant) asset."""

    __tablename__ = "asset_records"
    __table_args__ = (
        UniqueConstraint(
            "tenant_code",
            "content_category",
            "owner_id",
            "file_name",
            "size_variant",
            name="uq_asset_record_identity",
        ),
    )

    tenant_code: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    content_category: Mapped[str] = mapped_column(String(32), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    size_variant: Mapped[str] = mapped_column(String(16), nullable=False, default="ORIGINAL")
    key: Mapped[str] = mapped_column(String(1024), nullable=False)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False)
    byte_length: Mapped[int | None] = mapped_column(Integer, nullable=True)
