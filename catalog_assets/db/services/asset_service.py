"""Asset metadata service: which keys exist for which owner."""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import and_, delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_assets.db.models.asset import AssetRecord
from catalog_assets.lib.storage.models import Asset, AssetOutcome, ContentCategory, SizeVariant


def _identity_filter(asset: Asset):
    return and_(
        AssetRecord.tenant_code == asset.tenant_code,
        AssetRecord.content_category == asset.content_category.value,
        AssetRecord.owner_id == asset.owner_id,
        AssetRecord.file_name == asset.file_name,
        AssetRecord.size_variant == asset.size_variant.value,
    )


def record_to_asset(record: AssetRecord) -> Asset:
    return Asset(
        tenant_code=record.tenant_code,
        content_category=ContentCategory(record.content_category),
        owner_id=record.owner_id,
        file_name=record.file_name,
        size_variant=SizeVariant(record.size_variant),
        content_type=record.content_type,
        byte_length=record.byte_length,
    )


async def list_owner_records(
    db_session: AsyncSession,
    tenant_code: str,
    content_category: ContentCategory,
    owner_id: str,
) -> list[AssetRecord]:
    """Return every metadata row for one owner, ordered by file name."""
    result = await db_session.execute(
        select(AssetRecord)
        .where(
            and_(
                AssetRecord.tenant_code == tenant_code,
                AssetRecord.content_category == ContentCategory(content_category).value,
                AssetRecord.owner_id == owner_id,
            )
        )
        .order_by(AssetRecord.file_name, AssetRecord.size_variant)
    )
    return list(result.scalars().all())


async def upsert_asset_record(db_session: AsyncSession, asset: Asset, key: str) -> AssetRecord:
    """Create or refresh the row for ``asset``. Does not commit."""
    result = await db_session.execute(select(AssetRecord).where(_identity_filter(asset)))
    record = result.scalar_one_or_none()
    if record is None:
        record = AssetRecord(
            tenant_code=asset.tenant_code,
            content_category=asset.content_category.value,
            owner_id=asset.owner_id,
            file_name=asset.file_name,
            size_variant=asset.size_variant.value,
            key=key,
            content_type=asset.content_type,
            byte_length=asset.byte_length,
        )
        db_session.add(record)
    else:
        record.key = key
        record.content_type = asset.content_type
        record.byte_length = asset.byte_length
    return record


async def delete_asset_record(db_session: AsyncSession, asset: Asset) -> None:
    """Drop the row for ``asset`` if there is one. Does not commit."""
    await db_session.execute(delete(AssetRecord).where(_identity_filter(asset)))


class SqlAssetRepository:
    """Asset metadata store backed by SQLAlchemy."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    async def list_for_owner(
        self,
        tenant_code: str,
        content_category: ContentCategory,
        owner_id: str,
    ) -> list[Asset]:
        async with self._session_maker() as session:
            records = await list_owner_records(session, tenant_code, content_category, owner_id)
            return [record_to_asset(record) for record in records]

    async def record_outcome(self, outcomes: Sequence[AssetOutcome]) -> None:
        """Upsert rows for assets that exist, drop rows for those that do not."""
        async with self._session_maker() as session:
            for outcome in outcomes:
                if outcome.exists:
                    await upsert_asset_record(session, outcome.asset, outcome.key)
                else:
                    await delete_asset_record(session, outcome.asset)
            await session.commit()
