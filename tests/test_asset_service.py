"""Tests for the SQLAlchemy-backed asset metadata repository."""

import io

import pytest
import pytest_asyncio

from catalog_assets.config import DatabaseConfig
from catalog_assets.db.services import asset_service
from catalog_assets.db.services.asset_service import SqlAssetRepository
from catalog_assets.db.session import create_engine, create_session_maker, create_tables
from catalog_assets.lib.reconcile import DesiredImage, ImageSetReconciler
from catalog_assets.lib.storage.models import AssetOutcome, ContentCategory, SizeVariant

from conftest import make_asset

PRODUCT = ContentCategory.PRODUCT_IMAGE
KEY = "T1/product-image/P100/front.jpg"


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_engine(DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'assets.db'}"))
    await create_tables(engine)
    yield create_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def sql_repository(session_maker):
    return SqlAssetRepository(session_maker)


class TestSqlAssetRepository:
    @pytest.mark.asyncio
    async def test_empty_owner(self, sql_repository):
        assert await sql_repository.list_for_owner("T1", PRODUCT, "P100") == []

    @pytest.mark.asyncio
    async def test_record_and_list(self, sql_repository):
        asset = make_asset(byte_length=42)

        await sql_repository.record_outcome([AssetOutcome(asset, KEY, exists=True)])

        assert await sql_repository.list_for_owner("T1", PRODUCT, "P100") == [asset]

    @pytest.mark.asyncio
    async def test_record_twice_updates_row(self, sql_repository, session_maker):
        await sql_repository.record_outcome([AssetOutcome(make_asset(byte_length=1), KEY, exists=True)])
        await sql_repository.record_outcome(
            [AssetOutcome(make_asset(byte_length=2, content_type="image/webp"), KEY, exists=True)]
        )

        listed = await sql_repository.list_for_owner("T1", PRODUCT, "P100")
        assert len(listed) == 1
        assert listed[0].byte_length == 2
        assert listed[0].content_type == "image/webp"

        async with session_maker() as session:
            records = await asset_service.list_owner_records(session, "T1", PRODUCT, "P100")
        assert [r.key for r in records] == [KEY]

    @pytest.mark.asyncio
    async def test_exists_false_drops_row(self, sql_repository):
        asset = make_asset()
        await sql_repository.record_outcome([AssetOutcome(asset, KEY, exists=True)])

        await sql_repository.record_outcome([AssetOutcome(asset, KEY, exists=False)])

        assert await sql_repository.list_for_owner("T1", PRODUCT, "P100") == []

    @pytest.mark.asyncio
    async def test_dropping_unknown_row_is_harmless(self, sql_repository):
        await sql_repository.record_outcome([AssetOutcome(make_asset(), KEY, exists=False)])
        assert await sql_repository.list_for_owner("T1", PRODUCT, "P100") == []

    @pytest.mark.asyncio
    async def test_list_is_scoped_to_owner(self, sql_repository):
        await sql_repository.record_outcome(
            [
                AssetOutcome(make_asset(owner_id="P1"), "T1/product-image/P1/front.jpg", exists=True),
                AssetOutcome(make_asset(owner_id="P10"), "T1/product-image/P10/front.jpg", exists=True),
                AssetOutcome(
                    make_asset(owner_id="P1", content_category=ContentCategory.DOWNLOAD),
                    "T1/download/P1/front.jpg",
                    exists=True,
                ),
            ]
        )

        listed = await sql_repository.list_for_owner("T1", PRODUCT, "P1")

        assert [(a.owner_id, a.content_category) for a in listed] == [("P1", PRODUCT)]

    @pytest.mark.asyncio
    async def test_variants_are_separate_rows(self, sql_repository):
        await sql_repository.record_outcome(
            [
                AssetOutcome(make_asset(), KEY, exists=True),
                AssetOutcome(
                    make_asset(size_variant=SizeVariant.SMALL), "T1/product-image/P100/S-front.jpg", exists=True
                ),
            ]
        )

        listed = await sql_repository.list_for_owner("T1", PRODUCT, "P100")

        assert [a.size_variant for a in listed] == [SizeVariant.ORIGINAL, SizeVariant.SMALL]


class TestReconcileWithSql:
    @pytest.mark.asyncio
    async def test_resave_keeps_metadata_in_step(self, manager, sql_repository):
        reconciler = ImageSetReconciler(manager, sql_repository)
        await reconciler.reconcile(
            "T1",
            PRODUCT,
            "P100",
            [DesiredImage("a.jpg", io.BytesIO(b"a")), DesiredImage("b.jpg", io.BytesIO(b"b"))],
        )

        result = await reconciler.reconcile(
            "T1",
            PRODUCT,
            "P100",
            [DesiredImage("a.jpg"), DesiredImage("c.jpg", io.BytesIO(b"cc"))],
        )

        assert (result.created, result.deleted, result.unchanged) == (1, 1, 1)
        listed = await sql_repository.list_for_owner("T1", PRODUCT, "P100")
        assert [(a.file_name, a.byte_length) for a in listed] == [("a.jpg", 1), ("c.jpg", 2)]
