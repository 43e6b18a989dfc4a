"""Async engine and session factory for the asset metadata store."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from catalog_assets.config import DatabaseConfig
from catalog_assets.db.base import Base
from catalog_assets.lib import observability


def create_engine(config: DatabaseConfig) -> AsyncEngine:
    engine = create_async_engine(config.url, echo=config.echo)
    observability.instrument_sqlalchemy(engine)
    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    """Create the metadata tables if they do not exist yet."""
    import catalog_assets.db.models  # noqa: F401 - register models on Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
