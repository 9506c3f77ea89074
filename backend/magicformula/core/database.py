"""
Database engine and session factory.

The ledger runs on SQLAlchemy's asyncio extension; SQLite (aiosqlite) by
default, any async driver URL works.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from magicformula.core.config import settings

Base = declarative_base()

engine = create_async_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create ledger tables if they do not exist yet."""
    # Import models so they register on Base.metadata
    import magicformula.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
