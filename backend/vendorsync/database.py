"""SQLAlchemy async engine and session management."""

import sys
from sqlalchemy import create_engine, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from vendorsync.config import settings

# Async engine for FastAPI and the sync pipeline
_async_kw: dict = {"echo": False}
if not settings.is_sqlite:
    _async_kw.update(pool_size=20, max_overflow=10, pool_pre_ping=True)

async_engine = create_async_engine(settings.DATABASE_URL, **_async_kw)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Sync engine for Celery tasks
_sync_kw: dict = {"echo": False}
if not settings.is_sqlite:
    _sync_kw.update(pool_size=10, max_overflow=5, pool_pre_ping=True)

sync_engine = create_engine(settings.sync_database_url, **_sync_kw)
SyncSessionLocal = sessionmaker(bind=sync_engine)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    """Dependency that yields an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def seed_vendors(session: AsyncSession) -> int:
    """Insert the built-in vendors that are not in the table yet."""
    from vendorsync.models import Vendor, BUILTIN_VENDORS

    result = await session.execute(select(Vendor.vendor_id))
    existing = set(result.scalars().all())
    added = 0
    for data in BUILTIN_VENDORS:
        if data["vendor_id"] in existing:
            continue
        session.add(Vendor(**data))
        added += 1
    await session.commit()
    return added


async def init_db():
    """Create all tables and seed the built-in vendors."""
    async with async_engine.begin() as conn:
        from vendorsync.models import Vehicle, Vendor, VendorSyncLog, SystemLog  # noqa
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as session:
        await seed_vendors(session)


if __name__ == "__main__":
    import asyncio

    if "--init" in sys.argv:
        asyncio.run(init_db())
        print("Database tables created successfully.")
