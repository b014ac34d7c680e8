"""Async SQLAlchemy engine and session factory.

The metadata store and the cleanup queue each open short-lived sessions from
``async_session``:

    from filekeeper.database import async_session

    async with async_session() as db:
        record = await db.get(FileRecord, name)
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from filekeeper.config import settings


def _engine_options(url: str) -> dict:
    """Pool settings only apply to server databases; SQLite manages its own."""
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_timeout": settings.DATABASE_POOL_TIMEOUT,
        "pool_pre_ping": True,
    }


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    **_engine_options(settings.DATABASE_URL),
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency that yields an async DB session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()
