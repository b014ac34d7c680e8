import asyncio
import io

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from filekeeper.models import Base
from filekeeper.services.cleanup_queue import CleanupQueueStore
from filekeeper.services.file_metadata import FileMetadataStore
from filekeeper.services.file_storage import FileStorageService
from filekeeper.services.transaction import FileTransactionService


def _make_engine(tmp_path):
    # NullPool: every checkout opens a fresh aiosqlite connection on the current loop
    return create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/filekeeper.db", poolclass=NullPool)


async def _create_tables(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _make_png(width=400, height=300, color=(200, 40, 40)) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (width, height), color).save(out, format="PNG")
    return out.getvalue()


@pytest.fixture
def png_bytes():
    return _make_png()


@pytest.fixture
def storage(tmp_path):
    return FileStorageService(tmp_path / "uploads", url_prefix="/uploads", timeout=5)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = _make_engine(tmp_path)
    await _create_tables(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def metadata(session_factory):
    return FileMetadataStore(session_factory)


@pytest.fixture
def cleanup_queue(session_factory):
    return CleanupQueueStore(session_factory)


@pytest.fixture
def service(storage, metadata, cleanup_queue):
    return FileTransactionService(storage, metadata, cleanup_queue, orphan_grace_minutes=0)


@pytest.fixture
def api(tmp_path):
    """TestClient over the real app with stores bound to a throwaway database.

    The client is not entered as a context manager, so the app lifespan
    (table creation against the configured server database) never runs.
    """
    from filekeeper.dependencies import get_transaction_service
    from filekeeper.main import app

    engine = _make_engine(tmp_path)
    asyncio.run(_create_tables(engine))
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    api_service = FileTransactionService(
        FileStorageService(tmp_path / "uploads", url_prefix="/uploads", timeout=5),
        FileMetadataStore(factory),
        CleanupQueueStore(factory),
        orphan_grace_minutes=0,
    )

    app.dependency_overrides[get_transaction_service] = lambda: api_service
    yield TestClient(app), api_service
    app.dependency_overrides.clear()
    asyncio.run(engine.dispose())
