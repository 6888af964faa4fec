"""Pytest configuration: settings, database, cache and blob fixtures rooted in tmp_path."""

import pytest
import pytest_asyncio
from fakeredis import FakeServer
from fakeredis import aioredis as fake_aioredis

from filevault.config import Settings


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Test settings: sqlite and blobs under tmp_path, no rate limits, no SMTP."""
    return Settings(
        db_path=tmp_path / "test.db",
        storage_base_path=tmp_path / "blobs",
        redis_url="redis://unused:6379/0",
        rate_limit_enabled=False,
        smtp_host="",
        smtp_from="",
        worker_poll_seconds=0.01,
        log_level="DEBUG",
    )


@pytest.fixture
def cache():
    """In-process redis shared by everything in one test."""
    return fake_aioredis.FakeRedis(server=FakeServer(), decode_responses=True)


@pytest.fixture
def blobs(settings):
    from filevault.files.storage import BlobStorage

    storage = BlobStorage(settings.storage_base_path)
    storage.ensure_root()
    return storage


@pytest_asyncio.fixture
async def database(settings):
    """Fresh database with tables created; disposed after the test."""
    from filevault.db.session import Database

    db = Database(settings)
    await db.init()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def make_user(database):
    """Factory registering a user and returning it (committed)."""
    from filevault.users.models import UserCreate
    from filevault.users.service import create_user

    async def _make(email: str = "bob@example.com", password: str = "s3cret-pass"):
        async with database.session() as session:
            return await create_user(session, UserCreate(email=email, password=password))

    return _make
