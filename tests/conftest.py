import os

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base + all models so metadata is complete
from reloop.models import Base

from reloop.main import app
from reloop.core.db import get_db
from reloop.services.realtime import hub

from fixtures_seed import listing, users  # noqa: F401


def _test_db_url(tmp_path) -> str:
    url = os.getenv("DATABASE_URL_TEST")
    if url:
        return url
    return f"sqlite+aiosqlite:///{tmp_path / 'reloop-test.db'}"


@pytest.fixture
async def async_engine(tmp_path):
    url = _test_db_url(tmp_path)
    # waiting writers must queue rather than fail when tests race requests
    connect_args = {"timeout": 30} if url.startswith("sqlite") else {}
    engine = create_async_engine(url, pool_pre_ping=True, connect_args=connect_args)
    try:
        # Fresh schema per test
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(bind=async_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    """
    HTTP client against the app. Every request gets its own session, so
    concurrent requests behave like separate API processes would.
    """
    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _isolated_hub():
    hub._subs.clear()
    yield
    hub._subs.clear()
