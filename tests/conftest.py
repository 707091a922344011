"""Shared pytest fixtures for API, store, cache and analytics tests.

Store-backed tests run against a file-backed SQLite database per test, so no
external services are needed.
"""

from typing import AsyncGenerator
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

import shortlinks.models  # noqa: F401
from shortlinks.analytics import AnalyticsCapture
from shortlinks.cache import MemoryLinkCache
from shortlinks.config import Settings, get_settings
from shortlinks.database import Base, get_db
from shortlinks.dependencies import ServiceManager
from shortlinks.main import app
from shortlinks.store import LinkStore


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def mock_logger() -> MagicMock:
    logger = MagicMock()
    logger.info = MagicMock()
    logger.debug = MagicMock()
    logger.warning = MagicMock()
    logger.error = MagicMock()
    return logger


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shortlinks.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db_session: AsyncSession) -> LinkStore:
    return LinkStore(db_session)


@pytest.fixture
def link_cache() -> MemoryLinkCache:
    return MemoryLinkCache(max_capacity=100, ttl_seconds=60)


@pytest.fixture
def capture(session_factory, link_cache, mock_logger) -> AnalyticsCapture:
    return AnalyticsCapture(session_factory, link_cache, mock_logger)


@pytest_asyncio.fixture(scope="function")
async def service_manager(
    settings: Settings,
    link_cache: MemoryLinkCache,
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[ServiceManager, None]:
    manager = ServiceManager()
    await manager.cleanup()
    await manager.initialize(settings=settings, cache=link_cache, session_factory=session_factory)
    yield manager
    await manager.cleanup()


@pytest_asyncio.fixture(scope="function")
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    service_manager: ServiceManager,
) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def create_link(client: AsyncClient):
    async def _create(url: str = "https://www.example.com", **extra) -> dict:
        response = await client.post("/api/v1/links", json={"url": url, **extra})
        assert response.status_code == 201, response.text
        return response.json()

    return _create
