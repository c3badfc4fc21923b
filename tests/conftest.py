"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests and a tmp_path log root for file state.
"""
import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from stockloyal.config import Settings
from stockloyal.database import Base
import stockloyal.models  # noqa: F401  (registers tables on Base.metadata)

TEST_SECRET = "test_webhook_api_key_123456"


def make_settings(tmp_path, **overrides) -> Settings:
    """Settings isolated from the process environment and .env file."""
    values = {
        "webhook_secret": TEST_SECRET,
        "app_env": "staging",
        "webhook_log_dir": str(tmp_path / "logs"),
        "webhook_rate_limit": 60,
        "database_url": "",
        "state_backend": "file",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def production_settings(tmp_path):
    return make_settings(tmp_path, app_env="production")


@pytest.fixture
async def session_factory():
    """In-memory SQLite session factory with the schema created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    """In-memory SQLite database session for tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("stockloyal.utils.dedup.get_redis") as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.ping = AsyncMock(return_value=True)
        redis_mock.eval = AsyncMock(return_value=[1, 1])
        mock.return_value = redis_mock
        yield redis_mock
