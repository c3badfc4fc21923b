"""
Async SQLAlchemy database engine and session management.
Uses asyncpg driver for PostgreSQL async connections.
CRITICAL: expire_on_commit=False prevents lazy-loading issues in async contexts.
"""
import logging
from typing import AsyncGenerator, Callable, Optional
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

_engine = None
_async_session_factory = None


class Base(DeclarativeBase):
    pass


def is_database_configured() -> bool:
    """True when DATABASE_URL is set. The audit sink is skipped otherwise."""
    from stockloyal.config import get_settings
    return bool(get_settings().database_url)


def _get_engine():
    global _engine
    if _engine is None:
        from stockloyal.config import get_settings
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
            echo=settings.app_env == "development",
        )
    return _engine


def _get_session_factory():
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            _get_engine(), class_=AsyncSession, expire_on_commit=False
        )
    return _async_session_factory


def async_session_factory() -> AsyncSession:
    """Get a session for use outside FastAPI dependencies (sinks, workers)."""
    return _get_session_factory()()


async def dispose_engine() -> None:
    """Close pooled connections on shutdown."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _async_session_factory = None


async def get_optional_db() -> AsyncGenerator[Optional[AsyncSession], None]:
    """FastAPI dependency that yields an async session, or None when no database is configured."""
    if not is_database_configured():
        yield None
        return
    async with _get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def session_factory_for(settings) -> Optional[Callable[[], AsyncSession]]:
    """Session factory for the audit sink, or None when DATABASE_URL is unset."""
    return async_session_factory if settings.database_url else None
