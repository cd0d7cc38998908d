"""docqueue database module.

SQL persistence for the PostgreSQL record store:
- SQLAlchemy 2.x ORM models
- Alembic migration configuration
- Async engine and session factory built from settings
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

if TYPE_CHECKING:
    from docqueue.core.config import DatabaseSettings

# Module-level session factory (initialized on first use)
_engine = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def to_async_url(url: str) -> str:
    """Rewrite a plain PostgreSQL URL to use the async psycopg driver."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    return url


def get_session_factory(database: DatabaseSettings) -> async_sessionmaker[AsyncSession]:
    """Get (creating on first use) the process-wide async session factory.

    Args:
        database: Connection settings.

    Returns:
        Session factory bound to the shared engine.
    """
    global _engine, _async_session_factory

    if _async_session_factory is not None:
        return _async_session_factory

    if not database.url:
        msg = "Database URL is not configured"
        raise RuntimeError(msg)

    _engine = create_async_engine(
        to_async_url(database.url),
        pool_size=database.pool_size,
        max_overflow=database.max_overflow,
        pool_timeout=database.pool_timeout,
        echo=database.echo,
        pool_pre_ping=True,
    )

    _async_session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return _async_session_factory


async def close_engine() -> None:
    """Close the database engine.

    Call this during application shutdown to clean up connections.
    """
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
