"""
Async SQLAlchemy engine and session factory.

PostgreSQL via ``asyncpg`` in production.  A ``sqlite+aiosqlite`` URL is
accepted for local runs; SQLite gets no connection-pool sizing.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from todaride.config import settings


def build_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.db_echo)
    return create_async_engine(
        url,
        echo=settings.db_echo,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
    )


engine = build_engine(settings.database_url)

# expire_on_commit=False: read models are built from rows after commit
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def dispose_engine() -> None:
    await engine.dispose()


class Base(DeclarativeBase):
    """Declarative base for users, rides, chats and messages."""
