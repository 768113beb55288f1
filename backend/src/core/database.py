"""
Member Portal Workflow - Database
=================================

Async SQLAlchemy engine, session factory and request-scoped sessions.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from src.core.config import settings


class Base(DeclarativeBase):
    """Declarative base shared by every portal table."""
    pass


# ==========================================================================
# Engine
# ==========================================================================

def create_engine(url: str | None = None) -> AsyncEngine:
    """
    Build the async engine for ``url`` (defaults to ``DATABASE_URL``).

    SQLite gets no pool sizing; PostgreSQL gets a pre-pinged pool.
    """
    url = url or settings.DATABASE_URL
    if "sqlite" in url:
        return create_async_engine(
            url,
            echo=settings.DATABASE_ECHO,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(
        url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        echo=settings.DATABASE_ECHO,
        pool_pre_ping=True,
    )


engine = create_engine()

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


# ==========================================================================
# Session Dependency
# ==========================================================================

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    One session per request.

    Usage:
        @router.get("/workflows")
        async def list_workflows(db: AsyncSession = Depends(get_db)):
            ...

    Work not committed by the endpoint is committed on exit; any exception
    rolls the session back and propagates.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ==========================================================================
# Lifecycle
# ==========================================================================

async def init_db() -> None:
    """Create tables that do not exist yet."""
    from src.core import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping_db() -> bool:
    """Return True when the database answers a trivial query."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True


async def close_db() -> None:
    """Dispose of pooled connections."""
    await engine.dispose()
