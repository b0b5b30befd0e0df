"""Async engine, session factory and unit-of-work helpers."""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from digging.config import get_settings


@lru_cache
def get_engine() -> AsyncEngine:
    """Build the asyncpg engine sized from database settings."""
    database = get_settings().database
    return create_async_engine(
        database.url,
        pool_pre_ping=True,
        pool_size=database.pool_size,
        max_overflow=database.max_overflow,
        echo=database.echo,
    )


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    # Stores return snapshots after commit, so loaded rows must stay readable.
    return async_sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Open a session outside a request; rolls back whatever the caller left uncommitted."""
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session for FastAPI dependencies."""
    async with session_scope() as session:
        yield session


async def dispose_engine() -> None:
    await get_engine().dispose()
