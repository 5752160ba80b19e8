from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from flow_notes.config import settings
from flow_notes.db_urls import ensure_sqlite_parent_dir, normalize_database_url_for_async

# Keyed by DATABASE_URL so tests can point settings.database_url at a fresh file.
_engines: dict[str, AsyncEngine] = {}


def _create_async_engine(database_url: str) -> AsyncEngine:
    ensure_sqlite_parent_dir(database_url)
    url = normalize_database_url_for_async(database_url)
    return create_async_engine(url, echo=False, pool_pre_ping=True)


def get_engine() -> AsyncEngine:
    engine = _engines.get(settings.database_url)
    if engine is None:
        engine = _create_async_engine(settings.database_url)
        _engines[settings.database_url] = engine
    return engine


def reset_engine_cache() -> None:
    _engines.clear()


async def dispose_engines() -> None:
    """Close pooled connections (and aiosqlite worker threads) of every cached engine."""
    engines = list(_engines.values())
    _engines.clear()
    for engine in engines:
        await engine.dispose()


async def init_db() -> None:
    # Local stores are created on first use; Alembic migrations upgrade existing ones.
    from flow_notes import models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    session_maker = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session
