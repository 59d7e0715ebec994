from __future__ import annotations

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from notekeeper.config import settings
from notekeeper.db_urls import async_database_url, ensure_sqlite_parent_dir


@lru_cache(maxsize=4)
def get_engine() -> AsyncEngine:
    # Cached per process; tests swap DATABASE_URL and call reset_engine_cache().
    ensure_sqlite_parent_dir(settings.database_url)
    url = async_database_url(settings.database_url)
    return create_async_engine(url, echo=False, pool_pre_ping=True)


def reset_engine_cache() -> None:
    get_engine.cache_clear()


async def dispose_engine() -> None:
    # Shut aiosqlite worker threads down while the event loop is still alive.
    if get_engine.cache_info().currsize == 0:
        return
    await get_engine().dispose()
    get_engine.cache_clear()


async def init_db() -> None:
    # Local/test bootstrap only; deployed databases are migrated with Alembic.
    from notekeeper import models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


def _session_maker() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    async with _session_maker()() as session:
        yield session


async def get_session() -> AsyncIterator[AsyncSession]:
    async with _session_maker()() as session:
        yield session
