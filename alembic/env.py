"""Alembic environment for notekeeper.

Migrations run on the same async drivers as the application (aiosqlite or
psycopg); the sync migration functions are driven through
``AsyncConnection.run_sync``.
"""

from __future__ import annotations

import os
from logging.config import fileConfig

import anyio
from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel

from notekeeper import models  # noqa: F401  # registers tables on SQLModel.metadata
from notekeeper.config import settings
from notekeeper.db_urls import async_database_url, ensure_sqlite_parent_dir

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = SQLModel.metadata


def _database_url() -> str:
    # DATABASE_URL from the environment wins over .env so deploys can point elsewhere.
    raw = os.getenv("DATABASE_URL") or settings.database_url
    ensure_sqlite_parent_dir(raw)
    return async_database_url(raw)


def _configure(**kwargs: object) -> None:
    context.configure(target_metadata=target_metadata, compare_type=True, **kwargs)


def _migrate(connection: Connection) -> None:
    # SQLite cannot ALTER most constraints in place.
    _configure(connection=connection, render_as_batch=connection.dialect.name == "sqlite")
    with context.begin_transaction():
        context.run_migrations()


async def _migrate_online() -> None:
    engine = create_async_engine(_database_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    _configure(url=_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()
else:
    anyio.run(_migrate_online)
