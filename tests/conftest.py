from __future__ import annotations

from collections.abc import AsyncGenerator, Iterator
from pathlib import Path

import pytest

from notekeeper.config import Settings, settings
from notekeeper.db import dispose_engine, init_db, reset_engine_cache


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
async def _dispose_engine_per_test(  # pyright: ignore[reportUnusedFunction]
    anyio_backend: object,  # noqa: ARG001
) -> AsyncGenerator[None, None]:
    # Close the cached AsyncEngine (aiosqlite worker thread) before the
    # per-test event loop is torn down.
    _ = anyio_backend
    yield
    await dispose_engine()


@pytest.fixture
def app_settings(tmp_path: Path) -> Iterator[Settings]:
    """Point the process-wide settings at throwaway storage for one test."""
    overrides: dict[str, object] = {
        "database_url": f"sqlite:///{tmp_path / 'test.db'}",
        "attachments_local_dir": str(tmp_path / "attachments"),
        "archive_queue_local_dir": str(tmp_path / "queue"),
        "storage_soft_delete": False,
        "max_attachments": 3,
        "max_notes": 10,
        "attachments_max_size_bytes": 25 * 1024 * 1024,
        "archive_worker_poll_seconds": 0.0,
        "archive_worker_timeout_seconds": 10.0,
        "s3_bucket": "",
        "sqs_queue_url": "",
        "sqs_endpoint_url": "",
    }
    old = {key: getattr(settings, key) for key in overrides}
    try:
        for key, value in overrides.items():
            setattr(settings, key, value)
        reset_engine_cache()
        yield settings
    finally:
        for key, value in old.items():
            setattr(settings, key, value)
        reset_engine_cache()


@pytest.fixture
async def db(app_settings: Settings) -> Settings:
    await init_db()
    return app_settings
