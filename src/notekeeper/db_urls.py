"""DATABASE_URL handling shared by the app engine and Alembic.

Both run on async drivers: aiosqlite for SQLite, psycopg (v3) for PostgreSQL.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import URL, make_url

_ASYNC_DRIVERS = {
    "sqlite": "sqlite+aiosqlite",
    "postgresql": "postgresql+psycopg",
}


def _parse(database_url: str) -> URL:
    raw = database_url.strip()
    # Heroku-style scheme; SQLAlchemy only knows "postgresql".
    if raw.startswith("postgres://"):
        raw = "postgresql://" + raw[len("postgres://") :]
    return make_url(raw)


def async_database_url(database_url: str) -> str:
    if not database_url.strip():
        return ""
    url = _parse(database_url)
    driver = _ASYNC_DRIVERS.get(url.get_backend_name())
    if driver is not None and url.drivername != driver:
        url = url.set(drivername=driver)
    return url.render_as_string(hide_password=False)


def sqlite_file_path(database_url: str) -> Path | None:
    """Local file behind a SQLite URL; None for in-memory or other backends."""
    if not database_url.strip():
        return None
    url = _parse(database_url)
    if url.get_backend_name() != "sqlite":
        return None
    if not url.database or url.database == ":memory:" or url.query.get("mode") == "memory":
        return None
    return Path(url.database)


def ensure_sqlite_parent_dir(database_url: str) -> None:
    path = sqlite_file_path(database_url)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
