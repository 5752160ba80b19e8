from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

_ASYNC_SQLITE = "sqlite+aiosqlite"


def normalize_database_url_for_async(database_url: str) -> str:
    """The local store always runs on aiosqlite: `sqlite://...` -> `sqlite+aiosqlite://...`."""
    url = (database_url or "").strip()
    if url.startswith("sqlite://"):
        return _ASYNC_SQLITE + url[len("sqlite") :]
    return url


def normalize_database_url_for_alembic(database_url: str) -> str:
    """Alembic migrates through a sync engine; drop the async driver."""
    url = (database_url or "").strip()
    if url.startswith(_ASYNC_SQLITE + "://"):
        return "sqlite" + url[len(_ASYNC_SQLITE) :]
    return url


def extract_sqlite_db_file_path(database_url: str) -> Path | None:
    """File behind a sqlite URL; None for in-memory and non-sqlite URLs."""
    try:
        url = make_url((database_url or "").strip())
    except ArgumentError:
        return None
    if url.get_backend_name() != "sqlite":
        return None
    database = url.database
    if not database or database == ":memory:" or database.startswith("file::memory:"):
        return None
    return Path(database)


def ensure_sqlite_parent_dir(database_url: str) -> None:
    # The default `./.data/flow-notes.db` lives in a directory a fresh checkout lacks.
    path = extract_sqlite_db_file_path(database_url)
    if path is None or str(path.parent) in {"", "."}:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
