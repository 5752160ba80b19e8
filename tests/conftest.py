from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from flow_notes.config import settings
from flow_notes.db import dispose_engines, init_db, reset_engine_cache


@pytest.fixture
def anyio_backend() -> str:
    # The code under test is asyncio-specific (asyncio tasks, aiosqlite).
    return "asyncio"


@pytest.fixture(autouse=True)
async def _dispose_engines_per_test(  # pyright: ignore[reportUnusedFunction]
    anyio_backend: object,  # noqa: ARG001
) -> AsyncGenerator[None, None]:
    # Dispose cached AsyncEngines (aiosqlite worker threads) while the
    # per-test event loop is still alive.
    _ = anyio_backend
    yield
    await dispose_engines()


@pytest.fixture
async def local_store(tmp_path: Path) -> AsyncGenerator[Path, None]:
    """A fresh sqlite durable store for one test."""
    old_db = settings.database_url
    db_path = tmp_path / "flow-notes.db"
    try:
        settings.database_url = f"sqlite:///{db_path}"
        reset_engine_cache()
        await init_db()
        yield db_path
    finally:
        await dispose_engines()
        settings.database_url = old_db


def pytest_sessionfinish(session: object, exitstatus: int) -> None:  # noqa: ARG001
    _ = session, exitstatus
    reset_engine_cache()
