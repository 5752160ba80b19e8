from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from sqlalchemy import func
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from flow_notes.models import QUEUE_ACTIONS, SyncQueueEntry
from flow_notes.sync_utils import now_ms


async def enqueue(
    session: AsyncSession,
    *,
    local_id: str | None,
    action: str,
    payload: dict[str, Any],
    enqueued_at_ms: int | None = None,
) -> int:
    if action not in QUEUE_ACTIONS:
        raise ValueError(f"invalid queue action: {action}")
    if local_id is None and action != "create":
        raise ValueError(f"{action} entries must reference a local note")

    entry = SyncQueueEntry(
        local_id=local_id,
        action=action,
        payload_json=dict(payload),
        enqueued_at_ms=enqueued_at_ms if enqueued_at_ms is not None else now_ms(),
        retry_count=0,
    )
    session.add(entry)
    await session.flush()
    assert entry.entry_id is not None
    return int(entry.entry_id)


async def drain_ordered(session: AsyncSession) -> list[SyncQueueEntry]:
    """Every queued entry, oldest first (ties broken by insertion order)."""
    result = await session.exec(
        select(SyncQueueEntry).order_by(
            col(SyncQueueEntry.enqueued_at_ms).asc(), col(SyncQueueEntry.entry_id).asc()
        )
    )
    return list(result.all())


async def _entries_by_ids(session: AsyncSession, entry_ids: list[int]) -> list[SyncQueueEntry]:
    if not entry_ids:
        return []
    result = await session.exec(
        select(SyncQueueEntry).where(col(SyncQueueEntry.entry_id).in_(entry_ids))
    )
    return list(result.all())


async def remove_entries(session: AsyncSession, entry_ids: Iterable[int]) -> None:
    for entry in await _entries_by_ids(session, list(entry_ids)):
        await session.delete(entry)
    await session.flush()


async def remove_for_local_id(session: AsyncSession, local_id: str) -> None:
    result = await session.exec(select(SyncQueueEntry).where(SyncQueueEntry.local_id == local_id))
    for entry in result.all():
        await session.delete(entry)
    await session.flush()


async def increment_retry(session: AsyncSession, entry_id: int) -> None:
    await increment_retries(session, [entry_id])


async def increment_retries(session: AsyncSession, entry_ids: Iterable[int]) -> None:
    for entry in await _entries_by_ids(session, list(entry_ids)):
        entry.retry_count += 1
        session.add(entry)
    await session.flush()


async def count_entries(session: AsyncSession) -> int:
    result = await session.exec(select(func.count()).select_from(SyncQueueEntry))
    return int(result.one())

