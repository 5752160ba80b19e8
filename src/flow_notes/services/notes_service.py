"""Local edit path: optimistic write to the durable store plus a queued mutation.

The note and its queue entry are committed together; a failed commit raises
LocalStoreError and the edit is not considered saved.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from flow_notes.errors import LocalStoreError, NoteNotFoundError
from flow_notes.models import LocalNote
from flow_notes.repositories import notes_repo, sync_queue_repo
from flow_notes.sync_utils import now_ms

logger = logging.getLogger(__name__)


OnChange = Callable[[], object]


def _payload(note: LocalNote) -> dict[str, Any]:
    return {
        "title": note.title,
        "content": note.content,
        "last_modified_ms": note.last_modified_ms,
        "remote_id": note.remote_id,
    }


async def _commit(session: AsyncSession, what: str) -> None:
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise LocalStoreError(f"{what}: {e}") from e


async def get_note(*, session: AsyncSession, local_id: str) -> LocalNote:
    note = await notes_repo.get_note(session, local_id)
    if note is None:
        raise NoteNotFoundError(local_id)
    return note


async def list_notes(*, session: AsyncSession, owner_id: str | None = None) -> list[LocalNote]:
    return await notes_repo.list_notes(session, owner_id=owner_id)


async def pending_count(*, session: AsyncSession) -> int:
    return await sync_queue_repo.count_entries(session)


async def create_note(
    *,
    session: AsyncSession,
    title: str,
    content: str = "",
    owner_id: str | None = None,
    last_modified_ms: int | None = None,
    on_change: OnChange | None = None,
) -> LocalNote:
    note = LocalNote(
        local_id=str(uuid.uuid4()),
        remote_id=None,
        title=title,
        content=content,
        last_modified_ms=last_modified_ms or now_ms(),
        synced=False,
        owner_id=owner_id,
    )
    try:
        await notes_repo.upsert_note(session, note)
        await sync_queue_repo.enqueue(
            session, local_id=note.local_id, action="create", payload=_payload(note)
        )
    except SQLAlchemyError as e:
        await session.rollback()
        raise LocalStoreError(f"create note: {e}") from e
    await _commit(session, "create note")

    if on_change is not None:
        on_change()
    return note


async def update_note(
    *,
    session: AsyncSession,
    local_id: str,
    title: str | None = None,
    content: str | None = None,
    last_modified_ms: int | None = None,
    on_change: OnChange | None = None,
) -> LocalNote:
    note = await get_note(session=session, local_id=local_id)
    if title is not None:
        note.title = title
    if content is not None:
        note.content = content
    note.last_modified_ms = last_modified_ms or now_ms()
    note.synced = False

    try:
        await notes_repo.upsert_note(session, note)
        await sync_queue_repo.enqueue(
            session, local_id=note.local_id, action="update", payload=_payload(note)
        )
    except SQLAlchemyError as e:
        await session.rollback()
        raise LocalStoreError(f"update note: {e}") from e
    await _commit(session, "update note")

    if on_change is not None:
        on_change()
    return note


async def delete_note(
    *,
    session: AsyncSession,
    local_id: str,
    on_change: OnChange | None = None,
) -> None:
    """Remove the local row; queue a remote delete only if the server knows the note."""
    note = await get_note(session=session, local_id=local_id)
    remote_id = note.remote_id
    try:
        await notes_repo.delete_note(session, local_id)
        if remote_id is None:
            # Never synced: nothing to tell the server, drop what was queued for it.
            await sync_queue_repo.remove_for_local_id(session, local_id)
        else:
            await sync_queue_repo.enqueue(
                session,
                local_id=local_id,
                action="delete",
                payload={"remote_id": remote_id, "last_modified_ms": now_ms()},
            )
    except SQLAlchemyError as e:
        await session.rollback()
        raise LocalStoreError(f"delete note: {e}") from e
    await _commit(session, "delete note")
    logger.debug("deleted local_id=%s remote_id=%s", local_id, remote_id)

    if remote_id is not None and on_change is not None:
        on_change()
