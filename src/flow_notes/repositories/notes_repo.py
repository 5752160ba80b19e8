from __future__ import annotations

from typing import cast

from sqlalchemy.exc import IntegrityError
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from flow_notes.errors import IdentityConflictError
from flow_notes.models import LocalNote, utc_now


async def get_note(session: AsyncSession, local_id: str) -> LocalNote | None:
    return await session.get(LocalNote, local_id)


async def find_by_remote_id(session: AsyncSession, remote_id: str) -> LocalNote | None:
    result = await session.exec(select(LocalNote).where(LocalNote.remote_id == remote_id))
    return result.first()


async def find_by_title_unsynced(session: AsyncSession, title: str) -> LocalNote | None:
    """Oldest unsynced note with this exact title that has no remote identity yet."""
    result = await session.exec(
        select(LocalNote)
        .where(LocalNote.title == title)
        .where(cast(ColumnElement[object], cast(object, LocalNote.remote_id)).is_(None))
        .where(col(LocalNote.synced).is_(False))
        .order_by(col(LocalNote.created_at).asc())
    )
    return result.first()


async def upsert_note(session: AsyncSession, note: LocalNote) -> str:
    """Insert or update `note` by local id; return the local id.

    Raises IdentityConflictError if another record already holds `note.remote_id`.
    """
    if note.remote_id is not None:
        with session.no_autoflush:
            holder = await find_by_remote_id(session, note.remote_id)
        if holder is not None and holder.local_id != note.local_id:
            raise IdentityConflictError(
                f"remote_id={note.remote_id} already mapped to local_id={holder.local_id}"
            )

    note.updated_at = utc_now()
    merged = await session.merge(note)
    try:
        await session.flush()
    except IntegrityError as e:
        raise IdentityConflictError(f"upsert failed for local_id={note.local_id}: {e}") from e
    return merged.local_id


async def delete_note(session: AsyncSession, local_id: str) -> None:
    note = await session.get(LocalNote, local_id)
    if note is not None:
        await session.delete(note)
        await session.flush()


async def list_notes(session: AsyncSession, *, owner_id: str | None = None) -> list[LocalNote]:
    """All notes, most recently modified first."""
    stmt = select(LocalNote)
    if owner_id is not None:
        stmt = stmt.where(LocalNote.owner_id == owner_id)
    stmt = stmt.order_by(col(LocalNote.last_modified_ms).desc(), col(LocalNote.local_id))
    return list((await session.exec(stmt)).all())
