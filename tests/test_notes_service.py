from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

from flow_notes.db import session_scope
from flow_notes.errors import LocalStoreError, NoteNotFoundError
from flow_notes.models import LocalNote
from flow_notes.repositories import notes_repo, sync_queue_repo
from flow_notes.services import notes_service


@pytest.mark.anyio
async def test_create_note_writes_note_and_queue_entry(local_store: Path):
    calls: list[str] = []
    async with session_scope() as session:
        note = await notes_service.create_note(
            session=session,
            title="Groceries",
            content="milk",
            owner_id="u1",
            last_modified_ms=1000,
            on_change=lambda: calls.append("changed"),
        )

    assert calls == ["changed"]
    async with session_scope() as session:
        stored = await notes_service.get_note(session=session, local_id=note.local_id)
        assert stored.synced is False
        assert stored.remote_id is None
        assert stored.owner_id == "u1"

        entries = await sync_queue_repo.drain_ordered(session)
        assert [(e.local_id, e.action) for e in entries] == [(note.local_id, "create")]
        assert entries[0].payload_json == {
            "title": "Groceries",
            "content": "milk",
            "last_modified_ms": 1000,
            "remote_id": None,
        }


@pytest.mark.anyio
async def test_update_note_marks_unsynced_and_enqueues(local_store: Path):
    async with session_scope() as session:
        await notes_repo.upsert_note(
            session,
            LocalNote(local_id="n1", remote_id="r1", title="a", content="x", synced=True),
        )
        await session.commit()

    async with session_scope() as session:
        note = await notes_service.update_note(
            session=session, local_id="n1", content="y", last_modified_ms=2000
        )
        assert (note.title, note.content, note.synced) == ("a", "y", False)

    async with session_scope() as session:
        entries = await sync_queue_repo.drain_ordered(session)
        assert [e.action for e in entries] == ["update"]
        assert entries[0].payload_json["remote_id"] == "r1"
        assert entries[0].payload_json["last_modified_ms"] == 2000


@pytest.mark.anyio
async def test_delete_never_synced_note_drops_its_queue(local_store: Path):
    calls: list[str] = []
    async with session_scope() as session:
        note = await notes_service.create_note(session=session, title="tmp")
        await notes_service.update_note(session=session, local_id=note.local_id, content="c")
        await notes_service.delete_note(
            session=session, local_id=note.local_id, on_change=lambda: calls.append("x")
        )

    assert calls == []
    async with session_scope() as session:
        assert await notes_repo.get_note(session, note.local_id) is None
        assert await notes_service.pending_count(session=session) == 0


@pytest.mark.anyio
async def test_delete_synced_note_enqueues_remote_delete(local_store: Path):
    async with session_scope() as session:
        await notes_repo.upsert_note(
            session, LocalNote(local_id="n1", remote_id="r1", title="a", synced=True)
        )
        await session.commit()

    async with session_scope() as session:
        await notes_service.delete_note(session=session, local_id="n1")

    async with session_scope() as session:
        assert await notes_service.list_notes(session=session) == []
        entries = await sync_queue_repo.drain_ordered(session)
        assert [(e.local_id, e.action) for e in entries] == [("n1", "delete")]
        assert entries[0].payload_json["remote_id"] == "r1"


@pytest.mark.anyio
async def test_missing_note_raises_not_found(local_store: Path):
    async with session_scope() as session:
        with pytest.raises(NoteNotFoundError):
            await notes_service.update_note(session=session, local_id="nope", content="x")
        with pytest.raises(NoteNotFoundError):
            await notes_service.delete_note(session=session, local_id="nope")


@pytest.mark.anyio
async def test_failed_enqueue_rolls_back_the_edit(local_store: Path, monkeypatch: pytest.MonkeyPatch):
    async def _broken_enqueue(*_args: object, **_kwargs: object) -> int:
        raise OperationalError("INSERT INTO sync_queue", {}, Exception("disk I/O error"))

    monkeypatch.setattr(sync_queue_repo, "enqueue", _broken_enqueue)

    async with session_scope() as session:
        with pytest.raises(LocalStoreError):
            await notes_service.create_note(session=session, title="lost")

    async with session_scope() as session:
        assert await notes_service.list_notes(session=session) == []
