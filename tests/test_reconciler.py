from __future__ import annotations

from pathlib import Path

import pytest

from flow_notes.db import session_scope
from flow_notes.integrations.notes_remote_api import RemoteConflict, RemoteNote
from flow_notes.models import LocalNote
from flow_notes.repositories import notes_repo
from flow_notes.services.reconciler import (
    ReconcileContext,
    reconcile_notes,
    reconcile_remote_note,
    resolve_conflicts,
)


def _remote(remote_id: str = "r1", **kw: object) -> RemoteNote:
    data: dict[str, object] = {
        "remote_id": remote_id,
        "title": "T",
        "content": "server",
        "last_modified_ms": 100,
        "owner_id": "u1",
    }
    data.update(kw)
    return RemoteNote(**data)  # pyright: ignore[reportArgumentType]


async def _seed(*notes: LocalNote) -> None:
    async with session_scope() as session:
        for note in notes:
            await notes_repo.upsert_note(session, note)
        await session.commit()


async def _all() -> list[LocalNote]:
    async with session_scope() as session:
        return await notes_repo.list_notes(session)


@pytest.mark.anyio
async def test_unknown_remote_note_is_inserted_once(local_store: Path):
    remote = _remote()
    ctx = ReconcileContext()
    async with session_scope() as session:
        assert await reconcile_remote_note(session, remote, ctx) == "inserted"
        await session.commit()
    async with session_scope() as session:
        # Reconciling the same record again changes nothing.
        assert await reconcile_remote_note(session, remote, ctx) == "updated"
        await session.commit()

    notes = await _all()
    assert len(notes) == 1
    assert (notes[0].remote_id, notes[0].content, notes[0].synced) == ("r1", "server", True)
    assert notes[0].owner_id == "u1"


@pytest.mark.anyio
async def test_create_echo_adopts_identity_by_client_id(local_store: Path):
    await _seed(
        LocalNote(local_id="n1", title="Same", content="mine", last_modified_ms=100),
        LocalNote(local_id="n2", title="Same", content="other", last_modified_ms=100),
    )
    async with session_scope() as session:
        outcome = await reconcile_remote_note(
            session, _remote(title="Same", content="mine", client_id="n2"), ReconcileContext()
        )
        await session.commit()
    assert outcome == "adopted"

    by_id = {n.local_id: n for n in await _all()}
    assert by_id["n2"].remote_id == "r1"
    assert by_id["n2"].synced is True
    assert by_id["n1"].remote_id is None


@pytest.mark.anyio
async def test_create_echo_falls_back_to_exact_title(local_store: Path):
    await _seed(LocalNote(local_id="n1", title="Plan", content="draft", last_modified_ms=50))
    async with session_scope() as session:
        outcome = await reconcile_remote_note(
            session, _remote(title="Plan", content="draft"), ReconcileContext()
        )
        await session.commit()
    assert outcome == "adopted"

    notes = await _all()
    assert len(notes) == 1
    assert (notes[0].local_id, notes[0].remote_id, notes[0].synced) == ("n1", "r1", True)


@pytest.mark.anyio
async def test_foreign_client_id_is_inserted_not_matched_by_title(local_store: Path):
    await _seed(LocalNote(local_id="mine", title="Todo", content="my draft", last_modified_ms=500))
    ctx = ReconcileContext(pending_local_ids=frozenset({"mine"}))
    async with session_scope() as session:
        outcome = await reconcile_remote_note(
            session,
            _remote("R-other", title="Todo", content="theirs", client_id="other-device-note"),
            ctx,
        )
        await session.commit()
    assert outcome == "inserted"

    notes = await _all()
    assert len(notes) == 2
    by_remote = {n.remote_id: n for n in notes}
    assert by_remote[None].local_id == "mine"
    assert by_remote[None].content == "my draft"
    assert by_remote["R-other"].content == "theirs"
    assert by_remote["R-other"].synced is True


@pytest.mark.anyio
async def test_pending_newer_local_edit_is_kept(local_store: Path):
    await _seed(
        LocalNote(local_id="n1", remote_id="r1", title="T", content="typing...", last_modified_ms=500)
    )
    ctx = ReconcileContext(pending_local_ids=frozenset({"n1"}))
    async with session_scope() as session:
        outcome = await reconcile_remote_note(session, _remote(last_modified_ms=400), ctx)
        await session.commit()
    assert outcome == "kept_local"

    notes = await _all()
    assert (notes[0].content, notes[0].synced) == ("typing...", False)


@pytest.mark.anyio
async def test_pending_older_local_edit_loses_but_stays_unsynced(local_store: Path):
    await _seed(
        LocalNote(local_id="n1", remote_id="r1", title="T", content="stale", last_modified_ms=10)
    )
    ctx = ReconcileContext(pending_local_ids=frozenset({"n1"}))
    async with session_scope() as session:
        assert await reconcile_remote_note(session, _remote(), ctx) == "updated"
        await session.commit()

    notes = await _all()
    assert (notes[0].content, notes[0].synced) == ("server", False)


@pytest.mark.anyio
async def test_pending_remote_delete_is_not_resurrected(local_store: Path):
    ctx = ReconcileContext(pending_delete_remote_ids=frozenset({"r1"}))
    async with session_scope() as session:
        summary = await reconcile_notes(session, [_remote(), _remote("r2")], ctx)
        await session.commit()
    assert (summary.skipped, summary.inserted) == (1, 1)
    assert [n.remote_id for n in await _all()] == ["r2"]


@pytest.mark.anyio
async def test_conflicts_apply_server_version_or_report_rejection(local_store: Path):
    await _seed(
        LocalNote(local_id="n1", remote_id="r1", title="T", content="mine", last_modified_ms=10)
    )
    conflicts = [
        RemoteConflict(
            remote_id="r1",
            reason="Server version is newer",
            server_note=_remote(content="theirs", last_modified_ms=99),
        ),
        RemoteConflict(remote_id="r7", reason="Unauthorized"),
    ]
    async with session_scope() as session:
        summary = await resolve_conflicts(session, conflicts, ReconcileContext())
        await session.commit()

    assert summary.server_wins == 1
    assert [(r.remote_id, r.reason) for r in summary.rejections] == [("r7", "Unauthorized")]
    notes = await _all()
    assert (notes[0].content, notes[0].last_modified_ms, notes[0].synced) == ("theirs", 99, True)
