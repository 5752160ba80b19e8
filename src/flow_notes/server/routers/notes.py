from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status

from flow_notes.config import settings
from flow_notes.domain.sync_planner import plan_push_note
from flow_notes.schemas_sync import (
    NoteCreateRequest,
    NotePatchRequest,
    RemoteNoteOut,
    SyncConflictOut,
    SyncNoteIn,
    SyncPushRequest,
    SyncPushResponse,
)
from flow_notes.server.deps import get_current_user_id, get_note_store
from flow_notes.server.error_handlers import StaleNoteError
from flow_notes.server.note_store import InMemoryNoteStore, StoredNote
from flow_notes.sync_utils import clamp_client_ms, now_ms, parse_timestamp_ms

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notes"])

_TITLE_MAX = 500


def _client_ms(value: str | None) -> int:
    parsed = parse_timestamp_ms(value) if value else None
    if parsed is None:
        return now_ms()
    return clamp_client_ms(parsed, max_skew_seconds=settings.sync_max_client_clock_skew_seconds)


def _owned_note(store: InMemoryNoteStore, note_id: str, user_id: str) -> StoredNote:
    note = store.get(note_id)
    if note is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="note not found")
    if note.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="not your note")
    return note


def _title_problem(title: str) -> str | None:
    if not title.strip():
        return "Title is required"
    if len(title) > _TITLE_MAX:
        return "Title is too long"
    return None


@router.get("/health")
async def health() -> dict[str, bool]:
    return {"ok": True}


@router.get("/notes", response_model=list[RemoteNoteOut])
async def list_notes(
    user_id: str = Depends(get_current_user_id),
    store: InMemoryNoteStore = Depends(get_note_store),
) -> list[RemoteNoteOut]:
    return [n.to_out() for n in store.list_for_user(user_id)]


@router.post("/notes", response_model=RemoteNoteOut, status_code=status.HTTP_201_CREATED)
async def create_note(
    payload: NoteCreateRequest,
    user_id: str = Depends(get_current_user_id),
    store: InMemoryNoteStore = Depends(get_note_store),
) -> RemoteNoteOut:
    note = store.create(
        user_id=user_id,
        title=payload.title,
        content=payload.content,
        last_modified_ms=_client_ms(payload.last_modified),
        client_id=payload.client_id,
    )
    return note.to_out()


@router.patch("/notes/{note_id}", response_model=RemoteNoteOut)
async def patch_note(
    note_id: str,
    payload: NotePatchRequest,
    user_id: str = Depends(get_current_user_id),
    store: InMemoryNoteStore = Depends(get_note_store),
) -> RemoteNoteOut:
    note = _owned_note(store, note_id, user_id)
    incoming_ms = _client_ms(payload.last_modified)
    if incoming_ms < note.last_modified_ms:
        raise StaleNoteError(note.to_out())
    store.update(
        note, title=payload.title, content=payload.content, last_modified_ms=incoming_ms
    )
    return note.to_out()


@router.delete("/notes/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_note(
    note_id: str,
    user_id: str = Depends(get_current_user_id),
    store: InMemoryNoteStore = Depends(get_note_store),
) -> Response:
    _owned_note(store, note_id, user_id)
    store.delete(note_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _push_one(
    store: InMemoryNoteStore, user_id: str, item: SyncNoteIn, out: SyncPushResponse
) -> None:
    problem = _title_problem(item.title)
    if problem is not None:
        out.conflicts.append(SyncConflictOut(id=item.id, reason=problem))
        return

    incoming_ms = _client_ms(item.last_modified)
    row = store.get(item.id) if item.id else None
    plan = plan_push_note(
        remote_id=item.id,
        user_id=user_id,
        incoming_last_modified_ms=incoming_ms,
        server_row=row.snapshot() if row is not None else None,
    )

    if plan.reject is not None:
        server = plan.reject.server
        out.conflicts.append(
            SyncConflictOut(
                id=plan.reject.remote_id,
                reason=plan.reject.reason,
                server_note=RemoteNoteOut.model_validate(server) if server is not None else None,
            )
        )
        return

    if plan.apply == "create":
        note = store.create(
            user_id=user_id,
            title=item.title,
            content=item.content,
            last_modified_ms=incoming_ms,
            client_id=item.client_id,
        )
        out.created.append(note.to_out())
        return

    assert row is not None
    store.update(row, title=item.title, content=item.content, last_modified_ms=incoming_ms)
    out.updated.append(row.to_out())


@router.post("/notes/sync", response_model=SyncPushResponse)
async def push_sync(
    payload: SyncPushRequest,
    user_id: str = Depends(get_current_user_id),
    store: InMemoryNoteStore = Depends(get_note_store),
) -> SyncPushResponse:
    out = SyncPushResponse()
    for item in payload.notes:
        _push_one(store, user_id, item, out)
    logger.info(
        "sync push user_id=%s created=%s updated=%s conflicts=%s",
        user_id,
        len(out.created),
        len(out.updated),
        len(out.conflicts),
    )
    return out


@router.get("/notes/sync/after/{timestamp}", response_model=list[RemoteNoteOut])
async def pull_changes_after(
    timestamp: str,
    user_id: str = Depends(get_current_user_id),
    store: InMemoryNoteStore = Depends(get_note_store),
) -> list[RemoteNoteOut]:
    since_ms = parse_timestamp_ms(timestamp)
    if since_ms is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid timestamp")
    return [n.to_out() for n in store.changed_since(user_id, since_ms)]
