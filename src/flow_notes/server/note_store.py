from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass

from flow_notes.domain.sync_planner import ServerRowSnapshot
from flow_notes.schemas_sync import RemoteNoteOut
from flow_notes.sync_utils import ms_to_iso, now_ms


@dataclass
class StoredNote:
    id: str
    user_id: str
    title: str
    content: str
    last_modified_ms: int
    created_at_ms: int
    updated_at_ms: int
    client_id: str | None = None

    def to_out(self) -> RemoteNoteOut:
        return RemoteNoteOut(
            id=self.id,
            user_id=self.user_id,
            title=self.title,
            content=self.content,
            last_modified=ms_to_iso(self.last_modified_ms),
            created_at=ms_to_iso(self.created_at_ms),
            updated_at=ms_to_iso(self.updated_at_ms),
            client_id=self.client_id,
        )

    def snapshot(self) -> ServerRowSnapshot:
        return ServerRowSnapshot(
            remote_id=self.id,
            owner_id=self.user_id,
            last_modified_ms=self.last_modified_ms,
            server=self.to_out().model_dump(by_alias=True),
        )


class InMemoryNoteStore:
    """Authoritative note collection of the reference server, keyed by note id."""

    def __init__(self, *, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._notes: dict[str, StoredNote] = {}

    def get(self, note_id: str) -> StoredNote | None:
        return self._notes.get(note_id)

    def find_by_client_id(self, user_id: str, client_id: str) -> StoredNote | None:
        for note in self._notes.values():
            if note.user_id == user_id and note.client_id == client_id:
                return note
        return None

    def list_for_user(self, user_id: str) -> list[StoredNote]:
        notes = [n for n in self._notes.values() if n.user_id == user_id]
        notes.sort(key=lambda n: n.last_modified_ms, reverse=True)
        return notes

    def changed_since(self, user_id: str, since_ms: int) -> list[StoredNote]:
        notes = [
            n for n in self._notes.values() if n.user_id == user_id and n.updated_at_ms >= since_ms
        ]
        notes.sort(key=lambda n: n.updated_at_ms)
        return notes

    def create(
        self,
        *,
        user_id: str,
        title: str,
        content: str,
        last_modified_ms: int,
        client_id: str | None = None,
    ) -> StoredNote:
        if client_id:
            # Replayed create (the client never saw our response): same record, no duplicate.
            existing = self.find_by_client_id(user_id, client_id)
            if existing is not None:
                if last_modified_ms >= existing.last_modified_ms:
                    self.update(
                        existing, title=title, content=content, last_modified_ms=last_modified_ms
                    )
                return existing

        ts = self._clock()
        note = StoredNote(
            id=uuid.uuid4().hex,
            user_id=user_id,
            title=title,
            content=content,
            last_modified_ms=last_modified_ms or ts,
            created_at_ms=ts,
            updated_at_ms=ts,
            client_id=client_id,
        )
        self._notes[note.id] = note
        return note

    def update(
        self,
        note: StoredNote,
        *,
        title: str | None = None,
        content: str | None = None,
        last_modified_ms: int | None = None,
    ) -> StoredNote:
        if title is not None:
            note.title = title
        if content is not None:
            note.content = content
        ts = self._clock()
        note.last_modified_ms = last_modified_ms or ts
        note.updated_at_ms = max(ts, note.updated_at_ms)
        return note

    def delete(self, note_id: str) -> bool:
        return self._notes.pop(note_id, None) is not None
