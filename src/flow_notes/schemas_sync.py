from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    # JSON payloads use camelCase keys (lastModified, serverNote, clientId).
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncNoteIn(_WireModel):
    id: str | None = Field(default=None, min_length=1, max_length=128)
    # Idempotency token: the client's local id, echoed back on created records.
    client_id: str | None = Field(default=None, max_length=36)
    # Validated per note by the server so one bad note cannot fail the whole batch.
    title: str = ""
    content: str = ""
    last_modified: str | None = None


class SyncPushRequest(_WireModel):
    notes: list[SyncNoteIn] = Field(default_factory=list)


class NoteCreateRequest(_WireModel):
    title: str = Field(min_length=1, max_length=500)
    content: str = ""
    client_id: str | None = Field(default=None, max_length=36)
    last_modified: str | None = None


class NotePatchRequest(_WireModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    content: str | None = None
    last_modified: str | None = None


class RemoteNoteOut(_WireModel):
    id: str
    user_id: str
    title: str
    content: str
    last_modified: str
    created_at: str
    updated_at: str
    client_id: str | None = None


class SyncConflictOut(_WireModel):
    id: str | None = None
    reason: str
    server_note: RemoteNoteOut | None = None


class SyncPushResponse(_WireModel):
    created: list[RemoteNoteOut] = Field(default_factory=list)
    updated: list[RemoteNoteOut] = Field(default_factory=list)
    conflicts: list[SyncConflictOut] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Error envelope of the reference remote store: {error, message, details}."""

    error: str
    message: str
    details: object | None = None
