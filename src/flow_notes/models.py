# basedpyright: reportAssignmentType=false
# basedpyright: reportIncompatibleVariableOverride=false

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Column, Text
from sqlalchemy.types import JSON as SAJSON
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


QUEUE_ACTIONS = ("create", "update", "delete")


class LocalNote(SQLModel, table=True):
    __tablename__ = "notes"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    local_id: str = Field(primary_key=True, min_length=1, max_length=36)
    # Populated once the remote store accepts the record; unique among non-null values.
    remote_id: Optional[str] = Field(default=None, index=True, unique=True, max_length=128)

    title: str = Field(default="", index=True, max_length=500)
    content: str = Field(default="", sa_column=Column(Text, nullable=False))

    # Authoritative for last-write-wins comparison.
    last_modified_ms: int = Field(default=0, index=True)
    synced: bool = Field(default=False, index=True)
    owner_id: Optional[str] = Field(default=None, index=True, max_length=128)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class SyncQueueEntry(SQLModel, table=True):
    __tablename__ = "sync_queue"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    entry_id: Optional[int] = Field(default=None, primary_key=True)
    # Null only for creates that are not tied to any local record.
    local_id: Optional[str] = Field(default=None, index=True, max_length=36)
    action: str = Field(max_length=10)  # create / update / delete

    # {title, content, last_modified_ms, remote_id}
    payload_json: dict[str, Any] = Field(default_factory=dict, sa_column=Column(SAJSON))

    enqueued_at_ms: int = Field(index=True)
    retry_count: int = Field(default=0)


class CachedUser(SQLModel, table=True):
    __tablename__ = "user"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    user_id: str = Field(primary_key=True, min_length=1, max_length=128)
    username: Optional[str] = Field(default=None, max_length=200)
    token: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    updated_at: datetime = Field(default_factory=utc_now)


class SyncStateRow(SQLModel, table=True):
    __tablename__ = "sync_state"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    key: str = Field(primary_key=True, min_length=1, max_length=64)
    value_ms: int = Field(default=0)
    updated_at: datetime = Field(default_factory=utc_now)
