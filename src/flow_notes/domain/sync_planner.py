from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal


QueueAction = Literal["create", "update", "delete"]


@dataclass(frozen=True)
class QueuedMutation:
    """Detached snapshot of one mutation queue entry."""

    entry_id: int
    local_id: str | None
    action: QueueAction
    title: str
    content: str
    last_modified_ms: int
    remote_id: str | None
    enqueued_at_ms: int


@dataclass(frozen=True)
class PlannedDelete:
    local_id: str | None
    # None when the note never reached the server; nothing to transmit then.
    remote_id: str | None
    # The delete entry plus every other entry of the same note.
    entry_ids: tuple[int, ...]


@dataclass(frozen=True)
class PlannedUpsert:
    local_id: str | None
    latest: QueuedMutation
    remote_id: str | None
    entry_ids: tuple[int, ...]

    @property
    def action(self) -> QueueAction:
        return "update" if self.remote_id else "create"


@dataclass(frozen=True)
class SyncPlan:
    deletes: list[PlannedDelete]
    upserts: list[PlannedUpsert]

    @property
    def entry_ids(self) -> tuple[int, ...]:
        ids: list[int] = []
        for d in self.deletes:
            ids.extend(d.entry_ids)
        for u in self.upserts:
            ids.extend(u.entry_ids)
        return tuple(ids)

    @property
    def is_empty(self) -> bool:
        return not self.deletes and not self.upserts


def _queue_order(m: QueuedMutation) -> tuple[int, int]:
    return (m.enqueued_at_ms, m.entry_id)


def identity_key(m: QueuedMutation) -> str:
    # Creates that were never tied to a local record cannot be merged with anything.
    if m.local_id is None:
        return f"entry:{m.entry_id}"
    return f"local:{m.local_id}"


def plan_queue(entries: Sequence[QueuedMutation]) -> SyncPlan:
    """Collapse queued mutations into one transmission per note.

    - No DB/network/time.
    - Deterministic.

    A delete subsumes every other entry of its note. Otherwise the most recently
    enqueued create/update represents the note and older ones ride along so they
    are removed together once it is confirmed.
    """

    groups: dict[str, list[QueuedMutation]] = {}
    for m in sorted(entries, key=_queue_order):
        groups.setdefault(identity_key(m), []).append(m)

    deletes: list[PlannedDelete] = []
    upserts: list[PlannedUpsert] = []
    for group in groups.values():
        entry_ids = tuple(m.entry_id for m in group)
        remote_id = next((m.remote_id for m in reversed(group) if m.remote_id), None)

        if any(m.action == "delete" for m in group):
            deletes.append(
                PlannedDelete(local_id=group[0].local_id, remote_id=remote_id, entry_ids=entry_ids)
            )
            continue

        upserts.append(
            PlannedUpsert(
                local_id=group[-1].local_id,
                latest=group[-1],
                remote_id=remote_id,
                entry_ids=entry_ids,
            )
        )

    return SyncPlan(deletes=deletes, upserts=upserts)


def client_wins(client_last_modified_ms: int, server_last_modified_ms: int) -> bool:
    """Last-write-wins: the client's version stands unless it is strictly older."""
    return int(client_last_modified_ms or 0) >= int(server_last_modified_ms or 0)


# Server side of the same rule (used by the reference remote store).


@dataclass(frozen=True)
class ServerRowSnapshot:
    remote_id: str
    owner_id: str
    last_modified_ms: int
    # Minimal server snapshot for client reconciliation.
    server: dict[str, object]


@dataclass(frozen=True)
class Reject:
    remote_id: str
    reason: str
    server: dict[str, object] | None = None


@dataclass(frozen=True)
class PlanResult:
    apply: Literal["create", "update"] | None
    reject: Reject | None


def plan_push_note(
    *,
    remote_id: str | None,
    user_id: str,
    incoming_last_modified_ms: int,
    server_row: ServerRowSnapshot | None,
) -> PlanResult:
    """Decide what the remote store does with one note of a sync push."""

    if not remote_id:
        return PlanResult(apply="create", reject=None)

    # Deleted (or never existed) on the server: recreate it.
    if server_row is None:
        return PlanResult(apply="create", reject=None)

    if server_row.owner_id != user_id:
        return PlanResult(apply=None, reject=Reject(remote_id=remote_id, reason="Unauthorized"))

    if not client_wins(incoming_last_modified_ms, server_row.last_modified_ms):
        return PlanResult(
            apply=None,
            reject=Reject(
                remote_id=remote_id, reason="Server version is newer", server=server_row.server
            ),
        )

    return PlanResult(apply="update", reject=None)
