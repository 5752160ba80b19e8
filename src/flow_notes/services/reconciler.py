from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal

from sqlmodel.ext.asyncio.session import AsyncSession

from flow_notes.domain.sync_planner import client_wins
from flow_notes.integrations.notes_remote_api import RemoteConflict, RemoteNote
from flow_notes.models import LocalNote
from flow_notes.repositories import notes_repo

logger = logging.getLogger(__name__)


Outcome = Literal["inserted", "updated", "adopted", "kept_local", "skipped"]


@dataclass(frozen=True)
class ReconcileContext:
    # Notes with queued entries that are not part of the batch being confirmed.
    pending_local_ids: frozenset[str] = frozenset()
    # Remote ids with a queued delete that has not been transmitted yet.
    pending_delete_remote_ids: frozenset[str] = frozenset()
    owner_id: str | None = None


@dataclass(frozen=True)
class SyncRejection:
    remote_id: str | None
    reason: str


@dataclass
class ReconcileSummary:
    inserted: int = 0
    updated: int = 0
    adopted: int = 0
    kept_local: int = 0
    skipped: int = 0
    server_wins: int = 0
    rejections: list[SyncRejection] = field(default_factory=list)

    def count(self, outcome: Outcome) -> None:
        setattr(self, outcome, getattr(self, outcome) + 1)

    def merge(self, other: "ReconcileSummary") -> None:
        self.inserted += other.inserted
        self.updated += other.updated
        self.adopted += other.adopted
        self.kept_local += other.kept_local
        self.skipped += other.skipped
        self.server_wins += other.server_wins
        self.rejections.extend(other.rejections)


async def _match_local(session: AsyncSession, remote: RemoteNote) -> tuple[LocalNote | None, bool]:
    """Find the local record for `remote`; the flag is True when identity was adopted."""
    # 1) Known remote identity.
    local = await notes_repo.find_by_remote_id(session, remote.remote_id)
    if local is not None:
        return local, False

    # 2) A note this device just created: echoed idempotency token, or exact title
    # when the server does not echo one. A token naming no note of ours is foreign.
    if remote.client_id:
        candidate = await notes_repo.get_note(session, remote.client_id)
        if candidate is not None and candidate.remote_id is None:
            return candidate, True
    else:
        candidate = await notes_repo.find_by_title_unsynced(session, remote.title)
        if candidate is not None:
            return candidate, True

    # 3) Originated elsewhere.
    return None, False


async def reconcile_remote_note(
    session: AsyncSession, remote: RemoteNote, ctx: ReconcileContext
) -> Outcome:
    """Fold one authoritative record into the local store.

    Reconciling the same record twice leaves the store as reconciling it once.
    """

    if remote.remote_id in ctx.pending_delete_remote_ids:
        # Deleted locally; the queued delete goes out next cycle.
        return "skipped"

    local, adopted = await _match_local(session, remote)
    if local is None:
        note = LocalNote(
            local_id=str(uuid.uuid4()),
            remote_id=remote.remote_id,
            title=remote.title,
            content=remote.content,
            last_modified_ms=remote.last_modified_ms,
            synced=True,
            owner_id=remote.owner_id or ctx.owner_id,
        )
        await notes_repo.upsert_note(session, note)
        return "inserted"

    local.remote_id = remote.remote_id
    if local.owner_id is None:
        local.owner_id = remote.owner_id or ctx.owner_id

    pending = local.local_id in ctx.pending_local_ids
    if pending and client_wins(local.last_modified_ms, remote.last_modified_ms):
        # Local edit made after the batch was drained; it is pushed next cycle.
        local.synced = False
        await notes_repo.upsert_note(session, local)
        return "kept_local"

    local.title = remote.title
    local.content = remote.content
    local.last_modified_ms = remote.last_modified_ms
    local.synced = not pending
    await notes_repo.upsert_note(session, local)
    return "adopted" if adopted else "updated"


async def reconcile_notes(
    session: AsyncSession, notes: Iterable[RemoteNote], ctx: ReconcileContext
) -> ReconcileSummary:
    summary = ReconcileSummary()
    for remote in notes:
        summary.count(await reconcile_remote_note(session, remote, ctx))
    return summary


async def resolve_conflicts(
    session: AsyncSession, conflicts: Iterable[RemoteConflict], ctx: ReconcileContext
) -> ReconcileSummary:
    """Apply the server side of push conflicts.

    A conflict carrying the server's note means the server's version is newer:
    it overwins and the local mutation is dropped. A conflict without one is a
    non-retriable rejection (e.g. not authorized for that note) and is reported.
    """

    summary = ReconcileSummary()
    for conflict in conflicts:
        if conflict.server_note is None:
            logger.warning(
                "sync rejected remote_id=%s reason=%s", conflict.remote_id, conflict.reason
            )
            summary.rejections.append(
                SyncRejection(remote_id=conflict.remote_id, reason=conflict.reason)
            )
            continue

        logger.info(
            "sync conflict remote_id=%s reason=%s: server version wins",
            conflict.remote_id,
            conflict.reason,
        )
        summary.count(await reconcile_remote_note(session, conflict.server_note, ctx))
        summary.server_wins += 1
    return summary
