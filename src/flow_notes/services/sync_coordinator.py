"""Sync coordinator: when and how a sync cycle runs.

States: idle -> syncing -> idle on success, syncing -> backoff-wait on failure,
backoff-wait -> syncing when the retry timer fires while online.

`sync_in_flight` is the only mutual exclusion. It is set before the first
suspension point of a cycle and released in `finally`, so a cycle that raises
never leaves the coordinator stuck in `syncing`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from flow_notes.config import settings
from flow_notes.db import session_scope
from flow_notes.domain.sync_planner import PlannedUpsert, QueuedMutation, SyncPlan, plan_queue
from flow_notes.errors import AuthorizationError, SyncError, ValidationRejectedError
from flow_notes.integrations.notes_remote_api import NotesRemoteAPI, OutgoingNote
from flow_notes.models import SyncQueueEntry
from flow_notes.repositories import notes_repo, sync_queue_repo, sync_state_repo
from flow_notes.services.reconciler import (
    ReconcileContext,
    ReconcileSummary,
    SyncRejection,
    reconcile_notes,
    resolve_conflicts,
)
from flow_notes.sync_utils import now_ms

logger = logging.getLogger(__name__)


Phase = Literal["idle", "syncing", "backoff-wait"]


@dataclass
class SyncState:
    online: bool
    sync_in_flight: bool
    current_backoff_ms: int
    phase: Phase = "idle"
    auth_required: bool = False
    last_error: str | None = None
    last_success_ms: int | None = None


@dataclass(frozen=True)
class SyncStatus:
    online: bool
    sync_in_flight: bool
    current_backoff_ms: int
    phase: Phase
    auth_required: bool
    last_error: str | None
    last_success_ms: int | None


@dataclass
class SyncCycleReport:
    reason: str
    ok: bool = False
    # True when the trigger was a no-op (offline, already syncing, closed, ...).
    skipped: bool = False
    deleted_remote: int = 0
    pushed: int = 0
    pulled: int = 0
    reconcile: ReconcileSummary = field(default_factory=ReconcileSummary)
    error: str | None = None

    @property
    def rejections(self) -> list[SyncRejection]:
        return self.reconcile.rejections


def _snapshot(entry: SyncQueueEntry) -> QueuedMutation:
    payload = entry.payload_json or {}
    remote_id = payload.get("remote_id")
    assert entry.entry_id is not None
    return QueuedMutation(
        entry_id=int(entry.entry_id),
        local_id=entry.local_id,
        action=entry.action,  # pyright: ignore[reportArgumentType]
        title=str(payload.get("title") or ""),
        content=str(payload.get("content") or ""),
        last_modified_ms=int(payload.get("last_modified_ms") or 0),
        remote_id=str(remote_id) if remote_id else None,
        enqueued_at_ms=int(entry.enqueued_at_ms),
    )


async def _reconcile_context(
    session: AsyncSession, *, owner_id: str | None, exclude_entry_ids: frozenset[int] = frozenset()
) -> ReconcileContext:
    pending_local_ids: set[str] = set()
    pending_delete_remote_ids: set[str] = set()
    for entry in await sync_queue_repo.drain_ordered(session):
        if entry.entry_id in exclude_entry_ids:
            continue
        if entry.local_id is not None:
            pending_local_ids.add(entry.local_id)
        remote_id = (entry.payload_json or {}).get("remote_id")
        if entry.action == "delete" and remote_id:
            pending_delete_remote_ids.add(str(remote_id))
    return ReconcileContext(
        pending_local_ids=frozenset(pending_local_ids),
        pending_delete_remote_ids=frozenset(pending_delete_remote_ids),
        owner_id=owner_id,
    )


class SyncCoordinator:
    def __init__(
        self,
        remote: NotesRemoteAPI,
        *,
        online: bool = True,
        owner_id: str | None = None,
        backoff_floor_ms: int | None = None,
        backoff_max_ms: int | None = None,
        interval_seconds: float | None = None,
        initial_delay_seconds: float | None = None,
        watermark_overlap_ms: int | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._remote = remote
        self._owner_id = owner_id
        self._floor_ms = backoff_floor_ms or settings.sync_backoff_floor_ms
        self._max_ms = max(backoff_max_ms or settings.sync_backoff_max_ms, self._floor_ms)
        self._interval = (
            interval_seconds if interval_seconds is not None else settings.sync_interval_seconds
        )
        self._initial_delay = (
            initial_delay_seconds
            if initial_delay_seconds is not None
            else settings.sync_initial_delay_seconds
        )
        self._overlap_ms = (
            watermark_overlap_ms
            if watermark_overlap_ms is not None
            else settings.sync_watermark_overlap_ms
        )
        self._clock = clock

        self._state = SyncState(
            online=online, sync_in_flight=False, current_backoff_ms=self._floor_ms
        )
        self._closed = False
        self._retry_task: asyncio.Task[None] | None = None
        self._periodic_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[SyncCycleReport]] = set()
        # Drained entries not yet confirmed by the remote store in the running cycle.
        self._unconfirmed: set[int] = set()

    # -- observable state -------------------------------------------------

    def status(self) -> SyncStatus:
        s = self._state
        return SyncStatus(
            online=s.online,
            sync_in_flight=s.sync_in_flight,
            current_backoff_ms=s.current_backoff_ms,
            phase=s.phase,
            auth_required=s.auth_required,
            last_error=s.last_error,
            last_success_ms=s.last_success_ms,
        )

    @property
    def retry_pending(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    # -- connectivity (called by ConnectivityObserver only) ----------------

    def handle_online(self) -> asyncio.Task[SyncCycleReport] | None:
        self._state.online = True
        self._reset_backoff()
        # A pending retry is superseded by the immediate online trigger.
        self._cancel_retry()
        return self.request_sync("online")

    def handle_offline(self) -> None:
        # An in-flight cycle keeps running; only new triggers are suppressed.
        self._state.online = False

    # -- credential --------------------------------------------------------

    def set_credential(self, token: str) -> asyncio.Task[SyncCycleReport] | None:
        self._remote.set_bearer_token(token)
        self._state.auth_required = False
        self._state.last_error = None
        return self.request_sync("credential")

    # -- triggers ----------------------------------------------------------

    def _can_start(self) -> bool:
        s = self._state
        return not self._closed and s.online and not s.sync_in_flight and not s.auth_required

    def request_sync(self, reason: str) -> asyncio.Task[SyncCycleReport] | None:
        """Fire-and-forget trigger; returns None when it would be a no-op.

        While a retry is scheduled only its timer (or an online transition)
        leaves backoff-wait.
        """
        if not self._can_start() or self.retry_pending:
            return None
        task = asyncio.create_task(self.trigger(reason))
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def notify_local_change(self) -> None:
        # Sync immediately following a local save while online.
        self.request_sync("local_save")

    def _on_background_done(self, task: asyncio.Task[SyncCycleReport]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("sync cycle crashed", exc_info=exc)

    async def trigger(self, reason: str = "manual") -> SyncCycleReport:
        report = SyncCycleReport(reason=reason)
        if not self._can_start():
            report.skipped = True
            return report

        # Set before any suspension point: at most one cycle at a time.
        self._state.sync_in_flight = True
        self._state.phase = "syncing"
        self._cancel_retry()
        logger.info("sync cycle start reason=%s", reason)
        try:
            await self._run_cycle(report)
        except AuthorizationError as e:
            # Fatal for this credential; queue is kept for after re-login.
            self._state.auth_required = True
            self._state.phase = "idle"
            self._state.last_error = str(e)
            report.error = str(e)
            logger.warning("sync halted: authorization failed (%s)", e)
        except (SyncError, SQLAlchemyError) as e:
            report.error = str(e)
            await self._on_failure(e)
        else:
            report.ok = True
            self._state.phase = "idle"
            self._state.last_error = None
            self._state.last_success_ms = self._clock()
            self._reset_backoff()
            logger.info(
                "sync cycle done reason=%s deleted=%s pushed=%s pulled=%s",
                reason,
                report.deleted_remote,
                report.pushed,
                report.pulled,
            )
        finally:
            self._unconfirmed = set()
            self._state.sync_in_flight = False
        return report

    # -- cycle -------------------------------------------------------------

    async def _run_cycle(self, report: SyncCycleReport) -> None:
        # 1) Collapse the queue as it is now; later edits wait for the next cycle.
        async with session_scope() as session:
            entries = await sync_queue_repo.drain_ordered(session)
        plan = plan_queue([_snapshot(e) for e in entries])
        self._unconfirmed = set(plan.entry_ids)

        # 2) Deletes first.
        await self._transmit_deletes(plan, report)

        # 3-5) Collapsed create/update batch, reconcile, remove confirmed entries.
        if plan.upserts:
            await self._transmit_upserts(plan.upserts, frozenset(plan.entry_ids), report)

        # 6-7) Pull since the watermark, reconcile, advance the watermark.
        await self._pull(report)

    async def _confirm(self, entry_ids: tuple[int, ...]) -> None:
        async with session_scope() as session:
            await sync_queue_repo.remove_entries(session, entry_ids)
            await session.commit()
        self._unconfirmed.difference_update(entry_ids)

    async def _transmit_deletes(self, plan: SyncPlan, report: SyncCycleReport) -> None:
        for planned in plan.deletes:
            if planned.remote_id:
                try:
                    await self._remote.delete_note(remote_id=planned.remote_id)
                    report.deleted_remote += 1
                except ValidationRejectedError as e:
                    logger.warning("delete rejected remote_id=%s: %s", planned.remote_id, e)
                    report.reconcile.rejections.append(
                        SyncRejection(remote_id=planned.remote_id, reason=str(e))
                    )
            await self._confirm(planned.entry_ids)

    async def _outgoing(
        self, upserts: list[PlannedUpsert]
    ) -> tuple[list[OutgoingNote], list[int]]:
        outgoing: list[OutgoingNote] = []
        orphaned: list[int] = []
        async with session_scope() as session:
            for planned in upserts:
                remote_id = planned.remote_id
                if planned.local_id is not None:
                    note = await notes_repo.get_note(session, planned.local_id)
                    if note is None:
                        orphaned.extend(planned.entry_ids)
                        continue
                    # A create confirmed after this entry was queued turns it into an update.
                    remote_id = note.remote_id or remote_id
                latest = planned.latest
                outgoing.append(
                    OutgoingNote(
                        remote_id=remote_id,
                        client_id=planned.local_id,
                        title=latest.title,
                        content=latest.content,
                        last_modified_ms=latest.last_modified_ms,
                    )
                )
        return outgoing, orphaned

    async def _transmit_upserts(
        self,
        upserts: list[PlannedUpsert],
        batch_entry_ids: frozenset[int],
        report: SyncCycleReport,
    ) -> None:
        upsert_ids = tuple(i for u in upserts for i in u.entry_ids)
        outgoing, orphaned = await self._outgoing(upserts)
        if orphaned:
            logger.info("dropping %s queue entries of notes no longer stored", len(orphaned))
        if not outgoing:
            await self._confirm(upsert_ids)
            return

        try:
            result = await self._remote.push_sync(outgoing)
        except ValidationRejectedError as e:
            logger.warning("sync push rejected: %s", e)
            for note in outgoing:
                report.reconcile.rejections.append(
                    SyncRejection(remote_id=note.remote_id, reason=str(e))
                )
            await self._confirm(upsert_ids)
            return
        report.pushed += len(outgoing)

        async with session_scope() as session:
            ctx = await _reconcile_context(
                session, owner_id=self._owner_id, exclude_entry_ids=batch_entry_ids
            )
            report.reconcile.merge(
                await reconcile_notes(session, [*result.created, *result.updated], ctx)
            )
            report.reconcile.merge(await resolve_conflicts(session, result.conflicts, ctx))
            await sync_queue_repo.remove_entries(session, upsert_ids)
            await session.commit()
        self._unconfirmed.difference_update(upsert_ids)

    async def _pull(self, report: SyncCycleReport) -> None:
        async with session_scope() as session:
            watermark = await sync_state_repo.get_watermark_ms(session)

        requested_at = self._clock()
        pulled = await self._remote.pull_changes_after(watermark)

        async with session_scope() as session:
            ctx = await _reconcile_context(session, owner_id=self._owner_id)
            report.reconcile.merge(await reconcile_notes(session, pulled.notes, ctx))
            # Follow the server clock when it reports one.
            now = pulled.server_time_ms if pulled.server_time_ms is not None else requested_at
            await sync_state_repo.set_watermark_ms(
                session, max(watermark, now - self._overlap_ms)
            )
            await session.commit()
        report.pulled = len(pulled.notes)

    # -- failure & backoff -------------------------------------------------

    async def _on_failure(self, error: Exception) -> None:
        self._state.last_error = str(error)
        if self._unconfirmed:
            try:
                async with session_scope() as session:
                    await sync_queue_repo.increment_retries(session, self._unconfirmed)
                    await session.commit()
            except SQLAlchemyError:
                logger.warning("cannot increment retry counts", exc_info=True)

        self._state.current_backoff_ms = min(self._state.current_backoff_ms * 2, self._max_ms)
        self._state.phase = "backoff-wait"
        logger.warning(
            "sync cycle failed (%s); retry in %sms", error, self._state.current_backoff_ms
        )
        self._schedule_retry(self._state.current_backoff_ms)

    def _reset_backoff(self) -> None:
        self._state.current_backoff_ms = self._floor_ms

    def _schedule_retry(self, delay_ms: int) -> None:
        self._cancel_retry()
        if self._closed:
            return
        self._retry_task = asyncio.create_task(self._retry_after(delay_ms / 1000))

    def _cancel_retry(self) -> None:
        task = self._retry_task
        self._retry_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _retry_after(self, delay_seconds: float) -> None:
        await asyncio.sleep(delay_seconds)
        self._retry_task = None
        if not self._state.online:
            # Resumes on the next online transition.
            logger.info("sync retry suppressed: offline")
            self._state.phase = "idle"
            return
        await self.trigger("retry")

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Run an initial sync shortly after start, then every interval while online."""
        if self._periodic_task is None and not self._closed:
            self._periodic_task = asyncio.create_task(self._periodic())

    async def _periodic(self) -> None:
        await asyncio.sleep(self._initial_delay)
        reason = "initial"
        while not self._closed:
            if self._can_start() and not self.retry_pending:
                try:
                    await self.trigger(reason)
                except Exception:
                    logger.exception("periodic sync crashed")
            reason = "periodic"
            await asyncio.sleep(self._interval)

    async def close(self) -> None:
        """Stop timers and pending retries; wait for background cycles to settle."""
        self._closed = True
        tasks: list[asyncio.Task[object]] = []
        for task in (self._retry_task, self._periodic_task):
            if task is not None and not task.done():
                task.cancel()
                tasks.append(task)  # pyright: ignore[reportArgumentType]
        self._retry_task = None
        self._periodic_task = None
        tasks.extend(self._background)  # pyright: ignore[reportArgumentType]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
