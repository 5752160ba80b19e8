from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from flow_notes.config import settings
from flow_notes.services.sync_coordinator import SyncCoordinator, SyncCycleReport

logger = logging.getLogger(__name__)


Probe = Callable[[], Awaitable[bool]]


class ConnectivityObserver:
    """Owns the online/offline flag and forwards transitions to the coordinator.

    Going online resets backoff and triggers a sync immediately; going offline
    only records the state.
    """

    def __init__(self, coordinator: SyncCoordinator) -> None:
        self._coordinator = coordinator
        self._online = coordinator.status().online
        self._watch_task: asyncio.Task[None] | None = None

    @property
    def online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> asyncio.Task[SyncCycleReport] | None:
        if online == self._online:
            return None
        self._online = online
        logger.info("connectivity: %s", "online" if online else "offline")
        if online:
            return self._coordinator.handle_online()
        self._coordinator.handle_offline()
        return None

    async def check(self, probe: Probe) -> bool:
        online = await probe()
        self.set_online(online)
        return online

    async def _watch(self, probe: Probe, interval_seconds: float) -> None:
        while True:
            try:
                await self.check(probe)
            except Exception:
                logger.warning("connectivity probe failed", exc_info=True)
                self.set_online(False)
            await asyncio.sleep(interval_seconds)

    def watch(self, probe: Probe, *, interval_seconds: float | None = None) -> None:
        """Poll `probe` in the background (stands in for OS online/offline events)."""
        if self._watch_task is not None and not self._watch_task.done():
            return
        interval = (
            interval_seconds
            if interval_seconds is not None
            else settings.connectivity_probe_interval_seconds
        )
        self._watch_task = asyncio.create_task(self._watch(probe, interval))

    async def close(self) -> None:
        task = self._watch_task
        self._watch_task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
