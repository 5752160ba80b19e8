from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from flow_notes.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SaveDebouncer(Generic[T]):
    """Coalesce rapid edits: each `schedule` cancels the pending flush and restarts the timer.

    Only the last scheduled value is saved.
    """

    def __init__(
        self, save: Callable[[T], Awaitable[object]], *, delay_ms: int | None = None
    ) -> None:
        self._save = save
        self._delay = (delay_ms if delay_ms is not None else settings.save_debounce_ms) / 1000
        self._timer: asyncio.Task[None] | None = None
        self._value: T | None = None
        self._has_value = False

    @property
    def pending(self) -> bool:
        return self._has_value

    def schedule(self, value: T) -> None:
        self._cancel_timer()
        self._value = value
        self._has_value = True
        self._timer = asyncio.create_task(self._fire_later())
        self._timer.add_done_callback(self._on_timer_done)

    def _cancel_timer(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None and not timer.done():
            timer.cancel()

    def _on_timer_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("debounced save failed", exc_info=exc)

    async def _fire_later(self) -> None:
        await asyncio.sleep(self._delay)
        await self._save_pending()

    async def _save_pending(self) -> None:
        if not self._has_value:
            return
        value = self._value
        self._value = None
        self._has_value = False
        await self._save(value)  # pyright: ignore[reportArgumentType]

    async def flush(self) -> None:
        """Save the pending value now; errors propagate to the caller."""
        self._cancel_timer()
        await self._save_pending()

    async def close(self) -> None:
        """Drop the pending value without saving."""
        self._cancel_timer()
        self._value = None
        self._has_value = False
