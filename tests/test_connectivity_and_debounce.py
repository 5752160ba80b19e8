from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest

from flow_notes.services.connectivity import ConnectivityObserver
from flow_notes.services.debounce import SaveDebouncer


@dataclass
class FakeCoordinator:
    online: bool = False
    calls: list[str] = field(default_factory=list)

    def status(self) -> "FakeCoordinator":
        return self

    def handle_online(self) -> None:
        self.calls.append("online")

    def handle_offline(self) -> None:
        self.calls.append("offline")


@pytest.mark.anyio
async def test_observer_forwards_transitions_only():
    coordinator = FakeCoordinator(online=False)
    observer = ConnectivityObserver(coordinator)  # pyright: ignore[reportArgumentType]

    observer.set_online(False)
    observer.set_online(True)
    observer.set_online(True)
    observer.set_online(False)

    assert coordinator.calls == ["online", "offline"]
    assert observer.online is False


@pytest.mark.anyio
async def test_observer_check_uses_probe_result():
    coordinator = FakeCoordinator(online=True)
    observer = ConnectivityObserver(coordinator)  # pyright: ignore[reportArgumentType]

    async def _down() -> bool:
        return False

    assert await observer.check(_down) is False
    assert coordinator.calls == ["offline"]


@pytest.mark.anyio
async def test_observer_watch_treats_probe_errors_as_offline():
    coordinator = FakeCoordinator(online=False)
    observer = ConnectivityObserver(coordinator)  # pyright: ignore[reportArgumentType]
    results: list[object] = [True, RuntimeError("dns"), True]

    async def _probe() -> bool:
        item = results.pop(0) if results else True
        if isinstance(item, Exception):
            raise item
        return bool(item)

    observer.watch(_probe, interval_seconds=0.005)
    try:
        for _ in range(200):
            if len(coordinator.calls) >= 3:
                break
            await asyncio.sleep(0.005)
    finally:
        await observer.close()

    assert coordinator.calls[:3] == ["online", "offline", "online"]


@pytest.mark.anyio
async def test_debouncer_saves_only_the_last_value():
    saved: list[str] = []

    async def _save(value: str) -> None:
        saved.append(value)

    debouncer: SaveDebouncer[str] = SaveDebouncer(_save, delay_ms=20)
    debouncer.schedule("h")
    debouncer.schedule("he")
    debouncer.schedule("hello")
    assert debouncer.pending

    await asyncio.sleep(0.1)
    assert saved == ["hello"]
    assert not debouncer.pending


@pytest.mark.anyio
async def test_debouncer_flush_saves_now_and_propagates_errors():
    saved: list[str] = []

    async def _save(value: str) -> None:
        if value == "bad":
            raise RuntimeError("disk full")
        saved.append(value)

    debouncer: SaveDebouncer[str] = SaveDebouncer(_save, delay_ms=10_000)
    debouncer.schedule("draft")
    await debouncer.flush()
    assert saved == ["draft"]

    debouncer.schedule("bad")
    with pytest.raises(RuntimeError):
        await debouncer.flush()

    debouncer.schedule("dropped")
    await debouncer.close()
    await asyncio.sleep(0)
    assert saved == ["draft"]
    assert not debouncer.pending
