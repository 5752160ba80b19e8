from __future__ import annotations

import pytest

from flow_notes.domain.sync_planner import (
    QueuedMutation,
    ServerRowSnapshot,
    client_wins,
    plan_push_note,
    plan_queue,
)


def _m(
    entry_id: int,
    action: str,
    *,
    local_id: str | None = "n1",
    title: str = "t",
    content: str = "",
    last_modified_ms: int = 0,
    remote_id: str | None = None,
    enqueued_at_ms: int | None = None,
) -> QueuedMutation:
    return QueuedMutation(
        entry_id=entry_id,
        local_id=local_id,
        action=action,  # pyright: ignore[reportArgumentType]
        title=title,
        content=content,
        last_modified_ms=last_modified_ms,
        remote_id=remote_id,
        enqueued_at_ms=enqueued_at_ms if enqueued_at_ms is not None else entry_id,
    )


def test_plan_queue_empty() -> None:
    plan = plan_queue([])
    assert plan.is_empty
    assert plan.entry_ids == ()


def test_plan_queue_collapses_updates_to_latest() -> None:
    plan = plan_queue(
        [
            _m(1, "create", content="a", last_modified_ms=10),
            _m(2, "update", content="ab", last_modified_ms=20),
            _m(3, "update", content="abc", last_modified_ms=30),
        ]
    )
    assert plan.deletes == []
    assert len(plan.upserts) == 1
    upsert = plan.upserts[0]
    assert upsert.latest.content == "abc"
    assert upsert.entry_ids == (1, 2, 3)
    # Never reached the server: goes out as one create.
    assert upsert.action == "create"


def test_plan_queue_orders_by_enqueue_time_not_entry_id() -> None:
    plan = plan_queue(
        [
            _m(2, "update", content="old", enqueued_at_ms=100),
            _m(1, "update", content="new", enqueued_at_ms=200),
        ]
    )
    assert plan.upserts[0].latest.content == "new"
    assert plan.upserts[0].entry_ids == (2, 1)


def test_plan_queue_delete_subsumes_other_entries() -> None:
    plan = plan_queue(
        [
            _m(1, "update", remote_id="r1", content="x"),
            _m(2, "delete", remote_id="r1"),
            _m(3, "update", local_id="n2", remote_id="r2"),
        ]
    )
    assert len(plan.deletes) == 1
    assert plan.deletes[0].remote_id == "r1"
    assert plan.deletes[0].entry_ids == (1, 2)
    assert [u.local_id for u in plan.upserts] == ["n2"]
    assert plan.upserts[0].action == "update"


def test_plan_queue_delete_of_never_synced_note_has_no_remote_id() -> None:
    plan = plan_queue([_m(1, "create"), _m(2, "delete")])
    assert plan.upserts == []
    assert plan.deletes[0].remote_id is None
    assert plan.deletes[0].entry_ids == (1, 2)


def test_plan_queue_keeps_latest_known_remote_id() -> None:
    plan = plan_queue(
        [
            _m(1, "create"),
            _m(2, "update", remote_id="r9"),
            _m(3, "update", content="last"),
        ]
    )
    assert plan.upserts[0].remote_id == "r9"
    assert plan.upserts[0].latest.content == "last"


def test_plan_queue_unbound_creates_are_never_merged() -> None:
    plan = plan_queue([_m(1, "create", local_id=None), _m(2, "create", local_id=None)])
    assert len(plan.upserts) == 2
    assert {u.entry_ids for u in plan.upserts} == {(1,), (2,)}


def test_plan_queue_is_deterministic() -> None:
    entries = [_m(i, "update", local_id=f"n{i % 3}") for i in range(1, 10)]
    assert plan_queue(entries) == plan_queue(list(reversed(entries)))


@pytest.mark.parametrize(
    ("client_ms", "server_ms", "expected"),
    [(10, 5, True), (5, 5, True), (4, 5, False), (0, 0, True)],
)
def test_client_wins_ties_go_to_client(client_ms: int, server_ms: int, expected: bool) -> None:
    assert client_wins(client_ms, server_ms) is expected


def _row(*, owner: str = "u1", last_modified_ms: int = 100) -> ServerRowSnapshot:
    return ServerRowSnapshot(
        remote_id="r1",
        owner_id=owner,
        last_modified_ms=last_modified_ms,
        server={"id": "r1", "lastModified": "x"},
    )


@pytest.mark.parametrize(
    "case",
    [
        {"name": "no id creates", "remote_id": None, "row": None, "ms": 1, "apply": "create"},
        {"name": "unknown id recreates", "remote_id": "r1", "row": None, "ms": 1, "apply": "create"},
        {"name": "newer updates", "remote_id": "r1", "row": _row(), "ms": 200, "apply": "update"},
        {"name": "tie updates", "remote_id": "r1", "row": _row(), "ms": 100, "apply": "update"},
        {"name": "stale conflicts", "remote_id": "r1", "row": _row(), "ms": 99, "apply": None},
        {
            "name": "foreign rejects",
            "remote_id": "r1",
            "row": _row(owner="u2"),
            "ms": 999,
            "apply": None,
        },
    ],
    ids=lambda c: c["name"],
)
def test_plan_push_note(case: dict[str, object]) -> None:
    result = plan_push_note(
        remote_id=case["remote_id"],  # pyright: ignore[reportArgumentType]
        user_id="u1",
        incoming_last_modified_ms=case["ms"],  # pyright: ignore[reportArgumentType]
        server_row=case["row"],  # pyright: ignore[reportArgumentType]
    )
    assert result.apply == case["apply"]
    assert (result.reject is None) == (case["apply"] is not None)


def test_plan_push_note_stale_conflict_carries_server_version() -> None:
    result = plan_push_note(
        remote_id="r1", user_id="u1", incoming_last_modified_ms=1, server_row=_row()
    )
    assert result.reject is not None
    assert result.reject.reason == "Server version is newer"
    assert result.reject.server == {"id": "r1", "lastModified": "x"}


def test_plan_push_note_foreign_note_has_no_server_version() -> None:
    result = plan_push_note(
        remote_id="r1", user_id="u1", incoming_last_modified_ms=1, server_row=_row(owner="u2")
    )
    assert result.reject is not None
    assert result.reject.reason == "Unauthorized"
    assert result.reject.server is None
