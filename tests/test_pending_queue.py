from __future__ import annotations

from studytrack_app.core.records import PendingMutation, SessionRecord, session_mutation
from studytrack_app.persistence.local_cache import KEY_PENDING, LocalCache
from studytrack_app.persistence.pending_queue import PendingQueue


def _record(subject: str = "Physics", minutes: int = 5) -> SessionRecord:
    return SessionRecord(
        user_id="u1",
        subject=subject,
        duration_minutes=minutes,
        start_time="2026-03-02T10:00:00+00:00",
        end_time="2026-03-02T10:05:00+00:00",
    )


def test_pending_queue_is_fifo_and_dedupes(tmp_path) -> None:
    queue = PendingQueue(LocalCache(tmp_path))
    first = session_mutation(_record())
    second = session_mutation(_record("Chemistry"))

    assert queue.enqueue(first) is True
    assert queue.enqueue(second) is True
    assert queue.enqueue(first) is False
    assert len(queue) == 2
    assert queue.peek() == first

    assert queue.remove(first.mutation_id) is True
    assert queue.remove(first.mutation_id) is False
    assert queue.peek() == second


def test_pending_queue_persists_across_restart(tmp_path) -> None:
    cache = LocalCache(tmp_path)
    queue = PendingQueue(cache)
    mutation = session_mutation(_record())
    queue.enqueue(mutation)

    reloaded = PendingQueue(LocalCache(tmp_path))
    assert [item.mutation_id for item in reloaded.items()] == [mutation.mutation_id]
    assert reloaded.peek().payload["subject"] == "Physics"


def test_pending_queue_drops_invalid_entries(tmp_path) -> None:
    cache = LocalCache(tmp_path)
    good = PendingMutation(kind="task", collection="tasks", payload={"id": "t1"}, mutation_id="m1")
    cache.set(
        KEY_PENDING,
        [
            good.to_dict(),
            {"kind": "bogus", "payload": {}, "mutation_id": "m2"},
            {"kind": "task", "payload": "not a dict", "mutation_id": "m3"},
            "garbage",
            good.to_dict(),
        ],
    )

    queue = PendingQueue(cache)
    assert [item.mutation_id for item in queue.items()] == ["m1"]


def test_pending_queue_non_list_blob_starts_empty(tmp_path) -> None:
    cache = LocalCache(tmp_path)
    cache.set(KEY_PENDING, {"oops": True})
    assert len(PendingQueue(cache)) == 0
