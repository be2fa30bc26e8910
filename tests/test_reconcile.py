from __future__ import annotations

from studytrack_app.services.reconcile import resolve


def test_remote_wins_only_when_strictly_newer() -> None:
    local = [
        {"id": "a", "title": "local-a", "lastModified": "2026-03-01T10:00:00Z"},
        {"id": "b", "title": "local-b", "lastModified": "2026-03-01T10:00:00+00:00"},
    ]
    remote = [
        {"id": "a", "title": "remote-a", "lastModified": "2026-03-01T11:00:00Z"},
        {"id": "b", "title": "remote-b", "lastModified": "2026-03-01T10:00:00Z"},
    ]

    merged = resolve(local, remote)

    assert [doc["title"] for doc in merged] == ["remote-a", "local-b"]


def test_unparseable_timestamps_keep_local() -> None:
    local = [{"id": "a", "title": "local", "lastModified": "yesterday"}]
    remote = [{"id": "a", "title": "remote", "lastModified": "2026-03-01T11:00:00Z"}]
    assert resolve(local, remote)[0]["title"] == "local"

    local = [{"id": "a", "title": "local", "lastModified": "2026-03-01T11:00:00Z"}]
    remote = [{"id": "a", "title": "remote", "lastModified": None}]
    assert resolve(local, remote)[0]["title"] == "local"


def test_union_keeps_local_order_then_remote_only() -> None:
    local = [{"id": "b"}, {"id": "a"}, {"title": "no id yet"}]
    remote = [{"id": "c"}, {"id": "a"}, {"id": "d"}, {"title": "remote without id"}]

    merged = resolve(local, remote)

    assert [doc.get("id", doc.get("title")) for doc in merged] == ["b", "a", "no id yet", "c", "d"]


def test_created_at_and_snake_case_timestamps_are_understood() -> None:
    local = [{"id": "s1", "created_at": "2026-03-01T09:00:00+00:00", "v": 1}]
    remote = [{"id": "s1", "created_at": "2026-03-01T09:30:00+00:00", "v": 2}]
    assert resolve(local, remote)[0]["v"] == 2

    local = [{"id": "t1", "last_modified": "2026-03-01T09:00:00", "v": 1}]
    remote = [{"id": "t1", "last_modified": "2026-03-01T08:00:00", "v": 2}]
    assert resolve(local, remote)[0]["v"] == 1


def test_resolve_does_not_mutate_inputs() -> None:
    local = [{"id": "a", "lastModified": "2026-03-01T10:00:00Z"}]
    remote = [{"id": "a", "lastModified": "2026-03-01T12:00:00Z"}]
    merged = resolve(local, remote)
    merged[0]["touched"] = True
    assert "touched" not in remote[0]
    assert "touched" not in local[0]
