from __future__ import annotations

import json

import pytest

from studytrack_app.interaction.store_base import RemoteStoreError
from studytrack_app.interaction.store_file import FileRemoteStore


def _session(session_id: str, subject: str, minutes: int, day: str = "2026-03-02") -> dict:
    return {
        "id": session_id,
        "user_id": "u1",
        "subject": subject,
        "duration_minutes": minutes,
        "date": day,
        "username": "Alice",
    }


def test_write_session_increments_profile_once_per_id(tmp_path) -> None:
    store = FileRemoteStore(tmp_path)

    store.write_session("u1", _session("s1", "Physics", 25))
    store.write_session("u1", _session("s1", "Physics", 25))
    store.write_session("u1", _session("s2", "Chemistry", 10))

    profile = store.get_profile("u1")
    assert profile["studyTimes"] == {"Physics": 25, "Chemistry": 10}
    assert profile["totalStudyTime"] == 35
    assert profile["username"] == "Alice"
    assert profile["displayName"] == "Alice"
    assert len(store.list_sessions("u1")) == 2


def test_list_sessions_filters_by_day(tmp_path) -> None:
    store = FileRemoteStore(tmp_path)
    store.write_session("u1", _session("s1", "Physics", 5, day="2026-03-01"))
    store.write_session("u1", _session("s2", "Physics", 5, day="2026-03-02"))

    assert [s["id"] for s in store.list_sessions("u1", day="2026-03-02")] == ["s2"]
    assert store.list_sessions("nobody") == []


def test_put_document_replaces_by_id(tmp_path) -> None:
    store = FileRemoteStore(tmp_path)
    store.put_document("u1", "tasks", {"id": "t1", "title": "draft"})
    store.put_document("u1", "tasks", {"id": "t1", "title": "final"})

    assert store.list_documents("u1", "tasks") == [{"id": "t1", "title": "final"}]
    with pytest.raises(RemoteStoreError):
        store.put_document("u1", "tasks", {"title": "no id"})


def test_list_profiles_orders_by_total(tmp_path) -> None:
    store = FileRemoteStore(tmp_path)
    store.write_session("a", _session("s1", "Physics", 10))
    store.write_session("b", _session("s2", "Physics", 40))
    store.write_session("c", _session("s3", "Physics", 25))

    profiles = store.list_profiles(limit=2)
    assert [p["id"] for p in profiles] == ["b", "c"]


def test_corrupt_user_file_raises_store_error(tmp_path) -> None:
    store = FileRemoteStore(tmp_path)
    store.write_session("u1", _session("s1", "Physics", 5))
    user_file = tmp_path / "users" / "u1.json"
    user_file.write_text("{broken", encoding="utf-8")

    with pytest.raises(RemoteStoreError):
        store.get_profile("u1")

    user_file.write_text(json.dumps({"profile": {"totalStudyTime": 3}}), encoding="utf-8")
    assert store.get_profile("u1") == {"totalStudyTime": 3}
