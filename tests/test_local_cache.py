from __future__ import annotations

from studytrack_app.persistence.local_cache import KEY_TIMER_STATE, LocalCache


def test_local_cache_roundtrip_survives_new_instance(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache")
    cache.set(KEY_TIMER_STATE, {"mode": "interval", "value_s": 1500})

    reloaded = LocalCache(tmp_path / "cache")
    assert reloaded.get(KEY_TIMER_STATE) == {"mode": "interval", "value_s": 1500}
    assert reloaded.get("missing", "fallback") == "fallback"

    reloaded.delete(KEY_TIMER_STATE)
    assert reloaded.get(KEY_TIMER_STATE) is None


def test_local_cache_corrupt_blob_returns_default(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache")
    (tmp_path / "cache" / "timer_state.json").write_text("{not json", encoding="utf-8")

    assert cache.get(KEY_TIMER_STATE, {}) == {}
    assert cache.degraded is False


def test_local_cache_without_path_runs_in_memory() -> None:
    cache = LocalCache(None)
    assert cache.degraded is True

    cache.set("k", [1, 2])
    assert cache.get("k") == [1, 2]


def test_local_cache_write_failure_switches_to_memory(tmp_path, monkeypatch) -> None:
    cache = LocalCache(tmp_path / "cache")
    cache.set("kept", {"a": 1})

    def _boom(_key, _value) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(cache, "_write", _boom)
    cache.set("new", {"b": 2})

    assert cache.degraded is True
    assert cache.get("kept") == {"a": 1}
    assert cache.get("new") == {"b": 2}


def test_local_cache_missing_directory_degrades_instead_of_crashing(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache")
    cache.dir_path = None

    cache.set("k", {"v": 1})

    assert cache.degraded is True
    assert cache.get("k") == {"v": 1}
