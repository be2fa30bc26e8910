from __future__ import annotations

from studytrack_app.core.records import SessionRecord
from studytrack_app.persistence.local_cache import KEY_DAY_PROGRESS, KEY_LAST_USED_DATE, LocalCache
from studytrack_app.services.session_accounting import POLICY_STRICT, SessionAccounting


def _accounting(tmp_path, sink: list | None = None, today: str = "2026-03-02", **kwargs) -> SessionAccounting:
    return SessionAccounting(
        cache=LocalCache(tmp_path / "cache"),
        user_id="u1",
        username="Alice",
        record_sink=sink.append if sink is not None else None,
        today=lambda: today,
        **kwargs,
    )


def test_ninety_seconds_continuous_records_one_minute(tmp_path) -> None:
    records: list[SessionRecord] = []
    acc = _accounting(tmp_path, records)

    acc.on_tick(90, "Physics", "continuous", "work")
    result = acc.on_session_stop("Physics", 90, "continuous", started_at=1_700_000_000.0, ended_at=1_700_000_090.0)

    assert result["status"] == "recorded"
    assert len(records) == 1
    record = records[0]
    assert record.duration_minutes == 1
    assert record.subject == "Physics"
    assert record.session_type == "continuous"
    assert record.date == "2026-03-02"
    assert record.username == "Alice"
    assert acc.minutes_by_subject == {"Physics": 1}


def test_short_session_is_discarded(tmp_path) -> None:
    records: list[SessionRecord] = []
    acc = _accounting(tmp_path, records)

    result = acc.on_session_stop("Chemistry", 59, "continuous")

    assert result == {"status": "too_short", "minutes": 0}
    assert records == []


def test_interval_stop_writes_nothing_and_phase_completion_records(tmp_path) -> None:
    records: list[SessionRecord] = []
    acc = _accounting(tmp_path, records)

    assert acc.on_session_stop("Physics", 1200, "interval")["status"] == "interval_noop"
    assert records == []

    record = acc.on_phase_completed("Physics", 25)
    assert record is not None and record.duration_minutes == 25
    assert record.session_type == "interval"
    assert acc.on_phase_completed("Physics", 0) is None
    assert len(records) == 1


def test_break_ticks_never_count_and_seconds_carry(tmp_path) -> None:
    acc = _accounting(tmp_path)

    assert acc.on_tick(600, "Mathematics", "interval", "break") == 0
    assert acc.minutes_by_subject == {}

    assert acc.on_tick(30, "Mathematics", "interval", "work") == 0
    assert acc.on_tick(30, "Mathematics", "interval", "work") == 1
    assert acc.on_tick(45, "Mathematics", "continuous", "work") == 0
    assert acc.minutes_by_subject == {"Mathematics": 1}


def test_totals_are_persisted_on_every_tick(tmp_path) -> None:
    acc = _accounting(tmp_path)
    acc.on_tick(180, "Physics", "continuous", "work")

    reloaded = _accounting(tmp_path)
    assert reloaded.minutes_by_subject == {"Physics": 3}


def test_stale_day_with_progress_is_kept_under_default_policy(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache")
    cache.set(KEY_DAY_PROGRESS, {"date": "2026-03-01", "minutes_by_subject": {"Physics": 45}})

    acc = SessionAccounting(cache=cache, user_id="u1", today=lambda: "2026-03-02")

    assert acc.progress.date == "2026-03-02"
    assert acc.minutes_by_subject == {"Physics": 45}
    assert cache.get(KEY_DAY_PROGRESS)["date"] == "2026-03-02"
    assert cache.get(KEY_LAST_USED_DATE) == "2026-03-02"


def test_stale_day_with_zero_totals_resets(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache")
    cache.set(KEY_DAY_PROGRESS, {"date": "2026-03-01", "minutes_by_subject": {"Physics": 0}})
    acc = SessionAccounting(cache=cache, user_id="u1", today=lambda: "2026-03-01")

    assert acc.check_day_boundary() == "same_day"
    assert acc.check_day_boundary(today="2026-03-02") == "reset"
    assert acc.minutes_by_subject == {}


def test_strict_policy_always_resets(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache")
    cache.set(KEY_DAY_PROGRESS, {"date": "2026-03-01", "minutes_by_subject": {"Physics": 45}})

    acc = SessionAccounting(cache=cache, user_id="u1", today=lambda: "2026-03-02", day_reset_policy=POLICY_STRICT)

    assert acc.minutes_by_subject == {}
    assert acc.progress.date == "2026-03-02"


def test_rehydrate_takes_per_subject_maximum(tmp_path) -> None:
    acc = _accounting(tmp_path)
    acc.on_tick(20 * 60, "Physics", "continuous", "work")
    acc.on_tick(5 * 60, "Chemistry", "continuous", "work")

    remote = [
        {"id": "a", "subject": "Physics", "duration_minutes": 10, "date": "2026-03-02",
         "start_time": "", "end_time": ""},
        {"id": "b", "subject": "Chemistry", "duration_minutes": 15, "date": "2026-03-02",
         "start_time": "", "end_time": ""},
        {"id": "c", "subject": "Chemistry", "duration_minutes": 30, "date": "2026-03-01",
         "start_time": "", "end_time": ""},
        {"id": "d", "subject": "Physics", "duration_minutes": 0},
    ]
    totals = acc.rehydrate(remote)

    assert totals == {"Physics": 20, "Chemistry": 15}


def test_goal_progress_against_daily_targets(tmp_path) -> None:
    acc = _accounting(tmp_path)
    acc.on_tick(60 * 60, "Physics", "continuous", "work")

    goals = acc.goal_progress({"Physics": 120, "Chemistry": 120})

    assert goals["Physics"]["percent"] == 50
    assert goals["Physics"]["met"] is False
    assert goals["Chemistry"]["minutes"] == 0


def test_last_used_day_detects_rollover_when_progress_blob_is_lost(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache")
    cache.set(KEY_LAST_USED_DATE, "2026-03-01")

    acc = SessionAccounting(cache=cache, user_id="u1", today=lambda: "2026-03-02")

    assert acc.last_boundary_status == "reset"
    assert acc.progress.date == "2026-03-02"
    assert cache.get(KEY_LAST_USED_DATE) == "2026-03-02"

    fresh = SessionAccounting(cache=LocalCache(tmp_path / "other"), user_id="u1", today=lambda: "2026-03-02")
    assert fresh.last_boundary_status == "same_day"
