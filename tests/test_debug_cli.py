import json

from studytrack_app import debug
from studytrack_app.core.records import SessionRecord, session_mutation
from studytrack_app.interaction.store_file import FileRemoteStore
from studytrack_app.persistence.local_cache import KEY_DAY_PROGRESS, KEY_TIMER_STATE, LocalCache
from studytrack_app.persistence.pending_queue import PendingQueue


def _record(subject: str = "Physics", minutes: int = 25) -> SessionRecord:
    return SessionRecord(
        user_id="local",
        subject=subject,
        duration_minutes=minutes,
        start_time="2026-03-02T10:00:00+00:00",
        end_time="2026-03-02T10:25:00+00:00",
        date="2026-03-02",
    )


def test_debug_config_masks_token(monkeypatch, capsys, tmp_path) -> None:
    monkeypatch.setenv("STUDYTRACK_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("STUDYTRACK_FIRESTORE_TOKEN", "secret-token")
    rc = debug._cmd_config(None)
    out = capsys.readouterr().out
    payload = json.loads(out)
    assert rc == 0
    assert payload["firestore_token"] == "***"
    assert payload["data_dir"] == str(tmp_path)


def test_debug_progress_outputs_goals(monkeypatch, capsys, tmp_path) -> None:
    monkeypatch.setenv("STUDYTRACK_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("STUDYTRACK_DAILY_TARGET_MINUTES", "60")
    LocalCache(tmp_path / "cache").set(
        KEY_DAY_PROGRESS, {"date": "2026-03-02", "minutes_by_subject": {"Physics": 75, "Chemistry": 30}}
    )
    rc = debug._cmd_progress(None)
    payload = json.loads(capsys.readouterr().out)
    assert rc == 0
    assert payload["date"] == "2026-03-02"
    assert payload["total"] == "1h 45m"
    assert payload["goals"]["Physics"]["met"] is True
    assert payload["goals"]["Chemistry"]["percent"] == 50


def test_debug_timer_formats_value(monkeypatch, capsys, tmp_path) -> None:
    monkeypatch.setenv("STUDYTRACK_DATA_DIR", str(tmp_path))
    LocalCache(tmp_path / "cache").set(KEY_TIMER_STATE, {"mode": "interval", "value_s": 754, "running": False})
    rc = debug.main(["timer"])
    payload = json.loads(capsys.readouterr().out)
    assert rc == 0
    assert payload["display"] == "00:12:34"
    assert payload["timer"]["mode"] == "interval"


def test_debug_pending_then_drain(monkeypatch, capsys, tmp_path) -> None:
    monkeypatch.setenv("STUDYTRACK_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("STUDYTRACK_STORE", "file")
    record = _record()
    PendingQueue(LocalCache(tmp_path / "cache")).enqueue(session_mutation(record))

    assert debug.main(["pending"]) == 0
    pending = json.loads(capsys.readouterr().out)
    assert pending["count"] == 1
    assert pending["items"][0]["kind"] == "session"

    assert debug.main(["drain"]) == 0
    drained = json.loads(capsys.readouterr().out)
    assert drained == {"status": "ok", "written": 1, "remaining": 0}

    store = FileRemoteStore(tmp_path / "remote_store")
    assert [s["id"] for s in store.list_sessions("local")] == [record.id]

    assert debug.main(["stats", "--day", "2026-03-02"]) == 0
    stats = json.loads(capsys.readouterr().out)
    assert stats["total_minutes"] == 25
    assert stats["subject_breakdown"] == {"Physics": 25}

    assert debug.main(["leaderboard", "--limit", "3"]) == 0
    board = json.loads(capsys.readouterr().out)
    assert board[0]["totalStudyTime"] == 25


def test_debug_drain_without_store_fails(monkeypatch, capsys, tmp_path) -> None:
    monkeypatch.setenv("STUDYTRACK_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("STUDYTRACK_STORE", "firestore")
    monkeypatch.delenv("STUDYTRACK_FIRESTORE_TOKEN", raising=False)
    rc = debug._cmd_drain(None)
    payload = json.loads(capsys.readouterr().out)
    assert rc == 1
    assert payload["status"] == "auth_missing"


def test_debug_session_actions_drive_the_controller(monkeypatch, capsys, tmp_path) -> None:
    monkeypatch.setenv("STUDYTRACK_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("STUDYTRACK_SUBJECTS", "Physics,Chemistry")

    assert debug.main(["start", "--subject", "Chemistry"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["timer"]["running"] is True
    assert payload["subject"] == "Chemistry"

    assert debug.main(["pause"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["timer"]["paused"] is True
    assert payload["paused_subject"] == "Chemistry"

    assert debug.main(["pause"]) == 1
    capsys.readouterr()

    assert debug.main(["resume"]) == 0
    assert json.loads(capsys.readouterr().out)["timer"]["running"] is True

    assert debug.main(["reset"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["timer"]["running"] is False
    assert payload["timer"]["paused"] is False

    assert debug.main(["stop"]) == 1
    capsys.readouterr()


def test_debug_mode_switch_persists(monkeypatch, capsys, tmp_path) -> None:
    monkeypatch.setenv("STUDYTRACK_DATA_DIR", str(tmp_path))

    assert debug.main(["mode", "interval"]) == 0
    assert json.loads(capsys.readouterr().out)["timer"]["mode"] == "interval"

    assert debug.main(["timer"]) == 0
    assert json.loads(capsys.readouterr().out)["timer"]["mode"] == "interval"
