from __future__ import annotations

import pytest
from PySide6 import QtCore

from studytrack_app.config import StudyTrackConfig
from studytrack_app.controller import StudyController
from studytrack_app.ui.host_qt import QtHost


class _FakeClock:
    def __init__(self) -> None:
        self.mono = 100.0
        self.wall = 1_772_445_600.0

    def advance(self, seconds: float) -> None:
        self.mono += float(seconds)
        self.wall += float(seconds)


@pytest.fixture
def offscreen(monkeypatch):
    monkeypatch.setenv("QT_QPA_PLATFORM", "offscreen")


def _controller(tmp_path, clock: _FakeClock) -> StudyController:
    config = StudyTrackConfig(
        user_id="local",
        display_name="Tester",
        store="none",
        data_dir=tmp_path,
        file_store_dir=tmp_path / "remote",
        firestore_project="",
        firestore_token="",
        tick_seconds=1,
        sync_interval_seconds=300,
        day_check_seconds=60,
        work_minutes=25,
        break_minutes=5,
        long_break_minutes=15,
        sessions_before_long_break=4,
        phase_debounce_ms=1500,
        day_reset_policy="conserve",
        credit_background=True,
        subjects=("Physics", "Chemistry"),
        daily_target_minutes=120,
        log_level="INFO",
    )
    return StudyController(
        config=config,
        monotonic_now=lambda: clock.mono,
        wall_now=lambda: clock.wall,
        today=lambda: "2026-03-02",
    )


def test_shown_window_is_visible_until_minimized(offscreen) -> None:
    restored: list[bool] = []
    host = QtHost(subjects=("Physics",), on_foreground=lambda: restored.append(True))
    assert host.is_visible() is False

    host.show()
    assert host.is_visible() is True

    host._win.setWindowState(QtCore.Qt.WindowState.WindowMinimized)
    assert host.is_visible() is False

    restored.clear()
    host._win.setWindowState(QtCore.Qt.WindowState.WindowNoState)
    assert host.is_visible() is True
    assert restored
    host._win.hide()


def test_reset_works_through_a_shown_host(offscreen, tmp_path) -> None:
    clock = _FakeClock()
    controller = _controller(tmp_path, clock)
    host = QtHost(subjects=controller.subjects)
    controller.attach_host(host)

    controller.start_studying("Physics")
    clock.advance(30)
    controller.on_tick()
    assert controller.reset() is False

    host.show()
    assert controller.reset() is True
    assert controller.status()["timer"]["value_s"] == 0
    host._win.hide()


def test_buttons_call_controller_actions(offscreen, tmp_path) -> None:
    clock = _FakeClock()
    controller = _controller(tmp_path, clock)
    host = QtHost(
        subjects=controller.subjects,
        on_start=controller.start_studying,
        on_pause=controller.pause,
        on_stop=controller.stop_studying,
    )
    controller.attach_host(host)
    host._win._subject_box.setCurrentText("Chemistry")

    host._win.start_btn.click()
    assert controller.status()["timer"]["running"] is True
    assert controller.selected_subject == "Chemistry"
    assert host._win._notice_label.text() == "Study session started: Chemistry"

    clock.advance(65)
    controller.on_tick()
    assert host._win._timer_label.text() == "00:01:05"

    host._win.pause_btn.click()
    assert controller.status()["timer"]["paused"] is True
    assert host._win._phase_label.text() == "paused"

    host._win.stop_btn.click()
    assert controller.status()["timer"]["running"] is False
