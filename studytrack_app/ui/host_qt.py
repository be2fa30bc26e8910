from __future__ import annotations

import logging
import sys
from collections.abc import Callable

from PySide6 import QtCore, QtGui, QtWidgets

from studytrack_app.core.timer_state import MODE_CONTINUOUS, MODE_INTERVAL
from studytrack_app.services.study_stats import format_hm, format_hms

LOGGER = logging.getLogger(__name__)


class QtHost:
    """Study window plus the Qt event loop that drives the controller's scheduled callbacks."""

    def __init__(
        self,
        subjects: tuple[str, ...] | list[str] = (),
        on_start: Callable[[str], None] | None = None,
        on_pause: Callable[[], None] | None = None,
        on_resume: Callable[[str], None] | None = None,
        on_stop: Callable[[], None] | None = None,
        on_reset: Callable[[], None] | None = None,
        on_mode_change: Callable[[str], None] | None = None,
        on_select_subject: Callable[[str], None] | None = None,
        on_sync_now: Callable[[], None] | None = None,
        on_foreground: Callable[[], None] | None = None,
        on_before_terminate: Callable[[], None] | None = None,
    ) -> None:
        self._app = QtWidgets.QApplication.instance() or QtWidgets.QApplication(sys.argv)
        self._on_foreground = on_foreground
        self._on_before_terminate = on_before_terminate
        self._win = _StudyWindow(
            subjects,
            on_start,
            on_pause,
            on_resume,
            on_stop,
            on_reset,
            on_mode_change,
            on_select_subject,
            on_sync_now,
            on_restored=self._emit_foreground,
        )
        self._app.applicationStateChanged.connect(self._handle_state_change)
        self._app.aboutToQuit.connect(self._handle_about_to_quit)

    def is_visible(self) -> bool:
        # Focus does not matter; a shown, non-minimized window counts as on screen.
        return self._win.isVisible() and not self._win.isMinimized()

    def schedule_every(self, seconds: int, callback: Callable[[], None]) -> None:
        timer = QtCore.QTimer(self._win)
        timer.setInterval(max(1, int(seconds * 1000)))
        timer.setTimerType(QtCore.Qt.TimerType.PreciseTimer)
        timer.timeout.connect(callback)
        timer.start()
        self._win._timers.append(timer)

    def update_view(self, status: dict) -> None:
        self._win.set_status(status)

    def show_notice(self, message: str) -> None:
        self._win.set_notice(message)

    def _emit_foreground(self) -> None:
        if self._on_foreground is not None:
            LOGGER.debug("window restored; foreground hook")
            self._on_foreground()

    def _handle_state_change(self, state: QtCore.Qt.ApplicationState) -> None:
        if state == QtCore.Qt.ApplicationState.ApplicationActive:
            self._emit_foreground()

    def _handle_about_to_quit(self) -> None:
        if self._on_before_terminate is not None:
            self._on_before_terminate()

    def show(self) -> None:
        self._win.show()
        self._win.raise_()
        self._win.activateWindow()

    def quit(self) -> None:
        self._app.quit()

    def run(self) -> int:
        self.show()
        return int(self._app.exec())


class _StudyWindow(QtWidgets.QWidget):
    def __init__(
        self,
        subjects: tuple[str, ...] | list[str],
        on_start: Callable[[str], None] | None,
        on_pause: Callable[[], None] | None,
        on_resume: Callable[[str], None] | None,
        on_stop: Callable[[], None] | None,
        on_reset: Callable[[], None] | None,
        on_mode_change: Callable[[str], None] | None,
        on_select_subject: Callable[[str], None] | None,
        on_sync_now: Callable[[], None] | None,
        on_restored: Callable[[], None] | None = None,
    ) -> None:
        super().__init__()
        self._on_start = on_start
        self._on_pause = on_pause
        self._on_resume = on_resume
        self._on_stop = on_stop
        self._on_reset = on_reset
        self._on_mode_change = on_mode_change
        self._on_select_subject = on_select_subject
        self._on_sync_now = on_sync_now
        self._on_restored = on_restored
        self._timers: list[QtCore.QTimer] = []

        self.setWindowTitle("StudyTrack")
        self.setMinimumWidth(360)

        self._timer_label = QtWidgets.QLabel("00:00:00", self)
        font = QtGui.QFont(self._timer_label.font())
        font.setPointSize(28)
        font.setBold(True)
        self._timer_label.setFont(font)
        self._timer_label.setAlignment(QtCore.Qt.AlignmentFlag.AlignCenter)

        self._phase_label = QtWidgets.QLabel("idle", self)
        self._phase_label.setAlignment(QtCore.Qt.AlignmentFlag.AlignCenter)
        self._progress_label = QtWidgets.QLabel("", self)
        self._progress_label.setWordWrap(True)
        self._sync_label = QtWidgets.QLabel("sync: idle", self)
        self._notice_label = QtWidgets.QLabel("", self)
        self._notice_label.setWordWrap(True)

        self._subject_box = QtWidgets.QComboBox(self)
        self._subject_box.addItems(list(subjects))
        self._subject_box.currentTextChanged.connect(self._emit_select_subject)
        self._mode_box = QtWidgets.QComboBox(self)
        self._mode_box.addItems([MODE_CONTINUOUS, MODE_INTERVAL])
        self._mode_box.currentTextChanged.connect(self._emit_mode_change)

        def mk_btn(text: str, fn: Callable[[], None]) -> QtWidgets.QPushButton:
            b = QtWidgets.QPushButton(text, self)
            b.setCursor(QtGui.QCursor(QtCore.Qt.CursorShape.PointingHandCursor))
            b.setMinimumWidth(56)
            b.clicked.connect(fn)
            return b

        self.start_btn = mk_btn("Start", self._emit_start)
        self.pause_btn = mk_btn("Pause", self._emit_pause)
        self.resume_btn = mk_btn("Resume", self._emit_resume)
        self.stop_btn = mk_btn("Stop", self._emit_stop)
        self.reset_btn = mk_btn("Reset", self._emit_reset)
        self.sync_btn = mk_btn("Sync", self._emit_sync_now)

        pickers = QtWidgets.QHBoxLayout()
        pickers.addWidget(self._subject_box, 1)
        pickers.addWidget(self._mode_box)
        buttons = QtWidgets.QHBoxLayout()
        for b in (self.start_btn, self.pause_btn, self.resume_btn, self.stop_btn, self.reset_btn):
            buttons.addWidget(b)
        footer = QtWidgets.QHBoxLayout()
        footer.addWidget(self._sync_label, 1)
        footer.addWidget(self.sync_btn)

        layout = QtWidgets.QVBoxLayout(self)
        layout.addLayout(pickers)
        layout.addWidget(self._timer_label)
        layout.addWidget(self._phase_label)
        layout.addLayout(buttons)
        layout.addWidget(self._progress_label)
        layout.addWidget(self._notice_label)
        layout.addLayout(footer)

    # -------- user actions ----------
    def _emit_start(self) -> None:
        if self._on_start is not None:
            self._on_start(self._subject_box.currentText())

    def _emit_pause(self) -> None:
        if self._on_pause is not None:
            self._on_pause()

    def _emit_resume(self) -> None:
        if self._on_resume is not None:
            self._on_resume(self._subject_box.currentText())

    def _emit_stop(self) -> None:
        if self._on_stop is not None:
            self._on_stop()

    def _emit_reset(self) -> None:
        if self._on_reset is not None:
            self._on_reset()

    def _emit_sync_now(self) -> None:
        if self._on_sync_now is not None:
            self._on_sync_now()

    def _emit_mode_change(self, mode: str) -> None:
        if self._on_mode_change is not None and mode:
            self._on_mode_change(mode)

    def _emit_select_subject(self, subject: str) -> None:
        if self._on_select_subject is not None and subject:
            self._on_select_subject(subject)

    def changeEvent(self, event: QtCore.QEvent) -> None:
        super().changeEvent(event)
        if event.type() != QtCore.QEvent.Type.WindowStateChange:
            return
        was_minimized = bool(event.oldState() & QtCore.Qt.WindowState.WindowMinimized)
        if was_minimized and not self.isMinimized() and self._on_restored is not None:
            self._on_restored()

    # -------- controller hooks ----------
    def set_status(self, status: dict) -> None:
        timer = status.get("timer", {})
        self._timer_label.setText(format_hms(int(timer.get("value_s", 0))))
        if timer.get("running"):
            state = "running"
        elif timer.get("paused"):
            state = "paused"
        else:
            state = "idle"
        if timer.get("mode") == MODE_INTERVAL:
            state = f"{timer.get('phase', '')} {state} #{int(timer.get('completed_intervals', 0))}"
        self._phase_label.setText(state)

        self._select_quietly(self._subject_box, str(status.get("subject", "")))
        self._select_quietly(self._mode_box, str(timer.get("mode", "")))

        goals = status.get("goals", {})
        parts = [
            f"{subject} {format_hm(row.get('minutes', 0))}/{format_hm(row.get('target', 0))}"
            for subject, row in goals.items()
        ]
        self._progress_label.setText(" | ".join(parts))

        sync_text = f"sync: {status.get('sync_status', '')}"
        pending = int(status.get("pending", 0))
        if pending:
            sync_text += f" ({pending} pending)"
        self._sync_label.setText(sync_text)

    def set_notice(self, message: str) -> None:
        self._notice_label.setText(message)

    @staticmethod
    def _select_quietly(box: QtWidgets.QComboBox, value: str) -> None:
        index = box.findText(value)
        if index < 0 or index == box.currentIndex():
            return
        box.blockSignals(True)
        box.setCurrentIndex(index)
        box.blockSignals(False)
