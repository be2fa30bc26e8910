from __future__ import annotations

import logging
import time
from typing import Callable

from studytrack_app.core.timer_state import (
    MODE_CONTINUOUS,
    MODE_INTERVAL,
    PHASE_BREAK,
    PHASE_WORK,
    TIMER_MODES,
    TIMER_PHASES,
    IntervalConfig,
    TimerState,
    TimerView,
    as_float,
    as_int,
)

LOGGER = logging.getLogger(__name__)

TimerEvents = list[tuple[str, dict]]


class TimerService:
    """Study timer state machine.

    Elapsed time always comes from clock differences between ticks, never from
    counting tick callbacks, so a late or suspended callback still credits the
    real time once it fires. Fractions of a second are carried between ticks.

    Transitions return ``(name, payload)`` event tuples for the caller to route:
    ``tick``, ``phase_complete``, ``phase_start``, ``pause`` and ``stop``.
    """

    def __init__(
        self,
        mode: str = MODE_CONTINUOUS,
        interval: IntervalConfig | None = None,
        phase_debounce_s: float = 1.5,
        monotonic_now: Callable[[], float] | None = None,
        wall_now: Callable[[], float] | None = None,
        is_visible: Callable[[], bool] | None = None,
    ) -> None:
        if mode not in TIMER_MODES:
            raise ValueError(f"unknown timer mode: {mode}")
        self._mono_now = monotonic_now or time.monotonic
        self._wall_now = wall_now or time.time
        self.is_visible = is_visible or (lambda: True)
        self.phase_debounce_s = max(0.0, float(phase_debounce_s))

        self.state = TimerState(mode=mode, interval=interval or IntervalConfig())
        self.paused: dict | None = None
        self._last_tick_mono: float | None = None
        self._carry_s = 0.0
        self._last_transition_mono: float | None = None
        self._phase_duration_s = 0
        self._phase_started_wall: float | None = None
        self._session_started_wall: float | None = None
        self._reinit()

    def _default_value(self) -> int:
        if self.state.mode == MODE_CONTINUOUS:
            return 0
        if self.state.phase == PHASE_BREAK:
            return self.state.interval.break_s
        return self.state.interval.work_s

    def _reinit(self) -> None:
        self.state.phase = PHASE_WORK
        self.state.value_s = self._default_value()
        self.state.total_elapsed_s = 0
        self.state.completed_intervals = 0
        self._phase_duration_s = self.state.value_s
        self._carry_s = 0.0
        self._last_transition_mono = None

    def _halt(self) -> None:
        self.state.running = False
        self.state.anchor_wall = None
        self._last_tick_mono = None
        self._carry_s = 0.0

    def view(self) -> TimerView:
        return TimerView(
            mode=self.state.mode,
            running=self.state.running,
            phase=self.state.phase,
            value_s=self.state.value_s,
            total_elapsed_s=self.state.total_elapsed_s,
            completed_intervals=self.state.completed_intervals,
            paused=self.paused is not None,
        )

    def start(self, resume: bool = False) -> dict | None:
        if self.state.running:
            return None

        now_mono = self._mono_now()
        now_wall = self._wall_now()
        resumed = False
        if resume and self.paused is not None and self.paused.get("mode") == self.state.mode:
            self._apply_paused(self.paused)
            resumed = True
        elif not resume:
            self._reinit()
            self._session_started_wall = now_wall
            self._phase_started_wall = now_wall
        self.paused = None
        if self._session_started_wall is None:
            self._session_started_wall = now_wall
        if self._phase_started_wall is None:
            self._phase_started_wall = now_wall

        self.state.running = True
        self.state.anchor_wall = now_wall
        self._last_tick_mono = now_mono
        self._carry_s = 0.0
        LOGGER.debug(
            "timer start mode=%s phase=%s value_s=%s resumed=%s",
            self.state.mode,
            self.state.phase,
            self.state.value_s,
            resumed,
        )
        return {
            "mode": self.state.mode,
            "phase": self.state.phase,
            "value_s": self.state.value_s,
            "resumed": resumed,
        }

    def pause(self) -> TimerEvents:
        if not self.state.running:
            return []
        events = self._advance()
        self.paused = {
            "mode": self.state.mode,
            "phase": self.state.phase,
            "value_s": self.state.value_s,
            "total_elapsed_s": self.state.total_elapsed_s,
            "completed_intervals": self.state.completed_intervals,
            "phase_duration_s": self._phase_duration_s,
            "phase_started_wall": self._phase_started_wall,
            "session_started_wall": self._session_started_wall,
            "paused_at": self._wall_now(),
        }
        self._halt()
        events.append(("pause", dict(self.paused)))
        return events

    def stop(self) -> TimerEvents:
        events = self._advance() if self.state.running else []
        self._halt()
        self.paused = None
        events.append(
            (
                "stop",
                {
                    "mode": self.state.mode,
                    "phase": self.state.phase,
                    "total_elapsed_s": self.state.total_elapsed_s,
                    "started_at": self._session_started_wall,
                    "ended_at": self._wall_now(),
                },
            )
        )
        return events

    def reset(self) -> bool:
        # A hidden window must not wipe state another visible window may own.
        if not self.is_visible():
            LOGGER.info("timer reset ignored while not visible")
            return False
        self._halt()
        self._reinit()
        self.paused = None
        self._phase_started_wall = None
        self._session_started_wall = None
        return True

    def switch_mode(self, mode: str) -> dict:
        if mode not in TIMER_MODES:
            raise ValueError(f"unknown timer mode: {mode}")
        previous = self.state.mode
        self._halt()
        self.state.mode = mode
        self._reinit()
        self.paused = None
        self._phase_started_wall = None
        self._session_started_wall = None
        return {"from_mode": previous, "mode": mode, "value_s": self.state.value_s}

    def set_interval_config(self, interval: IntervalConfig) -> None:
        self.state.interval = interval
        idle = not self.state.running and self.paused is None
        if idle and self.state.mode == MODE_INTERVAL and self.state.total_elapsed_s == 0:
            self.state.value_s = self._default_value()
            self._phase_duration_s = self.state.value_s

    def tick(self) -> TimerEvents:
        return self._advance()

    def on_foreground(self, credit_background: bool = True) -> TimerEvents:
        if not self.state.running:
            return []
        events = self._advance() if credit_background else []
        self._last_tick_mono = self._mono_now()
        self._carry_s = 0.0
        self.state.anchor_wall = self._wall_now()
        return events

    def _advance(self) -> TimerEvents:
        events: TimerEvents = []
        if not self.state.running or self._last_tick_mono is None:
            return events

        now = self._mono_now()
        self._carry_s += max(0.0, now - self._last_tick_mono)
        self._last_tick_mono = now
        whole = int(self._carry_s)
        self._carry_s -= whole

        if whole > 0:
            if self.state.mode == MODE_CONTINUOUS:
                credited = whole
                self.state.value_s += credited
            else:
                # Overshoot past zero is dropped at the phase boundary.
                credited = min(whole, self.state.value_s)
                self.state.value_s -= credited
            self.state.total_elapsed_s += credited
            if credited > 0:
                events.append(
                    (
                        "tick",
                        {"elapsed_s": credited, "mode": self.state.mode, "phase": self.state.phase},
                    )
                )

        if self.state.mode == MODE_INTERVAL and self.state.value_s <= 0:
            events.extend(self._transition(now))
        return events

    def _transition(self, now_mono: float) -> TimerEvents:
        if self._last_transition_mono is not None and (now_mono - self._last_transition_mono) < self.phase_debounce_s:
            LOGGER.debug("phase transition debounced")
            return []
        self._last_transition_mono = now_mono

        now_wall = self._wall_now()
        finished = self.state.phase
        completed = {
            "phase": finished,
            "duration_s": int(max(1, self._phase_duration_s)),
            "started_at": self._phase_started_wall,
            "ended_at": now_wall,
        }

        interval = self.state.interval
        long_break = False
        if finished == PHASE_WORK:
            self.state.completed_intervals += 1
            long_break = self.state.completed_intervals % interval.sessions_before_long_break == 0
            self.state.phase = PHASE_BREAK
            self.state.value_s = interval.long_break_s if long_break else interval.break_s
        else:
            self.state.phase = PHASE_WORK
            self.state.value_s = interval.work_s
        completed["completed_intervals"] = self.state.completed_intervals

        self._phase_duration_s = self.state.value_s
        self._phase_started_wall = now_wall
        LOGGER.info("phase %s -> %s completed_intervals=%s", finished, self.state.phase, self.state.completed_intervals)
        return [
            ("phase_complete", completed),
            (
                "phase_start",
                {"phase": self.state.phase, "duration_s": self.state.value_s, "long_break": long_break},
            ),
        ]

    def _apply_paused(self, snap: dict) -> None:
        phase = str(snap.get("phase", PHASE_WORK))
        self.state.phase = phase if phase in TIMER_PHASES and self.state.mode == MODE_INTERVAL else PHASE_WORK
        self.state.value_s = as_int(snap.get("value_s"), self._default_value())
        self.state.total_elapsed_s = as_int(snap.get("total_elapsed_s"))
        self.state.completed_intervals = as_int(snap.get("completed_intervals"))
        self._phase_duration_s = as_int(snap.get("phase_duration_s"), self.state.value_s)
        self._phase_started_wall = as_float(snap.get("phase_started_wall"))
        self._session_started_wall = as_float(snap.get("session_started_wall"))

    def snapshot(self) -> dict:
        now_wall = self._wall_now()
        credited_until = None
        if self.state.running and self._last_tick_mono is not None:
            pending = max(0.0, self._mono_now() - self._last_tick_mono) + self._carry_s
            credited_until = now_wall - pending
        return {
            "mode": self.state.mode,
            "running": self.state.running,
            "phase": self.state.phase,
            "value_s": int(self.state.value_s),
            "total_elapsed_s": int(self.state.total_elapsed_s),
            "anchor_wall": self.state.anchor_wall,
            "completed_intervals": int(self.state.completed_intervals),
            "interval": self.state.interval.to_dict(),
            "phase_duration_s": int(self._phase_duration_s),
            "phase_started_wall": self._phase_started_wall,
            "session_started_wall": self._session_started_wall,
            "credited_until_wall": credited_until,
            "saved_at_wall": now_wall,
        }

    def restore(self, payload: dict | None, paused: dict | None = None) -> None:
        self._halt()
        self.paused = None
        if not isinstance(payload, dict):
            self._reinit()
            self._phase_started_wall = None
            self._session_started_wall = None
            return

        mode = str(payload.get("mode", MODE_CONTINUOUS))
        self.state.mode = mode if mode in TIMER_MODES else MODE_CONTINUOUS
        self.state.interval = IntervalConfig.from_dict(payload.get("interval"))
        self._reinit()
        self._apply_paused(payload)

        if isinstance(paused, dict) and paused.get("mode") == self.state.mode:
            self.paused = dict(paused)

        if bool(payload.get("running", False)):
            now_wall = self._wall_now()
            credited_until = as_float(payload.get("credited_until_wall")) or as_float(payload.get("saved_at_wall"))
            gap = max(0.0, now_wall - credited_until) if credited_until is not None else 0.0
            self.state.running = True
            self.state.anchor_wall = as_float(payload.get("anchor_wall")) or now_wall
            # The next tick credits the time that passed while the process was gone.
            self._last_tick_mono = self._mono_now() - gap
            self._carry_s = 0.0
            if self._session_started_wall is None:
                self._session_started_wall = now_wall
        LOGGER.debug(
            "timer restored mode=%s running=%s value_s=%s", self.state.mode, self.state.running, self.state.value_s
        )
