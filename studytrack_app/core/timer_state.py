from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

MODE_CONTINUOUS = "continuous"
MODE_INTERVAL = "interval"
TIMER_MODES = {MODE_CONTINUOUS, MODE_INTERVAL}

PHASE_WORK = "work"
PHASE_BREAK = "break"
TIMER_PHASES = {PHASE_WORK, PHASE_BREAK}


def as_int(value: Any, default: int = 0, minimum: int = 0) -> int:
    try:
        return max(minimum, int(value))
    except (TypeError, ValueError):
        return max(minimum, int(default))


def as_float(value: Any) -> float | None:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if out > 0 else None


@dataclass(frozen=True)
class IntervalConfig:
    work_s: int = 25 * 60
    break_s: int = 5 * 60
    long_break_s: int = 15 * 60
    sessions_before_long_break: int = 4

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Any) -> "IntervalConfig":
        if not isinstance(payload, dict):
            return cls()
        base = cls()
        return cls(
            work_s=as_int(payload.get("work_s"), base.work_s, minimum=1),
            break_s=as_int(payload.get("break_s"), base.break_s, minimum=1),
            long_break_s=as_int(payload.get("long_break_s"), base.long_break_s, minimum=1),
            sessions_before_long_break=as_int(
                payload.get("sessions_before_long_break"), base.sessions_before_long_break, minimum=1
            ),
        )

    @classmethod
    def from_minutes(
        cls, work: int, short_break: int, long_break: int, sessions_before_long_break: int
    ) -> "IntervalConfig":
        return cls(
            work_s=max(1, int(work)) * 60,
            break_s=max(1, int(short_break)) * 60,
            long_break_s=max(1, int(long_break)) * 60,
            sessions_before_long_break=max(1, int(sessions_before_long_break)),
        )


@dataclass
class TimerState:
    # value_s counts up in continuous mode and down in interval mode.
    mode: str = MODE_CONTINUOUS
    running: bool = False
    phase: str = PHASE_WORK
    value_s: int = 0
    total_elapsed_s: int = 0
    anchor_wall: float | None = None
    interval: IntervalConfig = field(default_factory=IntervalConfig)
    completed_intervals: int = 0


@dataclass
class TimerView:
    mode: str
    running: bool
    phase: str
    value_s: int
    total_elapsed_s: int
    completed_intervals: int
    paused: bool
