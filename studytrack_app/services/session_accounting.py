from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Iterable

from studytrack_app.core.records import (
    SESSION_CONTINUOUS,
    SESSION_INTERVAL,
    SessionRecord,
    day_key,
    iso_from_wall,
    parse_iso,
    utc_now_iso,
)
from studytrack_app.core.timer_state import MODE_INTERVAL, PHASE_BREAK, as_int
from studytrack_app.persistence.local_cache import KEY_DAY_PROGRESS, KEY_LAST_USED_DATE, LocalCache
from studytrack_app.services.study_stats import goal_progress

LOGGER = logging.getLogger(__name__)

POLICY_CONSERVE = "conserve"
POLICY_STRICT = "strict"


@dataclass
class SubjectProgress:
    date: str
    minutes_by_subject: dict[str, int] = field(default_factory=dict)
    # Seconds not yet folded into a whole minute, per subject.
    seconds_carry: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "minutes_by_subject": dict(self.minutes_by_subject),
            "seconds_carry": dict(self.seconds_carry),
        }

    @classmethod
    def from_dict(cls, payload: object) -> "SubjectProgress | None":
        if not isinstance(payload, dict):
            return None
        date = str(payload.get("date", "")).strip()
        minutes = payload.get("minutes_by_subject", {})
        if not date or not isinstance(minutes, dict):
            return None
        carry = payload.get("seconds_carry", {})
        return cls(
            date=date,
            minutes_by_subject={str(k): as_int(v) for k, v in minutes.items()},
            seconds_carry={str(k): as_int(v) % 60 for k, v in carry.items()} if isinstance(carry, dict) else {},
        )


class SessionAccounting:
    def __init__(
        self,
        cache: LocalCache,
        user_id: str,
        username: str = "",
        record_sink: Callable[[SessionRecord], object] | None = None,
        day_reset_policy: str = POLICY_CONSERVE,
        today: Callable[[], str] | None = None,
    ) -> None:
        self.cache = cache
        self.user_id = user_id
        self.username = username
        self.record_sink = record_sink
        if day_reset_policy not in {POLICY_CONSERVE, POLICY_STRICT}:
            day_reset_policy = POLICY_CONSERVE
        self.day_reset_policy = day_reset_policy
        self._today = today or day_key

        loaded = SubjectProgress.from_dict(self.cache.get(KEY_DAY_PROGRESS))
        if loaded is None:
            # Without a progress blob the last used day still tells whether a rollover happened while closed.
            last_used = self.cache.get(KEY_LAST_USED_DATE)
            loaded = SubjectProgress(date=last_used if isinstance(last_used, str) and last_used else self._today())
        self.progress = loaded
        self.last_boundary_status = self.check_day_boundary()

    @property
    def minutes_by_subject(self) -> dict[str, int]:
        return dict(self.progress.minutes_by_subject)

    def _persist(self) -> None:
        self.cache.set(KEY_DAY_PROGRESS, self.progress.to_dict())

    def on_tick(self, elapsed_s: int, subject: str, mode: str, phase: str) -> int:
        if elapsed_s <= 0 or not subject:
            return 0
        if mode == MODE_INTERVAL and phase == PHASE_BREAK:
            return 0

        carry = self.progress.seconds_carry.get(subject, 0) + int(elapsed_s)
        minutes, rest = divmod(carry, 60)
        self.progress.seconds_carry[subject] = rest
        if minutes:
            self.progress.minutes_by_subject[subject] = self.progress.minutes_by_subject.get(subject, 0) + minutes
        self._persist()
        return minutes

    def on_session_stop(
        self,
        subject: str,
        total_elapsed_s: int,
        mode: str,
        started_at: float | None = None,
        ended_at: float | None = None,
    ) -> dict:
        if self.progress.seconds_carry.pop(subject, None) is not None:
            self._persist()

        if mode == MODE_INTERVAL:
            return {"status": "interval_noop", "minutes": 0}

        minutes = max(0, int(total_elapsed_s)) // 60
        if minutes < 1:
            LOGGER.info("session discarded subject=%s elapsed_s=%s reason=too_short", subject, total_elapsed_s)
            return {"status": "too_short", "minutes": 0}

        record = self._build_record(subject, minutes, SESSION_CONTINUOUS, started_at, ended_at)
        self._emit(record)
        return {"status": "recorded", "minutes": minutes, "record": record}

    def on_phase_completed(
        self,
        subject: str,
        work_duration_minutes: int,
        started_at: float | None = None,
        ended_at: float | None = None,
    ) -> SessionRecord | None:
        minutes = int(work_duration_minutes)
        if minutes < 1:
            LOGGER.info("work block discarded subject=%s minutes=%s reason=too_short", subject, minutes)
            return None
        record = self._build_record(subject, minutes, SESSION_INTERVAL, started_at, ended_at)
        self._emit(record)
        return record

    def _build_record(
        self,
        subject: str,
        minutes: int,
        session_type: str,
        started_at: float | None,
        ended_at: float | None,
    ) -> SessionRecord:
        end_time = iso_from_wall(ended_at) if ended_at else utc_now_iso()
        start_time = iso_from_wall(started_at) if started_at else end_time
        return SessionRecord(
            user_id=self.user_id,
            subject=subject,
            duration_minutes=minutes,
            start_time=start_time,
            end_time=end_time,
            session_type=session_type,
            date=self._today(),
            username=self.username,
        )

    def _emit(self, record: SessionRecord) -> None:
        LOGGER.info(
            "session recorded id=%s subject=%s minutes=%s type=%s",
            record.id,
            record.subject,
            record.duration_minutes,
            record.session_type,
        )
        if self.record_sink is not None:
            self.record_sink(record)

    def check_day_boundary(self, today: str | None = None) -> str:
        today = today or self._today()
        stored = self.progress.date
        if stored == today:
            return "same_day"

        has_progress = any(minutes > 0 for minutes in self.progress.minutes_by_subject.values())
        if self.day_reset_policy == POLICY_STRICT or not has_progress:
            self.progress = SubjectProgress(date=today)
            status = "reset"
        else:
            # Non-zero totals under a stale key are kept; clock skew or a late write
            # must not wipe real study time.
            self.progress.date = today
            status = "advanced"

        self._persist()
        self.cache.set(KEY_LAST_USED_DATE, today)
        LOGGER.info("day boundary stored=%s today=%s status=%s", stored, today, status)
        return status

    def rehydrate(self, records: Iterable[SessionRecord | dict]) -> dict[str, int]:
        today = self.progress.date
        remote_totals: dict[str, int] = defaultdict(int)
        for item in records:
            record = item if isinstance(item, SessionRecord) else _safe_record(item)
            if record is None or _record_day(record) != today:
                continue
            remote_totals[record.subject] += record.duration_minutes

        changed = False
        for subject, minutes in remote_totals.items():
            if minutes > self.progress.minutes_by_subject.get(subject, 0):
                self.progress.minutes_by_subject[subject] = minutes
                changed = True
        if changed:
            self._persist()
            LOGGER.info("day progress rehydrated from remote day=%s", today)
        return self.minutes_by_subject

    def goal_progress(self, targets: dict[str, int]) -> dict[str, dict]:
        return goal_progress(self.progress.minutes_by_subject, targets)


def _safe_record(payload: object) -> SessionRecord | None:
    if not isinstance(payload, dict):
        return None
    try:
        return SessionRecord.from_dict(payload)
    except (TypeError, ValueError):
        return None


def _record_day(record: SessionRecord) -> str:
    if record.date:
        return record.date
    parsed = parse_iso(record.end_time)
    return day_key(parsed) if parsed is not None else ""
