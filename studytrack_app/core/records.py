from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any
from uuid import uuid4

SESSION_CONTINUOUS = "continuous"
SESSION_INTERVAL = "interval"
SESSION_TYPES = {SESSION_CONTINUOUS, SESSION_INTERVAL}

MUTATION_SESSION = "session"
MUTATION_TASK = "task"
MUTATION_EVENT = "event"
MUTATION_KINDS = {MUTATION_SESSION, MUTATION_TASK, MUTATION_EVENT}


def utc_now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def day_key(value: datetime | date | None = None) -> str:
    """Local calendar day for a timestamp, as YYYY-MM-DD."""
    if value is None:
        return date.today().isoformat()
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone()
        return value.date().isoformat()
    return value.isoformat()


def iso_from_wall(wall: float) -> str:
    return datetime.fromtimestamp(float(wall), tz=timezone.utc).isoformat()


def parse_iso(ts: Any) -> datetime | None:
    if not isinstance(ts, str) or not ts.strip():
        return None
    text = ts.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class SessionRecord:
    user_id: str
    subject: str
    duration_minutes: int
    start_time: str
    end_time: str
    session_type: str = SESSION_CONTINUOUS
    date: str = ""
    username: str = ""
    created_at: str = field(default_factory=utc_now_iso)
    id: str = field(default_factory=lambda: uuid4().hex)

    def __post_init__(self) -> None:
        if int(self.duration_minutes) < 1:
            raise ValueError(f"session duration must be at least one minute, got {self.duration_minutes}")
        if self.session_type not in SESSION_TYPES:
            raise ValueError(f"unknown session type: {self.session_type}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict) -> "SessionRecord":
        return cls(
            id=str(payload.get("id", "") or uuid4().hex),
            user_id=str(payload.get("user_id", payload.get("userId", ""))),
            subject=str(payload.get("subject", "")),
            duration_minutes=int(payload.get("duration_minutes", payload.get("duration", 0))),
            start_time=str(payload.get("start_time", payload.get("startTime", ""))),
            end_time=str(payload.get("end_time", payload.get("endTime", ""))),
            session_type=str(payload.get("session_type", SESSION_CONTINUOUS)),
            date=str(payload.get("date", "")),
            username=str(payload.get("username", "")),
            created_at=str(payload.get("created_at", payload.get("createdAt", "")) or utc_now_iso()),
        )


@dataclass(frozen=True)
class PendingMutation:
    kind: str
    collection: str
    payload: dict[str, Any]
    mutation_id: str = field(default_factory=lambda: uuid4().hex)
    queued_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict) -> "PendingMutation | None":
        if not isinstance(payload, dict):
            return None
        kind = str(payload.get("kind", ""))
        body = payload.get("payload")
        mutation_id = str(payload.get("mutation_id", "")).strip()
        if kind not in MUTATION_KINDS or not isinstance(body, dict) or not mutation_id:
            return None
        return cls(
            kind=kind,
            collection=str(payload.get("collection", "")),
            payload=body,
            mutation_id=mutation_id,
            queued_at=str(payload.get("queued_at", "")),
        )


def session_mutation(record: SessionRecord) -> PendingMutation:
    # Reuse the record id so a retried write stays idempotent on the store side.
    return PendingMutation(
        kind=MUTATION_SESSION,
        collection="sessions",
        payload=record.to_dict(),
        mutation_id=f"session:{record.id}",
    )
