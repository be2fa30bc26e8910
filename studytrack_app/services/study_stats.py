from __future__ import annotations

import re
from collections import defaultdict
from datetime import date, timedelta
from typing import Iterable

from studytrack_app.core.records import SessionRecord, day_key, parse_iso


def _as_dict(record: SessionRecord | dict) -> dict:
    return record.to_dict() if isinstance(record, SessionRecord) else dict(record)


def _record_day(doc: dict) -> str:
    day = str(doc.get("date", "")).strip()
    if day:
        return day
    parsed = parse_iso(doc.get("end_time", doc.get("endTime")))
    return day_key(parsed) if parsed is not None else ""


def _minutes(doc: dict) -> int:
    try:
        return max(0, int(doc.get("duration_minutes", doc.get("duration", 0))))
    except (TypeError, ValueError):
        return 0


def calculate_streaks(days: Iterable[str], today: str | None = None) -> dict:
    """Current and longest run of consecutive study days.

    The current streak only counts when the latest study day is today or
    yesterday.
    """
    parsed: set[date] = set()
    for value in days:
        try:
            parsed.add(date.fromisoformat(str(value)))
        except ValueError:
            continue
    if not parsed:
        return {"current_streak": 0, "longest_streak": 0, "streak_dates": []}

    today_date = date.fromisoformat(today) if today else date.today()
    ordered = sorted(parsed, reverse=True)

    streak_dates: list[str] = []
    if ordered[0] in {today_date, today_date - timedelta(days=1)}:
        expected = ordered[0]
        for day in ordered:
            if day != expected:
                break
            streak_dates.append(day.isoformat())
            expected = day - timedelta(days=1)

    longest = 1
    run = 1
    for prev, current in zip(ordered, ordered[1:]):
        if current == prev - timedelta(days=1):
            run += 1
            longest = max(longest, run)
        else:
            run = 1

    return {
        "current_streak": len(streak_dates),
        "longest_streak": max(longest, len(streak_dates)),
        "streak_dates": streak_dates,
    }


def calculate_study_stats(records: Iterable[SessionRecord | dict], today: str | None = None) -> dict:
    docs = [_as_dict(record) for record in records]
    total = sum(_minutes(doc) for doc in docs)

    by_subject: dict[str, int] = defaultdict(int)
    by_type: dict[str, int] = defaultdict(int)
    by_day: dict[str, int] = defaultdict(int)
    for doc in docs:
        minutes = _minutes(doc)
        by_subject[str(doc.get("subject", ""))] += minutes
        by_type[str(doc.get("session_type", doc.get("type", "")))] += minutes
        day = _record_day(doc)
        if day:
            by_day[day] += minutes

    daily = [{"date": day, "minutes": by_day[day]} for day in sorted(by_day)]
    best_day = {"date": today or day_key(), "minutes": 0}
    for entry in daily:
        if entry["minutes"] > best_day["minutes"]:
            best_day = dict(entry)

    streaks = calculate_streaks((entry["date"] for entry in daily if entry["minutes"] > 0), today=today)
    return {
        "total_minutes": total,
        "total_sessions": len(docs),
        "average_session_minutes": round(total / len(docs), 2) if docs else 0.0,
        "subject_breakdown": dict(by_subject),
        "type_breakdown": dict(by_type),
        "daily_minutes": daily,
        "best_day": best_day,
        "current_streak": streaks["current_streak"],
        "longest_streak": streaks["longest_streak"],
    }


def goal_progress(minutes_by_subject: dict[str, int], targets: dict[str, int]) -> dict[str, dict]:
    out: dict[str, dict] = {}
    for subject, target in targets.items():
        minutes = max(0, int(minutes_by_subject.get(subject, 0)))
        target = max(1, int(target))
        out[subject] = {
            "minutes": minutes,
            "target": target,
            "percent": min(100, round(minutes * 100 / target)),
            "met": minutes >= target,
        }
    return out


def rank_leaderboard(profiles: Iterable[dict], limit: int = 10) -> list[dict]:
    rows: list[dict] = []
    for profile in profiles:
        if not isinstance(profile, dict):
            continue
        try:
            total = max(0, int(profile.get("totalStudyTime", 0) or 0))
        except (TypeError, ValueError):
            total = 0
        study_times = profile.get("studyTimes", {})
        rows.append(
            {
                "id": str(profile.get("id", "")),
                "username": str(profile.get("username") or profile.get("displayName") or "").strip() or "Anonymous",
                "totalStudyTime": total,
                "studyTimes": dict(study_times) if isinstance(study_times, dict) else {},
            }
        )
    rows.sort(key=lambda row: row["totalStudyTime"], reverse=True)
    ranked = rows[: max(0, int(limit))]
    for rank, row in enumerate(ranked, start=1):
        row["rank"] = rank
    return ranked


def derive_display_name(display_name: str = "", email: str = "", user_id: str = "") -> str:
    if display_name and display_name.strip():
        return display_name.strip()
    if email and "@" in email:
        local = email.split("@", 1)[0]
        if local:
            return local[:1].upper() + re.sub(r"[0-9]", "", local[1:])
    return f"User-{user_id[:4]}"


def format_hms(seconds: int) -> str:
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_hm(minutes: int) -> str:
    minutes = max(0, int(minutes))
    hours, mins = divmod(minutes, 60)
    if hours:
        return f"{hours}h {mins}m"
    return f"{mins}m"
