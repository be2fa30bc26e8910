from __future__ import annotations

import os
import platform
from dataclasses import dataclass
from pathlib import Path

DEFAULT_SUBJECTS = ("Physics", "Chemistry", "Mathematics")
DAY_RESET_POLICIES = {"conserve", "strict"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError:
        return int(default)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _default_data_dir() -> Path:
    override = os.getenv("STUDYTRACK_DATA_DIR", "").strip()
    if override:
        return Path(override)

    system = platform.system().lower()
    if system == "windows":
        appdata = os.getenv("APPDATA", "").strip()
        if appdata:
            return Path(appdata) / "studytrack"
    home = Path.home()
    return home / ".studytrack"


@dataclass(frozen=True)
class StudyTrackConfig:
    user_id: str
    display_name: str
    store: str
    data_dir: Path
    file_store_dir: Path
    firestore_project: str
    firestore_token: str
    tick_seconds: int
    sync_interval_seconds: int
    day_check_seconds: int
    work_minutes: int
    break_minutes: int
    long_break_minutes: int
    sessions_before_long_break: int
    phase_debounce_ms: int
    day_reset_policy: str
    credit_background: bool
    subjects: tuple[str, ...]
    daily_target_minutes: int
    log_level: str

    @classmethod
    def from_env(cls) -> "StudyTrackConfig":
        data_dir = _default_data_dir()
        user_id = os.getenv("STUDYTRACK_USER_ID", "local").strip() or "local"
        store = os.getenv("STUDYTRACK_STORE", "file").strip().lower() or "file"
        file_store_default = data_dir / "remote_store"
        file_store_dir = Path(os.getenv("STUDYTRACK_FILE_STORE_DIR", str(file_store_default)))

        policy = os.getenv("STUDYTRACK_DAY_RESET_POLICY", "conserve").strip().lower()
        if policy not in DAY_RESET_POLICIES:
            policy = "conserve"

        raw_subjects = os.getenv("STUDYTRACK_SUBJECTS", "").strip()
        subjects = tuple(s.strip() for s in raw_subjects.split(",") if s.strip()) or DEFAULT_SUBJECTS

        return cls(
            user_id=user_id,
            display_name=os.getenv("STUDYTRACK_DISPLAY_NAME", "").strip(),
            store=store,
            data_dir=data_dir,
            file_store_dir=file_store_dir,
            firestore_project=os.getenv("STUDYTRACK_FIRESTORE_PROJECT", "").strip(),
            firestore_token=os.getenv("STUDYTRACK_FIRESTORE_TOKEN", "").strip(),
            tick_seconds=max(1, _env_int("STUDYTRACK_TICK_SECONDS", 1)),
            sync_interval_seconds=max(1, _env_int("STUDYTRACK_SYNC_INTERVAL_SECONDS", 300)),
            day_check_seconds=max(1, _env_int("STUDYTRACK_DAY_CHECK_SECONDS", 60)),
            work_minutes=max(1, _env_int("STUDYTRACK_WORK_MINUTES", 25)),
            break_minutes=max(1, _env_int("STUDYTRACK_BREAK_MINUTES", 5)),
            long_break_minutes=max(1, _env_int("STUDYTRACK_LONG_BREAK_MINUTES", 15)),
            sessions_before_long_break=max(1, _env_int("STUDYTRACK_SESSIONS_BEFORE_LONG_BREAK", 4)),
            phase_debounce_ms=max(0, _env_int("STUDYTRACK_PHASE_DEBOUNCE_MS", 1500)),
            day_reset_policy=policy,
            credit_background=_env_flag("STUDYTRACK_CREDIT_BACKGROUND", True),
            subjects=subjects,
            daily_target_minutes=max(1, _env_int("STUDYTRACK_DAILY_TARGET_MINUTES", 120)),
            log_level=os.getenv("STUDYTRACK_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )
