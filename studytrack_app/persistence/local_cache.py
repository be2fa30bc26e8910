from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any

LOGGER = logging.getLogger(__name__)

KEY_DAY_PROGRESS = "day_progress"
KEY_TIMER_STATE = "timer_state"
KEY_PAUSED_SNAPSHOT = "paused_snapshot"
KEY_LAST_USED_DATE = "last_used_date"
KEY_PENDING = "pending_mutations"
KEY_SELECTED_SUBJECT = "selected_subject"
KEY_PAUSED_SUBJECT = "paused_subject"
KEY_OFFLINE_TASKS = "offline_tasks"
KEY_OFFLINE_EVENTS = "offline_events"


class LocalCache:
    """Key/value store of JSON blobs, one file per key.

    Writes go through a temp file and ``os.replace`` so a crash never leaves a
    half-written blob behind. When the directory cannot be written the cache
    drops to an in-memory dict for the rest of the process lifetime; reads of
    missing or corrupt blobs return the caller's default.
    """

    def __init__(self, path: str | Path | None) -> None:
        self.dir_path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._memory: dict[str, Any] = {}
        self.degraded = self.dir_path is None
        if self.dir_path is not None:
            try:
                self.dir_path.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                LOGGER.warning("cache dir unavailable path=%s error=%s; using memory", self.dir_path, exc)
                self.degraded = True

    def _key_path(self, key: str) -> Path:
        if self.dir_path is None:
            raise OSError(f"cache has no directory for key={key}")
        return self.dir_path / f"{key}.json"

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if self.degraded:
                return self._memory.get(key, default)
            path = self._key_path(key)
            if not path.exists():
                return default
            try:
                return json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                LOGGER.warning("cache blob corrupt key=%s error=%s", key, exc.msg)
                return default
            except OSError as exc:
                LOGGER.warning("cache read failed key=%s error=%s", key, exc)
                return default

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            if self.degraded:
                self._memory[key] = value
                return
            try:
                self._write(key, value)
            except OSError as exc:
                LOGGER.warning("cache write failed key=%s error=%s; switching to memory", key, exc)
                self._memory = self._snapshot_disk()
                self._memory[key] = value
                self.degraded = True

    def delete(self, key: str) -> None:
        with self._lock:
            self._memory.pop(key, None)
            if self.degraded:
                return
            try:
                self._key_path(key).unlink(missing_ok=True)
            except OSError as exc:
                LOGGER.warning("cache delete failed key=%s error=%s", key, exc)

    def _write(self, key: str, value: Any) -> None:
        path = self._key_path(key)
        payload = json.dumps(value, ensure_ascii=True, indent=2)
        with NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=str(path.parent)) as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
            tmp_path = Path(handle.name)
        try:
            os.replace(tmp_path, path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

    def _snapshot_disk(self) -> dict[str, Any]:
        # Carry whatever is still readable into memory so degraded mode starts warm.
        out: dict[str, Any] = {}
        if self.dir_path is None or not self.dir_path.exists():
            return out
        for file_path in self.dir_path.glob("*.json"):
            try:
                out[file_path.stem] = json.loads(file_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError):
                continue
        return out
