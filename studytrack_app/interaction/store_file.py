from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from tempfile import NamedTemporaryFile

from .store_base import RemoteStoreBase, RemoteStoreError


class FileRemoteStore(RemoteStoreBase):
    """Document store kept as one JSON file per user under a shared directory."""

    def __init__(self, root_dir: str | Path) -> None:
        self.root_dir = Path(root_dir)
        self.users_dir = self.root_dir / "users"
        self._lock = threading.Lock()

    def _user_file(self, user_id: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in user_id) or "anonymous"
        return self.users_dir / f"{safe}.json"

    def _load_user(self, user_id: str) -> dict:
        path = self._user_file(user_id)
        if not path.exists():
            return {"profile": {}, "collections": {}}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise RemoteStoreError(f"file store read failed user={user_id}: {exc}") from exc
        if not isinstance(data, dict):
            return {"profile": {}, "collections": {}}
        data.setdefault("profile", {})
        data.setdefault("collections", {})
        return data

    def _save_user(self, user_id: str, data: dict) -> None:
        self.users_dir.mkdir(parents=True, exist_ok=True)
        path = self._user_file(user_id)
        payload = json.dumps(data, ensure_ascii=True, indent=2)
        with NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=str(path.parent)) as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
            tmp_path = Path(handle.name)
        os.replace(tmp_path, path)

    def write_session(self, user_id: str, record: dict) -> None:
        session_id = str(record.get("id", "")).strip()
        if not session_id:
            raise RemoteStoreError("file store write failed: session without id")
        with self._lock:
            data = self._load_user(user_id)
            sessions = data["collections"].setdefault("sessions", {})
            if session_id in sessions:
                return
            sessions[session_id] = dict(record)

            profile = data["profile"]
            minutes = int(record.get("duration_minutes", 0))
            subject = str(record.get("subject", ""))
            study_times = profile.setdefault("studyTimes", {})
            study_times[subject] = int(study_times.get(subject, 0)) + minutes
            profile["totalStudyTime"] = int(profile.get("totalStudyTime", 0)) + minutes
            if record.get("username"):
                profile["username"] = record["username"]
                profile["displayName"] = record["username"]
            profile["id"] = user_id
            self._save_user(user_id, data)

    def list_sessions(self, user_id: str, day: str | None = None) -> list[dict]:
        with self._lock:
            sessions = self._load_user(user_id)["collections"].get("sessions", {})
        out = [dict(doc) for doc in sessions.values() if isinstance(doc, dict)]
        if day is not None:
            out = [doc for doc in out if doc.get("date") == day]
        return out

    def get_profile(self, user_id: str) -> dict:
        with self._lock:
            return dict(self._load_user(user_id)["profile"])

    def put_document(self, user_id: str, collection: str, doc: dict) -> None:
        doc_id = str(doc.get("id", "")).strip()
        if not doc_id:
            raise RemoteStoreError(f"file store write failed: {collection} document without id")
        with self._lock:
            data = self._load_user(user_id)
            data["collections"].setdefault(collection, {})[doc_id] = dict(doc)
            self._save_user(user_id, data)

    def list_documents(self, user_id: str, collection: str) -> list[dict]:
        with self._lock:
            docs = self._load_user(user_id)["collections"].get(collection, {})
        return [dict(doc) for doc in docs.values() if isinstance(doc, dict)]

    def list_profiles(self, limit: int = 10) -> list[dict]:
        if not self.users_dir.exists():
            return []
        profiles: list[dict] = []
        for file_path in sorted(self.users_dir.glob("*.json")):
            try:
                data = json.loads(file_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError):
                continue
            if isinstance(data, dict) and isinstance(data.get("profile"), dict):
                profiles.append(dict(data["profile"]))
        profiles.sort(key=lambda p: int(p.get("totalStudyTime", 0) or 0), reverse=True)
        return profiles[: max(0, int(limit))]
