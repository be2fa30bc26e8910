from __future__ import annotations

import logging
import time
from collections.abc import Callable
from uuid import uuid4

from studytrack_app.core.records import (
    MUTATION_KINDS,
    MUTATION_SESSION,
    PendingMutation,
    SessionRecord,
    session_mutation,
)
from studytrack_app.interaction.store_base import RemoteStoreBase
from studytrack_app.persistence.pending_queue import PendingQueue
from studytrack_app.services.reconcile import resolve

LOGGER = logging.getLogger(__name__)


class SyncEngine:
    def __init__(
        self,
        user_id: str,
        store: RemoteStoreBase | None,
        queue: PendingQueue,
        is_online: Callable[[], bool] | None = None,
        monotonic_now: Callable[[], float] | None = None,
    ) -> None:
        self.user_id = user_id
        self.store = store
        self.queue = queue
        self.is_online = is_online or (lambda: True)
        self._mono_now = monotonic_now or time.monotonic

        self.last_status = "disabled" if self.store is None else "idle"
        self.last_error = ""
        self._retry_count = 0
        self._next_retry_monotonic = 0.0
        self._paused = False

    def submit_session(self, record: SessionRecord) -> dict:
        mutation = session_mutation(record)
        self.queue.enqueue(mutation)
        return self._drain_if_possible(mutation.mutation_id)

    def submit_mutation(self, kind: str, collection: str, doc: dict) -> dict:
        if kind not in MUTATION_KINDS:
            raise ValueError(f"unknown mutation kind: {kind}")
        doc_id = str(doc.get("id", "")).strip()
        stamp = str(doc.get("lastModified", doc.get("last_modified", ""))).strip()
        mutation_id = f"{collection}:{doc_id}:{stamp}" if doc_id else uuid4().hex
        mutation = PendingMutation(kind=kind, collection=collection, payload=dict(doc), mutation_id=mutation_id)
        self.queue.enqueue(mutation)
        return self._drain_if_possible(mutation.mutation_id)

    def _drain_if_possible(self, mutation_id: str) -> dict:
        blocked = self._blocked_status(force=False)
        if blocked is not None:
            return {"status": blocked, "written": 0, "remaining": len(self.queue), "synced": False}
        result = self.drain_pending()
        result["synced"] = all(item.mutation_id != mutation_id for item in self.queue.items())
        return result

    def _blocked_status(self, force: bool) -> str | None:
        if self.store is None:
            return self.last_status if self.last_status == "auth_missing" else "disabled"
        if self._paused and not force:
            self.last_status = "paused"
            return "paused"
        if not self.is_online():
            self.last_status = "offline"
            return "offline"
        if not force and self._next_retry_monotonic > self._mono_now():
            status = f"retrying({self._retry_count})"
            self.last_status = status
            return status
        return None

    def drain_pending(self) -> dict:
        """Write queued mutations oldest first, stopping at the first failure."""
        if self.store is None:
            return {"status": "disabled", "written": 0, "remaining": len(self.queue)}

        written = 0
        while True:
            item = self.queue.peek()
            if item is None:
                break
            try:
                self._apply(item)
            except Exception as exc:
                self._record_failure(exc)
                LOGGER.warning(
                    "pending drain stopped mutation_id=%s status=%s error=%s",
                    item.mutation_id,
                    self.last_status,
                    exc,
                )
                result = {
                    "status": self.last_status,
                    "written": written,
                    "remaining": len(self.queue),
                    "error": str(exc),
                }
                if self._paused:
                    result["paused"] = True
                else:
                    result["retry_in_seconds"] = max(0, int(round(self._next_retry_monotonic - self._mono_now())))
                    result["retry_count"] = self._retry_count
                return result
            self.queue.remove(item.mutation_id)
            written += 1

        self._record_success()
        if written:
            LOGGER.info("pending drained written=%s", written)
        return {"status": "ok", "written": written, "remaining": len(self.queue)}

    def _apply(self, item: PendingMutation) -> None:
        if item.kind == MUTATION_SESSION:
            self.store.write_session(self.user_id, item.payload)
        else:
            self.store.put_document(self.user_id, item.collection, item.payload)

    def sync_once(self, force: bool = False) -> dict:
        blocked = self._blocked_status(force=force)
        if blocked is not None:
            result = {"status": blocked, "written": 0, "remaining": len(self.queue)}
            if blocked.startswith("retrying("):
                result["retry_in_seconds"] = int(max(1, round(self._next_retry_monotonic - self._mono_now())))
            return result
        if force:
            self._paused = False
        return self.drain_pending()

    def reconcile(self, collection: str, local_docs: list[dict]) -> list[dict]:
        if self.store is None or self._paused or not self.is_online():
            return [dict(doc) for doc in local_docs]
        try:
            remote_docs = self.store.list_documents(self.user_id, collection)
        except Exception as exc:
            self._record_failure(exc)
            LOGGER.warning("reconcile fetch failed collection=%s status=%s", collection, self.last_status)
            return [dict(doc) for doc in local_docs]
        return resolve(local_docs, remote_docs)

    def fetch_today_sessions(self, day: str) -> list[dict]:
        if self.store is None or self._paused or not self.is_online():
            return []
        try:
            return self.store.list_sessions(self.user_id, day=day)
        except Exception as exc:
            self._record_failure(exc)
            LOGGER.warning("session fetch failed day=%s status=%s", day, self.last_status)
            return []

    def fetch_leaderboard(self, limit: int = 10) -> list[dict]:
        if self.store is None or self._paused or not self.is_online():
            return []
        try:
            return self.store.list_profiles(limit=limit)
        except Exception as exc:
            self._record_failure(exc)
            LOGGER.warning("leaderboard fetch failed limit=%s status=%s", limit, self.last_status)
            return []

    def _record_success(self) -> None:
        self.last_status = "ok"
        self.last_error = ""
        self._paused = False
        self._retry_count = 0
        self._next_retry_monotonic = 0.0

    def _record_failure(self, exc: Exception) -> None:
        self._retry_count += 1
        self.last_error = str(exc)
        self.last_status = self._classify_failure(exc)
        if self.last_status in {"auth_fail", "auth_missing"}:
            self._paused = True
            return
        backoff_seconds = min(60, 2 ** min(self._retry_count, 6))
        self._next_retry_monotonic = self._mono_now() + backoff_seconds

    def _classify_failure(self, exc: Exception) -> str:
        message = str(exc).lower()
        if "auth_missing" in message:
            return "auth_missing"
        if "status=401" in message or "status=403" in message or "unauthorized" in message or "forbidden" in message:
            return "auth_fail"
        if "status=429" in message or "rate limit" in message:
            return "rate_limited"
        if (
            "timed out" in message
            or "name or service not known" in message
            or "temporary failure in name resolution" in message
            or "connection refused" in message
            or "network is unreachable" in message
        ):
            return "offline"
        return f"retrying({self._retry_count})"
