from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

from studytrack_app.config import StudyTrackConfig
from studytrack_app.core.records import (
    MUTATION_EVENT,
    MUTATION_TASK,
    SessionRecord,
    session_mutation,
    utc_now_iso,
)
from studytrack_app.core.timer_state import PHASE_WORK, TIMER_MODES, IntervalConfig
from studytrack_app.interaction.store_base import RemoteStoreBase
from studytrack_app.interaction.store_file import FileRemoteStore
from studytrack_app.interaction.store_firestore import FirestoreRestStore
from studytrack_app.logger import configure_logging
from studytrack_app.persistence.local_cache import (
    KEY_OFFLINE_EVENTS,
    KEY_OFFLINE_TASKS,
    KEY_PAUSED_SNAPSHOT,
    KEY_PAUSED_SUBJECT,
    KEY_SELECTED_SUBJECT,
    KEY_TIMER_STATE,
    LocalCache,
)
from studytrack_app.persistence.pending_queue import PendingQueue
from studytrack_app.services.reconcile import resolve
from studytrack_app.services.session_accounting import SessionAccounting
from studytrack_app.services.study_stats import derive_display_name, rank_leaderboard
from studytrack_app.services.sync_engine import SyncEngine
from studytrack_app.services.timer_service import TimerEvents, TimerService

LOGGER = logging.getLogger(__name__)

OFFLINE_COLLECTIONS = {
    "tasks": (KEY_OFFLINE_TASKS, MUTATION_TASK),
    "events": (KEY_OFFLINE_EVENTS, MUTATION_EVENT),
}


def create_store(config: StudyTrackConfig) -> tuple[RemoteStoreBase | None, str]:
    if config.store == "file":
        return FileRemoteStore(config.file_store_dir), "idle"
    if config.store == "firestore":
        if not config.firestore_project or not config.firestore_token:
            return None, "auth_missing"
        return FirestoreRestStore(config.firestore_project, config.firestore_token), "idle"
    return None, "disabled"


class StudyController:
    """Single owner of timer, accounting, sync and cache state.

    Every user action and scheduled callback runs on the host thread and ends
    with one ``save()``. Remote calls go through a job queue to a worker
    thread; until ``start_worker()`` is called, jobs run inline.
    """

    def __init__(
        self,
        config: StudyTrackConfig,
        store: RemoteStoreBase | None = None,
        cache: LocalCache | None = None,
        monotonic_now: Callable[[], float] | None = None,
        wall_now: Callable[[], float] | None = None,
        is_visible: Callable[[], bool] | None = None,
        is_online: Callable[[], bool] | None = None,
        today: Callable[[], str] | None = None,
        on_notice: Callable[[str], None] | None = None,
        on_change: Callable[[dict], None] | None = None,
    ) -> None:
        self.config = config
        self.user_id = config.user_id
        self.subjects = tuple(config.subjects)
        self.on_notice = on_notice
        self.on_change = on_change
        self.last_notice = ""

        self.cache = cache if cache is not None else LocalCache(config.data_dir / "cache")
        stored_subject = self.cache.get(KEY_SELECTED_SUBJECT)
        self.selected_subject = stored_subject if stored_subject in self.subjects else self.subjects[0]
        paused_subject = self.cache.get(KEY_PAUSED_SUBJECT)
        self.paused_subject: str | None = paused_subject if paused_subject in self.subjects else None

        interval = IntervalConfig.from_minutes(
            config.work_minutes,
            config.break_minutes,
            config.long_break_minutes,
            config.sessions_before_long_break,
        )
        self.timer = TimerService(
            interval=interval,
            phase_debounce_s=config.phase_debounce_ms / 1000.0,
            monotonic_now=monotonic_now,
            wall_now=wall_now,
            is_visible=is_visible,
        )
        self.timer.restore(self.cache.get(KEY_TIMER_STATE), paused=self.cache.get(KEY_PAUSED_SNAPSHOT))
        self.timer.set_interval_config(interval)

        init_status = "idle"
        if store is None:
            store, init_status = create_store(config)
        self.queue = PendingQueue(self.cache)
        self.sync_engine = SyncEngine(
            user_id=self.user_id,
            store=store,
            queue=self.queue,
            is_online=is_online,
            monotonic_now=monotonic_now,
        )
        if init_status == "auth_missing":
            self.sync_engine.last_status = "auth_missing"
        self.sync_status = self.sync_engine.last_status

        self.username = derive_display_name(config.display_name, "", self.user_id)
        self.accounting = SessionAccounting(
            cache=self.cache,
            user_id=self.user_id,
            username=self.username,
            record_sink=self._submit_record,
            day_reset_policy=config.day_reset_policy,
            today=today,
        )

        self._jobs: queue.Queue[dict] = queue.Queue()
        self._results: queue.Queue[dict] = queue.Queue()
        self._sync_lock = threading.Lock()
        self._sync_pending = False
        self._worker: threading.Thread | None = None

    # worker

    def start_worker(self) -> None:
        if self._worker is not None:
            return
        self._worker = threading.Thread(target=self._worker_loop, daemon=True)
        self._worker.start()

    def _worker_loop(self) -> None:
        while True:
            try:
                job = self._jobs.get(timeout=1)
            except queue.Empty:
                continue
            self._handle_job(job)

    def _post_job(self, job: dict) -> None:
        if self._worker is not None:
            self._jobs.put(job)
        else:
            self._handle_job(job)

    def _handle_job(self, job: dict) -> None:
        try:
            kind = job.get("kind")
            if kind == "session":
                self._handle_session_job(job["record"])
            elif kind == "mutation":
                result = self.sync_engine.submit_mutation(job["mutation_kind"], job["collection"], job["doc"])
                self._results.put({"kind": "mutation_done", "status": result.get("status", "fail")})
            elif kind == "sync":
                self._handle_sync_job(manual=bool(job.get("manual", False)), rehydrate=bool(job.get("rehydrate")))
        except Exception as exc:
            LOGGER.exception("worker job failed kind=%s", job.get("kind"))
            self._results.put({"kind": "worker_error", "error": str(exc)})

    def _handle_session_job(self, record: SessionRecord) -> None:
        result = self.sync_engine.submit_session(record)
        self._results.put(
            {
                "kind": "session_done",
                "status": result.get("status", "fail"),
                "synced": bool(result.get("synced", False)),
                "record_id": record.id,
            }
        )

    def _handle_sync_job(self, manual: bool, rehydrate: bool) -> None:
        try:
            result = self.sync_engine.sync_once(force=manual)
            status = result.get("status", "fail")
            if status == "ok":
                for collection, (key, _kind) in OFFLINE_COLLECTIONS.items():
                    local_docs = self.cache.get(key, [])
                    if not isinstance(local_docs, list):
                        local_docs = []
                    merged = self.sync_engine.reconcile(collection, local_docs)
                    self._results.put({"kind": "reconciled", "key": key, "docs": merged})
                if rehydrate:
                    day = self.accounting.progress.date
                    records = self.sync_engine.fetch_today_sessions(day)
                    self._results.put({"kind": "remote_sessions", "day": day, "records": records})
            self._results.put(
                {
                    "kind": "sync_done",
                    "status": status,
                    "written": int(result.get("written", 0)),
                    "remaining": int(result.get("remaining", 0)),
                    "manual": manual,
                }
            )
        finally:
            with self._sync_lock:
                self._sync_pending = False

    def _enqueue_sync(self, manual: bool, rehydrate: bool = False) -> None:
        with self._sync_lock:
            if self._sync_pending:
                return
            self._sync_pending = True
        self._post_job({"kind": "sync", "manual": manual, "rehydrate": rehydrate})

    def _drain_worker_results(self) -> None:
        while True:
            try:
                result = self._results.get_nowait()
            except queue.Empty:
                break

            kind = result.get("kind")
            if kind == "session_done":
                self.sync_status = result.get("status", "fail")
                if result.get("synced"):
                    self._notice("Study session saved")
                else:
                    self._notice("Saved locally, will sync later")
            elif kind == "mutation_done":
                self.sync_status = result.get("status", "fail")
            elif kind == "reconciled":
                current = self.cache.get(result["key"], [])
                if not isinstance(current, list):
                    current = []
                # Documents edited locally while the fetch was in flight win ties.
                self.cache.set(result["key"], resolve(current, result["docs"]))
            elif kind == "remote_sessions":
                if result.get("day") == self.accounting.progress.date:
                    self.accounting.rehydrate(result.get("records", []))
            elif kind == "sync_done":
                previous = self.sync_status
                self.sync_status = result.get("status", "fail")
                notice = self._sync_notice(self.sync_status, manual=bool(result.get("manual")))
                if notice and (self.sync_status != previous or result.get("manual")):
                    self._notice(notice)
            elif kind == "worker_error":
                self.sync_status = "fail"
                self._notice(f"Sync error: {result.get('error', 'unknown')}")

    def _sync_notice(self, status: str, manual: bool) -> str | None:
        if status in {"auth_fail", "auth_missing"}:
            return "Sync auth missing/invalid"
        if status == "paused":
            return "Sync paused (auth)"
        if status == "rate_limited":
            return "Sync rate limited"
        if status == "offline":
            return "Offline, sessions will sync later"
        if status.startswith("retrying("):
            return f"Sync {status}"
        if manual and status == "ok":
            return "Sync complete"
        return None

    # notices and persistence

    def _notice(self, message: str) -> None:
        LOGGER.info("notice %s", message)
        self.last_notice = message
        if self.on_notice is not None:
            self.on_notice(message)

    def save(self) -> None:
        self.cache.set(KEY_TIMER_STATE, self.timer.snapshot())
        if self.timer.paused is not None:
            self.cache.set(KEY_PAUSED_SNAPSHOT, self.timer.paused)
        else:
            self.cache.delete(KEY_PAUSED_SNAPSHOT)

    def _finish(self) -> None:
        self._drain_worker_results()
        self.save()
        if self.on_change is not None:
            self.on_change(self.status())

    def _set_paused_subject(self, subject: str | None) -> None:
        self.paused_subject = subject
        if subject is None:
            self.cache.delete(KEY_PAUSED_SUBJECT)
        else:
            self.cache.set(KEY_PAUSED_SUBJECT, subject)

    def _set_selected_subject(self, subject: str) -> None:
        if subject not in self.subjects:
            raise ValueError(f"unknown subject: {subject}")
        self.selected_subject = subject
        self.cache.set(KEY_SELECTED_SUBJECT, subject)

    def _session_active(self) -> bool:
        return self.timer.state.running or self.timer.paused is not None

    def _active_subject(self) -> str:
        if self.timer.paused is not None and self.paused_subject:
            return self.paused_subject
        return self.selected_subject

    def _submit_record(self, record: SessionRecord) -> None:
        # Durable before any remote attempt.
        self.queue.enqueue(session_mutation(record))
        self._post_job({"kind": "session", "record": record})

    def _dispatch(self, events: TimerEvents, subject: str | None = None) -> None:
        subject = subject or self._active_subject()
        for name, payload in events:
            if name == "tick":
                self.accounting.on_tick(payload["elapsed_s"], subject, payload["mode"], payload["phase"])
            elif name == "phase_complete":
                if payload.get("phase") == PHASE_WORK:
                    self.accounting.on_phase_completed(
                        subject,
                        int(payload.get("duration_s", 0)) // 60,
                        started_at=payload.get("started_at"),
                        ended_at=payload.get("ended_at"),
                    )
                    self._notice("Work Session Completed: take a break, you've earned it!")
                else:
                    self._notice("Break Ended: time to get back to work!")
            elif name == "stop":
                result = self.accounting.on_session_stop(
                    subject,
                    int(payload.get("total_elapsed_s", 0)),
                    payload.get("mode", ""),
                    started_at=payload.get("started_at"),
                    ended_at=payload.get("ended_at"),
                )
                if result["status"] == "too_short":
                    self._notice("Session too short")

    def _stop_and_record(self) -> None:
        subject = self._active_subject()
        self._dispatch(self.timer.stop(), subject=subject)
        self._set_paused_subject(None)

    # user actions

    def start_studying(self, subject: str | None = None) -> dict | None:
        if self._session_active():
            self._stop_and_record()
        if subject is not None:
            self._set_selected_subject(subject)
        started = self.timer.start(resume=False)
        self._set_paused_subject(None)
        if started is not None:
            self._notice(f"Study session started: {self.selected_subject}")
        self._finish()
        return started

    def pause(self) -> bool:
        if not self.timer.state.running:
            return False
        subject = self.selected_subject
        self._dispatch(self.timer.pause(), subject=subject)
        self._set_paused_subject(subject)
        self._notice("Timer Paused")
        self._finish()
        return True

    def resume(self, subject: str | None = None) -> dict | None:
        if self.timer.state.running:
            return None
        if subject is not None:
            self._set_selected_subject(subject)
        if self.timer.paused is None:
            return self.start_studying()
        if self.paused_subject and self.selected_subject != self.paused_subject:
            # A different subject ends the paused session and opens a new one.
            self._stop_and_record()
            started = self.timer.start(resume=False)
            self._notice(f"Study session started: {self.selected_subject}")
        else:
            started = self.timer.start(resume=True)
            self._notice("Study session resumed")
        self._set_paused_subject(None)
        self._finish()
        return started

    def stop_studying(self) -> bool:
        if not self._session_active():
            return False
        self._stop_and_record()
        self._finish()
        return True

    def select_subject(self, subject: str) -> bool:
        if self.timer.state.running:
            self._notice("Pause the timer before changing subject")
            return False
        self._set_selected_subject(subject)
        self.save()
        return True

    def switch_mode(self, mode: str) -> dict:
        if mode not in TIMER_MODES:
            raise ValueError(f"unknown timer mode: {mode}")
        if self._session_active():
            self._stop_and_record()
        result = self.timer.switch_mode(mode)
        self._set_paused_subject(None)
        self._finish()
        return result

    def reset(self) -> bool:
        done = self.timer.reset()
        if done:
            self._set_paused_subject(None)
            self._finish()
        return done

    def submit_document(self, collection: str, doc: dict) -> dict:
        if collection not in OFFLINE_COLLECTIONS:
            raise ValueError(f"unknown collection: {collection}")
        key, mutation_kind = OFFLINE_COLLECTIONS[collection]
        stamped = dict(doc)
        stamped.setdefault("userId", self.user_id)
        stamped["lastModified"] = utc_now_iso()

        docs = self.cache.get(key, [])
        if not isinstance(docs, list):
            docs = []
        docs = [d for d in docs if not (isinstance(d, dict) and d.get("id") == stamped.get("id"))]
        docs.append(stamped)
        self.cache.set(key, docs)

        self._post_job({"kind": "mutation", "mutation_kind": mutation_kind, "collection": collection, "doc": stamped})
        self._drain_worker_results()
        return stamped

    # scheduling callbacks

    def on_tick(self) -> None:
        self._dispatch(self.timer.tick())
        self._finish()

    def on_day_check(self) -> str:
        status = self.accounting.check_day_boundary()
        if status != "same_day":
            self._enqueue_sync(manual=False, rehydrate=True)
        self._finish()
        return status

    def on_sync_tick(self) -> None:
        self._enqueue_sync(manual=False)
        self._drain_worker_results()

    def on_reconnect(self) -> None:
        LOGGER.info("network reconnect; forcing sync")
        self._enqueue_sync(manual=True, rehydrate=True)
        self._drain_worker_results()

    def sync_now(self) -> None:
        self._enqueue_sync(manual=True)
        self._drain_worker_results()

    # host capability hooks

    def on_foreground(self) -> None:
        self._dispatch(self.timer.on_foreground(credit_background=self.config.credit_background))
        self.accounting.check_day_boundary()
        self._finish()

    def on_before_terminate(self) -> None:
        self._dispatch(self.timer.tick())
        self._finish()
        LOGGER.info("state saved before terminate pending=%s", len(self.queue))

    # read side

    def leaderboard(self, limit: int = 10) -> list[dict]:
        return rank_leaderboard(self.sync_engine.fetch_leaderboard(limit=limit), limit=limit)

    def status(self) -> dict:
        view = self.timer.view()
        targets = {subject: self.config.daily_target_minutes for subject in self.subjects}
        return {
            "timer": {
                "mode": view.mode,
                "running": view.running,
                "paused": view.paused,
                "phase": view.phase,
                "value_s": view.value_s,
                "total_elapsed_s": view.total_elapsed_s,
                "completed_intervals": view.completed_intervals,
            },
            "subject": self.selected_subject,
            "paused_subject": self.paused_subject,
            "date": self.accounting.progress.date,
            "minutes_by_subject": self.accounting.minutes_by_subject,
            "goals": self.accounting.goal_progress(targets),
            "pending": len(self.queue),
            "sync_status": self.sync_status,
            "cache_degraded": self.cache.degraded,
        }

    def attach_host(self, host) -> None:
        """Route visibility, view updates and notices through a window host."""
        self.timer.is_visible = host.is_visible
        self.on_change = host.update_view
        previous = self.on_notice

        def _notify(message: str) -> None:
            host.show_notice(message)
            if previous is not None:
                previous(message)

        self.on_notice = _notify
        host.update_view(self.status())

    def run(self, host=None) -> None:
        if host is None:
            from studytrack_app.ui.host_qt import QtHost

            host = QtHost(
                subjects=self.subjects,
                on_start=self.start_studying,
                on_pause=self.pause,
                on_resume=self.resume,
                on_stop=self.stop_studying,
                on_reset=self.reset,
                on_mode_change=self.switch_mode,
                on_select_subject=self.select_subject,
                on_sync_now=self.sync_now,
                on_foreground=self.on_foreground,
                on_before_terminate=self.on_before_terminate,
            )
            self.attach_host(host)
        self.start_worker()
        self._enqueue_sync(manual=True, rehydrate=True)
        host.schedule_every(self.config.tick_seconds, self.on_tick)
        host.schedule_every(self.config.day_check_seconds, self.on_day_check)
        host.schedule_every(self.config.sync_interval_seconds, self.on_sync_tick)
        host.schedule_every(1, self._drain_worker_results)
        LOGGER.info("studytrack running user=%s store=%s", self.user_id, self.config.store)
        host.run()


def create_default_controller() -> StudyController:
    config = StudyTrackConfig.from_env()
    configure_logging(config.data_dir, level=config.log_level)
    return StudyController(config=config)
