from __future__ import annotations

import argparse
import json

from studytrack_app.config import StudyTrackConfig
from studytrack_app.controller import StudyController, create_store
from studytrack_app.core.timer_state import TIMER_MODES
from studytrack_app.persistence.local_cache import (
    KEY_DAY_PROGRESS,
    KEY_PAUSED_SNAPSHOT,
    KEY_PAUSED_SUBJECT,
    KEY_SELECTED_SUBJECT,
    KEY_TIMER_STATE,
    LocalCache,
)
from studytrack_app.persistence.pending_queue import PendingQueue
from studytrack_app.services.session_accounting import SubjectProgress
from studytrack_app.services.study_stats import (
    calculate_study_stats,
    format_hm,
    format_hms,
    goal_progress,
    rank_leaderboard,
)
from studytrack_app.services.sync_engine import SyncEngine


def _load_config() -> StudyTrackConfig:
    return StudyTrackConfig.from_env()


def _open_cache(cfg: StudyTrackConfig) -> LocalCache:
    return LocalCache(cfg.data_dir / "cache")


def _print(payload: object) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _cmd_config(_args: argparse.Namespace) -> int:
    cfg = _load_config()
    payload = {
        "user_id": cfg.user_id,
        "display_name": cfg.display_name,
        "store": cfg.store,
        "data_dir": str(cfg.data_dir),
        "file_store_dir": str(cfg.file_store_dir),
        "firestore_project": cfg.firestore_project,
        "firestore_token": "***" if cfg.firestore_token else "",
        "tick_seconds": cfg.tick_seconds,
        "sync_interval_seconds": cfg.sync_interval_seconds,
        "day_check_seconds": cfg.day_check_seconds,
        "work_minutes": cfg.work_minutes,
        "break_minutes": cfg.break_minutes,
        "long_break_minutes": cfg.long_break_minutes,
        "sessions_before_long_break": cfg.sessions_before_long_break,
        "phase_debounce_ms": cfg.phase_debounce_ms,
        "day_reset_policy": cfg.day_reset_policy,
        "credit_background": cfg.credit_background,
        "subjects": list(cfg.subjects),
        "daily_target_minutes": cfg.daily_target_minutes,
        "log_level": cfg.log_level,
    }
    _print(payload)
    return 0


def _cmd_progress(_args: argparse.Namespace) -> int:
    cfg = _load_config()
    progress = SubjectProgress.from_dict(_open_cache(cfg).get(KEY_DAY_PROGRESS))
    minutes = progress.minutes_by_subject if progress is not None else {}
    targets = {subject: cfg.daily_target_minutes for subject in cfg.subjects}
    _print(
        {
            "date": progress.date if progress is not None else "",
            "minutes_by_subject": minutes,
            "total": format_hm(sum(minutes.values())),
            "goals": goal_progress(minutes, targets),
        }
    )
    return 0


def _cmd_timer(_args: argparse.Namespace) -> int:
    cache = _open_cache(_load_config())
    state = cache.get(KEY_TIMER_STATE, {})
    if not isinstance(state, dict):
        state = {}
    _print(
        {
            "timer": state,
            "display": format_hms(int(state.get("value_s", 0) or 0)),
            "paused": cache.get(KEY_PAUSED_SNAPSHOT),
            "selected_subject": cache.get(KEY_SELECTED_SUBJECT),
            "paused_subject": cache.get(KEY_PAUSED_SUBJECT),
        }
    )
    return 0


def _cmd_pending(_args: argparse.Namespace) -> int:
    pending = PendingQueue(_open_cache(_load_config()))
    items = [
        {"mutation_id": item.mutation_id, "kind": item.kind, "collection": item.collection, "queued_at": item.queued_at}
        for item in pending.items()
    ]
    _print({"count": len(items), "items": items})
    return 0


def _cmd_drain(_args: argparse.Namespace) -> int:
    cfg = _load_config()
    store, status = create_store(cfg)
    engine = SyncEngine(user_id=cfg.user_id, store=store, queue=PendingQueue(_open_cache(cfg)))
    if store is None:
        _print({"status": status, "written": 0, "remaining": len(engine.queue)})
        return 1
    result = engine.sync_once(force=True)
    _print(result)
    return 0 if result.get("status") == "ok" else 1


def _cmd_stats(args: argparse.Namespace) -> int:
    cfg = _load_config()
    store, status = create_store(cfg)
    if store is None:
        _print({"status": status})
        return 1
    records = store.list_sessions(cfg.user_id, day=args.day)
    _print(calculate_study_stats(records))
    return 0


def _cmd_leaderboard(args: argparse.Namespace) -> int:
    cfg = _load_config()
    store, status = create_store(cfg)
    if store is None:
        _print({"status": status})
        return 1
    _print(rank_leaderboard(store.list_profiles(limit=args.limit), limit=args.limit))
    return 0


def _open_controller() -> StudyController:
    return StudyController(config=_load_config())


def _act(controller: StudyController, done: object) -> int:
    _print(controller.status())
    return 0 if done else 1


def _cmd_start(args: argparse.Namespace) -> int:
    controller = _open_controller()
    return _act(controller, controller.start_studying(args.subject) is not None)


def _cmd_pause(_args: argparse.Namespace) -> int:
    controller = _open_controller()
    return _act(controller, controller.pause())


def _cmd_resume(args: argparse.Namespace) -> int:
    controller = _open_controller()
    return _act(controller, controller.resume(args.subject) is not None)


def _cmd_stop(_args: argparse.Namespace) -> int:
    controller = _open_controller()
    return _act(controller, controller.stop_studying())


def _cmd_reset(_args: argparse.Namespace) -> int:
    controller = _open_controller()
    return _act(controller, controller.reset())


def _cmd_mode(args: argparse.Namespace) -> int:
    controller = _open_controller()
    controller.switch_mode(args.mode)
    return _act(controller, True)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m studytrack_app.debug")
    subparsers = parser.add_subparsers(dest="cmd", required=True)

    p_config = subparsers.add_parser("config", help="Show effective config (token masked)")
    p_config.set_defaults(func=_cmd_config)

    p_progress = subparsers.add_parser("progress", help="Show today's per-subject minutes and goals")
    p_progress.set_defaults(func=_cmd_progress)

    p_timer = subparsers.add_parser("timer", help="Show the persisted timer snapshot")
    p_timer.set_defaults(func=_cmd_timer)

    p_pending = subparsers.add_parser("pending", help="List queued remote writes")
    p_pending.set_defaults(func=_cmd_pending)

    p_drain = subparsers.add_parser("drain", help="Write queued mutations to the remote store")
    p_drain.set_defaults(func=_cmd_drain)

    p_stats = subparsers.add_parser("stats", help="Aggregate remote session records")
    p_stats.add_argument("--day", default=None, help="limit to one YYYY-MM-DD day")
    p_stats.set_defaults(func=_cmd_stats)

    p_board = subparsers.add_parser("leaderboard", help="Show top users by total study time")
    p_board.add_argument("--limit", type=int, default=10)
    p_board.set_defaults(func=_cmd_leaderboard)

    p_start = subparsers.add_parser("start", help="Start a study session")
    p_start.add_argument("--subject", default=None)
    p_start.set_defaults(func=_cmd_start)

    p_pause = subparsers.add_parser("pause", help="Pause the running session")
    p_pause.set_defaults(func=_cmd_pause)

    p_resume = subparsers.add_parser("resume", help="Resume a paused session")
    p_resume.add_argument("--subject", default=None)
    p_resume.set_defaults(func=_cmd_resume)

    p_stop = subparsers.add_parser("stop", help="Stop and record the current session")
    p_stop.set_defaults(func=_cmd_stop)

    p_reset = subparsers.add_parser("reset", help="Reset the timer without recording")
    p_reset.set_defaults(func=_cmd_reset)

    p_mode = subparsers.add_parser("mode", help="Switch timer mode")
    p_mode.add_argument("mode", choices=sorted(TIMER_MODES))
    p_mode.set_defaults(func=_cmd_mode)

    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
