from __future__ import annotations

import argparse
import json
import random
import shutil
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from studytrack_app.config import DEFAULT_SUBJECTS, StudyTrackConfig
from studytrack_app.controller import StudyController
from studytrack_app.core.timer_state import MODE_CONTINUOUS, MODE_INTERVAL
from studytrack_app.interaction.store_file import FileRemoteStore
from studytrack_app.persistence.local_cache import LocalCache


class SimClock:
    def __init__(self, mono_start: float = 1000.0, wall_start: float = 1_700_000_000.0) -> None:
        self.mono = mono_start
        self.wall = wall_start

    def monotonic(self) -> float:
        return self.mono

    def wall_time(self) -> float:
        return self.wall

    def advance(self, seconds: float) -> None:
        self.mono += float(seconds)
        self.wall += float(seconds)


class FlakyNetwork:
    def __init__(self, offline_rate: float, online_rate: float) -> None:
        self.online = True
        self.offline_rate = offline_rate
        self.online_rate = online_rate

    def is_online(self) -> bool:
        return self.online

    def step(self) -> bool:
        """Flip connectivity at random; True when the link just came back."""
        if self.online and random.random() < self.offline_rate:
            self.online = False
        elif not self.online and random.random() < self.online_rate:
            self.online = True
            return True
        return False


@dataclass
class Metrics:
    starts: int = 0
    pauses: int = 0
    resumes: int = 0
    stops: int = 0
    mode_switches: int = 0
    restarts: int = 0
    reconnects: int = 0
    records_emitted: int = 0
    elapsed_checks: int = 0
    invariant_violations: int = 0
    samples: list[str] = field(default_factory=list)

    def violation(self, sample: str) -> None:
        self.invariant_violations += 1
        if len(self.samples) < 8:
            self.samples.append(sample)


def _make_config(workdir: Path, args: argparse.Namespace) -> StudyTrackConfig:
    return StudyTrackConfig(
        user_id="stress",
        display_name="Stress",
        store="file",
        data_dir=workdir,
        file_store_dir=workdir / "remote_store",
        firestore_project="",
        firestore_token="",
        tick_seconds=1,
        sync_interval_seconds=300,
        day_check_seconds=60,
        work_minutes=int(args.work_minutes),
        break_minutes=int(args.break_minutes),
        long_break_minutes=int(args.break_minutes) * 2,
        sessions_before_long_break=4,
        phase_debounce_ms=1500,
        day_reset_policy="conserve",
        credit_background=True,
        subjects=DEFAULT_SUBJECTS,
        daily_target_minutes=120,
        log_level="WARNING",
    )


def run_stress_timer(args: argparse.Namespace) -> int:
    random.seed(args.seed)

    workdir = Path(args.workdir).resolve()
    if args.clean and workdir.exists():
        shutil.rmtree(workdir)
    workdir.mkdir(parents=True, exist_ok=True)
    (workdir / "logs").mkdir(parents=True, exist_ok=True)

    runtime_s = int((args.minutes if args.mode == "fast" else args.hours * 60) * 60)
    step_s = max(1, int(args.step_seconds))
    total_steps = max(1, runtime_s // step_s)

    clock = SimClock()
    network = FlakyNetwork(offline_rate=args.offline_rate, online_rate=args.online_rate)
    config = _make_config(workdir, args)
    store = FileRemoteStore(config.file_store_dir)
    metrics = Metrics()

    def build() -> StudyController:
        built = StudyController(
            config=config,
            store=store,
            cache=LocalCache(workdir / "cache"),
            monotonic_now=clock.monotonic,
            wall_now=clock.wall_time,
            is_online=network.is_online,
            today=lambda: "2026-01-05",
        )
        original_sink = built.accounting.record_sink

        def counting_sink(record) -> None:
            metrics.records_emitted += 1
            if record.duration_minutes < 1:
                metrics.violation(f"record under one minute id={record.id}")
            original_sink(record)

        built.accounting.record_sink = counting_sink
        return built

    controller = build()
    # Seconds the current continuous session has really been running.
    expected_elapsed = 0
    t0 = time.monotonic()

    for step in range(1, total_steps + 1):
        running = controller.timer.state.running
        jump = args.time_jump_seconds if random.random() < args.time_jump_rate else 0
        clock.advance(step_s + jump)
        if running:
            expected_elapsed += step_s + jump

        if network.step():
            metrics.reconnects += 1
            controller.on_reconnect()

        r = random.random()
        subject = random.choice(DEFAULT_SUBJECTS)
        view = controller.timer.view()
        if not view.running and not view.paused:
            if r < args.start_rate:
                controller.start_studying(subject)
                metrics.starts += 1
                expected_elapsed = 0
        elif view.running:
            if r < args.pause_rate:
                controller.pause()
                metrics.pauses += 1
            elif r < args.pause_rate + args.stop_rate:
                controller.stop_studying()
                metrics.stops += 1
            elif r < args.pause_rate + args.stop_rate + args.switch_rate:
                target = MODE_INTERVAL if view.mode == MODE_CONTINUOUS else MODE_CONTINUOUS
                controller.switch_mode(target)
                metrics.mode_switches += 1
                expected_elapsed = 0
        else:
            if r < args.resume_rate:
                if subject != controller.paused_subject:
                    expected_elapsed = 0
                controller.resume(subject)
                metrics.resumes += 1
            elif r < args.resume_rate + args.stop_rate:
                controller.stop_studying()
                metrics.stops += 1

        controller.on_tick()

        if random.random() < args.restart_rate:
            controller.on_before_terminate()
            controller = build()
            metrics.restarts += 1
            if controller.timer.state.running:
                controller.on_tick()

        state = controller.timer.state
        if not state.running and state.anchor_wall is not None:
            metrics.violation("anchor kept while stopped")
        if state.value_s < 0 or state.total_elapsed_s < 0:
            metrics.violation(f"negative timer value value_s={state.value_s}")
        if state.mode == MODE_CONTINUOUS and (state.running or controller.timer.paused is not None):
            metrics.elapsed_checks += 1
            if abs(state.total_elapsed_s - expected_elapsed) > 1:
                metrics.violation(f"elapsed drift got={state.total_elapsed_s} expected={expected_elapsed}")

    if controller.timer.state.running or controller.timer.paused is not None:
        controller.stop_studying()
    network.online = True
    controller.sync_now()

    sessions = store.list_sessions("stress")
    profile = store.get_profile("stress")
    session_minutes = sum(int(doc.get("duration_minutes", 0)) for doc in sessions)

    fail_reasons: list[str] = []
    if metrics.invariant_violations > 0:
        fail_reasons.append("timer invariant violation detected")
    if len(controller.queue) != 0:
        fail_reasons.append(f"pending queue not drained remaining={len(controller.queue)}")
    if len(sessions) != metrics.records_emitted:
        fail_reasons.append(f"record count mismatch store={len(sessions)} emitted={metrics.records_emitted}")
    if int(profile.get("totalStudyTime", 0) or 0) != session_minutes:
        fail_reasons.append("profile total does not match session sum")

    status = "PASS" if not fail_reasons else "FAIL"
    summary = {
        "status": status,
        "mode": args.mode,
        "seed": args.seed,
        "runtime_simulated_seconds": runtime_s,
        "runtime_wall_seconds": round(time.monotonic() - t0, 3),
        "metrics": {
            "starts": metrics.starts,
            "pauses": metrics.pauses,
            "resumes": metrics.resumes,
            "stops": metrics.stops,
            "mode_switches": metrics.mode_switches,
            "restarts": metrics.restarts,
            "reconnects": metrics.reconnects,
            "records_emitted": metrics.records_emitted,
            "records_stored": len(sessions),
            "elapsed_checks": metrics.elapsed_checks,
            "invariant_violations": metrics.invariant_violations,
        },
        "fail_reasons": fail_reasons,
        "samples": metrics.samples,
        "workdir": str(workdir),
    }

    stamp = datetime.now(tz=timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    out_path = workdir / "logs" / f"stress_timer_{stamp}.json"
    out_path.write_text(json.dumps(summary, ensure_ascii=False, indent=2), encoding="utf-8")

    print(json.dumps(summary, ensure_ascii=False, indent=2))
    print(f"log_saved={out_path}")
    return 0 if status == "PASS" else 2


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Study timer black-box stress harness")
    parser.add_argument("--mode", choices=["fast", "soak"], default="fast")
    parser.add_argument("--minutes", type=float, default=30.0, help="fast mode simulated minutes")
    parser.add_argument("--hours", type=float, default=4.0, help="soak mode simulated hours")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--workdir", default=".stress_timer")
    parser.add_argument("--clean", action="store_true")

    parser.add_argument("--work-minutes", type=int, default=1)
    parser.add_argument("--break-minutes", type=int, default=1)
    parser.add_argument("--step-seconds", type=int, default=5)

    parser.add_argument("--start-rate", type=float, default=0.3)
    parser.add_argument("--pause-rate", type=float, default=0.04)
    parser.add_argument("--resume-rate", type=float, default=0.3)
    parser.add_argument("--stop-rate", type=float, default=0.02)
    parser.add_argument("--switch-rate", type=float, default=0.01)
    parser.add_argument("--restart-rate", type=float, default=0.02)
    parser.add_argument("--offline-rate", type=float, default=0.03)
    parser.add_argument("--online-rate", type=float, default=0.2)
    parser.add_argument("--time-jump-rate", type=float, default=0.02)
    parser.add_argument("--time-jump-seconds", type=int, default=90)
    return parser.parse_args()


if __name__ == "__main__":
    raise SystemExit(run_stress_timer(parse_args()))
