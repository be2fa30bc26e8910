import argparse

from scripts.stress_timer import run_stress_timer


def test_stress_timer_fast_smoke(tmp_path) -> None:
    args = argparse.Namespace(
        mode="fast",
        minutes=5.0,
        hours=1.0,
        seed=7,
        workdir=str(tmp_path / ".stress_timer"),
        clean=True,
        work_minutes=1,
        break_minutes=1,
        step_seconds=5,
        start_rate=0.4,
        pause_rate=0.05,
        resume_rate=0.4,
        stop_rate=0.05,
        switch_rate=0.02,
        restart_rate=0.03,
        offline_rate=0.05,
        online_rate=0.3,
        time_jump_rate=0.03,
        time_jump_seconds=45,
    )
    rc = run_stress_timer(args)
    assert rc == 0
