from typing import Any, Callable, Dict, List, Optional
from pathlib import Path
import time

from .config import InvalidConfiguration, apply_overrides, build_target
from .locks import get_lock_path, acquire_job_lock, release_job_lock
from .prune import run_prune
from .utils import parse_interval_to_seconds


def build_schedule(
    jobs: List[Dict[str, Any]], now: Optional[float] = None
) -> List[Dict[str, Any]]:
    start = time.time() if now is None else now
    entries: List[Dict[str, Any]] = []
    for job in jobs:
        interval = parse_interval_to_seconds(job.get("every"))
        if not interval or interval <= 0:
            continue
        entries.append({"job": job, "interval": interval, "next_run": start})
    return entries


def schedule_loop(
    args,
    cfg: Dict[str, Any],
    defaults: Dict[str, Any],
    s3: Any,
    bucket_name: Optional[str],
    max_ticks: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    jobs: List[Dict[str, Any]] = cfg.get("jobs", []) or []
    selected_names: Optional[List[str]] = None
    if getattr(args, "jobs", None):
        selected_names = [n.strip() for n in args.jobs.split(",") if n.strip()]
    if selected_names:
        by_name = {str(j.get("name") or j.get("id")): j for j in jobs}
        jobs = [by_name[n] for n in selected_names if n in by_name]
    schedule_entries = build_schedule(jobs)
    if not schedule_entries:
        print("No jobs with 'every' configured. Exiting schedule mode.")
        return
    lock_root = Path(args.lock_dir)
    tick = int(args.tick_interval)
    print(f"Scheduler started with {len(schedule_entries)} job(s). Tick={tick}s")
    ticks = 0
    while max_ticks is None or ticks < max_ticks:
        ticks += 1
        now = time.time()
        next_due = None
        for entry in schedule_entries:
            if entry["next_run"] <= now:
                job = entry["job"]
                job_display = str(job.get("name") or job.get("id"))
                lock_path = get_lock_path(lock_root, job_display)
                if not acquire_job_lock(lock_path, ttl_seconds=args.lock_ttl):
                    print(
                        f"Another run is in progress for job '{job_display}'. "
                        "Skipping this schedule tick."
                    )
                    entry["next_run"] = now + entry["interval"]
                    continue
                print(f"\n==> Pruning job: {job_display}")
                try:
                    target = build_target(apply_overrides(job, args), defaults, bucket_name)
                    report = run_prune(s3, target, dry_run=args.dry_run)
                    if not report.ok:
                        print(
                            f"Job '{job_display}' finished with "
                            f"{len(report.failed)} failed deletion(s)"
                        )
                except InvalidConfiguration as err:
                    print(f"Invalid configuration for job '{job_display}': {err}")
                except Exception as err:
                    print(f"Job failed: {err}")
                finally:
                    release_job_lock(lock_path)
                entry["next_run"] = time.time() + entry["interval"]
            if next_due is None or entry["next_run"] < next_due:
                next_due = entry["next_run"]
        sleep_for = tick
        if next_due is not None:
            sleep_for = max(1, min(tick, int(next_due - time.time())))
        sleep(sleep_for)
