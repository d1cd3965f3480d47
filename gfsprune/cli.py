import os
import argparse
from pathlib import Path
from typing import Any, Dict, List, Optional
from dotenv import load_dotenv

from .config import InvalidConfiguration, apply_overrides, build_target, load_config
from .s3 import create_s3_client, list_buckets
from .locks import get_lock_path, acquire_job_lock, release_job_lock
from .prune import run_prune
from .scheduler import schedule_loop
from .utils import getenv


def print_extended_help() -> None:
    help_text = (
        "\n"
        "GFS Backup Pruner - Extended Help\n"
        "\n"
        "Commands/Flags:\n"
        "  -c, --config <file>          Path to the TOML config file\n"
        "  -j, --jobs <list>            Comma-separated job names\n"
        "      --dry-run               Simulate (report keep/delete, no deletions)\n"
        "      --list                  List jobs from config and exit\n"
        "      --list-buckets          List available buckets and exit\n"
        "      --schedule              Run jobs repeatedly using their 'every' interval\n"
        "      --help-extended         Show this extended help\n"
        "\n"
        "Ad-hoc overrides (applied on top of every selected job):\n"
        "  --bucket, --prefix, --pattern\n"
        "  --daily N, --weekly N, --weekly-day DAY\n"
        "  --monthly N, --monthly-day D, --yearly N, --yearly-month M\n"
        "\n"
        "Retention tiers (an object is kept if ANY tier keeps it):\n"
        "  daily    newer than anchor - daily_days\n"
        "  weekly   older than the daily floor, inside weekly_weeks, on weekly_day\n"
        "  monthly  older than the daily floor, inside monthly_months, on monthly_day\n"
        "  yearly   older than the daily floor, inside yearly_years, on monthly_day of yearly_month\n"
        "  The anchor is midnight of the Sunday starting the current week.\n"
        "\n"
        "TOML Configuration:\n"
        "  [backblaze] endpoint, region, access_key_id, secret_access_key, (bucket optional)\n"
        "  [defaults] prefix, pattern, page_size, timezone, break_locks, bypass_governance\n"
        "  [defaults.retention] daily_days, weekly_weeks, weekly_day, monthly_months,\n"
        "                       monthly_day, yearly_years, yearly_month\n"
        "  [[jobs]] name, bucket, prefix, pattern, every, retention = { ... }\n"
        "  dot_env = \".env\" | dot_envs = [\"a.env\", \"b.env\"] (optional)\n"
        "\n"
        "ENV_* Placeholders:\n"
        "  Any value 'ENV_NAME' will be replaced by $NAME from the environment (or .env).\n"
        "\n"
        "Examples:\n"
        "  List jobs:              python3 main.py -c config.toml --list\n"
        "  Prune all jobs:         python3 main.py -c config.toml\n"
        "  Prune specific jobs:    python3 main.py -c config.toml -j db-main,site-www\n"
        "  Simulate:               python3 main.py -c config.toml --dry-run\n"
        "  Ad-hoc bucket:          python3 main.py --bucket my-bucket --prefix db/ --pattern '*.sql.gz' --daily 7\n"
        "  Scheduler:              python3 main.py -c config.toml --schedule\n"
    )
    print(help_text)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Prune backups in Backblaze S3 buckets with a GFS retention policy"
    )
    parser.add_argument(
        "--config", "-c", help="Path to the TOML configuration file"
    )
    parser.add_argument(
        "--jobs", "-j", help="Comma-separated list of job names to run"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be kept and deleted without deleting",
    )
    parser.add_argument(
        "--list", action="store_true", help="List available jobs from config and exit"
    )
    parser.add_argument(
        "--list-buckets", action="store_true", help="List available buckets and exit"
    )
    parser.add_argument(
        "--help-extended", action="store_true", help="Show extended help and exit"
    )
    parser.add_argument("--bucket", help="Bucket to prune (overrides job/config bucket)")
    parser.add_argument("--prefix", help="Only consider keys under this prefix")
    parser.add_argument("--pattern", help="Glob pattern object names must match (default: *)")
    parser.add_argument("--daily", type=int, help="Days of daily backups to keep")
    parser.add_argument("--weekly", type=int, help="Weeks of weekly backups to keep")
    parser.add_argument("--weekly-day", help="Weekday of weekly backups (e.g. sunday)")
    parser.add_argument("--monthly", type=int, help="Months of monthly backups to keep")
    parser.add_argument("--monthly-day", type=int, help="Day of month of monthly/yearly backups")
    parser.add_argument("--yearly", type=int, help="Years of yearly backups to keep")
    parser.add_argument("--yearly-month", help="Month of yearly backups (1-12 or name)")
    parser.add_argument("--lock-dir", help="Directory for job locks (default: /tmp)", default="/tmp")
    parser.add_argument("--lock-ttl", type=int, default=6 * 60 * 60, help="Lock TTL seconds to avoid stale concurrent runs (default: 21600)")
    parser.add_argument("--schedule", action="store_true", help="Run in scheduler mode, using 'every' in jobs")
    parser.add_argument("--tick-interval", type=int, default=10, help="Scheduler loop tick interval in seconds (default: 10)")
    return parser


def select_jobs(jobs: List[Dict[str, Any]], names: Optional[str]) -> List[Dict[str, Any]]:
    if not names:
        return jobs
    selected = [n.strip() for n in names.split(",") if n.strip()]
    by_name = {str(j.get("name") or j.get("id")): j for j in jobs}
    missing = [n for n in selected if n not in by_name]
    if missing:
        print(f"Jobs not found: {', '.join(missing)}")
        raise SystemExit(1)
    return [by_name[n] for n in selected]


def main(argv: Optional[List[str]] = None) -> None:
    dotenv_path = os.getenv("DOTENV_PATH", ".env")
    if Path(dotenv_path).exists():
        load_dotenv(dotenv_path=dotenv_path)

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.help_extended:
        print_extended_help()
        return

    cfg = load_config(args.config)
    defaults = cfg.get("defaults", {})
    jobs: List[Dict[str, Any]] = cfg.get("jobs", []) or []

    if args.list:
        print("Available jobs:")
        for j in jobs:
            every = f", every {j.get('every')}" if j.get("every") else ""
            print(f"- {j.get('name') or j.get('id')} ({j.get('prefix') or defaults.get('prefix') or '/'}{every})")
        return

    s3, bucket_name = create_s3_client(cfg)

    if args.list_buckets:
        names = list_buckets(s3)
        if not names:
            print("No buckets returned or insufficient permissions.")
        else:
            print("Buckets:")
            for n in names:
                print(f"- {n}")
        return

    if args.schedule:
        schedule_loop(args, cfg, defaults, s3, bucket_name)
        return

    selected_jobs = select_jobs(jobs, args.jobs)
    if not selected_jobs:
        if not (args.bucket or bucket_name):
            print(
                "No jobs configured. Define 'jobs' in TOML or pass --bucket "
                "(or set BACKBLAZE_BUCKET)."
            )
            raise SystemExit(1)
        selected_jobs = [{"name": getenv("PRUNE_JOB_NAME", "adhoc")}]

    lock_root = Path(args.lock_dir)
    failures = 0
    for job in selected_jobs:
        job = apply_overrides(job, args)
        job_display = str(job.get("name") or job.get("id"))
        print("\n==> Pruning job:", job_display)
        try:
            target = build_target(job, defaults, bucket_name)
        except InvalidConfiguration as err:
            print(f"Invalid configuration for job '{job_display}': {err}")
            failures += 1
            continue
        lock_path = get_lock_path(lock_root, job_display)
        if not acquire_job_lock(lock_path, ttl_seconds=args.lock_ttl):
            print(f"Another run is in progress for job '{job_display}'. Skipping.")
            continue
        try:
            report = run_prune(s3, target, dry_run=args.dry_run)
            if not report.ok:
                failures += 1
        except Exception as err:
            print(f"Job failed: {err}")
            failures += 1
        finally:
            release_job_lock(lock_path)

    if failures:
        raise SystemExit(1)
