from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import socket
import os
import re


def get_lock_path(lock_dir: Path, job_name: str) -> Path:
    safe = re.sub(r"[^a-zA-Z0-9_.-]", "_", job_name)
    return lock_dir / f"prune-lock-{safe}.lock"


def read_lock_timestamp(lock_path: Path) -> Optional[float]:
    try:
        data = lock_path.read_text().strip()
    except OSError:
        return None
    head = data.split("|", 2)[0]
    try:
        return float(head)
    except ValueError:
        return None


def acquire_job_lock(lock_path: Path, ttl_seconds: int) -> bool:
    now_ts = datetime.now(timezone.utc).timestamp()
    if lock_path.exists():
        ts = read_lock_timestamp(lock_path)
        if ts is not None and now_ts - ts < ttl_seconds:
            return False
        print(f"Stale lock replaced: {lock_path}")
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock_path.write_text(f"{now_ts}|{os.getpid()}|{socket.gethostname()}\n")
    except OSError as err:
        print(f"Failed to write lock {lock_path}: {err}")
        return False
    return True


def release_job_lock(lock_path: Path) -> None:
    try:
        lock_path.unlink()
    except FileNotFoundError:
        pass
