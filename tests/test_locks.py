"""Tests for per-job run locks."""

import time
from pathlib import Path

from gfsprune.locks import (
    acquire_job_lock,
    get_lock_path,
    read_lock_timestamp,
    release_job_lock,
)


def test_lock_path_is_sanitized(tmp_path: Path) -> None:
    assert get_lock_path(tmp_path, "db main/prod").name == "prune-lock-db_main_prod.lock"


def test_acquire_and_release(tmp_path: Path) -> None:
    lock = get_lock_path(tmp_path / "locks", "db")
    assert acquire_job_lock(lock, ttl_seconds=60)
    assert lock.exists()
    assert read_lock_timestamp(lock) is not None
    assert not acquire_job_lock(lock, ttl_seconds=60)
    release_job_lock(lock)
    assert not lock.exists()
    assert acquire_job_lock(lock, ttl_seconds=60)


def test_stale_lock_is_replaced(tmp_path: Path) -> None:
    lock = get_lock_path(tmp_path, "db")
    lock.write_text(f"{time.time() - 120}|1|otherhost\n")
    assert acquire_job_lock(lock, ttl_seconds=60)
    assert read_lock_timestamp(lock) > time.time() - 60


def test_garbage_lock_is_replaced(tmp_path: Path) -> None:
    lock = get_lock_path(tmp_path, "db")
    lock.write_text("not a lock")
    assert read_lock_timestamp(lock) is None
    assert acquire_job_lock(lock, ttl_seconds=60)


def test_release_missing_lock(tmp_path: Path) -> None:
    release_job_lock(get_lock_path(tmp_path, "db"))
