from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional, Tuple
from botocore.exceptions import BotoCoreError, ClientError

from .config import PruneTarget
from .retention import (
    ObjectDescriptor,
    Partition,
    PartitionState,
    RetentionWindows,
    compute_windows,
    fold_batch,
    retaining_tiers,
)
from .s3 import delete_backup, iter_object_pages
from .utils import format_timestamp, human_size


@dataclass
class PruneReport:
    target: str
    dry_run: bool
    retained: int = 0
    retained_bytes: int = 0
    deleted: List[str] = field(default_factory=list)
    deleted_bytes: int = 0
    failed: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def collect_partition(
    s3: Any, target: PruneTarget, now: datetime
) -> Tuple[RetentionWindows, Partition]:
    windows = compute_windows(now, target.retention)
    state = PartitionState()
    pages = iter_object_pages(
        s3,
        target.bucket,
        prefix=target.prefix,
        pattern=target.pattern,
        page_size=target.page_size,
        tz=target.tzinfo,
    )
    for page in pages:
        fold_batch(page, state, windows, target.retention)
    return windows, state.finalize()


def print_windows(target: PruneTarget, windows: RetentionWindows) -> None:
    print(f"Policy: {target.retention.describe()}")
    print(
        f"Windows (anchor {format_timestamp(windows.anchor)}): "
        f"daily>{format_timestamp(windows.daily_floor)} "
        f"weekly>{format_timestamp(windows.weekly_floor)} "
        f"monthly>{format_timestamp(windows.monthly_floor)} "
        f"yearly>{format_timestamp(windows.yearly_floor)}"
    )


def _describe(obj: ObjectDescriptor) -> str:
    return f"{human_size(obj.size)}, {format_timestamp(obj.last_modified)}"


def report_simulation(
    target: PruneTarget, windows: RetentionWindows, partition: Partition
) -> PruneReport:
    for obj in sorted(partition.to_retain, key=lambda o: o.last_modified, reverse=True):
        tiers = ",".join(retaining_tiers(obj, windows, target.retention))
        print(
            f"[dry-run] keep s3://{target.bucket}/{obj.name} ({_describe(obj)}) [{tiers}]"
        )
    for obj in sorted(partition.to_delete, key=lambda o: o.last_modified, reverse=True):
        lock = " [legal hold]" if obj.locked else ""
        print(
            f"[dry-run] delete s3://{target.bucket}/{obj.name} ({_describe(obj)}){lock}"
        )
    return PruneReport(
        target=target.name,
        dry_run=True,
        retained=len(partition.to_retain),
        retained_bytes=partition.retain_bytes,
        deleted=[o.name for o in partition.to_delete],
        deleted_bytes=partition.delete_bytes,
    )


def delete_objects(
    s3: Any, target: PruneTarget, partition: Partition
) -> PruneReport:
    report = PruneReport(
        target=target.name,
        dry_run=False,
        retained=len(partition.to_retain),
        retained_bytes=partition.retain_bytes,
    )
    for obj in partition.to_delete:
        try:
            delete_backup(
                s3,
                target.bucket,
                obj,
                break_locks=target.break_locks,
                bypass_governance=target.bypass_governance,
            )
        except (ClientError, BotoCoreError) as err:
            print(f"Failed to delete s3://{target.bucket}/{obj.name}: {err}")
            report.failed.append((obj.name, str(err)))
            continue
        report.deleted.append(obj.name)
        report.deleted_bytes += obj.size
    return report


def print_summary(report: PruneReport) -> None:
    verb = "would delete" if report.dry_run else "deleted"
    line = (
        f"Retention: keep {report.retained} object(s) / {human_size(report.retained_bytes)}; "
        f"{verb} {len(report.deleted)} object(s) / {human_size(report.deleted_bytes)}"
    )
    if report.failed:
        line += f"; {len(report.failed)} failure(s)"
    print(line)


def run_prune(
    s3: Any,
    target: PruneTarget,
    dry_run: bool = False,
    now: Optional[datetime] = None,
) -> PruneReport:
    if now is None:
        now = datetime.now(target.tzinfo)
    print(
        f"Scanning s3://{target.bucket}/{target.prefix} (pattern '{target.pattern}')"
    )
    windows, partition = collect_partition(s3, target, now)
    print_windows(target, windows)
    if dry_run:
        report = report_simulation(target, windows, partition)
    else:
        report = delete_objects(s3, target, partition)
    print_summary(report)
    return report
