from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, NamedTuple

from dateutil.relativedelta import relativedelta

from .config import RetentionConfig, Weekday


@dataclass(frozen=True)
class ObjectDescriptor:
    name: str
    last_modified: datetime
    size: int = 0
    locked: bool = False


@dataclass(frozen=True)
class RetentionWindows:
    anchor: datetime
    daily_floor: datetime
    weekly_floor: datetime
    monthly_floor: datetime
    yearly_floor: datetime


def week_anchor(now: datetime) -> datetime:
    """Midnight of the Sunday that starts the week containing ``now``.

    Seconds and sub-seconds are dropped along with hour and minute so that
    repeated runs inside the same day share identical boundaries.
    """
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start_of_day - timedelta(days=int(Weekday.of(now)))


def _floor(anchor: datetime, days: int = 0, months: int = 0, years: int = 0) -> datetime:
    # Spans reaching back past year 1 clamp to the earliest representable moment.
    try:
        if days:
            return anchor - timedelta(days=days)
        return anchor - relativedelta(months=months, years=years)
    except (OverflowError, ValueError):
        return datetime.min.replace(tzinfo=anchor.tzinfo)


def compute_windows(now: datetime, config: RetentionConfig) -> RetentionWindows:
    anchor = week_anchor(now)
    return RetentionWindows(
        anchor=anchor,
        daily_floor=_floor(anchor, days=config.daily_days),
        weekly_floor=_floor(anchor, days=config.weekly_weeks * 7),
        monthly_floor=_floor(anchor, months=config.monthly_months),
        yearly_floor=_floor(anchor, years=config.yearly_years),
    )


def _is_daily(lm: datetime, windows: RetentionWindows, config: RetentionConfig) -> bool:
    return lm > windows.daily_floor


def _is_weekly(lm: datetime, windows: RetentionWindows, config: RetentionConfig) -> bool:
    return (
        lm < windows.daily_floor
        and lm > windows.weekly_floor
        and Weekday.of(lm) == config.weekly_day
    )


def _is_monthly(lm: datetime, windows: RetentionWindows, config: RetentionConfig) -> bool:
    return (
        lm < windows.daily_floor
        and lm > windows.monthly_floor
        and lm.day == config.monthly_day
    )


def _is_yearly(lm: datetime, windows: RetentionWindows, config: RetentionConfig) -> bool:
    # Day of month comes from the monthly setting; there is no yearly day.
    return (
        lm < windows.daily_floor
        and lm > windows.yearly_floor
        and lm.day == config.monthly_day
        and lm.month == config.yearly_month
    )


TIERS = (
    ("daily", _is_daily),
    ("weekly", _is_weekly),
    ("monthly", _is_monthly),
    ("yearly", _is_yearly),
)


def retaining_tiers(
    obj: ObjectDescriptor, windows: RetentionWindows, config: RetentionConfig
) -> List[str]:
    return [name for name, rule in TIERS if rule(obj.last_modified, windows, config)]


def is_retained(
    obj: ObjectDescriptor, windows: RetentionWindows, config: RetentionConfig
) -> bool:
    return any(rule(obj.last_modified, windows, config) for _, rule in TIERS)


class Partition(NamedTuple):
    to_delete: List[ObjectDescriptor]
    to_retain: List[ObjectDescriptor]

    @property
    def delete_bytes(self) -> int:
        return sum(o.size for o in self.to_delete)

    @property
    def retain_bytes(self) -> int:
        return sum(o.size for o in self.to_retain)


@dataclass
class PartitionState:
    retained_by_name: Dict[str, ObjectDescriptor] = field(default_factory=dict)
    delete_candidates: List[ObjectDescriptor] = field(default_factory=list)

    def finalize(self) -> Partition:
        to_delete = [
            o for o in self.delete_candidates if o.name not in self.retained_by_name
        ]
        return Partition(to_delete, list(self.retained_by_name.values()))


def fold_batch(
    batch: Iterable[ObjectDescriptor],
    state: PartitionState,
    windows: RetentionWindows,
    config: RetentionConfig,
) -> PartitionState:
    """Fold one listing page into ``state`` and return it.

    Retained objects of the batch are merged before the batch is diffed
    against ``retained_by_name``, so each object is checked against its own
    tier outcome.
    """
    batch = list(batch)
    for obj in batch:
        if is_retained(obj, windows, config):
            state.retained_by_name[obj.name] = obj
    for obj in batch:
        if obj.name not in state.retained_by_name:
            state.delete_candidates.append(obj)
    return state


def partition_pages(
    pages: Iterable[Iterable[ObjectDescriptor]],
    windows: RetentionWindows,
    config: RetentionConfig,
) -> Partition:
    state = PartitionState()
    for page in pages:
        fold_batch(page, state, windows, config)
    return state.finalize()
