from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from dotenv import load_dotenv
from enum import IntEnum
from datetime import datetime, timezone, tzinfo
from pathlib import Path
import sys
import re
import os

try:
    import tomllib as toml_loader
except Exception:
    try:
        import tomli as toml_loader
    except Exception:
        toml_loader = None


class InvalidConfiguration(ValueError):
    pass


class Weekday(IntEnum):
    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def of(cls, moment: datetime) -> "Weekday":
        # datetime.weekday() counts from Monday; weeks here start on Sunday.
        return cls((moment.weekday() + 1) % 7)

    @classmethod
    def parse(cls, value: Any) -> "Weekday":
        if isinstance(value, Weekday):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            if 0 <= value <= 6:
                return cls(value)
            raise InvalidConfiguration(f"Weekday out of range 0-6 (Sunday=0): {value}")
        if isinstance(value, str):
            s = value.strip().lower()
            if s.isdigit():
                return cls.parse(int(s))
            for day in cls:
                if s in (day.name.lower(), day.name.lower()[:3]):
                    return day
        raise InvalidConfiguration(f"Unknown weekday: {value!r}")


MONTH_NAMES = [
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
]

RETENTION_DEFAULTS: Dict[str, Any] = {
    "daily_days": 14,
    "weekly_weeks": 4,
    "weekly_day": "sunday",
    "monthly_months": 0,
    "monthly_day": 1,
    "yearly_years": 0,
    "yearly_month": 1,
}

TARGET_DEFAULTS: Dict[str, Any] = {
    "prefix": "",
    "pattern": "*",
    "page_size": 1000,
    "timezone": "UTC",
    "break_locks": True,
    "bypass_governance": False,
}


def _as_int(field_name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise InvalidConfiguration(f"'{field_name}' must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and re.fullmatch(r"-?\d+", value.strip()):
        return int(value.strip())
    raise InvalidConfiguration(f"'{field_name}' must be an integer, got {value!r}")


def _as_count(field_name: str, value: Any) -> int:
    n = _as_int(field_name, value)
    if n < 0:
        raise InvalidConfiguration(f"'{field_name}' must be >= 0, got {n}")
    return n


def _as_month(value: Any) -> int:
    if isinstance(value, str) and not value.strip().isdigit():
        s = value.strip().lower()
        for idx, name in enumerate(MONTH_NAMES, start=1):
            if s in (name, name[:3]):
                return idx
        raise InvalidConfiguration(f"Unknown month: {value!r}")
    month = _as_int("yearly_month", value)
    if not 1 <= month <= 12:
        raise InvalidConfiguration(f"'yearly_month' must be within 1-12, got {month}")
    return month


def _as_bool(field_name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        s = value.strip().lower()
        if s in ("1", "true", "yes", "on"):
            return True
        if s in ("0", "false", "no", "off"):
            return False
    raise InvalidConfiguration(f"'{field_name}' must be a boolean, got {value!r}")


@dataclass(frozen=True)
class RetentionConfig:
    daily_days: int = 14
    weekly_weeks: int = 4
    weekly_day: Weekday = Weekday.SUNDAY
    monthly_months: int = 0
    monthly_day: int = 1
    yearly_years: int = 0
    yearly_month: int = 1

    def __post_init__(self) -> None:
        for name in (
            "daily_days", "weekly_weeks", "monthly_months", "yearly_years",
            "monthly_day", "yearly_month",
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidConfiguration(f"'{name}' must be an integer, got {value!r}")
        for name in ("daily_days", "weekly_weeks", "monthly_months", "yearly_years"):
            _as_count(name, getattr(self, name))
        if not isinstance(self.weekly_day, Weekday):
            raise InvalidConfiguration(f"'weekly_day' must be a Weekday, got {self.weekly_day!r}")
        if not 1 <= self.monthly_day <= 31:
            raise InvalidConfiguration(
                f"'monthly_day' must be within 1-31, got {self.monthly_day}"
            )
        if not 1 <= self.yearly_month <= 12:
            raise InvalidConfiguration(
                f"'yearly_month' must be within 1-12, got {self.yearly_month}"
            )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RetentionConfig":
        unknown = set(data) - set(RETENTION_DEFAULTS)
        if unknown:
            raise InvalidConfiguration(
                f"Unknown retention setting(s): {', '.join(sorted(unknown))}"
            )
        merged = {**RETENTION_DEFAULTS, **data}
        return cls(
            daily_days=_as_count("daily_days", merged["daily_days"]),
            weekly_weeks=_as_count("weekly_weeks", merged["weekly_weeks"]),
            weekly_day=Weekday.parse(merged["weekly_day"]),
            monthly_months=_as_count("monthly_months", merged["monthly_months"]),
            monthly_day=_as_int("monthly_day", merged["monthly_day"]),
            yearly_years=_as_count("yearly_years", merged["yearly_years"]),
            yearly_month=_as_month(merged["yearly_month"]),
        )

    def describe(self) -> str:
        return (
            f"daily={self.daily_days}d "
            f"weekly={self.weekly_weeks}w on {self.weekly_day.name.capitalize()} "
            f"monthly={self.monthly_months}m on day {self.monthly_day} "
            f"yearly={self.yearly_years}y in {MONTH_NAMES[self.yearly_month - 1].capitalize()}"
        )


@dataclass(frozen=True)
class PruneTarget:
    name: str
    bucket: str
    retention: RetentionConfig
    prefix: str = ""
    pattern: str = "*"
    page_size: int = 1000
    timezone: str = "UTC"
    break_locks: bool = True
    bypass_governance: bool = False

    @property
    def tzinfo(self) -> tzinfo:
        return resolve_timezone(self.timezone)


def resolve_timezone(name: str) -> tzinfo:
    if name.upper() in ("UTC", "Z"):
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as err:
        raise InvalidConfiguration(f"Unknown timezone: {name!r}") from err


def _pick(key: str, *sources: Mapping[str, Any]) -> Any:
    for src in sources:
        if key in src and src[key] is not None:
            return src[key]
    return None


def build_target(
    job: Mapping[str, Any],
    defaults: Optional[Mapping[str, Any]] = None,
    bucket: Optional[str] = None,
) -> PruneTarget:
    defaults = defaults or {}
    name = job.get("name") or job.get("id")
    if not name:
        raise InvalidConfiguration("Job requires a 'name'.")

    target_bucket = job.get("bucket") or bucket
    if not target_bucket:
        raise InvalidConfiguration(
            f"Job '{name}' requires 'bucket' (no default bucket defined)"
        )

    job_ret = job.get("retention") or {}
    default_ret = defaults.get("retention") or {}
    retention_values: Dict[str, Any] = {}
    for key in RETENTION_DEFAULTS:
        value = _pick(key, job_ret, default_ret)
        if value is not None:
            retention_values[key] = value
    unknown = (set(job_ret) | set(default_ret)) - set(RETENTION_DEFAULTS)
    if unknown:
        raise InvalidConfiguration(
            f"Unknown retention setting(s): {', '.join(sorted(unknown))}"
        )
    retention = RetentionConfig.from_mapping(retention_values)

    values = {
        key: _pick(key, job, defaults) for key in TARGET_DEFAULTS
    }
    values = {
        k: (TARGET_DEFAULTS[k] if v is None else v) for k, v in values.items()
    }

    page_size = _as_int("page_size", values["page_size"])
    if not 1 <= page_size <= 1000:
        raise InvalidConfiguration(f"'page_size' must be within 1-1000, got {page_size}")

    tz_name = str(values["timezone"])
    resolve_timezone(tz_name)

    return PruneTarget(
        name=str(name),
        bucket=str(target_bucket),
        retention=retention,
        prefix=str(values["prefix"]),
        pattern=str(values["pattern"]) or "*",
        page_size=page_size,
        timezone=tz_name,
        break_locks=_as_bool("break_locks", values["break_locks"]),
        bypass_governance=_as_bool("bypass_governance", values["bypass_governance"]),
    )


RETENTION_FLAGS = {
    "daily": "daily_days",
    "weekly": "weekly_weeks",
    "weekly_day": "weekly_day",
    "monthly": "monthly_months",
    "monthly_day": "monthly_day",
    "yearly": "yearly_years",
    "yearly_month": "yearly_month",
}


def apply_overrides(job: Dict[str, Any], args) -> Dict[str, Any]:
    """Layer command-line bucket, filter and retention flags over a job table."""
    merged = dict(job)
    for key in ("bucket", "prefix", "pattern"):
        value = getattr(args, key, None)
        if value is not None:
            merged[key] = value
    retention = dict(job.get("retention") or {})
    for flag, key in RETENTION_FLAGS.items():
        value = getattr(args, flag, None)
        if value is not None:
            retention[key] = value
    if retention:
        merged["retention"] = retention
    return merged


def _resolve_env_string(value: str) -> str:
    if isinstance(value, str) and re.fullmatch(r"ENV_[A-Z0-9_]+", value):
        var_name = value[4:]
        env_val = os.getenv(var_name)
        if env_val is None:
            print(
                f"Warning: Environment variable '{var_name}' not set for placeholder '{value}'"
            )
            return value
        return env_val
    return value


def _resolve_env_placeholders(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _resolve_env_placeholders(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_resolve_env_placeholders(v) for v in obj]
    if isinstance(obj, tuple):
        return tuple(_resolve_env_placeholders(v) for v in obj)
    if isinstance(obj, str):
        return _resolve_env_string(obj)
    return obj


def load_config(config_path: Optional[str]) -> Dict[str, Any]:
    if not config_path:
        return {}
    if toml_loader is None:
        print(
            "TOML support not available. Install 'tomli' for Python < 3.11 or use Python 3.11+."
        )
        sys.exit(1)
    cfg_path = Path(config_path)
    if not cfg_path.exists():
        print(f"Config file not found: {cfg_path}")
        sys.exit(1)
    try:
        with cfg_path.open("rb") as fp:
            data: Dict[str, Any] = toml_loader.load(fp)
    except Exception as err:
        print(f"Failed to read config TOML: {err}")
        sys.exit(1)

    default_env = cfg_path.parent / ".env"
    if default_env.exists():
        load_dotenv(dotenv_path=str(default_env), override=False)

    dot_env = data.get("dot_env")
    dot_envs = data.get("dot_envs") or []
    env_paths: List[Path] = []
    if isinstance(dot_env, str) and dot_env:
        env_paths.append((cfg_path.parent / dot_env))
    if isinstance(dot_envs, list):
        for p in dot_envs:
            if isinstance(p, str) and p:
                env_paths.append((cfg_path.parent / p))
    for p in env_paths:
        if not p.exists():
            print(f"Warning: dotenv file not found: {p}")
            continue
        load_dotenv(dotenv_path=str(p), override=False)

    return _resolve_env_placeholders(data)
