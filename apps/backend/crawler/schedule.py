"""
Jobs scrape schedule.

Pure decision logic for automatic scrape runs: when the next run is due, whether
a trigger should run now or be skipped, and how long a run holds the lock.
Nothing here touches storage; callers pass the persisted state in.
"""

import os
import re
import math
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

DEFAULT_SCRAPE_ENABLED = True
DEFAULT_INTERVAL_HOURS = 6
DEFAULT_START_TIME = "06:00"
DEFAULT_TIMEZONE = "Asia/Kolkata"
MIN_INTERVAL_HOURS = 1
MAX_INTERVAL_HOURS = 168
SCRAPE_LOCK_MINUTES = 20

# Supported schedule timezones and their fixed UTC offsets in minutes
TIMEZONE_OFFSETS_MINUTES = {
    "UTC": 0,
    "Asia/Kolkata": 330,
}

TRIGGER_AUTO = "auto"
TRIGGER_MANUAL = "manual"
TRIGGERS = (TRIGGER_AUTO, TRIGGER_MANUAL)

SKIP_DISABLED = "disabled"
SKIP_LOCKED = "locked"
SKIP_NOT_DUE = "not_due"
SKIP_WAITING_FOR_START_TIME = "waiting_for_start_time"

RUN_STATUSES = ("success", "failed", "cancelled", "skipped")

_TIME_RE = re.compile(r'^(\d{1,2}):(\d{2})$')


@dataclass(frozen=True)
class ScheduleSettings:
    enabled: bool = DEFAULT_SCRAPE_ENABLED
    interval_hours: int = DEFAULT_INTERVAL_HOURS
    start_time: str = DEFAULT_START_TIME
    timezone: str = DEFAULT_TIMEZONE

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ScheduleSettings":
        """Read JOBS_SCRAPE_ENABLED, _INTERVAL_HOURS, _START_TIME and _TIMEZONE."""
        env = os.environ if environ is None else environ
        return resolve_schedule_settings(
            enabled=env.get("JOBS_SCRAPE_ENABLED"),
            interval_hours=env.get("JOBS_SCRAPE_INTERVAL_HOURS"),
            start_time=env.get("JOBS_SCRAPE_START_TIME"),
            timezone_name=env.get("JOBS_SCRAPE_TIMEZONE"),
        )


@dataclass(frozen=True)
class ScheduleState:
    last_success_at: Optional[datetime] = None
    lock_until: Optional[datetime] = None
    last_run_status: Optional[str] = None
    last_skip_reason: Optional[str] = None


@dataclass(frozen=True)
class ScheduleDecision:
    should_run: bool
    skipped: bool
    skip_reason: Optional[str]
    next_due_at: Optional[datetime]


def parse_boolean(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized == "true":
            return True
        if normalized == "false":
            return False
    if isinstance(value, (int, float)):
        if value == 1:
            return True
        if value == 0:
            return False
    return fallback


def parse_interval_hours(value: Any) -> int:
    """Whole hours clamped to 1..168; anything unparseable is the default."""
    hours = None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if math.isfinite(value):
            hours = int(value)
    elif isinstance(value, str):
        match = re.match(r'^\s*([+-]?\d+)', value)
        if match:
            hours = int(match.group(1))
    if hours is None:
        return DEFAULT_INTERVAL_HOURS
    return max(MIN_INTERVAL_HOURS, min(MAX_INTERVAL_HOURS, hours))


def parse_start_time(value: Any) -> str:
    """HH:MM in 24h; invalid values are the default."""
    match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        return DEFAULT_START_TIME
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return DEFAULT_START_TIME
    return f"{hour:02d}:{minute:02d}"


def parse_timezone(value: Any) -> str:
    if isinstance(value, str) and value.strip() in TIMEZONE_OFFSETS_MINUTES:
        return value.strip()
    return DEFAULT_TIMEZONE


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime_or_none(value: Any) -> Optional[datetime]:
    """ISO-8601 string or datetime to an aware UTC datetime; None when unparseable."""
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, str) and value.strip():
        try:
            return _as_utc(date_parser.isoparse(value.strip()))
        except (ValueError, OverflowError):
            logger.warning(f"[schedule] Ignoring unparseable timestamp {value!r}")
    return None


def parse_run_status(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip().lower() in RUN_STATUSES:
        return value.strip().lower()
    return None


def resolve_schedule_settings(
    enabled: Any = None,
    interval_hours: Any = None,
    start_time: Any = None,
    timezone_name: Any = None,
) -> ScheduleSettings:
    return ScheduleSettings(
        enabled=parse_boolean(enabled, DEFAULT_SCRAPE_ENABLED),
        interval_hours=parse_interval_hours(interval_hours),
        start_time=parse_start_time(start_time),
        timezone=parse_timezone(timezone_name),
    )


def resolve_schedule_state(
    last_success_at: Any = None,
    lock_until: Any = None,
    last_run_status: Any = None,
    last_skip_reason: Any = None,
) -> ScheduleState:
    skip_reason = last_skip_reason.strip() if isinstance(last_skip_reason, str) else ""
    return ScheduleState(
        last_success_at=parse_datetime_or_none(last_success_at),
        lock_until=parse_datetime_or_none(lock_until),
        last_run_status=parse_run_status(last_run_status),
        last_skip_reason=skip_reason or None,
    )


def _first_run_candidate(now: datetime, settings: ScheduleSettings) -> datetime:
    """Now if today's start time has passed in the schedule timezone, else today's start time."""
    tz = timezone(timedelta(minutes=TIMEZONE_OFFSETS_MINUTES[parse_timezone(settings.timezone)]))
    local_now = now.astimezone(tz)
    hour, minute = (int(part) for part in parse_start_time(settings.start_time).split(":"))
    if local_now.hour * 60 + local_now.minute >= hour * 60 + minute:
        return now
    start = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    return start.astimezone(timezone.utc)


def get_next_jobs_scrape_due_at(
    settings: ScheduleSettings,
    last_success_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    When the next automatic run is due.

    Returns:
        None when scheduling is disabled; last success + interval when there
        has been a success; otherwise the first-run start time
    """
    if not settings.enabled:
        return None
    now = _as_utc(now or datetime.now(timezone.utc))
    if last_success_at is None:
        return _first_run_candidate(now, settings)
    return _as_utc(last_success_at) + timedelta(hours=settings.interval_hours)


def evaluate_jobs_scrape_schedule(
    trigger: str,
    settings: ScheduleSettings,
    state: ScheduleState,
    now: Optional[datetime] = None,
) -> ScheduleDecision:
    """
    Decide whether a triggered run should go ahead.

    An unexpired lock skips every trigger. Manual triggers otherwise always run;
    automatic triggers respect the enabled flag, the interval and the start time.
    """
    now = _as_utc(now or datetime.now(timezone.utc))

    if state.lock_until is not None and now < _as_utc(state.lock_until):
        return ScheduleDecision(False, True, SKIP_LOCKED, _as_utc(state.lock_until))

    if trigger == TRIGGER_MANUAL:
        return ScheduleDecision(True, False, None, now)

    if not settings.enabled:
        return ScheduleDecision(False, True, SKIP_DISABLED, None)

    next_due_at = get_next_jobs_scrape_due_at(settings, state.last_success_at, now)
    if next_due_at is not None and now < next_due_at:
        reason = SKIP_NOT_DUE if state.last_success_at else SKIP_WAITING_FOR_START_TIME
        return ScheduleDecision(False, True, reason, next_due_at)

    return ScheduleDecision(True, False, None, next_due_at)


def create_scrape_lock_until(now: Optional[datetime] = None) -> datetime:
    return _as_utc(now or datetime.now(timezone.utc)) + timedelta(minutes=SCRAPE_LOCK_MINUTES)
