"""Quota reset schedule arithmetic.

Times are computed in a fixed UTC offset looked up from a small static table
and returned as aware UTC datetimes. There is no DST handling: a zone that is
not in the table is treated as UTC.
"""

import calendar
import re
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from smartrouter.observability.logger import get_logger
from smartrouter.quota.models import ResetSchedule

log = get_logger("quota.reset")

# Standard-time offsets in hours
TIMEZONE_OFFSETS = {
    "America/New_York": -5,
    "America/Chicago": -6,
    "America/Denver": -7,
    "America/Los_Angeles": -8,
    "EST": -5,
    "CST": -6,
    "MST": -7,
    "PST": -8,
}

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def _ensure_utc(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _zone(name: str | None) -> timezone:
    if not name or name == "UTC":
        return timezone.utc
    offset = TIMEZONE_OFFSETS.get(name)
    if offset is None:
        log.debug("unrecognized_timezone", timezone=name)
        return timezone.utc
    return timezone(timedelta(hours=offset))


def _next_midnight_utc(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)


def _month_slot(year: int, month: int, day: int, hour: int, tz: timezone) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(day, last_day), hour, tzinfo=tz)


def compute_next_reset(schedule: ResetSchedule, now: datetime | None = None) -> datetime:
    """Return the next reset time for `schedule`, strictly after `now` for recurring rules.

    Fixed schedules return their configured date as-is, even when it is in
    the past.
    """
    now = _ensure_utc(now)

    if schedule.type == "fixed":
        return _fixed_reset(schedule, now)

    tz = _zone(schedule.timezone)
    local_now = now.astimezone(tz)
    hour = schedule.hour

    if schedule.type == "daily":
        slot = local_now.replace(hour=hour, minute=0, second=0, microsecond=0)
        if slot <= local_now:
            slot += timedelta(days=1)

    elif schedule.type == "weekly":
        day_of_week = schedule.day_of_week if schedule.day_of_week is not None else 0
        target_weekday = (day_of_week - 1) % 7  # Sunday-based to Monday-based
        days_until = (target_weekday - local_now.weekday()) % 7
        slot = (local_now + timedelta(days=days_until)).replace(
            hour=hour, minute=0, second=0, microsecond=0
        )
        if slot <= local_now:
            slot += timedelta(days=7)

    else:
        day_of_month = schedule.day_of_month or 1
        slot = _month_slot(local_now.year, local_now.month, day_of_month, hour, tz)
        if slot <= local_now:
            year, month = (local_now.year + 1, 1) if local_now.month == 12 else (local_now.year, local_now.month + 1)
            slot = _month_slot(year, month, day_of_month, hour, tz)

    return slot.astimezone(timezone.utc)


def _fixed_reset(schedule: ResetSchedule, now: datetime) -> datetime:
    if not schedule.fixed_date:
        log.warning("fixed_schedule_missing_date", fallback="next_midnight")
        return _next_midnight_utc(now)

    try:
        fixed = datetime.fromisoformat(schedule.fixed_date.replace("Z", "+00:00"))
    except ValueError:
        log.warning("fixed_schedule_invalid_date", fixed_date=schedule.fixed_date, fallback="next_midnight")
        return _next_midnight_utc(now)

    if fixed.tzinfo is None:
        fixed = fixed.replace(tzinfo=timezone.utc)
    return fixed.astimezone(timezone.utc)


def is_due(next_reset: datetime | None, now: datetime | None = None) -> bool:
    if next_reset is None:
        return False
    return _ensure_utc(now) >= next_reset


def hours_until_reset(next_reset: datetime, now: datetime | None = None) -> float:
    return max(0.0, (next_reset - _ensure_utc(now)).total_seconds() / 3600)


def _ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        return f"{n}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def describe(schedule: ResetSchedule) -> str:
    hour_str = "midnight" if schedule.hour == 0 else f"{schedule.hour}:00"
    tz = schedule.timezone or "UTC"

    if schedule.type == "daily":
        return f"Daily at {hour_str} {tz}"
    if schedule.type == "weekly":
        day = DAY_NAMES[schedule.day_of_week or 0]
        return f"Every {day} at {hour_str} {tz}"
    if schedule.type == "monthly":
        return f"Monthly on the {_ordinal(schedule.day_of_month or 1)} at {hour_str} {tz}"
    if schedule.fixed_date:
        return f"Fixed: {schedule.fixed_date}"
    return "Fixed (date not set)"


def parse_reset_schedule(text: str) -> ResetSchedule:
    """Parse the short form used on the command line.

    "daily", "daily:7", "weekly:1:9", "monthly:15:0" or an ISO date.
    Anything else falls back to monthly on the 1st.
    """
    text = text.strip()
    if ISO_DATE.match(text):
        return ResetSchedule(type="fixed", fixed_date=text)

    parts = text.lower().split(":")
    kind = parts[0]
    try:
        numbers = [int(p) for p in parts[1:] if p != ""]
        if kind == "daily":
            return ResetSchedule(type="daily", hour=numbers[0] if numbers else 0)
        if kind == "weekly":
            return ResetSchedule(
                type="weekly",
                day_of_week=numbers[0] if numbers else 0,
                hour=numbers[1] if len(numbers) > 1 else 0,
            )
        if kind == "monthly":
            return ResetSchedule(
                type="monthly",
                day_of_month=numbers[0] if numbers else 1,
                hour=numbers[1] if len(numbers) > 1 else 0,
            )
    except (ValueError, ValidationError) as e:
        log.warning("reset_schedule_invalid", schedule=text, error=str(e))
        return ResetSchedule(type="monthly", day_of_month=1)

    log.warning("reset_schedule_unknown_type", schedule=text, fallback="monthly")
    return ResetSchedule(type="monthly", day_of_month=1)
