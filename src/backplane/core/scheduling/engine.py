"""Schedule engine: when is a backup schedule next due?

Pure functions of ``(schedule, instant)``: no clock reads, no storage, no
hidden state. Instants go in and come out as aware UTC datetimes; the
recurrence is evaluated in the schedule's IANA timezone with ``zoneinfo``.

::

    next_run(schedule, after)          next recurrence strictly after *after*
    should_fire_now(schedule, at)      window and blackout gate
    next_eligible_run(schedule, after) next recurrence that passes the gate

Recurrence shapes:

- ``manual``: never.
- ``daily``: ``time`` in the schedule timezone; rolls to tomorrow once passed.
- ``weekly``: scans today and the next seven days against the weekday mask.
- ``monthly``: every selected monthday, clamped to the last day of the
  month (day 31 in February fires on the 28th or 29th).
- ``interval``: ``after + interval_hours``.
- ``cron``: five-field expression evaluated with ``croniter``.

A candidate rejected by :func:`should_fire_now` is never "due"; callers
move on to the next candidate with :func:`next_eligible_run`.
"""

from __future__ import annotations

import calendar
import logging
from collections.abc import Iterable
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from backplane.core.errors import ScheduleError
from backplane.core.scheduling.models import BackupSchedule, BlackoutPeriod, ScheduleType
from backplane.core.timestamps import ensure_utc

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_WEEKDAY_LOOKUP = {
    **{name.lower(): i for i, name in enumerate(WEEKDAY_NAMES)},
    **{name.lower(): i for i, name in enumerate(calendar.day_name)},
}
WEEKDAY_MASK = (1 << 7) - 1
MONTHDAY_MASK = (1 << 31) - 1


# === Parsing ===


def get_zone(name: str | None) -> ZoneInfo:
    """Resolve an IANA timezone name; ``ScheduleError`` when unknown."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ScheduleError(f"Unknown timezone: {name!r}", cause=e) from e


def parse_time_of_day(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS``."""
    try:
        return time.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise ScheduleError(f"Invalid time of day: {value!r}", cause=e) from e


def validate_schedule(schedule: BackupSchedule) -> None:
    """Raise ``ScheduleError`` if *schedule* cannot be evaluated."""
    tz = get_zone(schedule.timezone)
    parse_time_of_day(schedule.time)
    if schedule.type == ScheduleType.CRON:
        _check_cron(schedule.cron_expression)
    if (schedule.window_start is None) != (schedule.window_end is None):
        raise ScheduleError("window_start and window_end must be set together")
    if schedule.window_start is not None:
        parse_time_of_day(schedule.window_start)
        parse_time_of_day(schedule.window_end)
    for period in schedule.blackout_periods:
        if period.is_recurring:
            parse_time_of_day(period.start)
            parse_time_of_day(period.end)
        else:
            _blackout_bounds(period, tz)


def _check_cron(expression: str | None) -> str:
    if not expression or len(expression.split()) != 5 or not croniter.is_valid(expression):
        raise ScheduleError(f"Invalid cron expression: {expression!r}")
    return expression


# === Bitmaps ===


def weekdays_bitmap(days: Iterable[int | str]) -> int:
    """Build a weekday mask from ISO indexes (0 = Monday) or day names."""
    mask = 0
    for day in days:
        if isinstance(day, str):
            index = _WEEKDAY_LOOKUP.get(day.strip().lower())
        else:
            index = day if 0 <= day <= 6 else None
        if index is None:
            raise ScheduleError(f"Invalid weekday: {day!r}")
        mask |= 1 << index
    return mask


def selected_weekdays(mask: int | None) -> list[int]:
    """Weekday indexes (0 = Monday) set in *mask*."""
    mask = mask or 0
    return [i for i in range(7) if mask & (1 << i)]


def monthdays_bitmap(days: Iterable[int]) -> int:
    """Build a monthday mask from days of month (1..31)."""
    mask = 0
    for day in days:
        if not 1 <= day <= 31:
            raise ScheduleError(f"Invalid day of month: {day!r}")
        mask |= 1 << (day - 1)
    return mask


def selected_monthdays(mask: int | None) -> list[int]:
    """Days of month (1..31) set in *mask*."""
    mask = mask or 0
    return [i + 1 for i in range(31) if mask & (1 << i)]


# === Next run ===


def next_run(schedule: BackupSchedule, after: datetime) -> datetime | None:
    """Next recurrence of *schedule* strictly after *after* (UTC), or ``None``."""
    after = ensure_utc(after)
    kind = ScheduleType(schedule.type)
    if kind == ScheduleType.MANUAL:
        return None
    if kind == ScheduleType.INTERVAL:
        return _next_interval(schedule, after)
    if kind == ScheduleType.CRON:
        return _next_cron(schedule, after)

    tz = get_zone(schedule.timezone)
    at = parse_time_of_day(schedule.time)
    local_today = after.astimezone(tz).date()

    if kind == ScheduleType.DAILY:
        for offset in range(3):
            candidate = _at(local_today + timedelta(days=offset), at, tz)
            if candidate > after:
                return candidate
        return None

    if kind == ScheduleType.WEEKLY:
        mask = (schedule.weekdays or 0) & WEEKDAY_MASK
        if not mask:
            return None
        for offset in range(8):
            day = local_today + timedelta(days=offset)
            if not mask & (1 << day.weekday()):
                continue
            candidate = _at(day, at, tz)
            if candidate > after:
                return candidate
        return None

    if kind == ScheduleType.MONTHLY:
        days = selected_monthdays((schedule.monthdays or 0) & MONTHDAY_MASK)
        if not days:
            return None
        year, month = local_today.year, local_today.month
        for _ in range(13):
            last_day = calendar.monthrange(year, month)[1]
            for day in sorted({min(d, last_day) for d in days}):
                candidate = _at(date(year, month, day), at, tz)
                if candidate > after:
                    return candidate
            year, month = (year + 1, 1) if month == 12 else (year, month + 1)
        return None

    raise ScheduleError(f"Unsupported schedule type: {schedule.type!r}")


def _at(day: date, at: time, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, at, tzinfo=tz).astimezone(UTC)


def _next_interval(schedule: BackupSchedule, after: datetime) -> datetime | None:
    hours = schedule.interval_hours
    if not hours or hours <= 0:
        return None
    return after + timedelta(hours=hours)


def _next_cron(schedule: BackupSchedule, after: datetime) -> datetime | None:
    expression = _check_cron(schedule.cron_expression)
    tz = get_zone(schedule.timezone)
    itr = croniter(expression, after.astimezone(tz))
    return itr.get_next(datetime).astimezone(UTC)


# === Gate ===


def should_fire_now(schedule: BackupSchedule, candidate: datetime) -> bool:
    """False when *candidate* is outside the window or inside a blackout."""
    tz = get_zone(schedule.timezone)
    candidate = ensure_utc(candidate)
    local = candidate.astimezone(tz)

    if schedule.window_start and schedule.window_end:
        start = parse_time_of_day(schedule.window_start)
        end = parse_time_of_day(schedule.window_end)
        if not _in_band(local.time().replace(microsecond=0), start, end):
            return False

    for period in schedule.blackout_periods:
        if _in_blackout(period, candidate, tz):
            return False
    return True


def _in_band(value: time, start: time, end: time) -> bool:
    """Inclusive time-of-day band; ``start > end`` crosses midnight."""
    if start <= end:
        return start <= value <= end
    return value >= start or value <= end


def _in_blackout(period: BlackoutPeriod, candidate: datetime, tz: ZoneInfo) -> bool:
    if period.is_recurring:
        local = candidate.astimezone(tz).time().replace(microsecond=0)
        return _in_band(local, parse_time_of_day(period.start), parse_time_of_day(period.end))
    start, end = _blackout_bounds(period, tz)
    return start <= candidate <= end


def _blackout_bounds(period: BlackoutPeriod, tz: ZoneInfo) -> tuple[datetime, datetime]:
    start = _parse_bound(period.start, tz)
    end = _parse_bound(period.end, tz)
    if len(period.end.strip()) == 10:
        # A bare date as the end bound covers the whole day.
        end = end + timedelta(days=1) - timedelta(microseconds=1)
    return start, end


def _parse_bound(value: str, tz: ZoneInfo) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as e:
        raise ScheduleError(f"Invalid blackout bound: {value!r}", cause=e) from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed.astimezone(UTC)


# === Eligibility ===


def next_eligible_run(
    schedule: BackupSchedule,
    after: datetime,
    max_candidates: int = 1000,
) -> datetime | None:
    """First recurrence after *after* that passes :func:`should_fire_now`."""
    candidate = ensure_utc(after)
    for _ in range(max_candidates):
        candidate = next_run(schedule, candidate)
        if candidate is None:
            return None
        if should_fire_now(schedule, candidate):
            return candidate
    logger.warning(
        "No eligible run for schedule %s within %d candidates after %s",
        schedule.id, max_candidates, after.isoformat(),
    )
    return None


def upcoming_runs(schedule: BackupSchedule, after: datetime, count: int = 5) -> list[datetime]:
    """The next *count* eligible runs, for previews."""
    runs: list[datetime] = []
    cursor = after
    while len(runs) < count:
        cursor = next_eligible_run(schedule, cursor)
        if cursor is None:
            break
        runs.append(cursor)
    return runs


# === Description ===


def describe(schedule: BackupSchedule) -> str:
    """Human-readable summary, e.g. ``Weekly on Mon, Wed at 09:00:00 (UTC)``."""
    kind = ScheduleType(schedule.type)
    tz = schedule.timezone or "UTC"
    if kind == ScheduleType.MANUAL:
        text = "Manual only"
    elif kind == ScheduleType.INTERVAL:
        hours = schedule.interval_hours or 0
        text = "Every hour" if hours == 1 else f"Every {hours} hours"
    elif kind == ScheduleType.DAILY:
        text = f"Daily at {schedule.time} ({tz})"
    elif kind == ScheduleType.WEEKLY:
        names = ", ".join(WEEKDAY_NAMES[i] for i in selected_weekdays(schedule.weekdays)) or "no days"
        text = f"Weekly on {names} at {schedule.time} ({tz})"
    elif kind == ScheduleType.MONTHLY:
        days = ", ".join(str(d) for d in selected_monthdays(schedule.monthdays)) or "no days"
        text = f"Monthly on day {days} at {schedule.time} ({tz})"
    else:
        text = f"Cron '{schedule.cron_expression}' ({tz})"

    if schedule.window_start and schedule.window_end:
        text += f", window {schedule.window_start}-{schedule.window_end}"
    if schedule.blackout_periods:
        count = len(schedule.blackout_periods)
        text += f", {count} blackout period{'s' if count != 1 else ''}"
    return text
