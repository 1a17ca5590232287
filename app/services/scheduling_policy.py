"""Dialing-window and back-off rules.

Pure functions over a client's :class:`ClientScheduleConfig` and an
injected ``now``; nothing here performs I/O.  Every check fails closed:
an unknown timezone, an empty day list, or a window that cannot be
parsed (or ends before it starts) never permits dialing.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Sequence, Set, Tuple

import pytz

from app.core.config import settings
from app.core.constants import WEEKDAY_ABBREVIATIONS
from app.schemas.client import ClientScheduleConfig, TimeWindow
from app.schemas.common import QueuePriority

logger = logging.getLogger(__name__)

# How many days ahead next_permitted_instant looks before giving up.
# Eight covers "same weekday next week" for a single active day.
_SCAN_DAYS: int = 8


def _tz(name: str) -> Optional[pytz.BaseTzInfo]:
    try:
        return pytz.timezone(name)
    except (pytz.exceptions.UnknownTimeZoneError, AttributeError):
        logger.warning("Unknown timezone %r; dialing not permitted", name)
        return None


def _active_days(days: Sequence[str]) -> Set[str]:
    """Normalise ``mon``/``Monday``/``MON`` to ``Mon``."""
    known = set(WEEKDAY_ABBREVIATIONS)
    normalised = set()
    for day in days:
        abbr = str(day).strip()[:3].title()
        if abbr in known:
            normalised.add(abbr)
    return normalised


def _parse_hhmm(value: str) -> Optional[time]:
    try:
        hours, minutes = str(value).strip().split(":")
        return time(int(hours), int(minutes))
    except (ValueError, TypeError):
        return None


def _windows(windows: Sequence[TimeWindow]) -> List[Tuple[time, time]]:
    """Parsed windows sorted by start; malformed or inverted ones dropped."""
    parsed = []
    for window in windows:
        start, end = _parse_hhmm(window.start), _parse_hhmm(window.end)
        if start is None or end is None or start > end:
            continue
        parsed.append((start, end))
    return sorted(parsed)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _weekday(day: date) -> str:
    return WEEKDAY_ABBREVIATIONS[day.weekday()]


def is_dialing_permitted(now: datetime, config: ClientScheduleConfig) -> bool:
    """True iff *now* falls on an active day inside at least one window.

    Both ends of a window are inclusive.  Urgent items get no exemption.
    """
    tz = _tz(config.timezone)
    if tz is None:
        return False
    local = _as_utc(now).astimezone(tz)
    if _weekday(local.date()) not in _active_days(config.active_days):
        return False
    wall = local.time().replace(tzinfo=None)
    return any(start <= wall <= end for start, end in _windows(config.time_windows))


def next_permitted_instant(
    now: datetime, config: ClientScheduleConfig
) -> Optional[datetime]:
    """Return *now* if dialing is permitted, else the next window start.

    Later windows today are considered first, then the earliest window
    of each following active day.  ``None`` when the configuration can
    never permit dialing.
    """
    if is_dialing_permitted(now, config):
        return now

    tz = _tz(config.timezone)
    days = _active_days(config.active_days)
    windows = _windows(config.time_windows)
    if tz is None or not days or not windows:
        return None

    local_now = _as_utc(now).astimezone(tz)
    for offset in range(_SCAN_DAYS):
        day = local_now.date() + timedelta(days=offset)
        if _weekday(day) not in days:
            continue
        for start, _end in windows:
            candidate = tz.normalize(tz.localize(datetime.combine(day, start)))
            if candidate > local_now:
                return candidate.astimezone(timezone.utc)
    return None


def retry_delay(retry_count: int, delay_schedule: Sequence[int]) -> timedelta:
    """Back-off before retry number ``retry_count + 1``.

    Indexes *delay_schedule* (minutes) and saturates at its last entry:

    >>> retry_delay(0, [5, 15, 30, 60])
    datetime.timedelta(seconds=300)
    >>> retry_delay(9, [5, 15, 30, 60])
    datetime.timedelta(seconds=3600)
    """
    schedule = list(delay_schedule) or list(settings.DEFAULT_RETRY_DELAYS_MINUTES)
    index = min(max(retry_count, 0), len(schedule) - 1)
    return timedelta(minutes=schedule[index])


def calculate_optimal_call_time(
    priority: QueuePriority, config: ClientScheduleConfig, now: datetime
) -> datetime:
    """Default ``scheduled_at`` for a newly enqueued item.

    The urgent branch only fires when dialing is already permitted, which
    is exactly when :func:`next_permitted_instant` returns *now* anyway,
    so urgent items get no head start outside business hours.
    """
    if priority == QueuePriority.urgent and is_dialing_permitted(now, config):
        return now
    # A config that never permits dialing leaves the item due now; the
    # processor's window check keeps it from being dialled.
    return next_permitted_instant(now, config) or now


def cooldown_remaining(
    last_attempt_at: Optional[datetime], now: datetime, cooldown_hours: float
) -> timedelta:
    """Time left before a lead may be dialled again (zero when clear)."""
    if last_attempt_at is None or cooldown_hours <= 0:
        return timedelta(0)
    ready_at = _as_utc(last_attempt_at) + timedelta(hours=cooldown_hours)
    return max(ready_at - _as_utc(now), timedelta(0))


def attempts_exhausted(attempts: int, max_attempts: int) -> bool:
    """True once a lead has used up its lifetime dial attempts.

    A non-positive ``max_attempts`` means no lifetime limit.
    """
    return max_attempts > 0 and attempts >= max_attempts
