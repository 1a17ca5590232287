"""Shared time points and a controllable clock for the test suite."""

from datetime import datetime, timedelta, timezone

import pytz

NEW_YORK = pytz.timezone("America/New_York")


def ny_time(year: int, month: int, day: int, hour: int, minute: int = 0) -> datetime:
    """Wall-clock time in New York, returned as an aware UTC datetime."""
    local = NEW_YORK.localize(datetime(year, month, day, hour, minute))
    return local.astimezone(timezone.utc)


# Wednesday 14 October 2026, 10:00 in New York (inside 09:00-17:00)
WEDNESDAY_10AM = ny_time(2026, 10, 14, 10)
# Saturday 17 October 2026, 10:00 in New York
SATURDAY_10AM = ny_time(2026, 10, 17, 10)
# Monday 19 October 2026, 09:00 in New York
MONDAY_9AM = ny_time(2026, 10, 19, 9)


class FixedClock:
    """Callable clock that only moves when a test moves it."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)
