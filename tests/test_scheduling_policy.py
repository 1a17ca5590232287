"""Tests for dialing windows, back-off and lifetime limits."""

from datetime import datetime, timedelta, timezone

import pytest

from app.schemas.client import ClientScheduleConfig, TimeWindow
from app.schemas.common import QueuePriority
from app.services.scheduling_policy import (
    attempts_exhausted,
    calculate_optimal_call_time,
    cooldown_remaining,
    is_dialing_permitted,
    next_permitted_instant,
    retry_delay,
)
from tests.helpers import MONDAY_9AM, SATURDAY_10AM, WEDNESDAY_10AM, ny_time


def _config(**overrides) -> ClientScheduleConfig:
    return ClientScheduleConfig(**overrides)


class TestIsDialingPermitted:
    """Weekday and window checks in the client's own timezone."""

    def test_inside_weekday_window(self):
        assert is_dialing_permitted(WEDNESDAY_10AM, _config()) is True

    def test_weekend_is_not_permitted(self):
        assert is_dialing_permitted(SATURDAY_10AM, _config()) is False

    def test_window_ends_are_inclusive(self):
        config = _config()
        assert is_dialing_permitted(ny_time(2026, 10, 14, 9, 0), config) is True
        assert is_dialing_permitted(ny_time(2026, 10, 14, 17, 0), config) is True
        assert is_dialing_permitted(ny_time(2026, 10, 14, 8, 59), config) is False
        assert is_dialing_permitted(ny_time(2026, 10, 14, 17, 1), config) is False

    def test_uses_client_timezone_not_utc(self):
        # 14:00 UTC is 10:00 in New York but 07:00 in Los Angeles
        la = _config(timezone="America/Los_Angeles")
        assert is_dialing_permitted(WEDNESDAY_10AM, la) is False

    def test_inactive_weekday_never_permitted(self):
        """No instant of an inactive day permits dialing, whatever the windows."""
        config = _config(
            active_days=["Mon", "Wed"],
            time_windows=[TimeWindow(start="00:00", end="23:59")],
        )
        # Tuesday 13 October 2026, every 30 minutes
        start = ny_time(2026, 10, 13, 0)
        for step in range(48):
            assert is_dialing_permitted(start + timedelta(minutes=30 * step), config) is False

    def test_day_names_are_normalised(self):
        config = _config(active_days=["wednesday"])
        assert is_dialing_permitted(WEDNESDAY_10AM, config) is True

    def test_multiple_windows(self):
        config = _config(
            time_windows=[
                TimeWindow(start="13:00", end="17:00"),
                TimeWindow(start="09:00", end="11:00"),
            ]
        )
        assert is_dialing_permitted(ny_time(2026, 10, 14, 10, 30), config) is True
        assert is_dialing_permitted(ny_time(2026, 10, 14, 12, 0), config) is False
        assert is_dialing_permitted(ny_time(2026, 10, 14, 14, 0), config) is True

    @pytest.mark.parametrize(
        "overrides",
        [
            {"timezone": "Mars/Olympus_Mons"},
            {"timezone": ""},
            {"active_days": []},
            {"time_windows": []},
            {"time_windows": [TimeWindow(start="17:00", end="09:00")]},
            {"time_windows": [TimeWindow(start="9am", end="5pm")]},
        ],
    )
    def test_broken_configuration_fails_closed(self, overrides):
        config = _config(**overrides)
        assert is_dialing_permitted(WEDNESDAY_10AM, config) is False
        assert next_permitted_instant(WEDNESDAY_10AM, config) is None


class TestNextPermittedInstant:
    """Finding the next window start."""

    def test_returns_now_when_permitted(self):
        assert next_permitted_instant(WEDNESDAY_10AM, _config()) == WEDNESDAY_10AM

    def test_saturday_rolls_to_monday_morning(self):
        result = next_permitted_instant(SATURDAY_10AM, _config())
        assert result == MONDAY_9AM
        assert result.tzinfo is not None

    def test_before_window_opens_today(self):
        early = ny_time(2026, 10, 14, 7, 15)
        assert next_permitted_instant(early, _config()) == ny_time(2026, 10, 14, 9, 0)

    def test_after_friday_close_rolls_to_monday(self):
        friday_evening = ny_time(2026, 10, 16, 18, 0)
        assert next_permitted_instant(friday_evening, _config()) == MONDAY_9AM

    def test_gap_between_windows_uses_later_window(self):
        config = _config(
            time_windows=[
                TimeWindow(start="09:00", end="11:00"),
                TimeWindow(start="13:00", end="17:00"),
            ]
        )
        noon = ny_time(2026, 10, 14, 12, 0)
        assert next_permitted_instant(noon, config) == ny_time(2026, 10, 14, 13, 0)

    def test_single_active_day_a_week_later(self):
        config = _config(active_days=["Wed"])
        evening = ny_time(2026, 10, 14, 18, 0)
        assert next_permitted_instant(evening, config) == ny_time(2026, 10, 21, 9, 0)

    def test_crossing_daylight_saving_change(self):
        # New York leaves daylight saving time on Sunday 1 November 2026
        saturday = ny_time(2026, 10, 31, 10, 0)
        result = next_permitted_instant(saturday, _config())
        assert result == datetime(2026, 11, 2, 14, 0, tzinfo=timezone.utc)

    def test_result_is_always_permitted(self):
        config = _config()
        start = ny_time(2026, 10, 12, 0)
        for step in range(0, 7 * 24, 5):
            instant = next_permitted_instant(start + timedelta(hours=step), config)
            assert instant is not None
            assert is_dialing_permitted(instant, config)


class TestCalculateOptimalCallTime:
    """Default scheduled_at for new items."""

    def test_inside_hours_is_now(self):
        for priority in QueuePriority:
            assert calculate_optimal_call_time(priority, _config(), WEDNESDAY_10AM) == WEDNESDAY_10AM

    def test_urgent_gets_no_bypass_outside_hours(self):
        result = calculate_optimal_call_time(QueuePriority.urgent, _config(), SATURDAY_10AM)
        assert result == MONDAY_9AM

    def test_never_permitted_config_falls_back_to_now(self):
        config = _config(active_days=[])
        assert calculate_optimal_call_time(QueuePriority.normal, config, SATURDAY_10AM) == SATURDAY_10AM


class TestRetryDelay:
    """Back-off lookup saturates at the last entry."""

    @pytest.mark.parametrize(
        "retry_count, minutes",
        [(0, 5), (1, 15), (2, 30), (3, 60), (4, 60), (50, 60), (-1, 5)],
    )
    def test_default_schedule(self, retry_count, minutes):
        assert retry_delay(retry_count, [5, 15, 30, 60]) == timedelta(minutes=minutes)

    def test_empty_schedule_uses_default(self):
        assert retry_delay(0, []) == timedelta(minutes=5)

    def test_single_entry_schedule(self):
        assert retry_delay(7, [10]) == timedelta(minutes=10)


class TestCooldownAndAttempts:
    """Per-lead cooldown and lifetime attempt limits."""

    def test_no_previous_attempt(self):
        assert cooldown_remaining(None, WEDNESDAY_10AM, 24) == timedelta(0)

    def test_zero_cooldown(self):
        last = WEDNESDAY_10AM - timedelta(minutes=1)
        assert cooldown_remaining(last, WEDNESDAY_10AM, 0) == timedelta(0)

    def test_inside_cooldown(self):
        last = WEDNESDAY_10AM - timedelta(hours=1)
        assert cooldown_remaining(last, WEDNESDAY_10AM, 4) == timedelta(hours=3)

    def test_cooldown_elapsed(self):
        last = WEDNESDAY_10AM - timedelta(hours=5)
        assert cooldown_remaining(last, WEDNESDAY_10AM, 4) == timedelta(0)

    @pytest.mark.parametrize(
        "attempts, max_attempts, expected",
        [(0, 6, False), (5, 6, False), (6, 6, True), (9, 6, True), (100, 0, False)],
    )
    def test_attempts_exhausted(self, attempts, max_attempts, expected):
        assert attempts_exhausted(attempts, max_attempts) is expected
