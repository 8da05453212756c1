"""Tests for the date provider and purge boundary math."""

from datetime import datetime, timedelta, timezone

import pytest

from universe.shared.date_provider import MockDateProvider
from universe.shared.date_provider import PURGE_TIMEZONE
from universe.shared.date_provider import UTCDateProvider
from universe.shared.date_provider import current_boundary
from universe.shared.date_provider import format_countdown
from universe.shared.date_provider import get_date_provider
from universe.shared.date_provider import next_boundary
from universe.shared.date_provider import reset_date_provider
from universe.shared.date_provider import time_until_purge


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestCurrentBoundary:
    """Test suite for current_boundary and next_boundary."""

    def test_boundary_is_ist_midnight(self):
        # 2024-01-15 12:00 UTC is 17:30 IST, so midnight IST was 18:30 UTC the day before
        assert current_boundary(utc(2024, 1, 15, 12, 0)) == utc(2024, 1, 14, 18, 30)

    def test_one_second_before_midnight_ist(self):
        assert current_boundary(utc(2024, 1, 15, 18, 29, 59)) == utc(2024, 1, 14, 18, 30)

    def test_exactly_at_midnight_ist(self):
        assert current_boundary(utc(2024, 1, 15, 18, 30)) == utc(2024, 1, 15, 18, 30)

    def test_after_utc_midnight_before_ist_midnight(self):
        # 00:10 UTC is 05:40 IST the same civil day
        assert current_boundary(utc(2024, 3, 1, 0, 10)) == utc(2024, 2, 29, 18, 30)

    def test_naive_datetime_is_treated_as_utc(self):
        assert current_boundary(datetime(2024, 1, 15, 12, 0)) == utc(2024, 1, 14, 18, 30)

    def test_non_utc_input_is_normalised(self):
        ist_noon = datetime(2024, 1, 15, 12, 0, tzinfo=PURGE_TIMEZONE)
        assert current_boundary(ist_noon) == utc(2024, 1, 14, 18, 30)

    @pytest.mark.parametrize("now", [
        utc(2024, 1, 1, 0, 0),
        utc(2024, 6, 30, 18, 29, 59, 999999),
        utc(2024, 6, 30, 18, 30),
        utc(2024, 12, 31, 23, 59, 59),
    ])
    def test_boundary_brackets_now(self, now):
        boundary = current_boundary(now)
        assert boundary <= now < next_boundary(now)
        assert next_boundary(now) - boundary == timedelta(hours=24)
        local = boundary.astimezone(PURGE_TIMEZONE)
        assert (local.hour, local.minute, local.second) == (0, 0, 0)

    def test_defaults_to_active_provider(self, clock):
        clock.set_datetime(utc(2024, 5, 10, 20, 0))
        assert current_boundary() == utc(2024, 5, 10, 18, 30)
        assert next_boundary() == utc(2024, 5, 11, 18, 30)


class TestCountdown:
    """Test suite for the purge countdown helpers."""

    def test_time_until_purge(self):
        assert time_until_purge(utc(2024, 1, 15, 12, 0)) == timedelta(hours=6, minutes=30)

    def test_time_until_purge_at_boundary_is_full_cycle(self):
        assert time_until_purge(utc(2024, 1, 15, 18, 30)) == timedelta(hours=24)

    def test_format_countdown(self):
        assert format_countdown(timedelta(hours=6, minutes=30, seconds=5)) == "06:30:05"

    def test_format_countdown_clamps_negative(self):
        assert format_countdown(timedelta(seconds=-3)) == "00:00:00"


class TestDateProviders:
    """Test suite for the date provider implementations."""

    def test_mock_provider_advance(self):
        provider = MockDateProvider(utc(2024, 1, 15, 12, 0))
        provider.advance(timedelta(minutes=90))
        assert provider.utcnow() == utc(2024, 1, 15, 13, 30)

    def test_utc_provider_is_aware(self):
        assert UTCDateProvider().utcnow().tzinfo is not None

    def test_reset_restores_system_clock(self, clock):
        assert get_date_provider() is clock
        reset_date_provider()
        assert isinstance(get_date_provider(), UTCDateProvider)
