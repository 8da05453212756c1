"""Date provider abstraction and purge boundary math.

All "now" reads in the engine go through the active DateProvider so that
time-sensitive rules (confession quota, purge sweeps, identity rotation) can
be tested deterministically. The daily purge happens at civil midnight in a
fixed UTC+5:30 offset regardless of the host timezone; every component asks
this module for the boundary instead of recomputing the offset itself.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional

# Indian Standard Time. Fixed offset, no daylight saving.
PURGE_UTC_OFFSET = timedelta(hours=5, minutes=30)
PURGE_TIMEZONE = timezone(PURGE_UTC_OFFSET, name="IST")
PURGE_CYCLE = timedelta(hours=24)


class DateProvider(ABC):
    """Abstract interface for date operations."""

    @abstractmethod
    def utcnow(self) -> datetime:
        """Get the current datetime in UTC.

        Returns:
            datetime: Current UTC datetime with timezone info
        """
        pass


class UTCDateProvider(DateProvider):
    """Production implementation backed by the system clock."""

    def utcnow(self) -> datetime:
        return datetime.now(timezone.utc)


class MockDateProvider(DateProvider):
    """Test implementation of DateProvider for controlled testing.

    This implementation allows tests to control the current time,
    enabling deterministic testing of boundary-sensitive functionality.
    """

    def __init__(self, fixed_datetime: Optional[datetime] = None):
        """Initialize with an optional fixed instant.

        Args:
            fixed_datetime: Instant returned from utcnow(), defaults to
                2024-01-15 12:00 UTC. Naive values are treated as UTC.
        """
        self._fixed_datetime = _as_utc(
            fixed_datetime or datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
        )

    def utcnow(self) -> datetime:
        return self._fixed_datetime

    def set_datetime(self, new_datetime: datetime) -> None:
        """Update the fixed datetime for testing.

        Args:
            new_datetime: New datetime to return from utcnow()
        """
        self._fixed_datetime = _as_utc(new_datetime)

    def advance(self, delta: timedelta) -> None:
        """Move the clock forward (or backward for negative deltas)."""
        self._fixed_datetime = self._fixed_datetime + delta


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Global date provider instance
_date_provider: DateProvider = UTCDateProvider()


def get_date_provider() -> DateProvider:
    """Get the current date provider instance.

    Returns:
        DateProvider: Current date provider (production or test)
    """
    return _date_provider


def set_date_provider(provider: DateProvider) -> None:
    """Set the date provider instance (mainly for testing).

    Args:
        provider: Date provider implementation to use
    """
    global _date_provider
    _date_provider = provider


def reset_date_provider() -> None:
    """Reset to the default production date provider."""
    global _date_provider
    _date_provider = UTCDateProvider()


def utcnow() -> datetime:
    """Current instant from the active date provider."""
    return _date_provider.utcnow()


def current_boundary(now: Optional[datetime] = None) -> datetime:
    """Get the most recent purge boundary at or before ``now``.

    The boundary is civil midnight at UTC+5:30, returned as an aware UTC
    datetime.

    Args:
        now: Reference instant; defaults to the active date provider's clock.
            Naive values are interpreted as UTC.

    Returns:
        datetime: Boundary instant in UTC, always <= now
    """
    reference = _as_utc(now) if now is not None else utcnow()
    local = reference.astimezone(PURGE_TIMEZONE)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)


def next_boundary(now: Optional[datetime] = None) -> datetime:
    """Get the upcoming purge boundary (strictly after ``now``)."""
    return current_boundary(now) + PURGE_CYCLE


def time_until_purge(now: Optional[datetime] = None) -> timedelta:
    """Time remaining until the next purge boundary."""
    reference = _as_utc(now) if now is not None else utcnow()
    return next_boundary(reference) - reference


def format_countdown(remaining: timedelta) -> str:
    """Render a countdown as ``HH:MM:SS`` (negative values clamp to zero)."""
    total_seconds = max(0, int(remaining.total_seconds()))
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
