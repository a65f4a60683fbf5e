"""
Clock sources for readiness evaluation.

All timestamps are timezone-aware UTC datetimes, matching how they are stored.
"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Express a datetime in UTC; naive values are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        return utcnow()


class FrozenClock:
    """
    Clock pinned to a fixed instant. Used for deterministic evaluation in tests.

    Usage:
        clock = FrozenClock(datetime(2025, 1, 1, tzinfo=timezone.utc))
        clock.advance(days=30)
    """

    def __init__(self, at: datetime):
        self._at = as_utc(at)

    def now(self) -> datetime:
        return self._at

    def set(self, at: datetime):
        self._at = as_utc(at)

    def advance(self, **kwargs):
        """Move the clock forward by a timedelta built from kwargs."""
        self._at = self._at + timedelta(**kwargs)
