"""Utility helpers for weather services."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Iterator

ONE_HOUR = timedelta(hours=1)


def utc_now() -> datetime:
    return datetime.now(UTC)


def floor_to_hour(moment: datetime) -> datetime:
    """Truncate an instant to the start of its UTC hour."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).replace(minute=0, second=0, microsecond=0)


def from_unix(timestamp: int | float) -> datetime:
    return datetime.fromtimestamp(timestamp, UTC)


def hourly_range(start: datetime, end: datetime) -> Iterator[datetime]:
    """Yield every hour from start up to, but excluding, end."""
    current = start
    while current < end:
        yield current
        current += ONE_HOUR


def seconds_until_next_run(now: datetime, minute: int) -> float:
    """Seconds until the next hourly run at the given minute past the hour."""
    target = now.replace(minute=minute, second=0, microsecond=0)
    if now >= target:
        target += ONE_HOUR
    return (target - now).total_seconds()


__all__ = [
    "ONE_HOUR",
    "utc_now",
    "floor_to_hour",
    "from_unix",
    "hourly_range",
    "seconds_until_next_run",
]
