"""
dbmemcache - Expiration Calculator

Converts the expiration shapes a host can supply into the non-negative second
count sent on the wire (0 = never expires).

Relative intervals use the fixed-point month/year approximation the cache
has always used: a full year of months counts as 365.25 days and each
remaining month as 30.0 days. Absolute instants become seconds since the Unix
epoch, which the server interprets as an absolute expiry.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from .errors import RangeError, ValidationError

SECONDS_PER_DAY = 86400
SECONDS_PER_MONTH = 30.0 * SECONDS_PER_DAY
SECONDS_PER_YEAR = 365.25 * SECONDS_PER_DAY
MONTHS_PER_YEAR = 12

# Largest expiry the server's 32-bit time field can hold.
MAX_EXPIRATION = 2**32 - 1

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True)
class Interval:
    """A relative duration with whole-month, day, and sub-day-second parts."""

    months: int = 0
    days: int = 0
    seconds: float = 0.0

    @classmethod
    def from_timedelta(cls, delta: timedelta) -> Interval:
        return cls(days=delta.days, seconds=delta.seconds + delta.microseconds / 1_000_000)


def interval_to_seconds(interval: Interval) -> int:
    """
    Normalize an interval to whole seconds.

    Month arithmetic truncates toward zero, so -14 months is -1 year and
    -2 months.
    """
    total = interval.seconds + interval.days * SECONDS_PER_DAY
    if interval.months:
        years = int(interval.months / MONTHS_PER_YEAR)
        months = interval.months - years * MONTHS_PER_YEAR
        total += SECONDS_PER_YEAR * years
        total += SECONDS_PER_MONTH * months

    if total < 0:
        raise ValidationError(
            "Expiration interval must not be negative",
            details={"months": interval.months, "days": interval.days, "seconds": interval.seconds},
        )
    return _check_range(math.trunc(total))


def timestamp_to_seconds(instant: datetime) -> int:
    """Convert an absolute instant to seconds since the Unix epoch; naive values are UTC."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    try:
        offset = (instant - EPOCH).total_seconds()
    except OverflowError as e:
        raise RangeError("timestamp out of range", details={"timestamp": str(instant)}) from e

    seconds = math.trunc(offset)
    if seconds <= 0 or seconds > MAX_EXPIRATION:
        raise RangeError(
            "timestamp out of range",
            details={"timestamp": instant.isoformat(), "max_expiration": MAX_EXPIRATION},
        )
    return seconds


def compute_expiration(expire: Interval | timedelta | datetime | int | float | None) -> int:
    """Dispatch on the expiration shape and return the wire second count."""
    if expire is None:
        return 0
    if isinstance(expire, Interval):
        return interval_to_seconds(expire)
    if isinstance(expire, timedelta):
        return interval_to_seconds(Interval.from_timedelta(expire))
    if isinstance(expire, datetime):
        return timestamp_to_seconds(expire)
    if isinstance(expire, bool) or not isinstance(expire, (int, float)):
        raise ValidationError(
            f"Unsupported expiration type: {type(expire).__name__}",
            details={"expire_type": type(expire).__name__},
        )
    if not math.isfinite(expire) or expire < 0:
        raise ValidationError("Expiration must be a finite, non-negative number", details={"expire": expire})
    return _check_range(math.trunc(expire))


def _check_range(seconds: int) -> int:
    if seconds > MAX_EXPIRATION:
        raise RangeError(
            f"Expiration of {seconds}s exceeds the maximum of {MAX_EXPIRATION}s",
            details={"seconds": seconds},
        )
    return seconds
