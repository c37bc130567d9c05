"""
Interval construction and validation for booking requests.

Requests arrive as (local date, local start time, duration in hours) and are
turned into UTC-aware [start, end) intervals. Operating-window rules are
checked against the venue's wall clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from functools import lru_cache
from zoneinfo import ZoneInfo

from playlink import settings
from playlink.errors import ValidationError

QUARTER_HOUR = Decimal("0.25")


@lru_cache(maxsize=1)
def venue_tz() -> ZoneInfo:
    return ZoneInfo(settings.VENUE_TIMEZONE)


def to_utc(dt: datetime) -> datetime:
    """Ensure a datetime is UTC-aware, handling both aware and naive inputs."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_local(dt: datetime) -> datetime:
    return to_utc(dt).astimezone(venue_tz())


def local_day(dt: datetime) -> date:
    return to_local(dt).date()


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """UTC bounds of a venue-local calendar day."""
    start = datetime.combine(day, time.min, tzinfo=venue_tz())
    return to_utc(start), to_utc(start + timedelta(days=1))


def hours_until(start_at: datetime, now: datetime) -> float:
    return (to_utc(start_at) - to_utc(now)).total_seconds() / 3600


@dataclass(frozen=True)
class BookingInterval:
    day: date
    start: time
    duration_hours: Decimal
    start_at: datetime
    end_at: datetime

    @property
    def local_start(self) -> datetime:
        return to_local(self.start_at)


def build_interval(day: date, start: time, duration_hours: Decimal | int) -> BookingInterval:
    duration = Decimal(str(duration_hours))
    local_start = datetime.combine(day, start.replace(second=0, microsecond=0), tzinfo=venue_tz())
    local_end = local_start + timedelta(minutes=int(duration * 60))
    return BookingInterval(
        day=day,
        start=start,
        duration_hours=duration,
        start_at=to_utc(local_start),
        end_at=to_utc(local_end),
    )


def validate_interval(
    day: date,
    start: time,
    duration_hours: Decimal | int,
    now: datetime | None = None,
) -> BookingInterval:
    """Return the interval for a request or raise ValidationError."""
    try:
        duration = Decimal(str(duration_hours))
    except ArithmeticError:
        raise ValidationError("Please select a valid duration") from None

    if start.second or start.microsecond or start.minute % settings.SLOT_ALIGNMENT_MINUTES:
        raise ValidationError(
            f"Times must be in {settings.SLOT_ALIGNMENT_MINUTES}-minute intervals"
        )
    if duration % QUARTER_HOUR:
        raise ValidationError("Duration must be a multiple of 15 minutes")
    if duration < settings.MIN_DURATION_HOURS:
        raise ValidationError(
            f"Booking must be at least {settings.MIN_DURATION_HOURS} hour(s)"
        )
    if duration > settings.MAX_DURATION_HOURS:
        raise ValidationError(
            f"Booking cannot exceed {settings.MAX_DURATION_HOURS} hours"
        )

    start_minutes = start.hour * 60 + start.minute
    open_minutes = settings.OPEN_HOUR * 60
    close_minutes = settings.CLOSE_HOUR * 60
    if not open_minutes <= start_minutes < close_minutes:
        raise ValidationError(
            f"Booking must start between {settings.OPEN_HOUR}:00 "
            f"and {settings.CLOSE_HOUR}:00"
        )
    if start_minutes + duration * 60 > close_minutes:
        raise ValidationError(f"Booking must end by {settings.CLOSE_HOUR}:00")

    interval = build_interval(day, start, duration)
    if interval.start_at <= to_utc(now or utcnow()):
        raise ValidationError("Booking time must be in the future")
    return interval
