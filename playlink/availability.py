from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from uuid import UUID

from playlink import settings
from playlink.conflicts import conflicts_with, courts_for_sport
from playlink.errors import NotFound, ValidationError
from playlink.models import ACTIVE_STATUSES, Booking, Venue
from playlink.timeslots import build_interval, day_bounds, to_utc, utcnow


@dataclass(frozen=True)
class SlotAvailability:
    start: time
    start_at: datetime
    end_at: datetime
    available: bool


@dataclass(frozen=True)
class OccupiedSlot:
    start_at: datetime
    end_at: datetime
    status: str
    court_id: UUID | None


async def _day_bookings(venue_id: UUID, day: date) -> list[Booking]:
    day_start, day_end = day_bounds(day)
    return await Booking.filter(
        venue_id=venue_id,
        status__in=list(ACTIVE_STATUSES),
        start_at__lt=day_end,
        end_at__gt=day_start,
    ).order_by("start_at")


async def list_slots(
    venue_id: UUID,
    sport_id: int | None,
    day: date,
    duration_hours: Decimal,
    now: datetime | None = None,
) -> list[SlotAvailability]:
    """
    Hour-aligned start times for `duration_hours` on `day`, each flagged
    available when it lies in the future and at least one court for the
    sport is free for the whole interval.
    """
    if not await Venue.exists(id=venue_id):
        raise NotFound("Venue not found", venue_id=venue_id)
    duration = Decimal(str(duration_hours))
    if duration <= 0:
        raise ValidationError("Duration must be positive")

    now = to_utc(now or utcnow())
    courts = await courts_for_sport(venue_id, sport_id)
    bookings = await _day_bookings(venue_id, day)

    slots: list[SlotAvailability] = []
    hour = settings.OPEN_HOUR
    while hour + duration <= settings.CLOSE_HOUR:
        interval = build_interval(day, time(hour=hour), duration)
        # A venue without courts is booked as a whole
        resources = [c.id for c in courts] or ([None] if sport_id is None else [])
        free = any(
            not any(
                conflicts_with(
                    b.court_id, b.start_at, b.end_at, resource, interval.start_at, interval.end_at
                )
                for b in bookings
            )
            for resource in resources
        )
        slots.append(
            SlotAvailability(
                start=interval.start,
                start_at=interval.start_at,
                end_at=interval.end_at,
                available=free and interval.start_at > now,
            )
        )
        hour += 1
    return slots


async def get_booked_slots(
    venue_id: UUID, day: date, sport_id: int | None = None
) -> list[OccupiedSlot]:
    """Occupied windows for a venue-local day; reveals no user identity."""
    bookings = await _day_bookings(venue_id, day)
    if sport_id is not None:
        court_ids = {c.id for c in await courts_for_sport(venue_id, sport_id)}
        bookings = [b for b in bookings if b.court_id is None or b.court_id in court_ids]
    return [
        OccupiedSlot(
            start_at=b.start_at,
            end_at=b.end_at,
            status=b.status.value,
            court_id=b.court_id,
        )
        for b in bookings
    ]
