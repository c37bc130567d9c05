"""Availability resolver: hourly slot grid and occupied windows."""

from __future__ import annotations

from datetime import UTC, datetime, time
from decimal import Decimal
from uuid import uuid4

import pytest

from playlink.availability import get_booked_slots, list_slots
from playlink.errors import NotFound
from playlink.models import BookingStatus

from .factories import FUTURE_DAY, make_booking, make_court, make_sport, make_venue


def by_start(slots):
    return {s.start: s for s in slots}


class TestListSlots:
    async def test_grid_spans_operating_hours(self, db):
        venue = await make_venue()
        await make_court(venue)
        slots = await list_slots(venue.id, None, FUTURE_DAY, Decimal(1))
        assert [s.start for s in slots] == [time(h) for h in range(7, 22)]
        assert all(s.available for s in slots)

    async def test_longer_duration_shortens_grid(self, db):
        venue = await make_venue()
        await make_court(venue)
        slots = await list_slots(venue.id, None, FUTURE_DAY, Decimal(3))
        assert slots[-1].start == time(19)

    async def test_single_court_taken_marks_overlapping_slots(self, db):
        venue = await make_venue()
        futsal = await make_sport()
        court = await make_court(venue, futsal)
        await make_booking(venue, court, start=time(18), duration_hours=2)

        slots = by_start(await list_slots(venue.id, futsal.id, FUTURE_DAY, Decimal(1)))
        assert slots[time(17)].available
        assert not slots[time(18)].available
        assert not slots[time(19)].available
        assert slots[time(20)].available

    async def test_second_court_keeps_slot_open(self, db):
        venue = await make_venue()
        futsal = await make_sport()
        court = await make_court(venue, futsal, name="A")
        await make_court(venue, futsal, name="B")
        await make_booking(venue, court, start=time(18), duration_hours=1)

        slots = by_start(await list_slots(venue.id, futsal.id, FUTURE_DAY, Decimal(1)))
        assert slots[time(18)].available

    async def test_venue_wide_hold_closes_every_court(self, db):
        venue = await make_venue()
        futsal = await make_sport()
        await make_court(venue, futsal, name="A")
        await make_court(venue, futsal, name="B")
        await make_booking(venue, None, start=time(9), duration_hours=1, status=BookingStatus.BLOCKED)

        slots = by_start(await list_slots(venue.id, futsal.id, FUTURE_DAY, Decimal(1)))
        assert not slots[time(9)].available

    async def test_venue_without_courts_is_booked_whole(self, db):
        venue = await make_venue()
        await make_booking(venue, None, start=time(10), duration_hours=1)

        slots = by_start(await list_slots(venue.id, None, FUTURE_DAY, Decimal(1)))
        assert slots[time(9)].available
        assert not slots[time(10)].available

    async def test_sport_without_courts_has_no_availability(self, db):
        venue = await make_venue()
        await make_court(venue)
        tennis = await make_sport("Tennis")
        slots = await list_slots(venue.id, tennis.id, FUTURE_DAY, Decimal(1))
        assert not any(s.available for s in slots)

    async def test_past_slots_unavailable(self, db):
        venue = await make_venue()
        await make_court(venue)
        now = datetime(2030, 6, 3, 6, 0, tzinfo=UTC)  # 11:30 local
        slots = by_start(await list_slots(venue.id, None, FUTURE_DAY, Decimal(1), now=now))
        assert not slots[time(11)].available
        assert slots[time(12)].available

    async def test_unknown_venue(self, db):
        with pytest.raises(NotFound):
            await list_slots(uuid4(), None, FUTURE_DAY, Decimal(1))


class TestBookedSlots:
    async def test_lists_active_bookings_for_the_day(self, db):
        venue = await make_venue()
        court = await make_court(venue)
        await make_booking(venue, court, start=time(9), duration_hours=1)
        await make_booking(venue, court, start=time(11), duration_hours=1, status=BookingStatus.CANCELLED)
        await make_booking(venue, None, start=time(14), duration_hours=1, status=BookingStatus.BLOCKED)

        slots = await get_booked_slots(venue.id, FUTURE_DAY)
        assert [s.status for s in slots] == ["confirmed", "blocked"]

    async def test_sport_filter_keeps_venue_wide_holds(self, db):
        venue = await make_venue()
        futsal = await make_sport("Futsal")
        tennis = await make_sport("Tennis")
        futsal_court = await make_court(venue, futsal, name="A")
        tennis_court = await make_court(venue, tennis, name="B")
        await make_booking(venue, futsal_court, start=time(9), duration_hours=1)
        await make_booking(venue, tennis_court, start=time(10), duration_hours=1)
        await make_booking(venue, None, start=time(14), duration_hours=1, status=BookingStatus.BLOCKED)

        slots = await get_booked_slots(venue.id, FUTURE_DAY, sport_id=futsal.id)
        assert {s.court_id for s in slots} == {futsal_court.id, None}

    async def test_other_days_excluded(self, db):
        venue = await make_venue()
        await make_booking(venue, None, day=FUTURE_DAY.replace(day=4))
        assert await get_booked_slots(venue.id, FUTURE_DAY) == []
