from __future__ import annotations

from uuid import UUID

from tortoise.expressions import Q

from playlink.errors import NotFound, Unauthorized
from playlink.models import (
    Booking,
    BookingParticipant,
    CancellationPolicy,
    PricingRule,
    Venue,
)
from playlink.schemas import (
    BookingDetail,
    BookingFilters,
    BookingResponse,
    ParticipantResponse,
    PricingRuleCreate,
)


class BookingCRUD:
    """Read side of bookings plus the owner-managed venue settings."""

    async def get_booking(self, booking_id: UUID, user_id: UUID) -> BookingDetail | None:
        """
        Booking with its participants, visible to its creator, any participant
        or the venue owner. Returns None for everyone else.
        """
        inst = await Booking.get_or_none(id=booking_id).prefetch_related("venue", "participants")
        if not inst:
            return None

        allowed = (
            inst.created_by == user_id
            or inst.venue.owner_id == user_id
            or any(p.user_id == user_id for p in inst.participants)
        )
        if not allowed:
            return None

        return BookingDetail(
            **BookingResponse.model_validate(inst, from_attributes=True).model_dump(),
            participants=[
                ParticipantResponse.model_validate(p, from_attributes=True)
                for p in inst.participants
            ],
        )

    async def list_user_bookings(
        self, user_id: UUID, filters: BookingFilters
    ) -> list[BookingResponse]:
        """Bookings the user created or takes part in, newest first."""
        participant_of = BookingParticipant.filter(user_id=user_id).values_list(
            "booking_id", flat=True
        )
        qs = Booking.filter(Q(created_by=user_id) | Q(id__in=await participant_of))

        if filters.venue_id is not None:
            qs = qs.filter(venue_id=filters.venue_id)
        if filters.status is not None:
            qs = qs.filter(status=filters.status)

        offset = (filters.page - 1) * filters.page_size
        qs = qs.order_by("-start_at").offset(offset).limit(filters.page_size)

        bookings = await qs
        return [
            BookingResponse.model_validate(b, from_attributes=True) for b in bookings
        ]

    async def _owned_venue(self, venue_id: UUID, owner_id: UUID) -> Venue:
        venue = await Venue.get_or_none(id=venue_id)
        if venue is None:
            raise NotFound("Venue not found", venue_id=venue_id)
        if venue.owner_id != owner_id:
            raise Unauthorized("Only the venue owner can manage pricing", venue_id=venue_id)
        return venue

    async def list_pricing_rules(self, venue_id: UUID) -> list[PricingRule]:
        if not await Venue.exists(id=venue_id):
            raise NotFound("Venue not found", venue_id=venue_id)
        return await PricingRule.filter(venue_id=venue_id).order_by("start_time")

    async def add_pricing_rule(
        self, venue_id: UUID, owner_id: UUID, payload: PricingRuleCreate
    ) -> PricingRule:
        await self._owned_venue(venue_id, owner_id)
        return await PricingRule.create(venue_id=venue_id, **payload.model_dump())

    async def delete_pricing_rule(self, venue_id: UUID, owner_id: UUID, rule_id: int) -> bool:
        await self._owned_venue(venue_id, owner_id)
        deleted = await PricingRule.filter(id=rule_id, venue_id=venue_id).delete()
        return deleted > 0

    async def list_policies(self) -> list[CancellationPolicy]:
        return await CancellationPolicy.all().order_by("hours_before_start")


booking_crud = BookingCRUD()
