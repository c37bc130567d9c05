from datetime import date, time
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from loguru import logger

from playlink.availability import get_booked_slots, list_slots
from playlink.cache import get_slots_cache, invalidate_slots_cache, set_slots_cache
from playlink.checkout import block_slot
from playlink.crud import booking_crud
from playlink.deps import (
    CurrentUser,
    can_manage_booking,
    can_read_booking,
    get_current_user,
)
from playlink.pricing import quote_price
from playlink.schemas import (
    BlockRequest,
    BookingResponse,
    BookingSlot,
    CancellationPolicyResponse,
    PriceQuoteResponse,
    PricingRuleCreate,
    PricingRuleResponse,
    SlotAvailabilityResponse,
)

router = APIRouter(prefix="/venues", tags=["venues"])


@router.get("/policies", response_model=list[CancellationPolicyResponse])
async def list_policies(
    _: CurrentUser = Depends(get_current_user),
) -> list[CancellationPolicyResponse]:
    policies = await booking_crud.list_policies()
    return [CancellationPolicyResponse.model_validate(p, from_attributes=True) for p in policies]


@router.get("/{venue_id}/availability", response_model=list[SlotAvailabilityResponse])
async def availability(
    venue_id: UUID,
    day: date = Query(alias="date"),
    duration_hours: Decimal = Query(default=Decimal(1), gt=0, le=24),
    sport_id: int | None = None,
    _: CurrentUser = Depends(can_read_booking),
) -> list[SlotAvailabilityResponse]:
    slots = await list_slots(venue_id, sport_id, day, duration_hours)
    return [SlotAvailabilityResponse.model_validate(s, from_attributes=True) for s in slots]


@router.get("/{venue_id}/quote", response_model=PriceQuoteResponse)
async def quote(
    venue_id: UUID,
    day: date = Query(alias="date"),
    start: time = Query(),
    duration_hours: Decimal = Query(gt=0, le=24),
    _: CurrentUser = Depends(can_read_booking),
) -> PriceQuoteResponse:
    result = await quote_price(venue_id, day, start, duration_hours)
    return PriceQuoteResponse.model_validate(result, from_attributes=True)


@router.get("/{venue_id}/booked-slots", response_model=list[BookingSlot])
async def booked_slots(
    venue_id: UUID,
    day: date = Query(alias="date"),
    sport_id: int | None = None,
    _: CurrentUser = Depends(get_current_user),
) -> list[BookingSlot]:
    """
    Occupied windows for a venue-local day.
    Any authenticated user can call this; the response contains NO user identity.
    """
    cached = await get_slots_cache(venue_id, day, sport_id)
    if cached is not None:
        logger.debug("Cache hit for slots: venue_id={} day={}", venue_id, day)
        return [BookingSlot(**s) for s in cached]

    logger.debug("Cache miss for slots: venue_id={} day={}", venue_id, day)
    slots = [
        BookingSlot.model_validate(s, from_attributes=True)
        for s in await get_booked_slots(venue_id, day, sport_id)
    ]
    await set_slots_cache(venue_id, day, sport_id, [s.model_dump(mode="json") for s in slots])
    return slots


@router.get("/{venue_id}/pricing-rules", response_model=list[PricingRuleResponse])
async def list_pricing_rules(
    venue_id: UUID,
    _: CurrentUser = Depends(get_current_user),
) -> list[PricingRuleResponse]:
    rules = await booking_crud.list_pricing_rules(venue_id)
    return [PricingRuleResponse.model_validate(r, from_attributes=True) for r in rules]


@router.post(
    "/{venue_id}/pricing-rules",
    response_model=PricingRuleResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_pricing_rule(
    venue_id: UUID,
    payload: PricingRuleCreate,
    current_user: CurrentUser = Depends(can_manage_booking),
) -> PricingRuleResponse:
    rule = await booking_crud.add_pricing_rule(venue_id, current_user.id, payload)
    return PricingRuleResponse.model_validate(rule, from_attributes=True)


@router.delete(
    "/{venue_id}/pricing-rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def delete_pricing_rule(
    venue_id: UUID,
    rule_id: int,
    current_user: CurrentUser = Depends(can_manage_booking),
) -> None:
    deleted = await booking_crud.delete_pricing_rule(venue_id, current_user.id, rule_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Pricing rule not found"
        )


@router.post(
    "/{venue_id}/blocks",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def block(
    venue_id: UUID,
    payload: BlockRequest,
    current_user: CurrentUser = Depends(can_manage_booking),
) -> BookingResponse:
    booking = await block_slot(
        venue_id,
        current_user,
        payload.date,
        payload.start,
        payload.duration_hours,
        court_id=payload.court_id,
    )
    await invalidate_slots_cache(venue_id, payload.date)
    return BookingResponse.model_validate(booking, from_attributes=True)
