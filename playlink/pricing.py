from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Iterable
from uuid import UUID

from playlink.errors import NotFound
from playlink.models import PricingRule, Venue
from playlink.timeslots import build_interval

ONE = Decimal("1")


def round_cents(amount: Decimal) -> int:
    """Round a Decimal amount of minor units to a whole number of cents."""
    return int(amount.quantize(ONE, rounding=ROUND_HALF_EVEN))


def _js_weekday(dt: datetime) -> int:
    # Rules store days as 0-6 with Sunday = 0
    return (dt.weekday() + 1) % 7


def rule_applies(rule: PricingRule, local_start: datetime) -> bool:
    if not rule.is_active:
        return False
    days = rule.days_of_week or []
    if days and _js_weekday(local_start) not in {int(d) for d in days}:
        return False
    return rule.start_time.hour <= local_start.hour < rule.end_time.hour


def effective_multiplier(rules: Iterable[PricingRule], local_start: datetime) -> Decimal:
    applicable = [Decimal(str(r.multiplier)) for r in rules if rule_applies(r, local_start)]
    return max(applicable, default=ONE)


def price_for(
    price_per_hour_cents: int,
    rules: Iterable[PricingRule],
    local_start: datetime,
    duration_hours: Decimal,
) -> int:
    """
    Charge in cents for a booking starting at `local_start` (venue wall clock).

    The highest multiplier among the rules matching the start hour wins;
    rules never stack.
    """
    base = Decimal(price_per_hour_cents) * Decimal(str(duration_hours))
    return round_cents(base * effective_multiplier(rules, local_start))


@dataclass(frozen=True)
class PriceQuote:
    venue_id: UUID
    start_at: datetime
    end_at: datetime
    duration_hours: Decimal
    base_cents: int
    multiplier: Decimal
    total_cents: int
    currency: str


async def load_rules(venue_id: UUID, conn=None) -> list[PricingRule]:
    qs = PricingRule.filter(venue_id=venue_id, is_active=True)
    if conn is not None:
        qs = qs.using_db(conn)
    return await qs


async def quote_price(
    venue_id: UUID, day: date, start: time, duration_hours: Decimal
) -> PriceQuote:
    venue = await Venue.get_or_none(id=venue_id)
    if venue is None:
        raise NotFound("Venue not found", venue_id=venue_id)
    return quote_for_venue(venue, await load_rules(venue_id), day, start, duration_hours)


def quote_for_venue(
    venue: Venue,
    rules: list[PricingRule],
    day: date,
    start: time,
    duration_hours: Decimal,
) -> PriceQuote:
    interval = build_interval(day, start, duration_hours)
    local_start = interval.local_start
    return PriceQuote(
        venue_id=venue.id,
        start_at=interval.start_at,
        end_at=interval.end_at,
        duration_hours=interval.duration_hours,
        base_cents=round_cents(
            Decimal(venue.price_per_hour_cents) * interval.duration_hours
        ),
        multiplier=effective_multiplier(rules, local_start),
        total_cents=price_for(
            venue.price_per_hour_cents, rules, local_start, interval.duration_hours
        ),
        currency=venue.currency,
    )
