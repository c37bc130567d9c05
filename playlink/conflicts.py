"""
Admission control for court and venue-wide bookings.

`has_conflict` is the single authority on whether an interval is free. Callers
that write an admitting booking must first take the (venue, day) lock with
`lock_venue_day` and then re-run `has_conflict` inside the same transaction;
`run_atomic` provides that transaction and retries transient store failures.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime
from typing import Awaitable, Callable, Iterable, TypeVar
from uuid import UUID

from loguru import logger
from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.exceptions import (
    IntegrityError,
    OperationalError,
    TransactionManagementError,
)
from tortoise.expressions import Q
from tortoise.transactions import in_transaction

from playlink import settings
from playlink.models import ACTIVE_STATUSES, Booking, Court, VenueDayLock

T = TypeVar("T")

TRANSIENT_ERRORS = (OperationalError, IntegrityError, TransactionManagementError)


def overlaps(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """Half-open interval overlap: [start_a, end_a) vs [start_b, end_b)."""
    return start_a < end_b and end_a > start_b


def conflicts_with(
    booking_court_id: UUID | None,
    booking_start: datetime,
    booking_end: datetime,
    court_id: UUID | None,
    start: datetime,
    end: datetime,
) -> bool:
    """In-memory form of the admission predicate for already-loaded bookings."""
    same_resource = (
        court_id is None or booking_court_id is None or booking_court_id == court_id
    )
    return same_resource and overlaps(booking_start, booking_end, start, end)


async def has_conflict(
    conn: BaseDBAsyncClient | None,
    venue_id: UUID,
    court_id: UUID | None,
    start: datetime,
    end: datetime,
    exclude_booking_id: UUID | None = None,
) -> bool:
    """
    Return True if an active booking on the same resource overlaps [start, end).

    `court_id=None` is the venue-wide resource and collides with every court
    of the venue; a court booking collides with venue-wide bookings too.
    """
    qs = Booking.filter(
        venue_id=venue_id,
        status__in=list(ACTIVE_STATUSES),
        start_at__lt=end,
        end_at__gt=start,
    )
    if court_id is not None:
        qs = qs.filter(Q(court_id=court_id) | Q(court_id__isnull=True))
    if exclude_booking_id is not None:
        qs = qs.exclude(id=exclude_booking_id)
    if conn is not None:
        qs = qs.using_db(conn)
    return await qs.exists()


async def lock_venue_day(conn: BaseDBAsyncClient, venue_id: UUID, day: date) -> None:
    """
    Serialize admitting writes for one venue-local day.

    The lock row is created on first use; a concurrent first insert fails
    with IntegrityError and `run_atomic` retries the whole operation.
    """
    lock = (
        await VenueDayLock.filter(venue_id=venue_id, day=day)
        .select_for_update()
        .using_db(conn)
        .first()
    )
    if lock is None:
        await VenueDayLock.create(venue_id=venue_id, day=day, using_db=conn)


async def lock_venue_days(conn: BaseDBAsyncClient, venue_id: UUID, days: Iterable[date]) -> None:
    # Fixed order keeps two multi-day lockers from deadlocking
    for day in sorted(set(days)):
        await lock_venue_day(conn, venue_id, day)


async def courts_for_sport(
    venue_id: UUID, sport_id: int | None, conn: BaseDBAsyncClient | None = None
) -> list[Court]:
    qs = Court.filter(venue_id=venue_id, is_active=True)
    if sport_id is not None:
        qs = qs.filter(sports__id=sport_id)
    if conn is not None:
        qs = qs.using_db(conn)
    return await qs.distinct().order_by("name")


async def find_free_court(
    conn: BaseDBAsyncClient | None,
    venue_id: UUID,
    sport_id: int | None,
    start: datetime,
    end: datetime,
    exclude_booking_id: UUID | None = None,
    prefer_court_id: UUID | None = None,
) -> Court | None:
    """First active court supporting the sport with no conflict, preferred court first."""
    courts = await courts_for_sport(venue_id, sport_id, conn)
    courts.sort(key=lambda c: c.id != prefer_court_id)
    for court in courts:
        if not await has_conflict(
            conn, venue_id, court.id, start, end, exclude_booking_id=exclude_booking_id
        ):
            return court
    return None


async def run_atomic(
    operation: Callable[[BaseDBAsyncClient], Awaitable[T]],
    *,
    attempts: int | None = None,
    label: str = "transaction",
) -> T:
    """
    Run `operation(conn)` in one transaction, retrying transient store errors.

    The whole operation is re-executed on retry, so conflict checks and
    balance checks are re-evaluated against fresh state. Domain errors
    propagate immediately and roll the transaction back.
    """
    attempts = attempts or settings.TX_RETRY_ATTEMPTS
    for attempt in range(1, attempts + 1):
        try:
            async with in_transaction() as conn:
                return await operation(conn)
        except TRANSIENT_ERRORS as exc:
            if attempt >= attempts:
                logger.error("{} failed after {} attempts: {}", label, attempt, exc)
                raise
            logger.warning(
                "{} hit a transient store error (attempt {}/{}): {}",
                label,
                attempt,
                attempts,
                exc,
            )
            await asyncio.sleep(0.05 * attempt)
    raise RuntimeError("unreachable")  # pragma: no cover
