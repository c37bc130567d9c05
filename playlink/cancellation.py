"""
Cancellation refunds and in-place rescheduling.

Refunds are paid in wallet points. The pool is computed once from the
booking's policy snapshot and split between the paid participants; the venue
owner's wallet is debited by the same amount so the ledger stays balanced.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from uuid import UUID

from loguru import logger
from tortoise.backends.base.client import BaseDBAsyncClient

from playlink import ledger
from playlink.conflicts import find_free_court, has_conflict, lock_venue_days, run_atomic
from playlink.errors import NotFound, SlotUnavailable, TooLateToCancel, Unauthorized
from playlink.lifecycle import assert_reschedulable, assert_transition
from playlink.models import (
    Booking,
    BookingParticipant,
    BookingStatus,
    ParticipantPaymentStatus,
    Payment,
    PaymentStatus,
    TransactionCategory,
    Venue,
)
from playlink.pricing import round_cents
from playlink.timeslots import hours_until, local_day, utcnow, validate_interval

log = logger.bind(log_type="booking")


@dataclass(frozen=True)
class CancellationResult:
    booking_id: UUID
    venue_id: UUID
    start_at: datetime
    refund_cents: int
    owner_cut_cents: int
    message: str


def effective_refund_percentage(
    policy_percentage: int, cutoff_hours: int, hours_remaining: float
) -> int:
    """Full refund strictly before the cutoff window, the policy rate inside it."""
    if hours_remaining > cutoff_hours:
        return 100
    return policy_percentage


def percentage_of(amount_cents: int, percentage: int) -> int:
    return round_cents(Decimal(amount_cents) * Decimal(percentage) / Decimal(100))


async def _locked_booking(conn: BaseDBAsyncClient, booking_id: UUID) -> Booking:
    booking = (
        await Booking.filter(id=booking_id).select_for_update().using_db(conn).first()
    )
    if booking is None:
        raise NotFound("Booking not found", booking_id=booking_id)
    return booking


async def _mark_cancelled(conn: BaseDBAsyncClient, booking: Booking, now: datetime) -> None:
    assert_transition(booking.status, BookingStatus.CANCELLED)
    booking.status = BookingStatus.CANCELLED
    booking.cancelled_at = now
    await booking.save(using_db=conn, update_fields=["status", "cancelled_at", "updated_at"])


async def _distribute_refund(
    conn: BaseDBAsyncClient, booking: Booking, refund_cents: int, percentage: int
) -> None:
    """
    Credit paid invitees their share of the refund and the creator the rest,
    then settle participant and payment statuses.
    """
    participants = await BookingParticipant.filter(booking_id=booking.id).using_db(conn)
    remaining_pool = refund_cents

    for p in participants:
        if p.is_initiator or p.payment_status != ParticipantPaymentStatus.PAID:
            continue
        share_refund = min(percentage_of(p.share_cents, percentage), remaining_pool)
        if share_refund and p.user_id is not None:
            await ledger.adjust(
                conn,
                p.user_id,
                share_refund,
                TransactionCategory.REFUND,
                f"Refund for cancelled Booking #{booking.id}",
                booking_id=booking.id,
            )
            remaining_pool -= share_refund
        p.payment_status = (
            ParticipantPaymentStatus.REFUNDED if share_refund else ParticipantPaymentStatus.CANCELLED
        )
        await p.save(using_db=conn, update_fields=["payment_status"])

    if remaining_pool:
        await ledger.adjust(
            conn,
            booking.created_by,
            remaining_pool,
            TransactionCategory.REFUND,
            f"Refund for cancelled Booking #{booking.id}",
            booking_id=booking.id,
        )

    for p in participants:
        if p.is_initiator:
            p.payment_status = (
                ParticipantPaymentStatus.REFUNDED
                if remaining_pool
                else ParticipantPaymentStatus.CANCELLED
            )
        elif p.payment_status == ParticipantPaymentStatus.PENDING:
            p.payment_status = ParticipantPaymentStatus.CANCELLED
        else:
            continue
        await p.save(using_db=conn, update_fields=["payment_status"])

    if refund_cents:
        await Payment.filter(
            booking_id=booking.id, status=PaymentStatus.SUCCEEDED
        ).using_db(conn).update(status=PaymentStatus.REFUNDED)


async def cancel_booking(
    booking_id: UUID, acting_user_id: UUID, now: datetime | None = None
) -> CancellationResult:
    """
    Cancel a booking on behalf of its creator or the venue owner.

    Players can't cancel once the booking has started and are refunded per
    the booking's policy snapshot. Owners can always cancel and always refund
    in full. Blocked slots are simply released.
    """
    now = now or utcnow()

    async def _cancel(conn: BaseDBAsyncClient) -> CancellationResult:
        booking = await _locked_booking(conn, booking_id)
        venue = await Venue.get(id=booking.venue_id).using_db(conn)
        is_owner = venue.owner_id == acting_user_id
        if not is_owner and booking.created_by != acting_user_id:
            raise Unauthorized(booking_id=booking_id)

        if booking.status == BookingStatus.BLOCKED:
            await _mark_cancelled(conn, booking, now)
            return CancellationResult(
                booking.id, booking.venue_id, booking.start_at, 0, 0, "Slot released"
            )

        assert_transition(booking.status, BookingStatus.CANCELLED)
        remaining = hours_until(booking.start_at, now)
        if not is_owner and remaining <= 0:
            raise TooLateToCancel(booking_id=booking_id)

        percentage = (
            100
            if is_owner
            else effective_refund_percentage(
                booking.refund_percentage, booking.cutoff_hours, remaining
            )
        )
        refund = percentage_of(booking.total_cents, percentage)

        await _mark_cancelled(conn, booking, now)
        await _distribute_refund(conn, booking, refund, percentage)
        if refund:
            await ledger.adjust(
                conn,
                venue.owner_id,
                -refund,
                TransactionCategory.REFUND_DEDUCTION,
                f"Refund deduction for Booking #{booking.id}",
                booking_id=booking.id,
            )

        return CancellationResult(
            booking_id=booking.id,
            venue_id=booking.venue_id,
            start_at=booking.start_at,
            refund_cents=refund,
            owner_cut_cents=booking.total_cents - refund,
            message=(
                f"Booking cancelled. {refund} refunded to wallet."
                if refund
                else "Booking cancelled. No refund applies."
            ),
        )

    result = await run_atomic(_cancel, label="cancel_booking")
    log.info(
        "booking {} cancelled by {}: refund {}, owner keeps {}",
        booking_id,
        acting_user_id,
        result.refund_cents,
        result.owner_cut_cents,
    )
    return result


async def reschedule_booking(
    booking_id: UUID,
    user_id: UUID,
    new_day: date,
    new_start: time,
    duration_hours: Decimal,
    now: datetime | None = None,
) -> Booking:
    """Move a confirmed booking to a new interval. The price is not recomputed."""
    interval = validate_interval(new_day, new_start, duration_hours, now)

    async def _move(conn: BaseDBAsyncClient) -> Booking:
        booking = await _locked_booking(conn, booking_id)
        if booking.created_by != user_id:
            raise Unauthorized("Only the booking creator can reschedule", booking_id=booking_id)
        assert_reschedulable(booking.status)

        await lock_venue_days(
            conn, booking.venue_id, [local_day(booking.start_at), interval.day]
        )

        if booking.court_id is None:
            if await has_conflict(
                conn,
                booking.venue_id,
                None,
                interval.start_at,
                interval.end_at,
                exclude_booking_id=booking.id,
            ):
                raise SlotUnavailable(venue_id=booking.venue_id, start_at=interval.start_at)
            court_id = None
        else:
            court = await find_free_court(
                conn,
                booking.venue_id,
                booking.sport_id,
                interval.start_at,
                interval.end_at,
                exclude_booking_id=booking.id,
                prefer_court_id=booking.court_id,
            )
            if court is None:
                raise SlotUnavailable(venue_id=booking.venue_id, start_at=interval.start_at)
            court_id = court.id

        booking.start_at = interval.start_at
        booking.end_at = interval.end_at
        booking.court_id = court_id
        await booking.save(
            using_db=conn, update_fields=["start_at", "end_at", "court_id", "updated_at"]
        )
        return booking

    booking = await run_atomic(_move, label="reschedule_booking")
    log.info("booking {} moved to {} - {}", booking_id, booking.start_at, booking.end_at)
    return booking
