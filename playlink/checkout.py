"""
Checkout orchestration: price, admit, settle.

A checkout attempt moves PRICED -> ADMITTED -> SETTLING -> CONFIRMED, or is
REJECTED at any gate before CONFIRMED. Wallet-funded checkouts settle in a
single transaction. Card-funded ones open a provider session first and only
write the booking in `confirm_checkout`, after the provider reports the
session paid, so unpaid attempts never leave rows behind.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import StrEnum
from typing import Awaitable, Callable
from uuid import UUID

from loguru import logger
from tortoise.backends.base.client import BaseDBAsyncClient

from playlink import ledger
from playlink.conflicts import find_free_court, has_conflict, lock_venue_day, run_atomic
from playlink.deps import CurrentUser, NotificationsClient, PaymentsClient, UsersClient
from playlink.errors import (
    BookingError,
    NotFound,
    PaymentNotCompleted,
    SlotTakenDuringPayment,
    SlotUnavailable,
    Unauthorized,
)
from playlink.models import (
    Booking,
    BookingParticipant,
    BookingStatus,
    Court,
    Payment,
    PaymentSource,
    PaymentStatus,
    TransactionCategory,
    Venue,
)
from playlink.pricing import load_rules, price_for
from playlink.schemas import (
    CheckoutRequest,
    CheckoutSessionMetadata,
    ShareSessionMetadata,
    parse_session_metadata,
)
from playlink.splits import Invitee, seed_participants, settle_share_session
from playlink.timeslots import BookingInterval, local_day, validate_interval

log = logger.bind(log_type="booking")

UnresolvedPaymentHook = Callable[[str, BookingError], Awaitable[None]]


class CheckoutStage(StrEnum):
    PRICED = "priced"
    ADMITTED = "admitted"
    SETTLING = "settling"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


def _stage(stage: CheckoutStage, **context) -> None:
    log.info("checkout {} {}", stage.value, context)


@dataclass(frozen=True)
class CheckoutResult:
    total_cents: int
    booking_id: UUID | None = None
    checkout_url: str | None = None
    session_id: str | None = None
    points_applied_cents: int = 0
    amount_due_cents: int = 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def load_venue(venue_id: UUID) -> Venue:
    venue = await Venue.get_or_none(id=venue_id).prefetch_related("cancellation_policy")
    if venue is None:
        raise NotFound("Venue not found", venue_id=venue_id)
    return venue


def policy_snapshot(venue: Venue) -> tuple[int, int]:
    """(refund_percentage, cutoff_hours) to freeze onto a new booking."""
    if venue.custom_refund_percentage is not None:
        return venue.custom_refund_percentage, venue.custom_cutoff_hours or 0
    policy = venue.cancellation_policy
    if policy is not None:
        return policy.refund_percentage, policy.hours_before_start
    return 0, 0


async def resolve_resource(
    conn: BaseDBAsyncClient | None,
    venue_id: UUID,
    sport_id: int | None,
    start_at: datetime,
    end_at: datetime,
    exclude_booking_id: UUID | None = None,
    prefer_court_id: UUID | None = None,
) -> UUID | None:
    """
    Pick the resource to admit: a free court for the sport, or the whole
    venue when the venue has no courts and no sport was requested.
    Returns the court id (None = venue-wide) or raises SlotUnavailable.
    """
    court = await find_free_court(
        conn,
        venue_id,
        sport_id,
        start_at,
        end_at,
        exclude_booking_id=exclude_booking_id,
        prefer_court_id=prefer_court_id,
    )
    if court is not None:
        return court.id

    has_courts = Court.filter(venue_id=venue_id, is_active=True)
    if conn is not None:
        has_courts = has_courts.using_db(conn)
    if sport_id is None and not await has_courts.exists():
        if not await has_conflict(
            conn, venue_id, None, start_at, end_at, exclude_booking_id=exclude_booking_id
        ):
            return None
    raise SlotUnavailable(venue_id=venue_id, sport_id=sport_id, start_at=start_at)


async def resolve_invitees(
    emails: list[str], user: CurrentUser, users_client: UsersClient
) -> list[Invitee]:
    own_email = (user.email or "").lower()
    emails = [e for e in emails if e != own_email]
    registered = await users_client.find_ids_by_emails(emails, user)
    return [
        Invitee(email=e, user_id=registered.get(e))
        for e in emails
        if registered.get(e) != user.id
    ]


async def send_invites(
    guests: list[BookingParticipant], notifications_client: NotificationsClient
) -> None:
    if not guests:
        return
    results = await asyncio.gather(
        *(notifications_client.send_invite(g.guest_email, g.invite_token) for g in guests)
    )
    for guest, ok in zip(guests, results):
        if not ok:
            log.warning("Invite email to {} was not delivered", guest.guest_email)


async def _settle_booking(
    conn: BaseDBAsyncClient,
    draft: CheckoutSessionMetadata,
    *,
    source: PaymentSource,
    amount_cents: int,
    provider_reference: str | None = None,
    conflict_error: type[SlotUnavailable] = SlotUnavailable,
) -> tuple[Booking, list[BookingParticipant]]:
    """
    Admit and settle a booking inside `conn`'s transaction.

    Lock order: venue day first, then wallets. The idempotency lookup runs
    after the lock so a concurrent duplicate confirmation waits and then
    sees the first one's payment.
    """
    await lock_venue_day(conn, draft.venue_id, local_day(draft.start_at))

    if provider_reference is not None:
        existing = (
            await Payment.filter(provider_reference=provider_reference)
            .using_db(conn)
            .first()
        )
        if existing is not None:
            return await Booking.get(id=existing.booking_id).using_db(conn), []

    if await has_conflict(conn, draft.venue_id, draft.court_id, draft.start_at, draft.end_at):
        _stage(CheckoutStage.REJECTED, venue_id=draft.venue_id, reason=conflict_error.code)
        raise conflict_error(
            venue_id=draft.venue_id, court_id=draft.court_id, start_at=draft.start_at
        )
    _stage(CheckoutStage.ADMITTED, venue_id=draft.venue_id, court_id=draft.court_id)

    booking = await Booking.create(
        venue_id=draft.venue_id,
        court_id=draft.court_id,
        sport_id=draft.sport_id,
        created_by=draft.user_id,
        start_at=draft.start_at,
        end_at=draft.end_at,
        status=BookingStatus.CONFIRMED,
        total_cents=draft.total_cents,
        points_used_cents=draft.points_cents,
        paid_cents=amount_cents if source == PaymentSource.CARD else 0,
        currency=draft.currency,
        refund_percentage=draft.refund_percentage,
        cutoff_hours=draft.cutoff_hours,
        using_db=conn,
    )
    _stage(CheckoutStage.SETTLING, booking_id=booking.id)

    if draft.points_cents:
        await ledger.adjust(
            conn,
            draft.user_id,
            -draft.points_cents,
            TransactionCategory.BOOKING_PAYMENT,
            f"Points used for Booking #{booking.id}",
            booking_id=booking.id,
        )
    if amount_cents:
        await Payment.create(
            booking_id=booking.id,
            payer_id=draft.user_id,
            amount_cents=amount_cents,
            currency=draft.currency,
            source=source,
            status=PaymentStatus.SUCCEEDED,
            provider_reference=provider_reference,
            using_db=conn,
        )
    guests = await seed_participants(
        conn,
        booking,
        draft.user_id,
        [Invitee(email=email, user_id=uid) for email, uid in draft.invitees],
    )
    if draft.total_cents:
        await ledger.adjust(
            conn,
            draft.owner_id,
            draft.total_cents,
            TransactionCategory.BOOKING_REVENUE,
            f"Revenue for Booking #{booking.id}",
            booking_id=booking.id,
        )
    return booking, guests


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def start_checkout(
    request: CheckoutRequest,
    user: CurrentUser,
    users_client: UsersClient,
    payments_client: PaymentsClient,
    notifications_client: NotificationsClient,
    now: datetime | None = None,
) -> CheckoutResult:
    """
    Price and admit a booking request.

    Returns the confirmed booking id when the wallet covers the total, or a
    provider checkout URL for the amount left after points otherwise.
    """
    interval = validate_interval(request.date, request.start, request.duration_hours, now)
    venue = await load_venue(request.venue_id)
    rules = await load_rules(venue.id)
    total = price_for(
        venue.price_per_hour_cents, rules, interval.local_start, interval.duration_hours
    )
    _stage(CheckoutStage.PRICED, venue_id=venue.id, user_id=user.id, total_cents=total)

    court_id = await resolve_resource(
        None, venue.id, request.sport_id, interval.start_at, interval.end_at
    )
    invitees = await resolve_invitees(request.invitee_emails, user, users_client)
    refund_percentage, cutoff_hours = policy_snapshot(venue)
    wallet_balance = await ledger.balance(user.id) if request.use_wallet_points else 0

    draft = CheckoutSessionMetadata(
        venue_id=venue.id,
        owner_id=venue.owner_id,
        user_id=user.id,
        court_id=court_id,
        sport_id=request.sport_id,
        start_at=interval.start_at,
        end_at=interval.end_at,
        total_cents=total,
        currency=venue.currency,
        refund_percentage=refund_percentage,
        cutoff_hours=cutoff_hours,
        invitees=[(i.email, i.user_id) for i in invitees],
    )

    if total == 0 or wallet_balance >= total:
        draft = draft.model_copy(update={"points_cents": total})

        async def _admit(conn: BaseDBAsyncClient):
            return await _settle_booking(
                conn, draft, source=PaymentSource.POINTS, amount_cents=total
            )

        booking, guests = await run_atomic(_admit, label="wallet_checkout")
        _stage(CheckoutStage.CONFIRMED, booking_id=booking.id, funding="wallet")
        await send_invites(guests, notifications_client)
        return CheckoutResult(
            total_cents=total, booking_id=booking.id, points_applied_cents=total
        )

    points = min(wallet_balance, total)
    draft = draft.model_copy(update={"points_cents": points})
    session = await payments_client.create_session(
        total - points, venue.currency, draft.to_provider(), user
    )
    log.info(
        "opened checkout session {} for venue {} ({} due, {} in points)",
        session.session_id,
        venue.id,
        total - points,
        points,
    )
    return CheckoutResult(
        total_cents=total,
        checkout_url=session.redirect_url,
        session_id=session.session_id,
        points_applied_cents=points,
        amount_due_cents=total - points,
    )


async def confirm_checkout(
    session_id: str,
    payments_client: PaymentsClient,
    notifications_client: NotificationsClient,
    on_unresolved: UnresolvedPaymentHook | None = None,
) -> Booking:
    """
    Turn a paid provider session into a confirmed booking (or a paid share).

    Idempotent per session: a repeated call returns the booking created by
    the first one. When the payment can't be applied (slot taken meanwhile,
    points no longer available, share no longer payable) `on_unresolved` is
    awaited so the caller can refund the charge, then the error propagates.
    """
    existing = await Payment.get_or_none(provider_reference=session_id)
    if existing is not None:
        return await Booking.get(id=existing.booking_id)

    session = await payments_client.get_session(session_id)
    if session is None:
        raise NotFound("Checkout session not found", session_id=session_id)
    if not session.paid:
        raise PaymentNotCompleted(session_id=session_id)

    meta = parse_session_metadata(session.metadata)

    async def _settle(conn: BaseDBAsyncClient):
        if isinstance(meta, ShareSessionMetadata):
            booking = await Booking.get_or_none(id=meta.booking_id).using_db(conn)
            if booking is None:
                raise NotFound("Booking not found", booking_id=meta.booking_id)
            await settle_share_session(
                conn,
                session_id,
                booking.id,
                meta.user_id,
                session.amount_paid_cents,
                booking.currency,
            )
            return booking, []
        return await _settle_booking(
            conn,
            meta,
            source=PaymentSource.CARD,
            amount_cents=session.amount_paid_cents,
            provider_reference=session_id,
            conflict_error=SlotTakenDuringPayment,
        )

    try:
        booking, guests = await run_atomic(_settle, label="confirm_checkout")
    except BookingError as exc:
        log.error("paid session {} could not be applied: {}", session_id, exc)
        if on_unresolved is not None:
            await on_unresolved(session_id, exc)
        raise

    _stage(CheckoutStage.CONFIRMED, booking_id=booking.id, funding="card")
    await send_invites(guests, notifications_client)
    return booking


async def block_slot(
    venue_id: UUID,
    owner: CurrentUser,
    day: date,
    start: time,
    duration_hours: Decimal,
    court_id: UUID | None = None,
    now: datetime | None = None,
) -> Booking:
    """Owner hold: occupies the interval like a booking, without payment."""
    venue = await load_venue(venue_id)
    if venue.owner_id != owner.id:
        raise Unauthorized("Only the venue owner can block slots", venue_id=venue_id)
    interval: BookingInterval = validate_interval(day, start, duration_hours, now)
    if court_id is not None and not await Court.exists(id=court_id, venue_id=venue_id):
        raise NotFound("Court not found", court_id=court_id)

    async def _block(conn: BaseDBAsyncClient) -> Booking:
        await lock_venue_day(conn, venue_id, interval.day)
        if await has_conflict(conn, venue_id, court_id, interval.start_at, interval.end_at):
            raise SlotUnavailable(venue_id=venue_id, court_id=court_id, start_at=interval.start_at)
        return await Booking.create(
            venue_id=venue_id,
            court_id=court_id,
            created_by=owner.id,
            start_at=interval.start_at,
            end_at=interval.end_at,
            status=BookingStatus.BLOCKED,
            currency=venue.currency,
            using_db=conn,
        )

    booking = await run_atomic(_block, label="block_slot")
    log.info("venue {} blocked {} - {}", venue_id, booking.start_at, booking.end_at)
    return booking

