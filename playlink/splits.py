"""
Cost splitting between a booking's initiator and invited participants.

The initiator settles the full total up front; each invitee later pays their
share, which is credited straight back to the initiator's wallet.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from loguru import logger
from tortoise.backends.base.client import BaseDBAsyncClient

from playlink import ledger
from playlink.conflicts import run_atomic
from playlink.errors import NotFound, ValidationError
from playlink.models import (
    Booking,
    BookingParticipant,
    BookingStatus,
    ParticipantKind,
    ParticipantPaymentStatus,
    Payment,
    PaymentSource,
    PaymentStatus,
    TransactionCategory,
)
from playlink.pricing import round_cents
from playlink.schemas import ShareSessionMetadata

if TYPE_CHECKING:
    from playlink.deps import CurrentUser, PaymentsClient

log = logger.bind(log_type="payment")


@dataclass(frozen=True)
class Invitee:
    email: str
    user_id: UUID | None = None  # None: not registered yet, invited as a guest


def share_amount(total_cents: int, invitee_count: int) -> int:
    """Equal per-person share, initiator included, rounded to whole cents."""
    if invitee_count <= 0:
        return total_cents
    return round_cents(Decimal(total_cents) / Decimal(invitee_count + 1))


async def seed_participants(
    conn: BaseDBAsyncClient,
    booking: Booking,
    initiator_id: UUID,
    invitees: list[Invitee],
) -> list[BookingParticipant]:
    """
    Insert participant rows for a freshly admitted booking.

    Invitee rows are written first; the initiator's row then absorbs the
    rounding remainder so the shares add up to the booking total exactly.
    Returns the guest rows so the caller can send invites after commit.
    """
    invitees = [i for i in invitees if i.user_id != initiator_id]
    share = share_amount(booking.total_cents, len(invitees))

    guests: list[BookingParticipant] = []
    invitee_total = 0
    for invitee in invitees:
        if invitee.user_id is not None:
            await BookingParticipant.create(
                booking_id=booking.id,
                kind=ParticipantKind.REGISTERED,
                user_id=invitee.user_id,
                share_cents=share,
                using_db=conn,
            )
        else:
            guests.append(
                await BookingParticipant.create(
                    booking_id=booking.id,
                    kind=ParticipantKind.GUEST,
                    guest_email=invitee.email,
                    invite_token=secrets.token_urlsafe(24),
                    share_cents=share,
                    using_db=conn,
                )
            )
        invitee_total += share

    await BookingParticipant.create(
        booking_id=booking.id,
        kind=ParticipantKind.REGISTERED,
        user_id=initiator_id,
        share_cents=booking.total_cents - invitee_total,
        is_initiator=True,
        payment_status=ParticipantPaymentStatus.PAID,
        using_db=conn,
    )
    return guests


async def _initiator(conn: BaseDBAsyncClient, booking_id: UUID) -> BookingParticipant:
    initiator = (
        await BookingParticipant.filter(booking_id=booking_id, is_initiator=True)
        .using_db(conn)
        .first()
    )
    if initiator is None or initiator.user_id is None:
        raise NotFound("Booking initiator not found", booking_id=booking_id)
    return initiator


async def _payable_share(
    conn: BaseDBAsyncClient | None, booking_id: UUID, user_id: UUID
) -> BookingParticipant:
    qs = BookingParticipant.filter(
        booking_id=booking_id, user_id=user_id, is_initiator=False
    )
    if conn is not None:
        qs = qs.select_for_update().using_db(conn)
    participant = await qs.first()
    if participant is None:
        raise NotFound("You are not a participant of this booking", booking_id=booking_id)
    if participant.payment_status != ParticipantPaymentStatus.PENDING:
        raise ValidationError(
            f"Share is not payable (status: '{participant.payment_status}')",
            booking_id=booking_id,
        )
    return participant


async def reimburse(
    conn: BaseDBAsyncClient,
    payer_user_id: UUID,
    booking_id: UUID,
    amount_paid_cents: int,
) -> None:
    """Mark the payer's share PAID and credit the initiator in the caller's transaction."""
    participant = await _payable_share(conn, booking_id, payer_user_id)
    initiator = await _initiator(conn, booking_id)

    participant.payment_status = ParticipantPaymentStatus.PAID
    await participant.save(using_db=conn, update_fields=["payment_status"])

    await ledger.adjust(
        conn,
        initiator.user_id,
        amount_paid_cents,
        TransactionCategory.BOOKING_REIMBURSEMENT,
        f"Reimbursement from participant {payer_user_id} (Booking #{booking_id})",
        booking_id=booking_id,
    )
    log.info(
        "reimbursed initiator {} with {} for booking {}",
        initiator.user_id,
        amount_paid_cents,
        booking_id,
    )


@dataclass(frozen=True)
class SharePaymentResult:
    booking_id: UUID
    share_cents: int
    paid: bool
    checkout_url: str | None = None
    session_id: str | None = None


async def _active_booking(booking_id: UUID) -> Booking:
    booking = await Booking.get_or_none(id=booking_id)
    if booking is None:
        raise NotFound("Booking not found", booking_id=booking_id)
    if booking.status != BookingStatus.CONFIRMED:
        raise ValidationError(
            f"Shares can only be paid on confirmed bookings (status: '{booking.status}')"
        )
    return booking


async def pay_split_share(
    booking_id: UUID,
    user: CurrentUser,
    use_wallet_points: bool,
    payments_client: PaymentsClient,
) -> SharePaymentResult:
    """
    Settle the caller's share of a split booking.

    Paid from the wallet when it covers the whole share, otherwise through a
    provider checkout session that `confirm_checkout` settles later.
    """
    booking = await _active_booking(booking_id)
    participant = await _payable_share(None, booking_id, user.id)
    share = participant.share_cents

    if use_wallet_points and await ledger.balance(user.id) >= share:

        async def _settle(conn: BaseDBAsyncClient) -> None:
            await ledger.adjust(
                conn,
                user.id,
                -share,
                TransactionCategory.BOOKING_SPLIT,
                f"Split share for Booking #{booking_id}",
                booking_id=booking_id,
            )
            await reimburse(conn, user.id, booking_id, share)
            await Payment.create(
                booking_id=booking_id,
                payer_id=user.id,
                amount_cents=share,
                currency=booking.currency,
                source=PaymentSource.POINTS,
                status=PaymentStatus.SUCCEEDED,
                using_db=conn,
            )

        await run_atomic(_settle, label="pay_split_share")
        return SharePaymentResult(booking_id=booking_id, share_cents=share, paid=True)

    metadata = ShareSessionMetadata(
        booking_id=booking_id, user_id=user.id, amount_cents=share
    )
    session = await payments_client.create_session(
        share, booking.currency, metadata.to_provider(), user
    )
    log.info("opened share checkout {} for booking {}", session.session_id, booking_id)
    return SharePaymentResult(
        booking_id=booking_id,
        share_cents=share,
        paid=False,
        checkout_url=session.redirect_url,
        session_id=session.session_id,
    )


async def settle_share_session(
    conn: BaseDBAsyncClient,
    session_id: str,
    booking_id: UUID,
    user_id: UUID,
    amount_paid_cents: int,
    currency: str,
) -> None:
    """Record a paid share checkout and reimburse the initiator. Idempotent per session."""
    # Lock the payer's row before the lookup so duplicate confirmations queue up.
    await BookingParticipant.filter(
        booking_id=booking_id, user_id=user_id, is_initiator=False
    ).select_for_update().using_db(conn).first()
    if await Payment.filter(provider_reference=session_id).using_db(conn).exists():
        return
    await reimburse(conn, user_id, booking_id, amount_paid_cents)
    await Payment.create(
        booking_id=booking_id,
        payer_id=user_id,
        amount_cents=amount_paid_cents,
        currency=currency,
        source=PaymentSource.CARD,
        status=PaymentStatus.SUCCEEDED,
        provider_reference=session_id,
        using_db=conn,
    )


async def accept_invite(token: str, user_id: UUID) -> BookingParticipant:
    """Link a guest invitation to the registered user who accepted it."""

    async def _accept(conn: BaseDBAsyncClient) -> BookingParticipant:
        participant = (
            await BookingParticipant.filter(invite_token=token)
            .select_for_update()
            .using_db(conn)
            .first()
        )
        if participant is None or participant.kind != ParticipantKind.GUEST:
            raise NotFound("Invitation not found")
        if await BookingParticipant.filter(
            booking_id=participant.booking_id, user_id=user_id
        ).using_db(conn).exists():
            raise ValidationError("You already take part in this booking")

        participant.kind = ParticipantKind.REGISTERED
        participant.user_id = user_id
        participant.invite_token = None
        await participant.save(
            using_db=conn, update_fields=["kind", "user_id", "invite_token"]
        )
        return participant

    return await run_atomic(_accept, label="accept_invite")
