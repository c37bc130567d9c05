"""Split payments: share arithmetic, reimbursement and guest invitations."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from playlink.checkout import confirm_checkout, start_checkout
from playlink.conflicts import run_atomic
from playlink.deps import CheckoutSession
from playlink.errors import NotFound, ValidationError
from playlink.models import (
    BookingParticipant,
    BookingStatus,
    ParticipantKind,
    ParticipantPaymentStatus,
    Payment,
    PaymentSource,
)
from playlink.schemas import CheckoutRequest, parse_session_metadata
from playlink.splits import Invitee, accept_invite, pay_split_share, seed_participants, share_amount

from .factories import (
    CUSTOMER_ID,
    EVENING,
    FUTURE_DAY,
    fund_wallet,
    make_booking,
    make_customer,
    make_venue,
    paid_session,
    wallet_balance,
)


def payments_mock(session_id: str = "cs_share_1"):
    payments = MagicMock()
    payments.create_session = AsyncMock(
        return_value=CheckoutSession(session_id=session_id, redirect_url=f"https://pay.test/{session_id}")
    )
    payments.get_session = AsyncMock(return_value=None)
    return payments


async def split_booking(total_cents: int, invitees: list[Invitee], **overrides):
    venue = await make_venue()
    booking = await make_booking(venue, total_cents=total_cents, **overrides)
    guests = await run_atomic(
        lambda conn: seed_participants(conn, booking, CUSTOMER_ID, invitees)
    )
    return booking, guests


class TestShareAmount:
    def test_even_split(self):
        assert share_amount(6000, 2) == 2000

    def test_rounds_to_whole_cents(self):
        assert share_amount(1000, 2) == 333

    def test_no_invitees(self):
        assert share_amount(4000, 0) == 4000


class TestSeedParticipants:
    async def test_shares_add_up_to_total(self, db):
        booking, _ = await split_booking(1000, [Invitee("a@x.io", uuid4()), Invitee("b@x.io", uuid4())])

        participants = await BookingParticipant.filter(booking_id=booking.id)
        assert sum(p.share_cents for p in participants) == 1000
        initiator = next(p for p in participants if p.is_initiator)
        assert initiator.share_cents == 334

    async def test_initiator_listed_as_invitee_is_ignored(self, db):
        booking, _ = await split_booking(4000, [Invitee("me@x.io", CUSTOMER_ID)])
        assert await BookingParticipant.filter(booking_id=booking.id).count() == 1

    async def test_guests_get_unique_tokens(self, db):
        _, guests = await split_booking(3000, [Invitee("a@x.io"), Invitee("b@x.io")])
        assert len(guests) == 2
        assert all(g.kind == ParticipantKind.GUEST for g in guests)
        assert guests[0].invite_token != guests[1].invite_token


class TestPaySplitShare:
    async def test_wallet_payment_reimburses_initiator(self, db):
        friend = make_customer(uuid4(), email="friend@example.com")
        booking, _ = await split_booking(6000, [Invitee(friend.email, friend.id)])
        await fund_wallet(friend.id, 5000)

        result = await pay_split_share(booking.id, friend, True, payments_mock())

        assert result.paid
        assert result.share_cents == 3000
        assert await wallet_balance(friend.id) == 2000
        assert await wallet_balance(CUSTOMER_ID) == 3000
        participant = await BookingParticipant.get(booking_id=booking.id, user_id=friend.id)
        assert participant.payment_status == ParticipantPaymentStatus.PAID
        payment = await Payment.get(booking_id=booking.id, payer_id=friend.id)
        assert payment.source == PaymentSource.POINTS

    async def test_short_wallet_falls_back_to_card(self, db):
        friend = make_customer(uuid4(), email="friend@example.com")
        booking, _ = await split_booking(6000, [Invitee(friend.email, friend.id)])
        await fund_wallet(friend.id, 100)
        payments = payments_mock()

        result = await pay_split_share(booking.id, friend, True, payments)

        assert not result.paid
        assert result.checkout_url == "https://pay.test/cs_share_1"
        assert payments.create_session.call_args.args[0] == 3000
        assert await wallet_balance(friend.id) == 100

    async def test_card_share_settled_on_confirmation(self, db):
        friend = make_customer(uuid4(), email="friend@example.com")
        booking, _ = await split_booking(6000, [Invitee(friend.email, friend.id)])
        payments = payments_mock()
        await pay_split_share(booking.id, friend, False, payments)
        meta = parse_session_metadata(payments.create_session.call_args.args[2])
        payments.get_session.return_value = paid_session("cs_share_1", meta)

        confirmed = await confirm_checkout("cs_share_1", payments, MagicMock())
        again = await confirm_checkout("cs_share_1", payments, MagicMock())

        assert confirmed.id == again.id == booking.id
        assert await wallet_balance(CUSTOMER_ID) == 3000
        assert await Payment.filter(provider_reference="cs_share_1").count() == 1

    async def test_paying_twice_rejected(self, db):
        friend = make_customer(uuid4(), email="friend@example.com")
        booking, _ = await split_booking(6000, [Invitee(friend.email, friend.id)])
        await fund_wallet(friend.id, 6000)
        await pay_split_share(booking.id, friend, True, payments_mock())

        with pytest.raises(ValidationError):
            await pay_split_share(booking.id, friend, True, payments_mock())
        assert await wallet_balance(CUSTOMER_ID) == 3000

    async def test_initiator_has_no_share_to_pay(self, db):
        booking, _ = await split_booking(6000, [Invitee("a@x.io", uuid4())])
        with pytest.raises(NotFound):
            await pay_split_share(booking.id, make_customer(), True, payments_mock())

    async def test_cancelled_booking_not_payable(self, db):
        friend = make_customer(uuid4(), email="friend@example.com")
        booking, _ = await split_booking(
            6000, [Invitee(friend.email, friend.id)], status=BookingStatus.CANCELLED
        )
        with pytest.raises(ValidationError):
            await pay_split_share(booking.id, friend, True, payments_mock())


class TestSplitScenario:
    async def test_two_invitees_reimburse_initiator_in_full(self, db):
        venue = await make_venue(price_per_hour_cents=3000)
        friends = [make_customer(uuid4(), email=f"f{i}@example.com") for i in range(2)]
        users = MagicMock()
        users.find_ids_by_emails = AsyncMock(return_value={f.email: f.id for f in friends})
        await fund_wallet(CUSTOMER_ID, 6000)

        result = await start_checkout(
            CheckoutRequest(
                venue_id=venue.id,
                date=FUTURE_DAY,
                start=EVENING,
                duration_hours=Decimal(2),
                invitee_emails=[f.email for f in friends],
                use_wallet_points=True,
            ),
            make_customer(),
            users,
            payments_mock(),
            MagicMock(),
        )
        assert result.total_cents == 6000
        assert await wallet_balance(CUSTOMER_ID) == 0

        for friend in friends:
            await fund_wallet(friend.id, 2000)

        first = await pay_split_share(result.booking_id, friends[0], True, payments_mock())
        assert first.share_cents == 2000
        assert await wallet_balance(CUSTOMER_ID) == 2000

        await pay_split_share(result.booking_id, friends[1], True, payments_mock())
        assert await wallet_balance(CUSTOMER_ID) == 4000
        assert [await wallet_balance(f.id) for f in friends] == [0, 0]


class TestAcceptInvite:
    async def test_guest_becomes_registered(self, db):
        booking, [guest] = await split_booking(4000, [Invitee("guest@example.com")])
        user_id = uuid4()

        participant = await accept_invite(guest.invite_token, user_id)

        assert participant.kind == ParticipantKind.REGISTERED
        assert participant.user_id == user_id
        assert participant.invite_token is None

    async def test_accepted_guest_can_pay(self, db):
        booking, [guest] = await split_booking(4000, [Invitee("guest@example.com")])
        user = make_customer(uuid4(), email="guest@example.com")
        await accept_invite(guest.invite_token, user.id)
        await fund_wallet(user.id, 2000)

        result = await pay_split_share(booking.id, user, True, payments_mock())
        assert result.paid

    async def test_token_single_use(self, db):
        _, [guest] = await split_booking(4000, [Invitee("guest@example.com")])
        await accept_invite(guest.invite_token, uuid4())
        with pytest.raises(NotFound):
            await accept_invite(guest.invite_token, uuid4())

    async def test_existing_participant_cannot_accept(self, db):
        _, [guest] = await split_booking(4000, [Invitee("guest@example.com")])
        with pytest.raises(ValidationError):
            await accept_invite(guest.invite_token, CUSTOMER_ID)
