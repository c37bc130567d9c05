from enum import StrEnum

from tortoise import fields
from tortoise.models import Model


class AbstractModel(Model):
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        abstract = True


class BookingStatus(StrEnum):
    PENDING = "pending"  # created, payment not settled yet
    CONFIRMED = "confirmed"  # paid (card or points), occupies the slot
    BLOCKED = "blocked"  # owner hold, no payment, occupies the slot
    COMPLETED = "completed"  # booking period elapsed
    CANCELLED = "cancelled"  # cancelled by the player or the venue owner


# Statuses that occupy their interval for conflict purposes
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.BLOCKED)


class ParticipantKind(StrEnum):
    REGISTERED = "registered"
    GUEST = "guest"  # invited by email, linked to a user once the invite is accepted


class ParticipantPaymentStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    REFUNDED = "refunded"


class PaymentSource(StrEnum):
    CARD = "card"
    POINTS = "points"


class TransactionDirection(StrEnum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionCategory(StrEnum):
    BOOKING_PAYMENT = "booking_payment"
    BOOKING_SPLIT = "booking_split"
    BOOKING_REIMBURSEMENT = "booking_reimbursement"
    BOOKING_REVENUE = "booking_revenue"
    REFUND = "refund"
    REFUND_DEDUCTION = "refund_deduction"


class CancellationPolicy(AbstractModel):
    id = fields.IntField(primary_key=True)
    name = fields.CharField(max_length=100)
    refund_percentage = fields.IntField()  # applied inside the cutoff window
    hours_before_start = fields.IntField()

    class Meta:  # type: ignore
        table = "cancellation_policies"


class Venue(AbstractModel):
    id = fields.UUIDField(primary_key=True)
    owner_id = fields.UUIDField()
    name = fields.CharField(max_length=255)
    price_per_hour_cents = fields.BigIntField()
    currency = fields.CharField(max_length=3, default="LKR")

    cancellation_policy: fields.ForeignKeyNullableRelation[CancellationPolicy] = (
        fields.ForeignKeyField(
            "models.CancellationPolicy",
            related_name="venues",
            null=True,
            on_delete=fields.SET_NULL,
        )
    )
    # Venue-specific override of the shared policy
    custom_refund_percentage = fields.IntField(null=True)
    custom_cutoff_hours = fields.IntField(null=True)

    class Meta:  # type: ignore
        table = "venues"


class Sport(AbstractModel):
    id = fields.IntField(primary_key=True)
    name = fields.CharField(max_length=100, unique=True)

    class Meta:  # type: ignore
        table = "sports"


class Court(AbstractModel):
    id = fields.UUIDField(primary_key=True)
    venue: fields.ForeignKeyRelation[Venue] = fields.ForeignKeyField(
        "models.Venue", related_name="courts", on_delete=fields.CASCADE
    )
    name = fields.CharField(max_length=100)
    is_active = fields.BooleanField(default=True)
    sports: fields.ManyToManyRelation[Sport] = fields.ManyToManyField(
        "models.Sport", related_name="courts", through="court_sports"
    )

    class Meta:  # type: ignore
        table = "courts"
        ordering = ["name"]


class PricingRule(AbstractModel):
    id = fields.IntField(primary_key=True)
    venue: fields.ForeignKeyRelation[Venue] = fields.ForeignKeyField(
        "models.Venue", related_name="pricing_rules", on_delete=fields.CASCADE
    )
    name = fields.CharField(max_length=255)
    start_time = fields.TimeField()
    end_time = fields.TimeField()
    multiplier = fields.DecimalField(max_digits=4, decimal_places=2, default=1)
    days_of_week = fields.JSONField(null=True)  # ints 0-6, Sunday = 0; empty = every day
    is_active = fields.BooleanField(default=True)

    class Meta:  # type: ignore
        table = "venue_pricing_rules"


class Booking(AbstractModel):
    id = fields.UUIDField(primary_key=True)

    venue: fields.ForeignKeyRelation[Venue] = fields.ForeignKeyField(
        "models.Venue", related_name="bookings", on_delete=fields.RESTRICT
    )
    # None means venue-wide: the booking blocks every court
    court: fields.ForeignKeyNullableRelation[Court] = fields.ForeignKeyField(
        "models.Court", related_name="bookings", null=True, on_delete=fields.RESTRICT
    )
    sport: fields.ForeignKeyNullableRelation[Sport] = fields.ForeignKeyField(
        "models.Sport", related_name="bookings", null=True, on_delete=fields.SET_NULL
    )
    created_by = fields.UUIDField()

    start_at = fields.DatetimeField()
    end_at = fields.DatetimeField()

    status = fields.CharEnumField(BookingStatus, default=BookingStatus.PENDING)

    total_cents = fields.BigIntField(default=0)
    points_used_cents = fields.BigIntField(default=0)
    paid_cents = fields.BigIntField(default=0)
    currency = fields.CharField(max_length=3, default="LKR")

    # Policy snapshot taken at creation; later venue policy edits don't apply
    refund_percentage = fields.IntField(default=0)
    cutoff_hours = fields.IntField(default=0)

    cancelled_at = fields.DatetimeField(null=True)
    updated_at = fields.DatetimeField(auto_now=True)

    participants: fields.ReverseRelation["BookingParticipant"]
    payments: fields.ReverseRelation["Payment"]

    class Meta:  # type: ignore
        table = "bookings"
        ordering = ["-created_at"]


class BookingParticipant(AbstractModel):
    id = fields.IntField(primary_key=True)
    booking: fields.ForeignKeyRelation[Booking] = fields.ForeignKeyField(
        "models.Booking", related_name="participants", on_delete=fields.CASCADE
    )
    kind = fields.CharEnumField(ParticipantKind, default=ParticipantKind.REGISTERED)
    user_id = fields.UUIDField(null=True)
    guest_email = fields.CharField(max_length=255, null=True)
    invite_token = fields.CharField(max_length=64, null=True, unique=True)
    share_cents = fields.BigIntField()
    is_initiator = fields.BooleanField(default=False)
    payment_status = fields.CharEnumField(
        ParticipantPaymentStatus, default=ParticipantPaymentStatus.PENDING
    )

    class Meta:  # type: ignore
        table = "booking_participants"
        ordering = ["id"]


class Payment(AbstractModel):
    id = fields.IntField(primary_key=True)
    booking: fields.ForeignKeyRelation[Booking] = fields.ForeignKeyField(
        "models.Booking", related_name="payments", on_delete=fields.CASCADE
    )
    payer_id = fields.UUIDField()
    amount_cents = fields.BigIntField()
    currency = fields.CharField(max_length=3, default="LKR")
    source = fields.CharEnumField(PaymentSource)
    status = fields.CharEnumField(PaymentStatus, default=PaymentStatus.PENDING)
    provider_reference = fields.CharField(max_length=255, null=True, unique=True)

    class Meta:  # type: ignore
        table = "payments"


class Wallet(AbstractModel):
    id = fields.IntField(primary_key=True)
    user_id = fields.UUIDField(unique=True)
    balance_cents = fields.BigIntField(default=0)
    updated_at = fields.DatetimeField(auto_now=True)

    transactions: fields.ReverseRelation["WalletTransaction"]

    class Meta:  # type: ignore
        table = "wallets"


class WalletTransaction(AbstractModel):
    """Append-only ledger entry. Rows are never updated after insert."""

    id = fields.IntField(primary_key=True)
    wallet: fields.ForeignKeyRelation[Wallet] = fields.ForeignKeyField(
        "models.Wallet", related_name="transactions", on_delete=fields.RESTRICT
    )
    booking: fields.ForeignKeyNullableRelation[Booking] = fields.ForeignKeyField(
        "models.Booking",
        related_name="wallet_transactions",
        null=True,
        on_delete=fields.SET_NULL,
    )
    amount_cents = fields.BigIntField()  # signed
    direction = fields.CharEnumField(TransactionDirection)
    category = fields.CharEnumField(TransactionCategory)
    description = fields.CharField(max_length=255)

    class Meta:  # type: ignore
        table = "wallet_transactions"
        ordering = ["-created_at", "-id"]


class VenueDayLock(Model):
    """One row per (venue, local day), locked before any admitting write."""

    id = fields.IntField(primary_key=True)
    venue: fields.ForeignKeyRelation[Venue] = fields.ForeignKeyField(
        "models.Venue", related_name="day_locks", on_delete=fields.CASCADE
    )
    day = fields.DateField()

    class Meta:  # type: ignore
        table = "venue_day_locks"
        unique_together = (("venue", "day"),)
