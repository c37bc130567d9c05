from __future__ import annotations

import datetime as dt
import json
from datetime import datetime, time
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from playlink.models import (
    BookingStatus,
    ParticipantKind,
    ParticipantPaymentStatus,
    TransactionCategory,
    TransactionDirection,
)

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class IntervalRequest(BaseModel):
    date: dt.date
    start: time
    duration_hours: Decimal = Field(gt=0, le=24)


class CheckoutRequest(IntervalRequest):
    venue_id: UUID
    sport_id: int | None = None
    invitee_emails: list[str] = Field(default_factory=list, max_length=30)
    use_wallet_points: bool = False

    @field_validator("invitee_emails", mode="after")
    @classmethod
    def normalize_emails(cls, v: list[str]) -> list[str]:
        seen: dict[str, None] = {}
        for raw in v:
            email = raw.strip().lower()
            if "@" not in email or email.startswith("@") or email.endswith("@"):
                raise ValueError(f"'{raw}' is not a valid email address")
            seen.setdefault(email, None)
        return list(seen)


class ConfirmCheckoutRequest(BaseModel):
    session_id: str = Field(min_length=1, max_length=255)


class SharePaymentRequest(BaseModel):
    use_wallet_points: bool = False


class RescheduleRequest(IntervalRequest):
    pass


class BlockRequest(IntervalRequest):
    court_id: UUID | None = None  # None blocks the whole venue


class PricingRuleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    start_time: time
    end_time: time
    multiplier: Decimal = Field(ge=Decimal("0.10"), le=Decimal("10"), decimal_places=2)
    days_of_week: list[int] = Field(default_factory=list)

    @field_validator("days_of_week", mode="after")
    @classmethod
    def validate_days(cls, v: list[int]) -> list[int]:
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("days_of_week entries must be 0 (Sunday) to 6 (Saturday)")
        return sorted(set(v))

    @model_validator(mode="after")
    def validate_window(self) -> PricingRuleCreate:
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class BookingFilters(BaseModel):
    """Bind to a FastAPI route via Depends(BookingFilters)."""

    venue_id: UUID | None = None
    status: BookingStatus | None = None

    # Pagination
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


# ---------------------------------------------------------------------------
# Payment provider metadata
# ---------------------------------------------------------------------------


class CheckoutSessionMetadata(BaseModel):
    """Everything needed to rebuild a booking once the provider confirms payment."""

    kind: Literal["booking"] = "booking"
    venue_id: UUID
    owner_id: UUID
    user_id: UUID
    court_id: UUID | None = None
    sport_id: int | None = None
    start_at: datetime
    end_at: datetime
    total_cents: int
    points_cents: int = 0
    currency: str
    refund_percentage: int = 0
    cutoff_hours: int = 0
    invitees: list[tuple[str, UUID | None]] = Field(default_factory=list)

    def to_provider(self) -> dict[str, str]:
        return {"payload": self.model_dump_json()}


class ShareSessionMetadata(BaseModel):
    kind: Literal["split_share"] = "split_share"
    booking_id: UUID
    user_id: UUID
    amount_cents: int

    def to_provider(self) -> dict[str, str]:
        return {"payload": self.model_dump_json()}


def parse_session_metadata(
    metadata: dict[str, str],
) -> CheckoutSessionMetadata | ShareSessionMetadata:
    payload = json.loads(metadata["payload"])
    if payload.get("kind") == "split_share":
        return ShareSessionMetadata.model_validate(payload)
    return CheckoutSessionMetadata.model_validate(payload)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class BookingResponse(BaseModel):
    id: UUID
    venue_id: UUID
    court_id: UUID | None
    sport_id: int | None
    created_by: UUID
    start_at: datetime
    end_at: datetime
    status: BookingStatus
    total_cents: int
    points_used_cents: int
    paid_cents: int
    currency: str
    refund_percentage: int
    cutoff_hours: int
    cancelled_at: datetime | None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ParticipantResponse(BaseModel):
    kind: ParticipantKind
    user_id: UUID | None
    guest_email: str | None
    share_cents: int
    is_initiator: bool
    payment_status: ParticipantPaymentStatus

    model_config = ConfigDict(from_attributes=True)


class BookingDetail(BookingResponse):
    participants: list[ParticipantResponse] = Field(default_factory=list)


class BookingSlot(BaseModel):
    """Minimal occupied slot, reveals no user identity."""

    start_at: datetime
    end_at: datetime
    status: BookingStatus
    court_id: UUID | None = None

    model_config = ConfigDict(from_attributes=True)


class SlotAvailabilityResponse(BaseModel):
    start: time
    start_at: datetime
    end_at: datetime
    available: bool

    model_config = ConfigDict(from_attributes=True)


class PriceQuoteResponse(BaseModel):
    venue_id: UUID
    start_at: datetime
    end_at: datetime
    duration_hours: Decimal
    base_cents: int
    multiplier: Decimal
    total_cents: int
    currency: str

    model_config = ConfigDict(from_attributes=True)


class CheckoutResponse(BaseModel):
    """Either a confirmed booking (wallet funded) or a provider checkout URL."""

    booking_id: UUID | None = None
    checkout_url: str | None = None
    session_id: str | None = None
    total_cents: int
    points_applied_cents: int = 0
    amount_due_cents: int = 0


class SharePaymentResponse(BaseModel):
    booking_id: UUID
    share_cents: int
    paid: bool
    checkout_url: str | None = None
    session_id: str | None = None

    model_config = ConfigDict(from_attributes=True)


class CancellationResponse(BaseModel):
    booking_id: UUID
    refund_cents: int
    owner_cut_cents: int
    message: str

    model_config = ConfigDict(from_attributes=True)


class WalletTransactionResponse(BaseModel):
    id: int
    booking_id: UUID | None
    amount_cents: int
    direction: TransactionDirection
    category: TransactionCategory
    description: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WalletSummaryResponse(BaseModel):
    user_id: UUID
    balance_cents: int
    transactions: list[WalletTransactionResponse]

    model_config = ConfigDict(from_attributes=True)


class PricingRuleResponse(BaseModel):
    id: int
    venue_id: UUID
    name: str
    start_time: time
    end_time: time
    multiplier: Decimal
    days_of_week: list[int] | None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class CancellationPolicyResponse(BaseModel):
    id: int
    name: str
    refund_percentage: int
    hours_before_start: int

    model_config = ConfigDict(from_attributes=True)
