"""
Domain errors raised by the booking, ledger and refund services.

They subclass FastAPI's HTTPException so the services can raise them directly
and the routers need no translation layer. `detail` is always a dict carrying
a stable machine-readable `code` next to the human message.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import HTTPException, status


class BookingError(HTTPException):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "booking_error"
    message: str = "Booking request failed"

    def __init__(self, message: str | None = None, **context: Any) -> None:
        self.message = message or self.message
        self.context = context
        detail = {"code": self.code, "message": self.message}
        if context:
            detail["context"] = {k: _jsonable(v) for k, v in context.items()}
        super().__init__(status_code=self.status_code, detail=detail)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


class ValidationError(BookingError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "validation_error"
    message = "Invalid booking request"


class PaymentNotCompleted(ValidationError):
    code = "payment_not_completed"
    message = "Payment has not been completed"


class InvalidTransition(BookingError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"
    message = "Booking cannot move to the requested status"


class SlotUnavailable(BookingError):
    status_code = status.HTTP_409_CONFLICT
    code = "slot_unavailable"
    message = "Time slot unavailable"


class SlotTakenDuringPayment(SlotUnavailable):
    code = "slot_taken_during_payment"
    message = "The slot was taken while the payment was being processed"


class InsufficientFunds(BookingError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "insufficient_funds"
    message = "Insufficient wallet balance"


class Unauthorized(BookingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "unauthorized"
    message = "Not allowed to act on this booking"


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    message = "Not found"


class AlreadyCancelled(BookingError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_cancelled"
    message = "Booking is already cancelled"


class TooLateToCancel(BookingError):
    status_code = status.HTTP_409_CONFLICT
    code = "too_late_to_cancel"
    message = "Cannot cancel a booking that has already started"
