from playlink.errors import AlreadyCancelled, InvalidTransition
from playlink.models import BookingStatus

_VALID_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.BLOCKED: {BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}

# Statuses whose interval may be moved in place
_RESCHEDULABLE = {BookingStatus.CONFIRMED}


def allowed_transitions(old_status: BookingStatus) -> set[BookingStatus]:
    return _VALID_TRANSITIONS.get(BookingStatus(old_status), set())


def assert_transition(old_status: BookingStatus, new_status: BookingStatus) -> None:
    """
    Raise if a booking may not move from `old_status` to `new_status`.

    A second cancellation gets its own error so callers can tell
    "already done" apart from "never possible".
    """
    old_status = BookingStatus(old_status)
    new_status = BookingStatus(new_status)
    if old_status == BookingStatus.CANCELLED and new_status == BookingStatus.CANCELLED:
        raise AlreadyCancelled(booking_status=old_status.value)
    if new_status not in allowed_transitions(old_status):
        raise InvalidTransition(
            f"Cannot transition from '{old_status}' to '{new_status}'. "
            f"Allowed: {sorted(s.value for s in allowed_transitions(old_status))}"
        )


def assert_reschedulable(current: BookingStatus) -> None:
    if BookingStatus(current) not in _RESCHEDULABLE:
        raise InvalidTransition(
            f"Only confirmed bookings can be rescheduled (status: '{current}')"
        )
