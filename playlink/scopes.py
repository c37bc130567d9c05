from enum import StrEnum


class BookingScope(StrEnum):
    # Player scopes
    READ = "bookings:read"  # view own bookings and availability
    WRITE = "bookings:write"  # check out, pay a split share, reschedule
    CANCEL = "bookings:cancel"  # cancel own booking

    # Venue owner scopes
    MANAGE = "bookings:manage"  # block slots, cancel venue bookings, edit pricing rules

    # Wallet
    WALLET_READ = "wallet:read"


BOOKING_SCOPE_DESCRIPTIONS: dict[str, str] = {
    BookingScope.READ: "View your own bookings and venue availability.",
    BookingScope.WRITE: "Book a court, pay your split share or reschedule.",
    BookingScope.CANCEL: "Cancel your own booking.",
    BookingScope.MANAGE: "Block slots, cancel bookings and set pricing on your venues.",
    BookingScope.WALLET_READ: "View your wallet balance and transactions.",
}
