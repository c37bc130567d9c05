from dataclasses import dataclass, field
from functools import lru_cache
from urllib.parse import quote, unquote
from uuid import UUID

import httpx
from fastapi import Depends, Header, HTTPException, status
from loguru import logger

from playlink import settings
from playlink.scopes import BookingScope


@dataclass
class CurrentUser:
    id: UUID
    username: str
    scopes: list[str] = field(default_factory=list)
    email: str | None = None


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_scopes: str = Header(default=""),
    x_user_email: str | None = Header(default=None),
) -> CurrentUser:
    """
    Reads the headers injected by Traefik after forwardAuth validation.
    The JWT has already been verified, so we just trust these headers.
    NOTE: This only works behind Traefik. Run with that assumption.
    """
    try:
        user_id = UUID(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity from gateway",
        ) from None

    scopes = x_user_scopes.split(" ") if x_user_scopes else []

    return CurrentUser(
        id=user_id,
        username=unquote(x_username),
        scopes=scopes,
        email=unquote(x_user_email) if x_user_email else None,
    )


def require_scopes(*required: str):
    """
    Factory that returns a dependency enforcing one or more scopes.

    Usage:
        @router.get("/protected")
        async def route(user = Depends(require_scopes("bookings:read"))):
            ...
    """

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        missing = [s for s in required if s not in current_user.scopes]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scopes: {', '.join(missing)}",
            )
        return current_user

    return _dep


# ---------------------------------------------------------------------------
# Pre-built scope dependencies
# ---------------------------------------------------------------------------

can_read_booking = require_scopes(BookingScope.READ)
can_write_booking = require_scopes(BookingScope.WRITE)
can_manage_booking = require_scopes(BookingScope.MANAGE)
can_read_wallet = require_scopes(BookingScope.WALLET_READ)


async def can_cancel_booking(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """
    Passes if the user can cancel their own bookings (player) OR manage
    bookings (venue owner). Which booking they may cancel is decided by the
    refund service against the booking's creator and venue owner.
    """
    if not (
        BookingScope.CANCEL in current_user.scopes
        or BookingScope.MANAGE in current_user.scopes
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Requires '{BookingScope.CANCEL}' (players) "
                f"or '{BookingScope.MANAGE}' (venue owners)."
            ),
        )
    return current_user


def _forward_headers(user: CurrentUser) -> dict[str, str]:
    return {
        "X-User-Id": str(user.id),
        "X-Username": quote(user.username),
        "X-User-Scopes": " ".join(user.scopes),
    }


# ---------------------------------------------------------------------------
# UsersClient: thin async wrapper around users-ms internal API
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_users_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.users_ms_url,
        timeout=httpx.Timeout(5.0),
        follow_redirects=True,
    )


class UsersClient:
    """
    Thin async wrapper around the users-ms internal API.
    Used to tell registered invitees apart from guests.
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_users_http_client()

    def _headers(self, user: CurrentUser) -> dict[str, str]:
        return _forward_headers(user)

    async def find_ids_by_emails(
        self, emails: list[str], user: CurrentUser
    ) -> dict[str, UUID]:
        """Map each registered email to its user id. Raises HTTPException on upstream errors."""
        if not emails:
            return {}
        try:
            resp = await self._client.get(
                "/users/bulk",
                params=[("emails", e) for e in emails],
                headers=self._headers(user),
            )
        except httpx.RequestError:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="users-ms is unreachable",
            ) from None
        if resp.status_code >= 400:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"users-ms returned {resp.status_code}",
            )
        return {
            u["email"].lower(): UUID(u["id"]) for u in resp.json() if u.get("email")
        }


_users_client = UsersClient()


def get_users_client() -> UsersClient:
    return _users_client


# ---------------------------------------------------------------------------
# PaymentsClient: thin async wrapper around payments-ms internal API
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    redirect_url: str


@dataclass(frozen=True)
class ProviderSession:
    session_id: str
    paid: bool
    amount_paid_cents: int
    metadata: dict[str, str]


@lru_cache(maxsize=1)
def _get_payments_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.payments_ms_url,
        timeout=httpx.Timeout(10.0),
        follow_redirects=True,
    )


class PaymentsClient:
    """
    Thin async wrapper around payments-ms, which fronts the card provider.
    Session creation and lookup failures surface as 502; refund failures are
    swallowed and reported as False so callers can log and reconcile.
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_payments_http_client()

    async def create_session(
        self,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        user: CurrentUser,
    ) -> CheckoutSession:
        try:
            resp = await self._client.post(
                "/payments/sessions",
                json={
                    "amount": amount_cents,
                    "currency": currency.lower(),
                    "customer_email": user.email,
                    "metadata": metadata,
                    "success_url": (
                        f"{settings.frontend_url}/booking-summary"
                        "?session_id={CHECKOUT_SESSION_ID}"
                    ),
                    "cancel_url": f"{settings.frontend_url}/booking-summary?cancelled=true",
                },
                headers=_forward_headers(user),
            )
        except httpx.RequestError:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="payments-ms is unreachable",
            ) from None
        if resp.status_code >= 400:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"payments-ms returned {resp.status_code}",
            )
        data = resp.json()
        return CheckoutSession(session_id=data["id"], redirect_url=data["url"])

    async def get_session(self, session_id: str) -> ProviderSession | None:
        """Returns the provider session or None if 404."""
        try:
            resp = await self._client.get(f"/payments/sessions/{quote(session_id)}")
        except httpx.RequestError:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="payments-ms is unreachable",
            ) from None
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"payments-ms returned {resp.status_code}",
            )
        data = resp.json()
        return ProviderSession(
            session_id=data["id"],
            paid=data.get("payment_status") == "paid",
            amount_paid_cents=int(data.get("amount_total") or 0),
            metadata=data.get("metadata") or {},
        )

    async def refund_session(self, session_id: str) -> bool:
        """
        Request a refund for a paid session.
        Returns True on success, False on any error (silently degraded).
        """
        try:
            resp = await self._client.post(
                f"/payments/sessions/{quote(session_id)}/refund"
            )
            return resp.status_code < 400
        except httpx.RequestError:
            logger.warning("Refund request failed for session {}", session_id, exc_info=True)
            return False


_payments_client = PaymentsClient()


def get_payments_client() -> PaymentsClient:
    return _payments_client


# ---------------------------------------------------------------------------
# NotificationsClient: thin async wrapper around notifications-ms
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_notifications_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.notifications_ms_url,
        timeout=httpx.Timeout(5.0),
        follow_redirects=True,
    )


class NotificationsClient:
    """Sends guest invitations. Failures are logged, never raised."""

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_notifications_http_client()

    async def send_invite(self, email: str, token: str) -> bool:
        try:
            resp = await self._client.post(
                "/notifications/invites",
                json={
                    "email": email,
                    "token": token,
                    "accept_url": f"{settings.frontend_url}/invites/{token}",
                },
            )
            return resp.status_code < 400
        except httpx.RequestError:
            logger.warning("Failed to send invite email to {}", email, exc_info=True)
            return False


_notifications_client = NotificationsClient()


def get_notifications_client() -> NotificationsClient:
    return _notifications_client
