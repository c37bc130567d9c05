from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger

from playlink.cache import invalidate_slots_cache
from playlink.cancellation import cancel_booking, reschedule_booking
from playlink.checkout import confirm_checkout, start_checkout
from playlink.crud import booking_crud
from playlink.deps import (
    CurrentUser,
    NotificationsClient,
    PaymentsClient,
    UsersClient,
    can_cancel_booking,
    can_read_booking,
    can_write_booking,
    get_notifications_client,
    get_payments_client,
    get_users_client,
)
from playlink.errors import BookingError
from playlink.schemas import (
    BookingDetail,
    BookingFilters,
    BookingResponse,
    CancellationResponse,
    CheckoutRequest,
    CheckoutResponse,
    ConfirmCheckoutRequest,
    ParticipantResponse,
    RescheduleRequest,
    SharePaymentRequest,
    SharePaymentResponse,
)
from playlink.splits import accept_invite, pay_split_share
from playlink.timeslots import local_day

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.get("/", response_model=list[BookingResponse])
async def list_bookings(
    filters: BookingFilters = Depends(),
    current_user: CurrentUser = Depends(can_read_booking),
) -> list[BookingResponse]:
    return await booking_crud.list_user_bookings(current_user.id, filters=filters)


@router.post(
    "/checkout", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED
)
async def checkout(
    payload: CheckoutRequest,
    current_user: CurrentUser = Depends(can_write_booking),
    users_client: UsersClient = Depends(get_users_client),
    payments_client: PaymentsClient = Depends(get_payments_client),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> CheckoutResponse:
    """
    Books with wallet points when they cover the total, otherwise returns a
    checkout URL for the remainder. The booking only exists after
    `/checkout/confirm` in the second case.
    """
    result = await start_checkout(
        payload, current_user, users_client, payments_client, notifications_client
    )
    if result.booking_id is not None:
        await invalidate_slots_cache(payload.venue_id, payload.date)
    return CheckoutResponse(**asdict(result))


@router.post("/checkout/confirm", response_model=BookingResponse)
async def confirm(
    payload: ConfirmCheckoutRequest,
    _: CurrentUser = Depends(can_write_booking),
    payments_client: PaymentsClient = Depends(get_payments_client),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> BookingResponse:
    async def _refund(session_id: str, exc: BookingError) -> None:
        # Paid but not applicable: hand the money back through the provider.
        if not await payments_client.refund_session(session_id):
            logger.error(
                "Refund of unresolved session {} failed ({}), needs manual review",
                session_id,
                exc.code,
            )

    booking = await confirm_checkout(
        payload.session_id, payments_client, notifications_client, on_unresolved=_refund
    )
    await invalidate_slots_cache(booking.venue_id, local_day(booking.start_at))
    return BookingResponse.model_validate(booking, from_attributes=True)


@router.post("/invites/{token}/accept", response_model=ParticipantResponse)
async def accept(
    token: str,
    current_user: CurrentUser = Depends(can_read_booking),
) -> ParticipantResponse:
    participant = await accept_invite(token, current_user.id)
    return ParticipantResponse.model_validate(participant, from_attributes=True)


@router.get("/{booking_id}", response_model=BookingDetail)
async def get_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_read_booking),
) -> BookingDetail:
    booking = await booking_crud.get_booking(booking_id, user_id=current_user.id)
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )
    return booking


@router.post("/{booking_id}/share/pay", response_model=SharePaymentResponse)
async def pay_share(
    booking_id: UUID,
    payload: SharePaymentRequest,
    current_user: CurrentUser = Depends(can_write_booking),
    payments_client: PaymentsClient = Depends(get_payments_client),
) -> SharePaymentResponse:
    result = await pay_split_share(
        booking_id, current_user, payload.use_wallet_points, payments_client
    )
    return SharePaymentResponse.model_validate(result, from_attributes=True)


@router.post("/{booking_id}/cancel", response_model=CancellationResponse)
async def cancel(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_cancel_booking),
) -> CancellationResponse:
    result = await cancel_booking(booking_id, current_user.id)
    await invalidate_slots_cache(result.venue_id, local_day(result.start_at))
    return CancellationResponse.model_validate(result, from_attributes=True)


@router.post("/{booking_id}/reschedule", response_model=BookingResponse)
async def reschedule(
    booking_id: UUID,
    payload: RescheduleRequest,
    current_user: CurrentUser = Depends(can_write_booking),
) -> BookingResponse:
    booking = await reschedule_booking(
        booking_id, current_user.id, payload.date, payload.start, payload.duration_hours
    )
    # Old and new days may differ; drop the venue's cached days wholesale.
    await invalidate_slots_cache(booking.venue_id)
    return BookingResponse.model_validate(booking, from_attributes=True)
