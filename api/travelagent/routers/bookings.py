"""
Booking Endpoints
"""
from fastapi import APIRouter, Body, Depends, status
from typing import Any, Dict, List
from uuid import UUID
import logging

from travelagent.routers.deps import get_booking_service, get_current_user_id
from travelagent.schemas.booking import (
    BookingCheckoutResponse,
    BookingResponse,
    CancellationResponse,
)
from travelagent.services.booking_service import BookingService
from travelagent.utils.rate_limit import rate_limited

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "",
    response_model=BookingCheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limited("bookings:create"))],
)
async def create_booking(
    # validated by the service so that errors share the service's 422 format
    booking_data: Dict[str, Any] = Body(...),
    user_id: UUID = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    """
    Create a PENDING booking and return the client secret for payment
    """
    checkout = await service.create_booking(user_id, booking_data)
    return BookingCheckoutResponse(
        booking=BookingResponse.model_validate(checkout.booking),
        client_secret=checkout.client_secret,
    )


@router.get("", response_model=List[BookingResponse])
async def list_my_bookings(
    user_id: UUID = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    """Current user's bookings, newest first"""
    return await service.get_user_bookings(user_id)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    user_id: UUID = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    return await service.get_booking(booking_id, user_id)


@router.post("/{booking_id}/pay", response_model=BookingCheckoutResponse)
async def resume_payment(
    booking_id: str,
    user_id: UUID = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    """
    Client secret for a PENDING booking (retry after a failed payment or
    an interrupted checkout)
    """
    checkout = await service.resume_payment(booking_id, user_id)
    return BookingCheckoutResponse(
        booking=BookingResponse.model_validate(checkout.booking),
        client_secret=checkout.client_secret,
    )


@router.post("/{booking_id}/cancel", response_model=CancellationResponse)
async def cancel_booking(
    booking_id: str,
    user_id: UUID = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    """
    Cancel a booking. Paid bookings are refunded; a failed refund is
    reported in refund_status and retried in the background.
    """
    result = await service.cancel_booking(booking_id, user_id)
    return CancellationResponse(
        booking=BookingResponse.model_validate(result.booking),
        refund_status=result.refund_status,
        refund_error=result.refund_error,
    )
