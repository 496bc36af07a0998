"""
Shared router dependencies

Authentication happens upstream: the gateway forwards the authenticated user
id in X-User-Id and the user's role in X-User-Role.
"""
from fastapi import Depends, Header, HTTPException, Request, status
from uuid import UUID

from travelagent.services.booking_service import BookingService
from travelagent.services.destination_service import DestinationService
from travelagent.services.payments import PaymentGateway


async def get_current_user_id(x_user_id: str = Header(None)) -> UUID:
    """Authenticated user id forwarded by the gateway"""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Id header",
        )


async def require_admin(
    user_id: UUID = Depends(get_current_user_id),
    x_user_role: str = Header(None),
) -> UUID:
    if (x_user_role or "").lower() != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user_id


def get_booking_service(request: Request) -> BookingService:
    return request.app.state.booking_service


def get_destination_service(request: Request) -> DestinationService:
    return request.app.state.destination_service


def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway
