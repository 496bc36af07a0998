"""
Payment Processor Webhooks
"""
from fastapi import APIRouter, Depends, Header, Request
from typing import Optional
import logging

from travelagent.exceptions import InvalidStateError, NotFoundError
from travelagent.routers.deps import get_booking_service, get_payment_gateway
from travelagent.services.booking_service import BookingService
from travelagent.services.payments import PaymentGateway

router = APIRouter()
logger = logging.getLogger(__name__)


def _field(obj, key):
    """Item lookup that tolerates missing keys on dicts and Stripe objects"""
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    service: BookingService = Depends(get_booking_service),
):
    """
    Payment outcome signal. The signature is verified before anything is
    read from the payload; unknown events are acknowledged and ignored.
    """
    event = gateway.construct_event(await request.body(), stripe_signature)
    event_type = event["type"]
    intent = _field(_field(event, "data"), "object")
    booking_id = _field(_field(intent, "metadata"), "booking_id")

    if event_type not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
        logger.debug(f"Ignoring webhook event {event_type}")
        return {"received": True}

    if not booking_id:
        logger.warning(f"Webhook {event_type} for intent {_field(intent, 'id')} has no booking_id metadata")
        return {"received": True}

    try:
        if event_type == "payment_intent.succeeded":
            await service.confirm_booking(booking_id)
        else:
            await service.fail_payment(booking_id)
    except (NotFoundError, InvalidStateError) as e:
        # Acknowledge so the processor stops redelivering an event we can never apply
        logger.warning(f"Webhook {event_type} for booking {booking_id} not applied: {e}")

    return {"received": True}
