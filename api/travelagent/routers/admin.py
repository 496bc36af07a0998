"""
Admin Endpoints - booking overview and destination management
"""
from fastapi import APIRouter, Body, Depends, Query, Response, status
from typing import Any, Dict, List, Optional
import logging

from travelagent.routers.deps import get_booking_service, get_destination_service, require_admin
from travelagent.schemas.booking import AdminBookingResponse
from travelagent.schemas.destination import DestinationDetail
from travelagent.services.booking_service import BookingService
from travelagent.services.destination_service import DestinationService

router = APIRouter(dependencies=[Depends(require_admin)])
logger = logging.getLogger(__name__)


@router.get("/bookings", response_model=List[AdminBookingResponse])
async def list_all_bookings(
    status_filter: Optional[str] = Query(None, alias="status", description="PENDING, CONFIRMED or CANCELLED"),
    service: BookingService = Depends(get_booking_service),
):
    return await service.get_all_bookings(status_filter)


@router.post("/destinations", response_model=DestinationDetail, status_code=status.HTTP_201_CREATED)
async def create_destination(
    data: Dict[str, Any] = Body(...),
    service: DestinationService = Depends(get_destination_service),
):
    return await service.create_destination(data)


@router.patch("/destinations/{destination_id}", response_model=DestinationDetail)
async def update_destination(
    destination_id: str,
    data: Dict[str, Any] = Body(...),
    service: DestinationService = Depends(get_destination_service),
):
    """Partial update; the slug cannot be changed"""
    return await service.update_destination(destination_id, data)


@router.delete("/destinations/{destination_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_destination(
    destination_id: str,
    service: DestinationService = Depends(get_destination_service),
):
    """
    Delete a destination. Destinations with bookings are deactivated instead.
    """
    deleted = await service.delete_destination(destination_id)
    logger.info(f"Admin {'deleted' if deleted else 'deactivated'} destination {destination_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
