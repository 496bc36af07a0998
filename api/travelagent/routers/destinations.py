"""
Destination Discovery & Search Endpoints
"""
from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from decimal import Decimal
import logging

from travelagent.routers.deps import get_destination_service
from travelagent.schemas.destination import (
    DestinationDetail,
    DestinationSearchResult,
    DestinationSummary,
)
from travelagent.services.destination_service import DestinationService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("", response_model=DestinationSearchResult)
async def search_destinations(
    query: Optional[str] = Query(None, description="Matches name, description, country or city"),
    country: Optional[str] = Query(None),
    city: Optional[str] = Query(None),
    type: Optional[List[str]] = Query(None, description="Destination types, e.g. beach, adventure"),
    price_min: Optional[Decimal] = Query(None, alias="priceMin"),
    price_max: Optional[Decimal] = Query(None, alias="priceMax"),
    duration: Optional[int] = Query(None, description="Minimum duration in days"),
    rating: Optional[float] = Query(None, description="Minimum rating"),
    page: int = Query(1),
    limit: int = Query(12),
    sort_by: str = Query("popularity", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    service: DestinationService = Depends(get_destination_service),
):
    """
    Search active destinations with filters, sorting and pagination
    """
    params = {
        "query": query,
        "country": country,
        "city": city,
        "type": type,
        "price_min": price_min,
        "price_max": price_max,
        "duration": duration,
        "rating": rating,
        "page": page,
        "limit": limit,
        "sort_by": sort_by,
        "sort_order": sort_order,
    }
    return await service.search_destinations({k: v for k, v in params.items() if v is not None})


@router.get("/featured", response_model=List[DestinationSummary])
async def get_featured_destinations(
    service: DestinationService = Depends(get_destination_service),
):
    """Featured destinations, most booked first"""
    return await service.get_featured_destinations()


@router.get("/popular", response_model=List[DestinationSummary])
async def get_popular_destinations(
    limit: int = Query(6, ge=1, le=100),
    service: DestinationService = Depends(get_destination_service),
):
    return await service.get_popular_destinations(limit)


@router.get("/country/{country}", response_model=List[DestinationSummary])
async def get_destinations_by_country(
    country: str,
    service: DestinationService = Depends(get_destination_service),
):
    return await service.get_destinations_by_country(country)


@router.get("/{id_or_slug}", response_model=DestinationDetail)
async def get_destination(
    id_or_slug: str,
    service: DestinationService = Depends(get_destination_service),
):
    """
    Destination page: packages and latest reviews
    """
    return await service.get_destination(id_or_slug)
