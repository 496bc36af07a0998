"""
Destination Search Service - filtered search, cache-aside reads, view tracking
"""
from typing import Any, Dict, List, Mapping, Optional, Union
from uuid import UUID
import asyncio
import hashlib
import logging
import math
import re
import secrets

import pydantic
from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from travelagent.config import settings
from travelagent.exceptions import NotFoundError, ValidationError
from travelagent.metrics import SIDE_EFFECT_FAILURES
from travelagent.models.analytics import DestinationAnalytics
from travelagent.models.booking import Booking
from travelagent.models.destination import Destination, DestinationType, Package
from travelagent.models.review import Review
from travelagent.schemas.destination import (
    DestinationCreate,
    DestinationDetail,
    DestinationSearchParams,
    DestinationSearchResult,
    DestinationSummary,
    DestinationUpdate,
    ReviewResponse,
    SortBy,
    SortOrder,
)
from travelagent.utils.background import BackgroundTasks
from travelagent.utils.database import utcnow
from travelagent.utils.redis import CacheService

logger = logging.getLogger(__name__)

# Cache keys
FEATURED_CACHE_KEY = "destinations:featured"
SEARCH_CACHE_PREFIX = "destinations:search"
DESTINATIONS_CACHE_PATTERN = "destinations:*"

FEATURED_LIMIT = 6
REVIEWS_ON_DETAIL = 10

SORT_COLUMNS = {
    SortBy.PRICE: Destination.price_from,
    SortBy.RATING: Destination.rating,
    SortBy.NEWEST: Destination.created_at,
    SortBy.POPULARITY: Destination.booking_count,
}


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _validate(model, data):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data or {})
    except pydantic.ValidationError as e:
        raise ValidationError.from_pydantic(e)


class DestinationService:
    """
    Read side of the catalogue plus admin writes.

    The cache is an optimisation only: every read path gives the same
    answer when the cache is empty, failing, or a NoOpCache.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        cache: Optional[CacheService] = None,
        background: Optional[BackgroundTasks] = None,
        featured_ttl: int = settings.CACHE_TTL_FEATURED,
        search_ttl: int = settings.CACHE_TTL_SEARCH,
    ):
        self._sessions = session_factory
        self.cache = cache or CacheService()
        self.background = background or BackgroundTasks()
        self.featured_ttl = featured_ttl
        self.search_ttl = search_ttl

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    @staticmethod
    def validate_search_params(
        params: Union[DestinationSearchParams, Mapping[str, Any], None]
    ) -> DestinationSearchParams:
        return _validate(DestinationSearchParams, params)

    @staticmethod
    def build_filters(params: DestinationSearchParams) -> list:
        """WHERE clauses for the search; all combined with AND"""
        filters = [Destination.is_active.is_(True)]

        if params.query:
            pattern = f"%{_escape_like(params.query.strip())}%"
            filters.append(or_(
                Destination.name.ilike(pattern, escape="\\"),
                Destination.description.ilike(pattern, escape="\\"),
                Destination.country.ilike(pattern, escape="\\"),
                Destination.city.ilike(pattern, escape="\\"),
            ))
        if params.country:
            filters.append(func.lower(Destination.country) == params.country.strip().lower())
        if params.city:
            filters.append(func.lower(Destination.city) == params.city.strip().lower())
        if params.type:
            names = [t.strip().lower() for t in params.type if t.strip()]
            if names:
                filters.append(Destination.types.any(DestinationType.name.in_(names)))
        if params.price_min is not None:
            filters.append(Destination.price_from >= params.price_min)
        if params.price_max is not None:
            filters.append(Destination.price_from <= params.price_max)
        if params.duration is not None:
            filters.append(Destination.duration >= params.duration)
        if params.rating is not None:
            filters.append(Destination.rating >= params.rating)

        return filters

    @staticmethod
    def build_order(params: DestinationSearchParams) -> list:
        column = SORT_COLUMNS[params.sort_by]
        primary = column.asc() if params.sort_order == SortOrder.ASC else column.desc()
        return [primary, Destination.id.asc()]

    async def search_destinations(
        self,
        params: Union[DestinationSearchParams, Mapping[str, Any], None] = None,
    ) -> DestinationSearchResult:
        """
        Filtered, sorted, paginated search over active destinations.

        Raises ValidationError for out-of-range or unknown parameters.
        """
        params = self.validate_search_params(params)
        cache_key = f"{SEARCH_CACHE_PREFIX}:{hashlib.sha1(params.model_dump_json().encode()).hexdigest()}"

        cached = await self.cache.get(cache_key)
        if cached is not None:
            try:
                return DestinationSearchResult.model_validate(cached)
            except pydantic.ValidationError:
                logger.warning(f"Discarding malformed cache entry {cache_key}")

        filters = self.build_filters(params)

        # Page and count are independent reads on separate sessions
        destinations, total = await asyncio.gather(
            self._fetch_page(filters, self.build_order(params), params.offset, params.limit),
            self._count(filters),
        )

        total_pages = math.ceil(total / params.limit)
        result = DestinationSearchResult(
            destinations=destinations,
            total=total,
            page=params.page,
            total_pages=total_pages,
            has_more=params.page < total_pages,
        )

        await self.cache.set(cache_key, result.model_dump(mode="json"), self.search_ttl)
        return result

    async def _fetch_page(self, filters: list, order: list, offset: int, limit: int) -> List[DestinationSummary]:
        async with self._sessions() as session:
            result = await session.execute(
                select(Destination).where(*filters).order_by(*order).offset(offset).limit(limit)
            )
            return [DestinationSummary.model_validate(d) for d in result.scalars().all()]

    async def _count(self, filters: list) -> int:
        async with self._sessions() as session:
            return await session.scalar(
                select(func.count()).select_from(Destination).where(*filters)
            ) or 0

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def get_featured_destinations(self) -> List[DestinationSummary]:
        """Top featured destinations by bookings, cache-aside for one hour"""
        items = await self.cache.get_or_set(FEATURED_CACHE_KEY, self._load_featured, self.featured_ttl)
        try:
            return [DestinationSummary.model_validate(item) for item in items]
        except (pydantic.ValidationError, TypeError):
            logger.warning(f"Discarding malformed cache entry {FEATURED_CACHE_KEY}")

        items = await self._load_featured()
        await self.cache.set(FEATURED_CACHE_KEY, items, self.featured_ttl)
        return [DestinationSummary.model_validate(item) for item in items]

    async def _load_featured(self) -> List[Dict[str, Any]]:
        async with self._sessions() as session:
            result = await session.execute(
                select(Destination)
                .where(Destination.is_active.is_(True), Destination.is_featured.is_(True))
                .order_by(Destination.booking_count.desc(), Destination.id.asc())
                .limit(FEATURED_LIMIT)
            )
            return [DestinationSummary.model_validate(d).model_dump(mode="json") for d in result.scalars().all()]

    async def get_popular_destinations(self, limit: int = 6) -> List[DestinationSummary]:
        if limit < 1 or limit > 100:
            raise ValidationError("limit must be between 1 and 100")

        async with self._sessions() as session:
            result = await session.execute(
                select(Destination)
                .where(Destination.is_active.is_(True))
                .order_by(Destination.booking_count.desc(), Destination.id.asc())
                .limit(limit)
            )
            return [DestinationSummary.model_validate(d) for d in result.scalars().all()]

    async def get_destinations_by_country(self, country: str) -> List[DestinationSummary]:
        if not country or not country.strip():
            raise ValidationError("country is required")

        async with self._sessions() as session:
            result = await session.execute(
                select(Destination)
                .where(
                    Destination.is_active.is_(True),
                    func.lower(Destination.country) == country.strip().lower(),
                )
                .order_by(Destination.rating.desc(), Destination.id.asc())
            )
            return [DestinationSummary.model_validate(d) for d in result.scalars().all()]

    # ------------------------------------------------------------------
    # Detail & view tracking
    # ------------------------------------------------------------------

    async def get_destination(self, id_or_slug: Union[UUID, str]) -> DestinationDetail:
        """
        Active destination by id or slug, with its packages and latest
        published reviews. Records a page view in the background.
        """
        key = str(id_or_slug).strip()
        if not key:
            raise NotFoundError("Destination not found")

        match = Destination.slug == key
        try:
            match = or_(Destination.id == UUID(key), match)
        except ValueError:
            pass

        async with self._sessions() as session:
            destination = (await session.execute(
                select(Destination).where(match, Destination.is_active.is_(True)).limit(1)
            )).scalar_one_or_none()
            if destination is None:
                raise NotFoundError("Destination not found")

            reviews = (await session.execute(
                select(Review)
                .where(Review.destination_id == destination.id, Review.is_published.is_(True))
                .order_by(Review.created_at.desc())
                .limit(REVIEWS_ON_DETAIL)
            )).scalars().all()

            detail = DestinationDetail.model_validate(destination)
            detail = detail.model_copy(update={
                "reviews": [ReviewResponse.model_validate(r) for r in reviews],
            })

        self.background.spawn(self._track_view_quietly(destination.id), name=f"track-view-{destination.id}")
        return detail

    async def track_view(self, destination_id: UUID):
        """Increment today's view counter, creating the row on first view"""
        today = utcnow().date()
        increment = (
            update(DestinationAnalytics)
            .where(DestinationAnalytics.destination_id == destination_id, DestinationAnalytics.date == today)
            .values(views=DestinationAnalytics.views + 1)
        )

        async with self._sessions() as session:
            result = await session.execute(increment)
            if result.rowcount:
                await session.commit()
                return

            session.add(DestinationAnalytics(destination_id=destination_id, date=today, views=1))
            try:
                await session.commit()
            except IntegrityError:
                # another request created today's row first
                await session.rollback()
                await session.execute(increment)
                await session.commit()

    async def _track_view_quietly(self, destination_id: UUID):
        try:
            await self.track_view(destination_id)
        except Exception as e:
            SIDE_EFFECT_FAILURES.labels(kind="analytics").inc()
            logger.error(f"Failed to track view for destination {destination_id}: {e}")

    # ------------------------------------------------------------------
    # Admin writes
    # ------------------------------------------------------------------

    async def create_destination(self, data: Union[DestinationCreate, Mapping[str, Any]]) -> DestinationDetail:
        data = _validate(DestinationCreate, data)

        async with self._sessions() as session:
            slug = data.slug or slugify(data.name)
            taken = await session.scalar(select(Destination.id).where(Destination.slug == slug))
            if taken is not None:
                if data.slug:
                    raise ValidationError(f"Slug '{slug}' is already in use")
                slug = f"{slug}-{secrets.token_hex(2)}"

            destination = Destination(
                slug=slug,
                name=data.name,
                country=data.country,
                city=data.city,
                description=data.description,
                short_description=data.short_description,
                cover_image=data.cover_image,
                highlights=list(data.highlights),
                price_from=data.price_from,
                duration=data.duration,
                rating=data.rating,
                is_featured=data.is_featured,
                is_active=data.is_active,
                types=[DestinationType(name=name) for name in sorted({t.strip().lower() for t in data.types if t.strip()})],
                packages=[
                    Package(name=p.name, price=p.price, duration=p.duration, is_active=p.is_active)
                    for p in data.packages
                ],
            )
            session.add(destination)
            await session.commit()
            detail = DestinationDetail.model_validate(destination)

        logger.info(f"Destination created: {destination.slug}")
        await self.cache.invalidate_pattern(DESTINATIONS_CACHE_PATTERN)
        return detail

    async def update_destination(
        self,
        destination_id: Union[UUID, str],
        data: Union[DestinationUpdate, Mapping[str, Any]],
    ) -> DestinationDetail:
        data = _validate(DestinationUpdate, data)
        changes = data.model_dump(exclude_unset=True)

        async with self._sessions() as session:
            destination = await self._get_by_id(session, destination_id)

            type_names = changes.pop("types", None)
            for field, value in changes.items():
                setattr(destination, field, value)

            if type_names is not None:
                wanted = {t.strip().lower() for t in type_names if t.strip()}
                for existing in list(destination.types):
                    if existing.name not in wanted:
                        destination.types.remove(existing)
                current = {t.name for t in destination.types}
                for name in sorted(wanted - current):
                    destination.types.append(DestinationType(name=name))

            await session.commit()
            detail = DestinationDetail.model_validate(destination)

        logger.info(f"Destination updated: {destination.slug}")
        await self.cache.invalidate_pattern(DESTINATIONS_CACHE_PATTERN)
        return detail

    async def delete_destination(self, destination_id: Union[UUID, str]) -> bool:
        """
        Delete a destination. Destinations referenced by bookings are
        deactivated instead so booking history stays intact.

        Returns True when the row was removed, False when deactivated.
        """
        async with self._sessions() as session:
            destination = await self._get_by_id(session, destination_id)
            booked = await session.scalar(
                select(func.count()).select_from(Booking).where(Booking.destination_id == destination.id)
            )
            if booked:
                destination.is_active = False
                logger.info(f"Destination {destination.slug} has {booked} booking(s), deactivated instead of deleted")
            else:
                await session.delete(destination)
                logger.info(f"Destination deleted: {destination.slug}")
            await session.commit()

        await self.cache.invalidate_pattern(DESTINATIONS_CACHE_PATTERN)
        return not booked

    @staticmethod
    async def _get_by_id(session, destination_id: Union[UUID, str]) -> Destination:
        try:
            key = destination_id if isinstance(destination_id, UUID) else UUID(str(destination_id))
        except ValueError:
            raise NotFoundError("Destination not found")
        destination = await session.get(Destination, key)
        if destination is None:
            raise NotFoundError("Destination not found")
        return destination
