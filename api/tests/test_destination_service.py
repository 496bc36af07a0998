"""
Tests for destination search, listings, detail and admin writes
"""
from decimal import Decimal

import pytest
from sqlalchemy import select

from travelagent.exceptions import NotFoundError, ValidationError
from travelagent.models import Booking, Destination, DestinationAnalytics
from travelagent.services.destination_service import (
    FEATURED_CACHE_KEY,
    DestinationService,
    slugify,
)
from travelagent.utils.redis import CacheService

from conftest import BrokenRedis


# ----------------------------------------------------------------------
# search_destinations
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_search_defaults_to_active_by_popularity(destination_service, catalogue):
    result = await destination_service.search_destinations()

    assert result.total == 6
    assert [d.slug for d in result.destinations] == [
        "paris-weekend", "bali-escape", "kyoto-temples", "swiss-alps-trek", "nice-riviera", "budget-lisbon",
    ]
    assert result.page == 1
    assert result.total_pages == 1
    assert result.has_more is False


@pytest.mark.asyncio
async def test_search_price_range_sorted_and_paginated(destination_service, catalogue):
    params = {"priceMin": 500, "priceMax": 2000, "sortBy": "price", "sortOrder": "asc", "limit": 2}

    first = await destination_service.search_destinations(params)
    second = await destination_service.search_destinations({**params, "page": 2})

    assert first.total == 4
    assert first.total_pages == 2
    assert first.has_more is True
    assert [d.slug for d in first.destinations] == ["paris-weekend", "bali-escape"]
    assert [d.slug for d in second.destinations] == ["nice-riviera", "kyoto-temples"]
    assert second.has_more is False

    prices = [d.price_from for d in first.destinations + second.destinations]
    assert prices == sorted(prices)
    assert all(Decimal("500") <= p <= Decimal("2000") for p in prices)


@pytest.mark.asyncio
async def test_search_text_query_is_case_insensitive(destination_service, catalogue):
    by_country = await destination_service.search_destinations({"query": "fRaNcE"})
    by_description = await destination_service.search_destinations({"query": "discover kyoto"})

    assert {d.slug for d in by_country.destinations} == {"paris-weekend", "nice-riviera"}
    assert [d.slug for d in by_description.destinations] == ["kyoto-temples"]


@pytest.mark.asyncio
async def test_search_query_wildcards_are_literal(destination_service, catalogue):
    result = await destination_service.search_destinations({"query": "%"})
    assert result.total == 0


@pytest.mark.asyncio
async def test_search_filters_combine_with_and(destination_service, catalogue):
    result = await destination_service.search_destinations({
        "type": ["beach", "adventure"],
        "rating": 4.5,
        "duration": 7,
    })
    assert {d.slug for d in result.destinations} == {"bali-escape", "swiss-alps-trek"}

    result = await destination_service.search_destinations({"country": "france", "city": "NICE"})
    assert [d.slug for d in result.destinations] == ["nice-riviera"]


@pytest.mark.asyncio
async def test_search_empty_result(destination_service, catalogue):
    result = await destination_service.search_destinations({"country": "Atlantis"})
    assert result.destinations == []
    assert result.total == 0
    assert result.total_pages == 0
    assert result.has_more is False


@pytest.mark.asyncio
@pytest.mark.parametrize("params", [
    {"priceMin": 2000, "priceMax": 500},
    {"priceMin": -1},
    {"rating": 6},
    {"page": 0},
    {"limit": 101},
    {"sortBy": "distance"},
    {"sortOrder": "sideways"},
    {"unknown": "field"},
])
async def test_search_rejects_invalid_params(destination_service, params):
    with pytest.raises(ValidationError):
        await destination_service.search_destinations(params)


@pytest.mark.asyncio
async def test_search_results_are_cached(destination_service, fake_redis, catalogue):
    first = await destination_service.search_destinations({"country": "Japan"})
    [key] = [k for k in fake_redis.store if k.startswith("destinations:search:")]

    second = await destination_service.search_destinations({"country": "Japan"})

    assert second == first
    assert fake_redis.ttls[key] == destination_service.search_ttl


# ----------------------------------------------------------------------
# featured / popular / by country
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_featured_cold_and_warm_are_identical(destination_service, fake_redis, catalogue):
    cold = await destination_service.get_featured_destinations()
    assert FEATURED_CACHE_KEY in fake_redis.store
    assert fake_redis.ttls[FEATURED_CACHE_KEY] == 3600

    warm = await destination_service.get_featured_destinations()

    assert warm == cold
    assert [d.slug for d in cold] == ["paris-weekend", "bali-escape", "kyoto-temples", "swiss-alps-trek"]
    assert cold[1].starting_package.name == "Standard"
    assert cold[1].types == ["beach", "culture"]


@pytest.mark.asyncio
async def test_featured_replaces_malformed_cache_entry(destination_service, fake_redis, catalogue):
    fake_redis.store[FEATURED_CACHE_KEY] = '[{"slug": "half-written"}]'

    featured = await destination_service.get_featured_destinations()

    assert [d.slug for d in featured] == ["paris-weekend", "bali-escape", "kyoto-temples", "swiss-alps-trek"]
    assert "half-written" not in fake_redis.store[FEATURED_CACHE_KEY]


@pytest.mark.asyncio
async def test_featured_without_cache_gives_same_result(session_factory, destination_service, catalogue):
    cached = await destination_service.get_featured_destinations()

    no_cache = DestinationService(session_factory, CacheService())
    broken_cache = DestinationService(session_factory, CacheService(BrokenRedis()))

    assert await no_cache.get_featured_destinations() == cached
    assert await broken_cache.get_featured_destinations() == cached


@pytest.mark.asyncio
async def test_featured_is_capped_at_six(session_factory, destination_service, catalogue):
    from conftest import make_destination

    async with session_factory() as session:
        session.add_all([
            make_destination(f"Extra {i}", "Chile", "Santiago", "100.00", is_featured=True)
            for i in range(5)
        ])
        await session.commit()

    assert len(await destination_service.get_featured_destinations()) == 6


@pytest.mark.asyncio
async def test_popular_destinations(destination_service, catalogue):
    popular = await destination_service.get_popular_destinations(3)
    assert [d.slug for d in popular] == ["paris-weekend", "bali-escape", "kyoto-temples"]

    with pytest.raises(ValidationError):
        await destination_service.get_popular_destinations(0)


@pytest.mark.asyncio
async def test_destinations_by_country_sorted_by_rating(destination_service, catalogue):
    french = await destination_service.get_destinations_by_country("FRANCE")
    assert [d.slug for d in french] == ["paris-weekend", "nice-riviera"]

    assert await destination_service.get_destinations_by_country("Maldives") == []


# ----------------------------------------------------------------------
# get_destination & view tracking
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_destination_by_slug_and_id(destination_service, catalogue):
    bali = catalogue["bali-escape"]

    by_slug = await destination_service.get_destination("bali-escape")
    by_id = await destination_service.get_destination(str(bali.id))

    assert by_slug.id == by_id.id == bali.id
    assert [p.name for p in by_slug.packages] == ["Standard", "Deluxe Villa"]
    assert [r.title for r in by_slug.reviews] == ["Wonderful"]
    assert by_slug.reviews[0].user.full_name == "Ada Traveler"


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["closed-resort", "no-such-place", ""])
async def test_get_destination_not_found(destination_service, catalogue, key):
    with pytest.raises(NotFoundError):
        await destination_service.get_destination(key)


@pytest.mark.asyncio
async def test_views_are_tracked_per_day(destination_service, session_factory, background, catalogue):
    await destination_service.get_destination("kyoto-temples")
    await background.drain()

    async with session_factory() as session:
        row = (await session.execute(select(DestinationAnalytics))).scalar_one()
    assert row.views == 1

    await destination_service.get_destination("kyoto-temples")
    await destination_service.get_destination("kyoto-temples")
    await background.drain()

    async with session_factory() as session:
        row = (await session.execute(select(DestinationAnalytics))).scalar_one()
    assert row.destination_id == catalogue["kyoto-temples"].id
    assert row.views == 3


# ----------------------------------------------------------------------
# admin writes
# ----------------------------------------------------------------------

def test_slugify():
    assert slugify("  Côte d'Azur Getaway! ") == "c-te-d-azur-getaway"
    assert slugify("Bali Escape") == "bali-escape"


@pytest.mark.asyncio
async def test_create_destination_invalidates_cache(destination_service, fake_redis, catalogue):
    await destination_service.get_featured_destinations()
    await destination_service.search_destinations({"country": "Peru"})
    fake_redis.store["rate-limit:unrelated"] = "1"

    created = await destination_service.create_destination({
        "name": "Machu Picchu Trail",
        "country": "Peru",
        "city": "Cusco",
        "priceFrom": "1650.00",
        "duration": 6,
        "types": ["Adventure", "culture"],
        "isFeatured": True,
        "packages": [{"name": "Guided Trek", "price": "1900.00", "duration": 6}],
    })

    assert created.slug == "machu-picchu-trail"
    assert created.types == ["adventure", "culture"]
    assert [p.name for p in created.packages] == ["Guided Trek"]
    assert list(fake_redis.store) == ["rate-limit:unrelated"]

    found = await destination_service.search_destinations({"country": "Peru"})
    assert [d.slug for d in found.destinations] == ["machu-picchu-trail"]


@pytest.mark.asyncio
async def test_create_destination_with_taken_slug(destination_service, catalogue):
    with pytest.raises(ValidationError):
        await destination_service.create_destination({
            "name": "Another Bali", "slug": "bali-escape", "country": "Indonesia",
            "city": "Ubud", "priceFrom": 10,
        })


@pytest.mark.asyncio
async def test_update_destination_keeps_slug(destination_service, catalogue):
    bali = catalogue["bali-escape"]

    updated = await destination_service.update_destination(bali.id, {
        "name": "Bali Retreat",
        "priceFrom": "950.00",
        "types": ["beach", "wellness"],
    })

    assert updated.slug == "bali-escape"
    assert updated.name == "Bali Retreat"
    assert updated.price_from == Decimal("950.00")
    assert updated.types == ["beach", "wellness"]

    with pytest.raises(ValidationError):
        await destination_service.update_destination(bali.id, {"slug": "bali-retreat"})


@pytest.mark.asyncio
async def test_delete_destination(destination_service, booking_service, session_factory, user, catalogue, booking_request):
    assert await destination_service.delete_destination(catalogue["budget-lisbon"].id) is True

    # booked destinations are deactivated instead of removed
    await booking_service.create_booking(user.id, booking_request)
    assert await destination_service.delete_destination(catalogue["bali-escape"].id) is False

    async with session_factory() as session:
        slugs = set((await session.execute(select(Destination.slug))).scalars())
        bali = await session.get(Destination, catalogue["bali-escape"].id)
        bookings = (await session.execute(select(Booking))).scalars().all()
    assert "budget-lisbon" not in slugs
    assert bali.is_active is False
    assert len(bookings) == 1

    with pytest.raises(NotFoundError):
        await destination_service.get_destination("bali-escape")
    with pytest.raises(NotFoundError):
        await destination_service.delete_destination(catalogue["budget-lisbon"].id)
