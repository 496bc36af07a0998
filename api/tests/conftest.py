"""
Shared fixtures: a throwaway SQLite database, seeded catalogue, and
in-memory fakes for Redis, the payment gateway and the email provider
"""
from datetime import date, timedelta
from decimal import Decimal
from fnmatch import fnmatchcase
import uuid

import pytest
import pytest_asyncio

import travelagent.models  # noqa: F401 - register mappers
from travelagent.models import Destination, DestinationType, Package, Review, User
from travelagent.services.booking_service import BookingService
from travelagent.services.destination_service import DestinationService
from travelagent.services.notifications import EmailSender, NotificationDispatcher
from travelagent.services.payments import MockPaymentGateway
from travelagent.utils.background import BackgroundTasks
from travelagent.utils.database import Base, create_engine, create_session_factory
from travelagent.utils.redis import CacheService


class FakeRedis:
    """Dict-backed stand-in for the redis.asyncio client (TTL is recorded, not enforced)"""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    async def ping(self):
        return True

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def exists(self, key):
        return int(key in self.store)

    async def keys(self, pattern):
        return [k for k in self.store if fnmatchcase(k, pattern)]

    async def incr(self, key):
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    async def expire(self, key, ttl):
        self.ttls[key] = ttl
        return True


class BrokenRedis:
    """Every call fails, like a Redis server that went away"""

    def __getattr__(self, name):
        async def fail(*args, **kwargs):
            raise ConnectionError("redis unavailable")
        return fail


class FailingEmailSender(EmailSender):
    def __init__(self):
        super().__init__(api_key="")
        self.attempts = 0

    async def send(self, message):
        self.attempts += 1
        raise ConnectionError("smtp relay down")


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'travelagent.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return CacheService(fake_redis)


@pytest.fixture
def gateway():
    return MockPaymentGateway()


@pytest.fixture
def email_sender():
    return EmailSender(api_key="")


@pytest.fixture
def notifier(session_factory, email_sender):
    return NotificationDispatcher(session_factory, email_sender)


@pytest_asyncio.fixture
async def background():
    tasks = BackgroundTasks()
    yield tasks
    await tasks.drain()


@pytest.fixture
def booking_service(session_factory, gateway, notifier, background):
    return BookingService(session_factory, gateway, notifier, background)


@pytest.fixture
def destination_service(session_factory, cache, background):
    return DestinationService(session_factory, cache, background)


def make_destination(name, country, city, price, **kwargs):
    types = kwargs.pop("types", [])
    packages = kwargs.pop("packages", [])
    destination = Destination(
        slug=kwargs.pop("slug", name.lower().replace(" ", "-")),
        name=name,
        country=country,
        city=city,
        description=kwargs.pop("description", f"Discover {name}"),
        short_description=kwargs.pop("short_description", f"{name} in short"),
        highlights=kwargs.pop("highlights", []),
        price_from=Decimal(price),
        duration=kwargs.pop("duration", 5),
        rating=kwargs.pop("rating", 4.0),
        booking_count=kwargs.pop("booking_count", 0),
        is_active=kwargs.pop("is_active", True),
        is_featured=kwargs.pop("is_featured", False),
        types=[DestinationType(name=t) for t in types],
        packages=[Package(name=n, price=Decimal(p), duration=d) for n, p, d in packages],
        **kwargs,
    )
    return destination


@pytest_asyncio.fixture
async def user(session_factory):
    async with session_factory() as session:
        user = User(email="traveler@example.com", full_name="Ada Traveler")
        session.add(user)
        await session.commit()
    return user


@pytest_asyncio.fixture
async def other_user(session_factory):
    async with session_factory() as session:
        user = User(email="someone@example.com", full_name="Someone Else")
        session.add(user)
        await session.commit()
    return user


@pytest_asyncio.fixture
async def catalogue(session_factory, user):
    """
    Six active destinations, one inactive. Returns them by slug.
    """
    destinations = [
        make_destination(
            "Bali Escape", "Indonesia", "Ubud", "1000.00",
            types=["beach", "culture"], duration=7, rating=4.8, booking_count=40, is_featured=True,
            packages=[("Deluxe Villa", "1500.00", 7), ("Standard", "1100.00", 7)],
        ),
        make_destination(
            "Swiss Alps Trek", "Switzerland", "Zermatt", "2500.00",
            types=["adventure", "mountain"], duration=10, rating=4.9, booking_count=25, is_featured=True,
        ),
        make_destination(
            "Paris Weekend", "France", "Paris", "800.00",
            types=["city", "culture"], duration=3, rating=4.5, booking_count=60, is_featured=True,
        ),
        make_destination(
            "Nice Riviera", "France", "Nice", "1200.00",
            types=["beach"], duration=5, rating=4.2, booking_count=10,
        ),
        make_destination(
            "Kyoto Temples", "Japan", "Kyoto", "1800.00",
            types=["culture"], duration=8, rating=4.7, booking_count=30, is_featured=True,
        ),
        make_destination(
            "Budget Lisbon", "Portugal", "Lisbon", "450.00",
            types=["city"], duration=4, rating=3.9, booking_count=5,
        ),
        make_destination(
            "Closed Resort", "Maldives", "Male", "3000.00",
            types=["beach"], duration=7, rating=5.0, booking_count=100, is_featured=True, is_active=False,
        ),
    ]

    async with session_factory() as session:
        session.add_all(destinations)
        await session.flush()
        session.add_all([
            Review(
                destination_id=destinations[0].id, user_id=user.id, rating=5,
                title="Wonderful", comment="Rice terraces at sunrise", is_published=True,
            ),
            Review(
                destination_id=destinations[0].id, user_id=user.id, rating=1,
                title="Hidden", comment="Not yet moderated", is_published=False,
            ),
        ])
        await session.commit()

    return {d.slug: d for d in destinations}


@pytest.fixture
def booking_request(catalogue):
    start = date.today() + timedelta(days=30)
    return {
        "destinationId": str(catalogue["bali-escape"].id),
        "startDate": start.isoformat(),
        "endDate": (start + timedelta(days=7)).isoformat(),
        "travelers": 2,
        "contactName": "Ada Traveler",
        "contactEmail": "traveler@example.com",
        "contactPhone": "+15555550123",
    }


@pytest.fixture
def random_id():
    return str(uuid.uuid4())
