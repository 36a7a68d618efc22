import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

from decimal import Decimal
from types import SimpleNamespace

import pytest
from fakeredis import FakeAsyncRedis

import app.models  # noqa: F401
from app.core.cache import RedisCache
from app.core.database import Base, build_engine, build_sessionmaker
from app.models.trips.trip_member import TripMember, TripRole
from app.models.trips.trip_model import Trip
from app.models.user.user import User
from app.schemas.choices.choice import ChoiceCreate, ChoiceItemCreate
from app.services.choices.choice_service import create_choice, create_choice_item


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'choices.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def cache():
    client = FakeAsyncRedis(decode_responses=True)
    yield RedisCache(client)
    await client.flushall()
    await client.aclose()


class HookedCache(RedisCache):
    """RedisCache that awaits a one-shot callback before its next ``set`` or ``incr``."""

    def __init__(self, redis_client):
        super().__init__(redis_client)
        self.before = {}

    async def _fire(self, operation):
        callback = self.before.pop(operation, None)
        if callback is not None:
            await callback()

    async def set(self, key, value, expire=3600, version=None):
        await self._fire("set")
        await super().set(key, value, expire=expire, version=version)

    async def incr(self, key, expire=None):
        await self._fire("incr")
        return await super().incr(key, expire=expire)


@pytest.fixture
def hooked_cache(cache):
    return HookedCache(cache.redis)


@pytest.fixture
async def trip(session_factory):
    """A trip owned by olivia with alice, bob and carol as members.

    mallory exists but is not on the trip. Only ids are returned so tests
    never touch objects from a closed session.
    """
    async with session_factory() as s:
        users = {
            name: User(email=f"{name}@example.com", username=name)
            for name in ("olivia", "alice", "bob", "carol", "mallory")
        }
        s.add_all(users.values())
        await s.flush()

        trip = Trip(title="Lisbon long weekend", creator_id=users["olivia"].id, base_currency="EUR")
        s.add(trip)
        await s.flush()

        s.add(TripMember(trip_id=trip.id, user_id=users["olivia"].id, role=TripRole.OWNER))
        for name in ("alice", "bob", "carol"):
            s.add(TripMember(trip_id=trip.id, user_id=users[name].id, role=TripRole.MEMBER))
        await s.commit()

        return SimpleNamespace(id=trip.id, **{name: user.id for name, user in users.items()})


@pytest.fixture
def make_choice(session_factory, trip):
    async def _make(name="Friday dinner", **fields) -> int:
        async with session_factory() as s:
            choice = await create_choice(s, trip.id, ChoiceCreate(name=name, **fields), trip.olivia)
            return choice.id
    return _make


@pytest.fixture
def make_item(session_factory, trip):
    async def _make(choice_id, name, price=None, **fields) -> int:
        async with session_factory() as s:
            item = await create_choice_item(
                s,
                choice_id,
                ChoiceItemCreate(name=name, price=Decimal(price) if price is not None else None, **fields),
                trip.olivia,
            )
            return item.id
    return _make


@pytest.fixture
async def menu(make_choice, make_item):
    """An open choice with a capped pizza, a cheap cola and an unpriced water."""
    choice_id = await make_choice()
    pizza = await make_item(choice_id, "Pizza", "12.50", max_per_user=3, max_total=5)
    cola = await make_item(choice_id, "Cola", "2.00", sort_index=1)
    water = await make_item(choice_id, "Tap water", sort_index=2)
    return SimpleNamespace(id=choice_id, pizza=pizza, cola=cola, water=water)
