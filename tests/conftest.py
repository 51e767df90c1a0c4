"""
tests/conftest.py
Shared fixtures: a fresh SQLite database per test, users for every role,
an API client wired to the test database and a fake Redis, and a capture of
everything handed to the Celery activity sink.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

import uuid
from datetime import time, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import fakeredis
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config.database import Base, get_db
from config.redis_client import get_redis
from services.booking.validation import local_today
from shared.models.models import (
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    EventCategory,
    ProviderAvailability,
    ProviderProfile,
    RequesterProfile,
    User,
    UserRole,
)
from shared.utils.activity import activity_breaker
from shared.utils.actors import Actor
from shared.utils.security import create_access_token


# ── Helpers ────────────────────────────────────────────────────────────────────

def auth_headers(user: User) -> dict:
    token, _ = create_access_token(user.id, UserRole(user.role).value, user.email)
    return {"Authorization": f"Bearer {token}"}


def actor_for(user: User) -> Actor:
    return Actor.from_user(user)


def future_date(days: int = 30):
    return local_today() + timedelta(days=days)


def booking_details(**overrides) -> dict:
    details = {
        "title": "Friday Night Live",
        "event_date": future_date(),
        "start_time": time(18, 0),
        "end_time": time(20, 0),
        "venue_name": "The Blue Note",
        "venue_address": "Thamel, Kathmandu",
        "category": EventCategory.CONCERT.value,
        "audience_size": 120,
        "notes": "Two sets with a short break",
        "equipment_provided": True,
    }
    details.update(overrides)
    return details


async def persist(session_factory, *objects):
    """Insert rows through a throwaway session so fixtures stay detached and loaded."""
    async with session_factory() as session:
        session.add_all(objects)
        await session.commit()
    return objects


async def insert_booking(session_factory, requester: User, provider: User, **fields) -> Booking:
    """A booking row written directly, bypassing the service (any status)."""
    values = {
        "booking_number": f"BK-TEST-{uuid.uuid4().hex[:6].upper()}",
        "requester_id": requester.id,
        "provider_id": provider.id,
        "title": "Seeded gig",
        "event_date": future_date(),
        "start_time": time(18, 0),
        "end_time": time(20, 0),
        "venue_name": "Seeded Venue",
        "category": EventCategory.PARTY,
        "status": BookingStatus.PENDING,
        "payment_status": BookingPaymentStatus.UNPAID,
        "amount_paid": Decimal("0.00"),
    }
    values.update(fields)
    booking = Booking(id=uuid.uuid4(), **values)
    await persist(session_factory, booking)
    return booking


# ── Database ───────────────────────────────────────────────────────────────────

@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def fake_redis():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


# ── Activity sink ──────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def activity_calls(monkeypatch):
    """Every publish_activity call lands here instead of on a broker."""
    from tasks.activity_tasks import record_activity

    captured = MagicMock()
    monkeypatch.setattr(record_activity, "apply_async", captured)
    activity_breaker.close()
    yield captured
    activity_breaker.close()


# ── Users ──────────────────────────────────────────────────────────────────────

@pytest.fixture
async def requester(session_factory) -> User:
    user = User(id=uuid.uuid4(), email="client@example.com", name="Asha Client", role=UserRole.REQUESTER)
    await persist(session_factory, user, RequesterProfile(user_id=user.id, city="Kathmandu"))
    return user


@pytest.fixture
async def other_requester(session_factory) -> User:
    user = User(id=uuid.uuid4(), email="other.client@example.com", name="Bikash Client", role=UserRole.REQUESTER)
    await persist(session_factory, user, RequesterProfile(user_id=user.id, city="Pokhara"))
    return user


@pytest.fixture
async def provider(session_factory) -> User:
    user = User(id=uuid.uuid4(), email="band@example.com", name="Rohan Singer", role=UserRole.PROVIDER)
    profile = ProviderProfile(
        user_id=user.id,
        stage_name="The Test Band",
        genres=["rock", "folk"],
        base_rate=Decimal("15000.00"),
        availability_status=ProviderAvailability.AVAILABLE,
    )
    await persist(session_factory, user, profile)
    return user


@pytest.fixture
async def other_provider(session_factory) -> User:
    user = User(id=uuid.uuid4(), email="dj@example.com", name="Sita DJ", role=UserRole.PROVIDER)
    profile = ProviderProfile(user_id=user.id, stage_name="DJ Sita", genres=["electronic"])
    await persist(session_factory, user, profile)
    return user


@pytest.fixture
async def admin(session_factory) -> User:
    user = User(id=uuid.uuid4(), email="admin@example.com", name="Platform Admin", role=UserRole.ADMIN)
    await persist(session_factory, user)
    return user


# ── API client ─────────────────────────────────────────────────────────────────

@pytest.fixture
async def client(session_factory, fake_redis):
    from main import app

    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_redis] = lambda: fake_redis

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
