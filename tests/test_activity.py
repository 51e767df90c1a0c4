"""
tests/test_activity.py
Activity feed: best-effort publishing behind the breaker, and the Celery sink.
"""

import uuid

import pytest
from pybreaker import STATE_CLOSED, STATE_OPEN
from sqlalchemy import select

from config.settings import settings
from services.booking.service import BookingService
from shared.models.models import ActivityLog, BookingStatus, User
from shared.utils.activity import activity_breaker, publish_activity
from tasks.activity_tasks import DatabaseTask, record_activity, sync_database_url
from tests.conftest import actor_for, booking_details


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgresql+asyncpg://gig:pw@db:5432/gigbook", "postgresql+psycopg2://gig:pw@db:5432/gigbook"),
        ("sqlite+aiosqlite:///./local.db", "sqlite:///./local.db"),
        ("postgresql://gig@db/gigbook", "postgresql://gig@db/gigbook"),
    ],
)
def test_sync_database_url(url, expected):
    assert sync_database_url(url) == expected


def test_publish_hands_entry_to_broker(activity_calls):
    booking_id = uuid.uuid4()
    assert publish_activity("u-1", "booking_confirmed", "Confirmed", booking_id=booking_id) is True

    kwargs = activity_calls.call_args.kwargs["kwargs"]
    assert kwargs == {
        "user_id": "u-1",
        "activity_type": "booking_confirmed",
        "description": "Confirmed",
        "booking_id": str(booking_id),
    }


def test_publish_failure_is_swallowed(activity_calls):
    activity_calls.side_effect = ConnectionError("broker unreachable")
    assert publish_activity("u-1", "booking_cancelled", "Cancelled") is False
    assert activity_breaker.current_state == STATE_CLOSED


def test_breaker_opens_and_stops_calling_broker(activity_calls):
    activity_calls.side_effect = ConnectionError("broker unreachable")

    for _ in range(activity_breaker.fail_max):
        assert publish_activity("u-1", "booking_cancelled", "Cancelled") is False
    assert activity_breaker.current_state == STATE_OPEN
    calls = activity_calls.call_count

    assert publish_activity("u-1", "booking_cancelled", "Cancelled") is False
    assert activity_calls.call_count == calls


@pytest.mark.asyncio
async def test_booking_operations_survive_broker_outage(db, requester: User, provider: User, activity_calls):
    activity_calls.side_effect = ConnectionError("broker unreachable")
    svc = BookingService(db)

    booking = await svc.create_booking(actor_for(requester), provider.id, booking_details())
    booking = await svc.transition_booking(booking.id, BookingStatus.CONFIRMED, actor_for(provider))

    assert booking.status == BookingStatus.CONFIRMED
    assert booking.engagement_id is not None


@pytest.mark.asyncio
async def test_record_activity_task_writes_row(db, tmp_path, monkeypatch, requester: User):
    url = f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    monkeypatch.setattr(settings, "DATABASE_URL", url)
    booking_id = uuid.uuid4()

    record_activity.run(str(requester.id), "booking_request_sent", "Asked for a Friday slot", str(booking_id))

    entry = (await db.execute(select(ActivityLog).where(ActivityLog.user_id == requester.id))).scalar_one()
    assert entry.activity_type == "booking_request_sent"
    assert entry.booking_id == booking_id

    engine = DatabaseTask._engines.pop(sync_database_url(url), None)
    if engine is not None:
        engine.dispose()
