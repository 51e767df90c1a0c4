"""
tests/test_bookings.py
Booking lifecycle through BookingService:
request → confirm | reject | cancel, confirm → start → complete,
confirm → reschedule → confirm | cancel.
"""

import uuid
from datetime import time
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from services.booking.service import BookingService
from services.engagement import sync
from shared.models.models import (
    Booking,
    BookingAuditLog,
    BookingPaymentStatus,
    BookingStatus,
    Engagement,
    EngagementStatus,
    ProviderAvailability,
    ProviderProfile,
    User,
)
from shared.utils.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    StateTransitionError,
    ValidationError,
)
from tests.conftest import actor_for, booking_details, future_date, insert_booking


async def _confirmed(svc: BookingService, requester: User, provider: User, **details) -> Booking:
    booking = await svc.create_booking(actor_for(requester), provider.id, booking_details(**details))
    return await svc.transition_booking(
        booking.id, BookingStatus.CONFIRMED, actor_for(provider), {"total_amount": "1000"}
    )


async def _engagements_for(db, booking_id) -> list:
    result = await db.execute(select(Engagement).where(Engagement.booking_id == booking_id))
    return list(result.scalars().all())


# ── Creation ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_booking_success(db, requester: User, provider: User, activity_calls):
    booking = await BookingService(db).create_booking(
        actor_for(requester), provider.id, booking_details()
    )

    assert booking.status == BookingStatus.PENDING
    assert booking.payment_status == BookingPaymentStatus.UNPAID
    assert booking.amount_paid == Decimal("0.00")
    assert booking.requester_id == requester.id
    assert booking.engagement_id is None
    assert booking.booking_number.startswith("BK-")

    history = (await db.execute(
        select(BookingAuditLog).where(BookingAuditLog.booking_id == booking.id)
    )).scalars().all()
    assert [(h.from_status, h.to_status) for h in history] == [(None, "pending")]

    sent = [c.kwargs["kwargs"] for c in activity_calls.call_args_list]
    assert {(a["user_id"], a["activity_type"]) for a in sent} == {
        (str(requester.id), "booking_request_sent"),
        (str(provider.id), "booking_request_received"),
    }


@pytest.mark.asyncio
async def test_create_booking_open_ended(db, requester: User, provider: User):
    booking = await BookingService(db).create_booking(
        actor_for(requester), provider.id, booking_details(end_time=None)
    )
    assert booking.end_time is None


@pytest.mark.asyncio
async def test_create_booking_collects_field_errors(db, requester: User, provider: User):
    details = booking_details(
        title="",
        event_date=future_date(days=-1),
        start_time=time(20),
        end_time=time(19),
        audience_size=-5,
        total_amount="Infinity",
    )
    with pytest.raises(ValidationError) as exc:
        await BookingService(db).create_booking(actor_for(requester), provider.id, details)

    errors = exc.value.errors
    assert "title is required" in errors
    assert "Event date cannot be in the past" in errors
    assert "audience_size cannot be negative" in errors
    assert "total_amount must be a number" in errors
    assert await db.scalar(select(func.count(Booking.id))) == 0


@pytest.mark.asyncio
async def test_end_time_must_follow_start(db, requester: User, provider: User):
    with pytest.raises(ValidationError) as exc:
        await BookingService(db).create_booking(
            actor_for(requester), provider.id, booking_details(start_time=time(20), end_time=time(20))
        )
    assert exc.value.errors == ["End time must be after start time"]


@pytest.mark.asyncio
async def test_only_requesters_create_bookings(db, provider: User, other_provider: User, admin: User):
    for actor in (actor_for(other_provider), actor_for(admin)):
        with pytest.raises(AuthorizationError):
            await BookingService(db).create_booking(actor, provider.id, booking_details())


@pytest.mark.asyncio
async def test_booking_a_non_provider_is_not_found(db, requester: User, other_requester: User):
    with pytest.raises(NotFoundError):
        await BookingService(db).create_booking(
            actor_for(requester), other_requester.id, booking_details()
        )
    with pytest.raises(NotFoundError):
        await BookingService(db).create_booking(actor_for(requester), uuid.uuid4(), booking_details())


@pytest.mark.asyncio
async def test_unavailable_provider_refuses_bookings(db, session_factory, requester: User, provider: User):
    async with session_factory() as session:
        profile = (await session.execute(
            select(ProviderProfile).where(ProviderProfile.user_id == provider.id)
        )).scalar_one()
        profile.availability_status = ProviderAvailability.UNAVAILABLE
        await session.commit()

    with pytest.raises(ConflictError):
        await BookingService(db).create_booking(actor_for(requester), provider.id, booking_details())


@pytest.mark.asyncio
async def test_create_rejected_when_slot_already_confirmed(
    db, requester: User, other_requester: User, provider: User
):
    svc = BookingService(db)
    await _confirmed(svc, requester, provider)

    with pytest.raises(ConflictError):
        await svc.create_booking(
            actor_for(other_requester), provider.id,
            booking_details(start_time=time(19), end_time=time(21)),
        )


# ── Scenario: pending requests do not block, confirmation does ─────────────────

@pytest.mark.asyncio
async def test_overlapping_pending_requests_but_only_one_confirmation(
    db, requester: User, other_requester: User, provider: User
):
    svc = BookingService(db)
    first = await svc.create_booking(
        actor_for(requester), provider.id, booking_details(start_time=time(18), end_time=time(20))
    )
    second = await svc.create_booking(
        actor_for(other_requester), provider.id, booking_details(start_time=time(19), end_time=time(21))
    )
    second_id = second.id

    await svc.transition_booking(first.id, BookingStatus.CONFIRMED, actor_for(provider))

    with pytest.raises(ConflictError):
        await svc.transition_booking(second_id, BookingStatus.CONFIRMED, actor_for(provider))

    await db.refresh(second)
    assert second.status == BookingStatus.PENDING
    assert second.engagement_id is None
    assert await _engagements_for(db, second_id) == []


# ── Confirmation and the derived engagement ────────────────────────────────────

@pytest.mark.asyncio
async def test_confirm_derives_matching_engagement(db, requester: User, provider: User):
    svc = BookingService(db)
    booking = await svc.create_booking(actor_for(requester), provider.id, booking_details())
    booking = await svc.transition_booking(
        booking.id,
        "confirmed",
        actor_for(provider),
        {
            "total_amount": "1000",
            "payment_terms": "50% advance",
            "contract_terms": "No recording",
            "venue_contact": "9800000000",
        },
    )

    assert booking.status == BookingStatus.CONFIRMED
    assert booking.total_amount == Decimal("1000")
    assert booking.payment_terms == "50% advance"
    assert booking.contract_terms == "No recording"
    assert booking.confirmed_at is not None

    engagement = await db.get(Engagement, booking.engagement_id)
    assert engagement.booking_id == booking.id
    assert engagement.provider_id == provider.id
    assert engagement.status == EngagementStatus.CONFIRMED
    assert (engagement.event_date, engagement.start_time, engagement.end_time) == (
        booking.event_date, booking.start_time, booking.end_time
    )
    assert engagement.venue_name == booking.venue_name
    assert engagement.agreed_amount == Decimal("1000")
    assert engagement.equipment_required == "provided_by_venue"
    assert engagement.venue_contact == "9800000000"
    assert booking.booking_number in engagement.performance_notes


@pytest.mark.asyncio
async def test_only_the_booked_provider_transitions(
    db, requester: User, provider: User, other_provider: User, admin: User
):
    svc = BookingService(db)
    booking = await svc.create_booking(actor_for(requester), provider.id, booking_details())
    booking_id = booking.id

    for outsider in (requester, other_provider, admin):
        with pytest.raises(AuthorizationError):
            await svc.transition_booking(booking_id, BookingStatus.CONFIRMED, actor_for(outsider))

    await db.refresh(booking)
    assert booking.status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_transition_unknown_booking(db, provider: User):
    with pytest.raises(NotFoundError):
        await BookingService(db).transition_booking(uuid.uuid4(), "confirmed", actor_for(provider))


@pytest.mark.asyncio
async def test_unknown_target_status_is_validation_error(db, requester: User, provider: User):
    svc = BookingService(db)
    booking = await svc.create_booking(actor_for(requester), provider.id, booking_details())
    with pytest.raises(ValidationError):
        await svc.transition_booking(booking.id, "archived", actor_for(provider))


@pytest.mark.asyncio
async def test_reject_stores_reason_without_engagement(db, requester: User, provider: User):
    svc = BookingService(db)
    booking = await svc.create_booking(actor_for(requester), provider.id, booking_details())
    booking = await svc.transition_booking(
        booking.id, BookingStatus.REJECTED, actor_for(provider), {"rejection_reason": "Double booked elsewhere"}
    )
    assert booking.status == BookingStatus.REJECTED
    assert booking.rejection_reason == "Double booked elsewhere"
    assert booking.engagement_id is None


@pytest.mark.asyncio
async def test_start_and_complete_mirror_onto_engagement(db, requester: User, provider: User):
    svc = BookingService(db)
    booking = await _confirmed(svc, requester, provider)

    booking = await svc.transition_booking(booking.id, BookingStatus.IN_PROGRESS, actor_for(provider))
    engagement = await db.get(Engagement, booking.engagement_id)
    assert engagement.status == EngagementStatus.IN_PROGRESS

    booking = await svc.transition_booking(booking.id, BookingStatus.COMPLETED, actor_for(provider))
    await db.refresh(engagement)
    assert booking.completed_at is not None
    assert engagement.status == EngagementStatus.COMPLETED


@pytest.mark.asyncio
async def test_cascade_failure_aborts_confirmation(db, requester: User, provider: User, monkeypatch):
    svc = BookingService(db)
    booking = await svc.create_booking(actor_for(requester), provider.id, booking_details())
    booking_id = booking.id

    async def broken_confirm(*args, **kwargs):
        raise OperationalError("INSERT INTO engagements", {}, Exception("disk I/O error"))

    monkeypatch.setattr(sync, "confirm_linked", broken_confirm)

    with pytest.raises(PersistenceError):
        await svc.transition_booking(booking_id, BookingStatus.CONFIRMED, actor_for(provider))

    await db.refresh(booking)
    assert booking.status == BookingStatus.PENDING
    assert booking.confirmed_at is None
    assert await db.scalar(select(func.count(Engagement.id))) == 0


# ── Cancellation ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_cancel_frees_the_slot(db, requester: User, other_requester: User, provider: User):
    svc = BookingService(db)
    first = await _confirmed(svc, requester, provider)
    engagement_id = first.engagement_id

    cancelled = await svc.cancel_booking(first.id, actor_for(requester), "Venue closed")
    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.cancelled_by == "requester"
    assert cancelled.cancellation_reason == "Venue closed"
    engagement = await db.get(Engagement, engagement_id)
    assert engagement.status == EngagementStatus.CANCELLED

    third = await svc.create_booking(actor_for(other_requester), provider.id, booking_details())
    third = await svc.transition_booking(third.id, BookingStatus.CONFIRMED, actor_for(provider))
    assert third.status == BookingStatus.CONFIRMED
    assert third.engagement_id != engagement_id


@pytest.mark.asyncio
async def test_second_cancel_is_rejected_without_side_effects(
    db, requester: User, provider: User, activity_calls
):
    svc = BookingService(db)
    booking = await svc.create_booking(actor_for(requester), provider.id, booking_details())
    booking_id = booking.id
    await svc.cancel_booking(booking_id, actor_for(requester))

    audit_before = await db.scalar(
        select(func.count(BookingAuditLog.id)).where(BookingAuditLog.booking_id == booking_id)
    )
    calls_before = activity_calls.call_count

    with pytest.raises(StateTransitionError):
        await svc.cancel_booking(booking_id, actor_for(requester))

    audit_after = await db.scalar(
        select(func.count(BookingAuditLog.id)).where(BookingAuditLog.booking_id == booking_id)
    )
    assert audit_after == audit_before
    assert activity_calls.call_count == calls_before


@pytest.mark.asyncio
async def test_requester_cannot_cancel_running_gig(db, requester: User, provider: User):
    svc = BookingService(db)
    booking = await _confirmed(svc, requester, provider)
    await svc.transition_booking(booking.id, BookingStatus.IN_PROGRESS, actor_for(provider))

    with pytest.raises(StateTransitionError):
        await svc.cancel_booking(booking.id, actor_for(requester))


@pytest.mark.asyncio
async def test_only_own_requester_cancels(db, requester: User, other_requester: User, provider: User):
    svc = BookingService(db)
    booking = await svc.create_booking(actor_for(requester), provider.id, booking_details())
    booking_id = booking.id

    for outsider in (other_requester, provider):
        with pytest.raises(AuthorizationError):
            await svc.cancel_booking(booking_id, actor_for(outsider))


@pytest.mark.asyncio
async def test_provider_cancel_with_dangling_engagement_link(
    db, session_factory, requester: User, provider: User
):
    booking = await insert_booking(
        session_factory, requester, provider,
        status=BookingStatus.CONFIRMED, engagement_id=uuid.uuid4(),
    )
    cancelled = await BookingService(db).transition_booking(
        booking.id, BookingStatus.CANCELLED, actor_for(provider), {"reason": "Band member ill"}
    )
    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.cancelled_by == "provider"


# ── Reschedule ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_reschedule_moves_booking_and_engagement(db, requester: User, provider: User):
    svc = BookingService(db)
    booking = await _confirmed(svc, requester, provider)
    old_date = booking.event_date
    new_date = future_date(days=45)

    booking = await svc.reschedule_booking(
        booking.id,
        {"event_date": new_date, "start_time": time(17), "end_time": time(19)},
        actor_for(requester),
        "Venue changed dates",
    )
    assert booking.status == BookingStatus.RESCHEDULED
    assert (booking.event_date, booking.start_time, booking.end_time) == (new_date, time(17), time(19))
    assert booking.reschedule_reason == "Venue changed dates"

    engagement = await db.get(Engagement, booking.engagement_id)
    assert (engagement.event_date, engagement.start_time, engagement.end_time) == (new_date, time(17), time(19))
    assert engagement.status == EngagementStatus.CONFIRMED

    entry = (await db.execute(
        select(BookingAuditLog)
        .where(BookingAuditLog.booking_id == booking.id, BookingAuditLog.to_status == "rescheduled")
    )).scalar_one()
    assert entry.audit_metadata["previous_slot"]["event_date"] == old_date.isoformat()


@pytest.mark.asyncio
async def test_reconfirm_after_reschedule_keeps_engagement(db, requester: User, provider: User):
    svc = BookingService(db)
    booking = await _confirmed(svc, requester, provider)
    engagement_id = booking.engagement_id

    await svc.reschedule_booking(
        booking.id, {"event_date": future_date(days=40), "start_time": time(12)}, actor_for(provider)
    )
    booking = await svc.transition_booking(booking.id, BookingStatus.CONFIRMED, actor_for(provider))

    assert booking.status == BookingStatus.CONFIRMED
    assert booking.engagement_id == engagement_id
    engagement = await db.get(Engagement, engagement_id)
    assert engagement.start_time == time(12)
    assert engagement.end_time is None


@pytest.mark.asyncio
async def test_reschedule_into_conflict_changes_nothing(
    db, requester: User, other_requester: User, provider: User
):
    svc = BookingService(db)
    await _confirmed(svc, requester, provider, start_time=time(18), end_time=time(20))
    late = await _confirmed(svc, other_requester, provider, start_time=time(21), end_time=time(23))
    late_id, engagement_id = late.id, late.engagement_id

    with pytest.raises(ConflictError):
        await svc.reschedule_booking(
            late_id,
            {"event_date": late.event_date, "start_time": time(19), "end_time": time(21)},
            actor_for(other_requester),
        )

    await db.refresh(late)
    assert late.status == BookingStatus.CONFIRMED
    assert (late.start_time, late.end_time) == (time(21), time(23))
    engagement = await db.get(Engagement, engagement_id)
    await db.refresh(engagement)
    assert engagement.start_time == time(21)


@pytest.mark.asyncio
async def test_reschedule_within_own_slot_is_not_a_conflict(db, requester: User, provider: User):
    svc = BookingService(db)
    booking = await _confirmed(svc, requester, provider, start_time=time(18), end_time=time(20))
    booking = await svc.reschedule_booking(
        booking.id,
        {"event_date": booking.event_date, "start_time": time(19), "end_time": time(21)},
        actor_for(provider),
    )
    assert booking.status == BookingStatus.RESCHEDULED


@pytest.mark.asyncio
async def test_reschedule_checks_order(db, requester: User, other_requester: User, provider: User):
    svc = BookingService(db)
    booking = await svc.create_booking(actor_for(requester), provider.id, booking_details())
    booking_id = booking.id
    slot = {"event_date": future_date(days=40), "start_time": time(12)}

    with pytest.raises(NotFoundError):
        await svc.reschedule_booking(uuid.uuid4(), slot, actor_for(requester))
    with pytest.raises(AuthorizationError):
        await svc.reschedule_booking(booking_id, slot, actor_for(other_requester))
    with pytest.raises(ValidationError):
        await svc.reschedule_booking(
            booking_id, {"event_date": future_date(days=-3), "start_time": time(12)}, actor_for(requester)
        )
    # pending bookings cannot be rescheduled
    with pytest.raises(StateTransitionError):
        await svc.reschedule_booking(booking_id, slot, actor_for(requester))


# ── Read ───────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_booking_visibility(
    db, requester: User, other_requester: User, provider: User, admin: User
):
    svc = BookingService(db)
    booking = await svc.create_booking(actor_for(requester), provider.id, booking_details())

    for viewer in (requester, provider, admin):
        assert (await svc.get_booking(booking.id, actor_for(viewer))).id == booking.id
    with pytest.raises(AuthorizationError):
        await svc.get_booking(booking.id, actor_for(other_requester))
