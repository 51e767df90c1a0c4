"""
services/engagement/sync.py
Keeps a booking and the engagement derived from it in step.

Every function here runs inside the caller's unit of work and only flushes.
Any exception propagates and aborts the booking change along with it.
Conflict checks are the caller's job; nothing here re-validates the slot.
"""

import logging
import uuid
from typing import Any, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    Booking,
    BookingStatus,
    Engagement,
    EngagementStatus,
    EquipmentArrangement,
)
from shared.utils.errors import AuthorizationError

logger = logging.getLogger(__name__)

# Keys from a confirmation payload that may override the derived defaults
ENGAGEMENT_EXTRA_FIELDS = (
    "venue_contact",
    "equipment_required",
    "special_requirements",
    "performance_notes",
    "payment_terms",
)

_CLOSED = (EngagementStatus.CANCELLED, EngagementStatus.COMPLETED)

_MIRRORED = {
    BookingStatus.IN_PROGRESS: EngagementStatus.IN_PROGRESS,
    BookingStatus.COMPLETED: EngagementStatus.COMPLETED,
}


async def _load_linked(db: AsyncSession, booking: Booking) -> Optional[Engagement]:
    """Linked engagement, locked for the rest of the transaction. None if the link dangles."""
    if booking.engagement_id is None:
        return None
    engagement = await db.get(Engagement, booking.engagement_id, with_for_update=True)
    if engagement is None:
        logger.warning(
            f"Booking {booking.booking_number} links missing engagement {booking.engagement_id}"
        )
        return None
    if engagement.provider_id != booking.provider_id:
        raise AuthorizationError("Linked engagement belongs to a different provider")
    return engagement


async def derive_from_booking(
    db: AsyncSession,
    booking: Booking,
    extra: Optional[Mapping[str, Any]] = None,
) -> Engagement:
    """Create a confirmed engagement from the booking's schedule and venue, and link it."""
    engagement = Engagement(
        id=uuid.uuid4(),
        provider_id=booking.provider_id,
        booking_id=booking.id,
        title=booking.title,
        venue_name=booking.venue_name,
        venue_address=booking.venue_address,
        event_date=booking.event_date,
        start_time=booking.start_time,
        end_time=booking.end_time,
        category=booking.category,
        status=EngagementStatus.CONFIRMED,
        agreed_amount=booking.total_amount,
        payment_terms=booking.payment_terms,
        audience_size=booking.audience_size,
        special_requirements=booking.notes,
        equipment_required=(
            EquipmentArrangement.PROVIDED_BY_VENUE.value
            if booking.equipment_provided
            else EquipmentArrangement.PROVIDER_BRINGS_OWN.value
        ),
        performance_notes=f"Generated from booking #{booking.booking_number}",
    )
    for key in ENGAGEMENT_EXTRA_FIELDS:
        if extra and extra.get(key) is not None:
            setattr(engagement, key, extra[key])

    db.add(engagement)
    booking.engagement_id = engagement.id
    await db.flush()
    logger.info(f"Engagement {engagement.id} derived from booking {booking.booking_number}")
    return engagement


async def confirm_linked(
    db: AsyncSession,
    booking: Booking,
    extra: Optional[Mapping[str, Any]] = None,
) -> Engagement:
    """
    Make sure a confirmed booking has a live engagement matching its schedule.
    Re-confirms the existing link when it is still open, otherwise derives a new one.
    """
    engagement = await _load_linked(db, booking)
    if engagement is None or engagement.status in _CLOSED:
        return await derive_from_booking(db, booking, extra)

    engagement.event_date = booking.event_date
    engagement.start_time = booking.start_time
    engagement.end_time = booking.end_time
    engagement.agreed_amount = booking.total_amount
    engagement.status = EngagementStatus.CONFIRMED
    for key in ENGAGEMENT_EXTRA_FIELDS:
        if extra and extra.get(key) is not None:
            setattr(engagement, key, extra[key])
    await db.flush()
    return engagement


async def cancel_linked(db: AsyncSession, booking: Booking) -> Optional[Engagement]:
    """Cancel the linked engagement as its provider. No link means nothing to do."""
    engagement = await _load_linked(db, booking)
    if engagement is None:
        return None
    if engagement.status in _CLOSED:
        return engagement
    engagement.status = EngagementStatus.CANCELLED
    await db.flush()
    logger.info(f"Engagement {engagement.id} cancelled with booking {booking.booking_number}")
    return engagement


async def reschedule_linked(db: AsyncSession, booking: Booking) -> Optional[Engagement]:
    """Copy the booking's (already updated) date and times onto the linked engagement."""
    engagement = await _load_linked(db, booking)
    if engagement is None:
        return None
    engagement.event_date = booking.event_date
    engagement.start_time = booking.start_time
    engagement.end_time = booking.end_time
    await db.flush()
    return engagement


async def mirror_status(db: AsyncSession, booking: Booking) -> Optional[Engagement]:
    """Carry in_progress / completed over to the linked engagement."""
    target = _MIRRORED.get(BookingStatus(booking.status))
    if target is None:
        return None
    engagement = await _load_linked(db, booking)
    if engagement is None or engagement.status in _CLOSED:
        return engagement
    engagement.status = target
    await db.flush()
    return engagement
