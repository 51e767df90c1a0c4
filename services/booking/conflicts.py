"""
services/booking/conflicts.py
Double-booking detector across both calendars a provider can be committed
through: confirmed bookings and engagements (gigs).

Read only. Returns a bool; callers decide which error to raise.
"""

import logging
import uuid
from datetime import date, time
from typing import Iterable, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Booking, BookingStatus, Engagement, EngagementStatus

logger = logging.getLogger(__name__)

BLOCKING_BOOKING_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)
BLOCKING_ENGAGEMENT_STATUSES = (
    EngagementStatus.SCHEDULED,
    EngagementStatus.CONFIRMED,
    EngagementStatus.IN_PROGRESS,
)

Window = Tuple[time, Optional[time]]


def windows_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    """Half-open [start, end) windows overlap iff each starts before the other ends."""
    return start_a < end_b and start_b < end_a


def slot_collides(proposed: Window, existing: Window) -> bool:
    """
    Compare a proposed slot with one existing commitment on the same day.

    A proposal without an end time only collides with a commitment starting at
    exactly the same time. An existing commitment without an end time counts as
    the instant it starts.
    """
    p_start, p_end = proposed
    e_start, e_end = existing
    if p_end is None:
        return p_start == e_start
    if e_end is None:
        return p_start <= e_start < p_end
    return windows_overlap(p_start, p_end, e_start, e_end)


def first_collision(proposed: Window, existing: Iterable[Window]) -> Optional[Window]:
    for window in existing:
        if slot_collides(proposed, window):
            return window
    return None


async def _committed_windows(
    db: AsyncSession,
    provider_id: uuid.UUID,
    event_date: date,
    exclude_booking_id: Optional[uuid.UUID],
    exclude_engagement_id: Optional[uuid.UUID],
) -> list[Window]:
    booking_q = select(Booking.start_time, Booking.end_time).where(
        Booking.provider_id == provider_id,
        Booking.event_date == event_date,
        Booking.status.in_(BLOCKING_BOOKING_STATUSES),
    )
    if exclude_booking_id is not None:
        booking_q = booking_q.where(Booking.id != exclude_booking_id)

    engagement_q = select(Engagement.start_time, Engagement.end_time).where(
        Engagement.provider_id == provider_id,
        Engagement.event_date == event_date,
        Engagement.status.in_(BLOCKING_ENGAGEMENT_STATUSES),
    )
    if exclude_engagement_id is not None:
        engagement_q = engagement_q.where(Engagement.id != exclude_engagement_id)
    # A confirmed booking and the engagement derived from it are the same commitment
    if exclude_booking_id is not None:
        engagement_q = engagement_q.where(
            (Engagement.booking_id.is_(None)) | (Engagement.booking_id != exclude_booking_id)
        )

    windows = [(row.start_time, row.end_time) for row in (await db.execute(booking_q)).all()]
    windows += [(row.start_time, row.end_time) for row in (await db.execute(engagement_q)).all()]
    return windows


async def has_conflict(
    db: AsyncSession,
    provider_id: uuid.UUID,
    event_date: date,
    start_time: time,
    end_time: Optional[time] = None,
    exclude_booking_id: Optional[uuid.UUID] = None,
    exclude_engagement_id: Optional[uuid.UUID] = None,
) -> bool:
    """
    True if the slot overlaps any non-terminal commitment of the provider on
    that date. Storage errors count as a conflict.
    """
    try:
        windows = await _committed_windows(
            db, provider_id, event_date, exclude_booking_id, exclude_engagement_id
        )
    except SQLAlchemyError as e:
        logger.error(
            f"Conflict check failed for provider {provider_id} on {event_date}, denying slot: {e}"
        )
        return True

    clash = first_collision((start_time, end_time), windows)
    if clash is not None:
        logger.info(
            f"Slot {event_date} {start_time}-{end_time} for provider {provider_id} "
            f"collides with {clash[0]}-{clash[1]}"
        )
        return True
    return False
