"""
services/booking/router.py
HTTP surface of the booking lifecycle.
Request → Confirm | Reject | Cancel, Confirm → Start → Complete,
Confirm → Reschedule → Confirm | Cancel.

Routes stay thin: they resolve the actor, hand off to BookingService or the
query layer, and serialize. Domain errors are mapped to responses in main.py.
"""

import math
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from services.booking.queries import (
    DEFAULT_SORT,
    BookingFilters,
    booking_history,
    list_bookings,
    provider_booking_stats,
    requester_booking_stats,
    upcoming_bookings,
)
from services.booking.service import BookingService
from services.booking.validation import local_today
from shared.middleware.auth import get_current_actor, require_provider
from shared.models.models import BookingPaymentStatus, BookingStatus, EventCategory
from shared.schemas.schemas import (
    BookingAuditResponse,
    BookingCancelRequest,
    BookingCreateRequest,
    BookingRescheduleRequest,
    BookingResponse,
    BookingTransitionRequest,
    ErrorResponse,
    PaginatedResponse,
)
from shared.utils.actors import Actor

router = APIRouter(
    prefix="/bookings",
    tags=["Bookings"],
    responses={code: {"model": ErrorResponse} for code in (400, 403, 404, 409, 503)},
)


def _service(db: AsyncSession, redis) -> BookingService:
    return BookingService(db, cache=RedisCache(redis))


# ── Booking Request ───────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Requester asks a provider for a slot. Created as pending."""
    details = data.model_dump(exclude={"provider_id"})
    booking = await _service(db, redis).create_booking(actor, data.provider_id, details)
    return BookingResponse.model_validate(booking)


# ── Read Endpoints ────────────────────────────────────────────

@router.get("", response_model=PaginatedResponse)
async def list_my_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    category: Optional[EventCategory] = Query(None),
    payment_status: Optional[BookingPaymentStatus] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    q: Optional[str] = Query(None, max_length=100),
    sort_by: str = Query(DEFAULT_SORT),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Requesters see what they booked, providers what they were booked for, admins everything."""
    filters = BookingFilters(
        status=status_filter,
        category=category,
        payment_status=payment_status,
        date_from=date_from,
        date_to=date_to,
        q=q,
        sort_by=sort_by,
    )
    bookings, total = await list_bookings(db, actor, filters, page, page_size)
    return {
        "items": [BookingResponse.model_validate(b) for b in bookings],
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": math.ceil(total / page_size) if total else 0,
    }


@router.get("/stats")
async def my_booking_stats(
    period: str = Query("year", pattern="^(week|month|year|all)$"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Booking statistics from the caller's side of the table."""
    cache = RedisCache(redis)
    if actor.can_perform:
        return await provider_booking_stats(db, actor.id, period, cache=cache)
    return await requester_booking_stats(db, actor.id, period, cache=cache)


@router.get("/upcoming", response_model=List[BookingResponse])
async def my_upcoming_bookings(
    days: int = Query(7, ge=1, le=90),
    limit: int = Query(5, ge=1, le=50),
    actor: Actor = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
):
    """Confirmed or running gigs coming up for the calling provider."""
    bookings = await upcoming_bookings(db, actor.id, local_today(), days=days, limit=limit)
    return [BookingResponse.model_validate(b) for b in bookings]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Booking details. Parties to the booking and admins only."""
    booking = await BookingService(db).get_booking(booking_id, actor)
    return BookingResponse.model_validate(booking)


@router.get("/{booking_id}/history", response_model=List[BookingAuditResponse])
async def get_booking_history(
    booking_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    entries = await booking_history(db, booking_id, actor)
    return [BookingAuditResponse.model_validate(e) for e in entries]


# ── Lifecycle ─────────────────────────────────────────────────

@router.post("/{booking_id}/transition", response_model=BookingResponse)
async def transition_booking(
    booking_id: UUID,
    data: BookingTransitionRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Provider moves the booking along: confirm (optionally with amount and
    terms), reject, cancel, start, complete.
    """
    extra = data.model_dump(exclude={"status"}, exclude_none=True)
    booking = await _service(db, redis).transition_booking(booking_id, data.status, actor, extra)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: BookingCancelRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Requester cancels a pending or confirmed booking."""
    booking = await _service(db, redis).cancel_booking(booking_id, actor, data.reason)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/reschedule", response_model=BookingResponse)
async def reschedule_booking(
    booking_id: UUID,
    data: BookingRescheduleRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Either party moves a confirmed booking to a new slot."""
    schedule = data.model_dump(include={"event_date", "start_time", "end_time"})
    booking = await _service(db, redis).reschedule_booking(booking_id, schedule, actor, data.reason)
    return BookingResponse.model_validate(booking)
