"""
services/booking/queries.py
Read side of bookings: filtered listings, calendar view, history and
per-party statistics. No writes happen here.
"""

import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import RedisCache
from services.booking.service import get_booking_or_404
from shared.models.models import (
    Booking,
    BookingAuditLog,
    BookingStatus,
    Engagement,
    EngagementStatus,
)
from shared.utils.actors import Actor
from shared.utils.errors import AuthorizationError, ValidationError

logger = logging.getLogger(__name__)

SORT_OPTIONS = {
    "date_asc": (Booking.event_date.asc(), Booking.start_time.asc()),
    "date_desc": (Booking.event_date.desc(), Booking.created_at.desc()),
    "title_asc": (Booking.title.asc(),),
    "title_desc": (Booking.title.desc(),),
    "status_asc": (Booking.status.asc(), Booking.event_date.desc()),
    "status_desc": (Booking.status.desc(), Booking.event_date.desc()),
    "amount_asc": (Booking.total_amount.asc(),),
    "amount_desc": (Booking.total_amount.desc(),),
    "created_asc": (Booking.created_at.asc(),),
    "created_desc": (Booking.created_at.desc(),),
}
DEFAULT_SORT = "date_desc"

PERIODS = {
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
    "all": None,
}


@dataclass
class BookingFilters:
    status: Optional[BookingStatus] = None
    category: Optional[str] = None
    payment_status: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    q: Optional[str] = None
    sort_by: str = DEFAULT_SORT


# ── Listing ───────────────────────────────────────────────────

async def list_bookings(
    db: AsyncSession,
    actor: Actor,
    filters: BookingFilters,
    page: int = 1,
    page_size: int = 10,
) -> Tuple[List[Booking], int]:
    """Bookings visible to the actor. Admins see every booking."""
    if filters.sort_by not in SORT_OPTIONS:
        raise ValidationError(f"Invalid sort option: {filters.sort_by}", [f"sort_by must be one of {sorted(SORT_OPTIONS)}"])

    query = select(Booking)
    if not actor.is_admin:
        query = query.where(or_(Booking.requester_id == actor.id, Booking.provider_id == actor.id))

    if filters.status:
        query = query.where(Booking.status == filters.status)
    if filters.category:
        query = query.where(Booking.category == filters.category)
    if filters.payment_status:
        query = query.where(Booking.payment_status == filters.payment_status)
    if filters.date_from:
        query = query.where(Booking.event_date >= filters.date_from)
    if filters.date_to:
        query = query.where(Booking.event_date <= filters.date_to)
    if filters.q:
        term = f"%{filters.q}%"
        query = query.where(or_(
            Booking.title.ilike(term),
            Booking.venue_name.ilike(term),
            Booking.notes.ilike(term),
        ))

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0

    query = (
        query.order_by(*SORT_OPTIONS[filters.sort_by])
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    bookings = (await db.execute(query)).scalars().all()
    return list(bookings), total


async def booking_history(db: AsyncSession, booking_id: uuid.UUID, actor: Actor) -> List[BookingAuditLog]:
    """Status changes of one booking, oldest first."""
    booking = await get_booking_or_404(db, booking_id)
    if not (actor.is_admin or actor.is_party_to(booking)):
        raise AuthorizationError("Not authorized to view this booking")
    result = await db.execute(
        select(BookingAuditLog)
        .where(BookingAuditLog.booking_id == booking_id)
        .order_by(BookingAuditLog.created_at.asc())
    )
    return list(result.scalars().all())


async def upcoming_bookings(
    db: AsyncSession,
    provider_id: uuid.UUID,
    today: date,
    days: int = 7,
    limit: int = 5,
) -> List[Booking]:
    """Confirmed or running bookings in the next `days` days."""
    result = await db.execute(
        select(Booking)
        .where(
            Booking.provider_id == provider_id,
            Booking.event_date >= today,
            Booking.event_date <= today + timedelta(days=days),
            Booking.status.in_((BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)),
        )
        .order_by(Booking.event_date.asc(), Booking.start_time.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


# ── Calendar ──────────────────────────────────────────────────

def _event(prefix: str, row_id, title, event_date, start_time, end_time, **extra) -> dict:
    return {
        "id": f"{prefix}-{row_id}",
        "title": title,
        "start": f"{event_date.isoformat()}T{start_time.isoformat()}",
        "end": f"{event_date.isoformat()}T{(end_time or start_time).isoformat()}",
        **extra,
    }


async def calendar_events(
    db: AsyncSession,
    provider_id: uuid.UUID,
    start: date,
    end: date,
) -> List[dict]:
    """
    Calendar entries for a provider between two dates: live bookings plus
    standalone engagements. Booking-derived engagements are shown through
    their booking only.
    """
    bookings = (await db.execute(
        select(Booking)
        .where(
            Booking.provider_id == provider_id,
            Booking.event_date.between(start, end),
            Booking.status.not_in((BookingStatus.REJECTED, BookingStatus.CANCELLED)),
        )
    )).scalars().all()
    engagements = (await db.execute(
        select(Engagement)
        .where(
            Engagement.provider_id == provider_id,
            Engagement.booking_id.is_(None),
            Engagement.event_date.between(start, end),
            Engagement.status != EngagementStatus.CANCELLED,
        )
    )).scalars().all()

    events = [
        _event(
            "booking", b.id, b.title, b.event_date, b.start_time, b.end_time,
            venue=b.venue_name, category=b.category.value, status=b.status.value,
            amount=str(b.total_amount) if b.total_amount is not None else None,
            booking_id=str(b.id),
        )
        for b in bookings
    ]
    events += [
        _event(
            "engagement", e.id, e.title, e.event_date, e.start_time, e.end_time,
            venue=e.venue_name, category=e.category.value, status=e.status.value,
            amount=str(e.agreed_amount) if e.agreed_amount is not None else None,
            booking_id=None,
        )
        for e in engagements
    ]
    return sorted(events, key=lambda ev: ev["start"])


# ── Statistics ────────────────────────────────────────────────

def _period_start(period: str) -> Optional[datetime]:
    if period not in PERIODS:
        raise ValidationError(f"Invalid period: {period}", [f"period must be one of {list(PERIODS)}"])
    span = PERIODS[period]
    return datetime.now(timezone.utc) - span if span else None


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


async def _booking_rows(db: AsyncSession, column, user_id: uuid.UUID, period: str):
    since = _period_start(period)
    query = select(Booking.status, Booking.category, Booking.total_amount).where(column == user_id)
    if since is not None:
        query = query.where(Booking.created_at >= since)
    return (await db.execute(query)).all()


async def _cached(cache: Optional[RedisCache], key: str):
    if cache is None:
        return None
    try:
        return await cache.get(key)
    except Exception as e:
        logger.warning(f"Stats cache read failed for {key}: {e}")
        return None


async def _store(cache: Optional[RedisCache], key: str, value: dict) -> None:
    if cache is None:
        return
    try:
        await cache.set(key, value)
    except Exception as e:
        logger.warning(f"Stats cache write failed for {key}: {e}")


async def provider_booking_stats(
    db: AsyncSession,
    provider_id: uuid.UUID,
    period: str = "year",
    cache: Optional[RedisCache] = None,
) -> dict:
    key = RedisCache.stats_key("provider", provider_id, period)
    cached = await _cached(cache, key)
    if cached is not None:
        return cached

    rows = await _booking_rows(db, Booking.provider_id, provider_id, period)
    by_status = Counter(BookingStatus(r.status).value for r in rows)
    by_category = Counter(r.category.value for r in rows)
    priced = [r.total_amount for r in rows if r.total_amount and r.total_amount > 0]
    total = len(rows)

    def _sum(status: BookingStatus) -> Decimal:
        return sum((r.total_amount or Decimal("0")) for r in rows if r.status == status) or Decimal("0")

    stats = {
        "total_bookings": total,
        "by_status": dict(by_status),
        "by_category": dict(by_category.most_common()),
        "total_earnings": str(_sum(BookingStatus.COMPLETED)),
        "pending_earnings": str(_sum(BookingStatus.CONFIRMED)),
        "average_amount": str(round(sum(priced) / len(priced), 2)) if priced else "0",
        "response_rate": _rate(by_status["confirmed"] + by_status["rejected"], total),
        "confirmation_rate": _rate(by_status["confirmed"], total),
    }
    await _store(cache, key, stats)
    return stats


async def requester_booking_stats(
    db: AsyncSession,
    requester_id: uuid.UUID,
    period: str = "year",
    cache: Optional[RedisCache] = None,
) -> dict:
    key = RedisCache.stats_key("requester", requester_id, period)
    cached = await _cached(cache, key)
    if cached is not None:
        return cached

    rows = await _booking_rows(db, Booking.requester_id, requester_id, period)
    by_status = Counter(BookingStatus(r.status).value for r in rows)
    spent = sum(
        (r.total_amount or Decimal("0"))
        for r in rows
        if r.status in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED)
    ) or Decimal("0")

    stats = {
        "total_bookings": len(rows),
        "by_status": dict(by_status),
        "total_spent": str(spent),
        "success_rate": _rate(by_status["confirmed"] + by_status["completed"], len(rows)),
    }
    await _store(cache, key, stats)
    return stats
