"""
services/engagement/router.py
Provider calendar: standalone gigs and the combined calendar view.
"""

from datetime import date
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking.queries import calendar_events
from services.engagement.service import EngagementService
from shared.middleware.auth import get_current_actor, require_provider
from shared.schemas.schemas import (
    CalendarEvent,
    EngagementCreateRequest,
    EngagementResponse,
    EngagementStatusRequest,
)
from shared.utils.actors import Actor
from shared.utils.errors import ValidationError

router = APIRouter(prefix="/engagements", tags=["Engagements"])


@router.post("", response_model=EngagementResponse, status_code=status.HTTP_201_CREATED)
async def create_engagement(
    data: EngagementCreateRequest,
    actor: Actor = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
):
    """Add a gig that did not come through a booking."""
    engagement = await EngagementService(db).create_engagement(actor, data.model_dump())
    return EngagementResponse.model_validate(engagement)


@router.get("/calendar", response_model=List[CalendarEvent])
async def my_calendar(
    start: date = Query(...),
    end: date = Query(...),
    actor: Actor = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
):
    """Bookings and gigs between two dates, ready for a calendar widget."""
    if end < start:
        raise ValidationError("end must not be before start", ["end must not be before start"])
    if (end - start).days > 366:
        raise ValidationError("Calendar range is limited to one year", ["range too large"])
    return await calendar_events(db, actor.id, start, end)


@router.get("/{engagement_id}", response_model=EngagementResponse)
async def get_engagement(
    engagement_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    engagement = await EngagementService(db).get_engagement(engagement_id, actor)
    return EngagementResponse.model_validate(engagement)


@router.post("/{engagement_id}/status", response_model=EngagementResponse)
async def update_engagement_status(
    engagement_id: UUID,
    data: EngagementStatusRequest,
    actor: Actor = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
):
    engagement = await EngagementService(db).update_engagement_status(engagement_id, data.status, actor)
    return EngagementResponse.model_validate(engagement)
