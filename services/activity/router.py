"""
services/activity/router.py
The caller's activity feed, as written by the Celery activity sink.
"""

import math

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from shared.middleware.auth import get_current_actor
from shared.models.models import ActivityLog
from shared.schemas.schemas import ActivityResponse, PaginatedResponse
from shared.utils.actors import Actor

router = APIRouter(prefix="/activity", tags=["Activity"])


@router.get("/me", response_model=PaginatedResponse)
async def my_activity(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Most recent first."""
    base = select(ActivityLog).where(ActivityLog.user_id == actor.id)
    total = await db.scalar(select(func.count()).select_from(base.subquery())) or 0
    result = await db.execute(
        base.order_by(ActivityLog.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return {
        "items": [ActivityResponse.model_validate(a) for a in result.scalars().all()],
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": math.ceil(total / page_size) if total else 0,
    }
