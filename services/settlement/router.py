"""
services/settlement/router.py
Payment records against bookings. Gateway integration is out of scope:
settlements are recorded after the money has moved (or failed to).
"""

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from services.settlement.service import SettlementService
from shared.middleware.auth import get_current_actor, require_provider, require_provider_or_admin
from shared.schemas.schemas import (
    RefundRequest,
    SettlementCreateRequest,
    SettlementResponse,
    SettlementStatusRequest,
)
from shared.utils.actors import Actor

router = APIRouter(prefix="/settlements", tags=["Settlements"])


def _service(db: AsyncSession, redis) -> SettlementService:
    return SettlementService(db, cache=RedisCache(redis))


@router.post("", response_model=SettlementResponse, status_code=status.HTTP_201_CREATED)
async def record_settlement(
    data: SettlementCreateRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Record a payment against a booking; the booking's rollup is recomputed."""
    settlement = await _service(db, redis).record_settlement(
        actor,
        data.booking_id,
        data.amount,
        data.settlement_type,
        data.method,
        status=data.status,
        reference_number=data.reference_number,
        transaction_id=data.transaction_id,
        notes=data.notes,
    )
    return SettlementResponse.model_validate(settlement)


@router.get("/stats")
async def my_payment_stats(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    actor: Actor = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
):
    return await SettlementService(db).provider_payment_stats(actor, date_from, date_to)


@router.get("/booking/{booking_id}", response_model=List[SettlementResponse])
async def list_booking_settlements(
    booking_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    settlements = await SettlementService(db).list_settlements(booking_id, actor)
    return [SettlementResponse.model_validate(s) for s in settlements]


@router.post("/{settlement_id}/status", response_model=SettlementResponse)
async def update_settlement_status(
    settlement_id: UUID,
    data: SettlementStatusRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    settlement = await _service(db, redis).update_settlement_status(
        settlement_id, data.status, actor, data.notes
    )
    return SettlementResponse.model_validate(settlement)


@router.post("/{settlement_id}/refund", response_model=SettlementResponse, status_code=status.HTTP_201_CREATED)
async def refund_settlement(
    settlement_id: UUID,
    data: RefundRequest,
    actor: Actor = Depends(require_provider_or_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Issue a refund as a negative settlement record."""
    refund = await _service(db, redis).process_refund(settlement_id, data.amount, actor, data.reason)
    return SettlementResponse.model_validate(refund)
