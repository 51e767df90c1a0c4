"""
services/settlement/service.py
Settlement (payment) records: record, status updates, refunds, reporting.

Every write recomputes the owning booking's payment rollup in the same
transaction. The booking's lifecycle status is never touched here.
"""

import logging
import random
import string
import uuid
from collections import Counter, defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import unit_of_work
from config.redis_client import RedisCache
from config.settings import settings
from services.booking.service import get_booking_or_404
from services.settlement.rollup import recompute_booking_payment_status
from shared.models.models import (
    Booking,
    Settlement,
    SettlementMethod,
    SettlementStatus,
    SettlementType,
)
from shared.utils.activity import publish_activity
from shared.utils.actors import Actor
from shared.utils.errors import (
    AuthorizationError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
)

logger = logging.getLogger(__name__)

SETTLEMENT_TRANSITIONS = {
    SettlementStatus.PENDING: {
        SettlementStatus.PAID,
        SettlementStatus.FAILED,
        SettlementStatus.PARTIALLY_PAID,
    },
    SettlementStatus.PARTIALLY_PAID: {SettlementStatus.PAID, SettlementStatus.FAILED},
    SettlementStatus.FAILED: {SettlementStatus.PENDING},
    SettlementStatus.PAID: set(),       # leaves only through process_refund
    SettlementStatus.REFUNDED: set(),
}


# ── Helpers ───────────────────────────────────────────────────

def generate_reference_number(today: Optional[date] = None) -> str:
    """Reference like PAY-20261019-A1B2C3."""
    today = today or datetime.now(timezone.utc).date()
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"{settings.SETTLEMENT_REFERENCE_PREFIX}-{today.strftime('%Y%m%d')}-{suffix}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_decimal(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        amount = None
    if amount is None or not amount.is_finite():
        raise ValidationError("Amount must be a number", ["amount must be a finite number"])
    return amount


def _enum_value(enum_cls, value: Any, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value}", [f"Invalid {field}: {value}"])


async def _get_settlement_or_404(db: AsyncSession, settlement_id: uuid.UUID) -> Settlement:
    result = await db.execute(
        select(Settlement)
        .where(Settlement.id == settlement_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    settlement = result.scalar_one_or_none()
    if not settlement:
        raise NotFoundError("Settlement not found")
    return settlement


async def _reference_taken(db: AsyncSession, reference_number: str) -> bool:
    count = await db.scalar(
        select(func.count(Settlement.id)).where(Settlement.reference_number == reference_number)
    )
    return bool(count)


def _ensure_participant(booking: Booking, actor: Actor) -> None:
    if not (actor.is_admin or actor.is_party_to(booking)):
        raise AuthorizationError("Not authorized for payments on this booking")


# ── Service ───────────────────────────────────────────────────

class SettlementService:

    def __init__(self, db: AsyncSession, cache: Optional[RedisCache] = None):
        self.db = db
        self.cache = cache

    async def _after_commit(self, booking: Booking, actor: Actor, activity_type: str, description: str) -> None:
        if self.cache is not None:
            await self.cache.invalidate_stats(booking.requester_id, booking.provider_id)
        publish_activity(actor.id, activity_type, description, booking_id=booking.id)

    async def record_settlement(
        self,
        actor: Actor,
        booking_id: uuid.UUID,
        amount: Any,
        settlement_type: Any,
        method: Any,
        status: Any = SettlementStatus.PENDING,
        reference_number: Optional[str] = None,
        transaction_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Settlement:
        """
        Record a payment against a booking. Refund-type records carry a
        negative amount, every other type a positive one.
        """
        amount = _to_decimal(amount)
        settlement_type = _enum_value(SettlementType, settlement_type, "settlement type")
        method = _enum_value(SettlementMethod, method, "payment method")
        status = _enum_value(SettlementStatus, status, "settlement status")

        errors = []
        if settlement_type == SettlementType.REFUND and amount >= 0:
            errors.append("Refund amounts must be negative")
        elif settlement_type != SettlementType.REFUND and amount <= 0:
            errors.append("Amount must be a positive number")
        if status == SettlementStatus.REFUNDED:
            errors.append("Settlements are marked refunded through the refund operation")
        if errors:
            raise ValidationError("Invalid settlement", errors)

        async with unit_of_work(self.db):
            booking = await get_booking_or_404(self.db, booking_id, lock=True)
            _ensure_participant(booking, actor)

            if reference_number:
                if await _reference_taken(self.db, reference_number):
                    raise ValidationError(
                        "Reference number already used", [f"Duplicate reference number: {reference_number}"]
                    )
            else:
                reference_number = generate_reference_number()

            now = _utcnow()
            settlement = Settlement(
                booking_id=booking.id,
                amount=amount,
                settlement_type=settlement_type,
                method=method,
                status=status,
                reference_number=reference_number,
                transaction_id=transaction_id,
                notes=notes,
                recorded_by_id=actor.id,
                paid_at=now if status == SettlementStatus.PAID else None,
                verified_at=now if status == SettlementStatus.PAID else None,
            )
            self.db.add(settlement)
            await self.db.flush()
            await recompute_booking_payment_status(self.db, booking.id)

        logger.info(f"Settlement {reference_number} ({amount}) recorded on {booking.booking_number}")
        await self._after_commit(
            booking, actor, "payment_created", f"Payment {reference_number} of {amount} recorded"
        )
        return settlement

    async def update_settlement_status(
        self,
        settlement_id: uuid.UUID,
        status: Any,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> Settlement:
        status = _enum_value(SettlementStatus, status, "settlement status")

        async with unit_of_work(self.db):
            settlement = await _get_settlement_or_404(self.db, settlement_id)
            booking = await get_booking_or_404(self.db, settlement.booking_id, lock=True)
            _ensure_participant(booking, actor)

            current = SettlementStatus(settlement.status)
            if settlement.settlement_type == SettlementType.REFUND:
                raise StateTransitionError("Refund records cannot change status")
            if status not in SETTLEMENT_TRANSITIONS[current]:
                raise StateTransitionError(
                    f"Cannot move settlement from '{current.value}' to '{status.value}'"
                )

            settlement.status = status
            if notes:
                settlement.notes = notes
            if status == SettlementStatus.PAID:
                now = _utcnow()
                settlement.paid_at = settlement.paid_at or now
                settlement.verified_at = now
            await self.db.flush()
            await recompute_booking_payment_status(self.db, booking.id)

        await self._after_commit(
            booking, actor, "payment_status_updated",
            f"Payment {settlement.reference_number} is now {status.value}",
        )
        return settlement

    async def process_refund(
        self,
        settlement_id: uuid.UUID,
        amount: Any,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> Settlement:
        """
        Refund part or all of a paid settlement as a negative record.
        The original is marked refunded once nothing is left to refund.
        """
        amount = _to_decimal(amount)

        async with unit_of_work(self.db):
            original = await _get_settlement_or_404(self.db, settlement_id)
            booking = await get_booking_or_404(self.db, original.booking_id, lock=True)
            if not (actor.is_admin or actor.id == booking.provider_id):
                raise AuthorizationError("Only the provider or an admin can issue refunds")
            if original.settlement_type == SettlementType.REFUND:
                raise StateTransitionError("A refund record cannot itself be refunded")
            if original.status != SettlementStatus.PAID:
                raise StateTransitionError(
                    f"Only paid settlements can be refunded (status is '{SettlementStatus(original.status).value}')"
                )

            refunds = (await self.db.execute(
                select(Settlement.amount, Settlement.reference_number).where(Settlement.refund_of_id == original.id)
            )).all()
            already_refunded = sum((-Decimal(str(r.amount)) for r in refunds), Decimal("0"))
            remaining = Decimal(str(original.amount)) - already_refunded
            if amount <= 0 or amount > remaining:
                raise ValidationError(
                    "Invalid refund amount", [f"Refund must be between 0 and {remaining}"]
                )

            reference = f"REFUND-{original.reference_number}"
            if refunds:
                reference = f"{reference}-{len(refunds) + 1}"

            now = _utcnow()
            refund = Settlement(
                booking_id=booking.id,
                amount=-amount,
                settlement_type=SettlementType.REFUND,
                method=original.method,
                status=SettlementStatus.PAID,
                reference_number=reference,
                notes=f"Refund for payment {original.reference_number}. Reason: {reason or 'not given'}",
                recorded_by_id=actor.id,
                refund_of_id=original.id,
                paid_at=now,
                verified_at=now,
            )
            self.db.add(refund)
            if amount == remaining:
                original.status = SettlementStatus.REFUNDED
            await self.db.flush()
            await recompute_booking_payment_status(self.db, booking.id)

        logger.info(f"Refund {reference} of {amount} issued on {booking.booking_number}")
        await self._after_commit(booking, actor, "refund_processed", f"Refund of {amount} processed")
        return refund

    async def list_settlements(self, booking_id: uuid.UUID, actor: Actor) -> List[Settlement]:
        booking = await get_booking_or_404(self.db, booking_id)
        _ensure_participant(booking, actor)
        result = await self.db.execute(
            select(Settlement)
            .where(Settlement.booking_id == booking_id)
            .order_by(Settlement.created_at.asc())
        )
        return list(result.scalars().all())

    async def provider_payment_stats(
        self,
        actor: Actor,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> dict:
        """Earnings overview for the calling provider, plus the last 12 months."""
        result = await self.db.execute(
            select(Settlement)
            .join(Booking, Booking.id == Settlement.booking_id)
            .where(Booking.provider_id == actor.id)
        )
        rows = []
        for s in result.scalars().all():
            day = (s.paid_at or s.created_at).date()
            if (date_from and day < date_from) or (date_to and day > date_to):
                continue
            rows.append((s, day))

        counts = Counter(SettlementStatus(s.status).value for s, _ in rows)
        paid = [Decimal(str(s.amount)) for s, _ in rows if s.status == SettlementStatus.PAID]
        received = [a for a in paid if a > 0]
        pending = [Decimal(str(s.amount)) for s, _ in rows if s.status == SettlementStatus.PENDING]

        monthly = defaultdict(lambda: Decimal("0"))
        for s, day in rows:
            if s.status == SettlementStatus.PAID:
                monthly[day.strftime("%Y-%m")] += Decimal(str(s.amount))

        return {
            "total_payments": len(rows),
            "total_earned": str(sum(paid, Decimal("0"))),
            "pending_amount": str(sum(pending, Decimal("0"))),
            "average_payment": str(round(sum(received) / len(received), 2)) if received else "0",
            "completed_payments": counts["paid"],
            "pending_payments": counts["pending"],
            "failed_payments": counts["failed"],
            "monthly_earnings": [
                {"month": month, "earnings": str(monthly[month])}
                for month in sorted(monthly, reverse=True)[:12]
            ],
        }
