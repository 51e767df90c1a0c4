"""
services/settlement/rollup.py
Derives a booking's payment rollup (unpaid / partial / paid) from its
settlement records.

The rollup is a read model written onto the booking. It never changes the
booking's lifecycle status and the booking state machine never calls it.
"""

import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Booking, BookingPaymentStatus, Settlement, SettlementStatus

# Money that actually moved. A fully refunded original keeps counting because
# its negative refund record (itself "paid") carries the reversal.
COUNTED_STATUSES = (SettlementStatus.PAID, SettlementStatus.REFUNDED)


def derive_rollup(total_paid: Decimal, total_amount: Optional[Decimal]) -> BookingPaymentStatus:
    if total_paid <= 0:
        return BookingPaymentStatus.UNPAID
    if total_amount is None or total_paid >= total_amount:
        return BookingPaymentStatus.PAID
    return BookingPaymentStatus.PARTIAL


async def settled_total(db: AsyncSession, booking_id: uuid.UUID) -> Decimal:
    result = await db.execute(
        select(Settlement.amount).where(
            Settlement.booking_id == booking_id,
            Settlement.status.in_(COUNTED_STATUSES),
        )
    )
    return sum((Decimal(str(amount)) for amount in result.scalars().all()), Decimal("0.00"))


async def recompute_booking_payment_status(
    db: AsyncSession,
    booking_id: uuid.UUID,
) -> BookingPaymentStatus:
    """Recompute and store the rollup. Runs inside the caller's unit of work."""
    booking = await db.get(Booking, booking_id)
    total_paid = await settled_total(db, booking_id)
    rollup = derive_rollup(total_paid, booking.total_amount)
    booking.amount_paid = total_paid
    booking.payment_status = rollup
    await db.flush()
    return rollup
