"""
services/booking/service.py
Booking lifecycle: request, confirm/reject/start/complete, cancel, reschedule.

Every mutating call runs in one unit of work: the status change, any
commercial fields, the audit entry and the engagement cascade commit
together or not at all. Activity entries and cache invalidation happen only
after the commit.
"""

import logging
import random
import string
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, List, Mapping, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import unit_of_work
from config.redis_client import RedisCache
from config.settings import settings
from services.booking.conflicts import has_conflict
from services.booking.state_machine import REQUESTER_CANCELLABLE, assert_transition
from services.booking.validation import validate_booking_details, validate_schedule
from services.engagement import sync
from shared.models.models import (
    Booking,
    BookingAuditLog,
    BookingPaymentStatus,
    BookingStatus,
    EventCategory,
    ProviderAvailability,
    ProviderProfile,
    User,
    UserRole,
)
from shared.utils.activity import publish_activity
from shared.utils.actors import Actor
from shared.utils.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Fields a requester may supply when creating a booking
BOOKING_DETAIL_FIELDS = (
    "title",
    "event_date",
    "start_time",
    "end_time",
    "venue_name",
    "venue_address",
    "category",
    "audience_size",
    "requested_tags",
    "notes",
    "equipment_provided",
    "total_amount",
)

Activity = Tuple[uuid.UUID, str, str]


# ── Helpers ───────────────────────────────────────────────────

def _generate_booking_number() -> str:
    """Generate a human-readable booking number like BK-2026-X7K9M."""
    year = datetime.now().year
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"{settings.BOOKING_NUMBER_PREFIX}-{year}-{suffix}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_amount(value: Any, field: str) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        amount = None
    if amount is None or not amount.is_finite():
        raise ValidationError(f"{field} must be a number", [f"{field} must be a number"])
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative", [f"{field} cannot be negative"])
    return amount


def _coerce_status(value: Any) -> BookingStatus:
    try:
        return BookingStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown booking status: {value}", [f"Unknown booking status: {value}"])


async def get_booking_or_404(db: AsyncSession, booking_id: uuid.UUID, lock: bool = False) -> Booking:
    query = select(Booking).where(Booking.id == booking_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    booking = (await db.execute(query)).scalar_one_or_none()
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def provider_lock_query(provider_id: uuid.UUID):
    return select(User.id).where(User.id == provider_id).with_for_update()


async def lock_provider(db: AsyncSession, provider_id: uuid.UUID) -> None:
    """
    Serialize check-then-write on one provider's calendar. Concurrent confirms
    for the same provider queue on this row lock; other providers are unaffected.
    """
    if db.get_bind().dialect.name == "sqlite":
        # SQLite has no row locks; writing the provider row takes the database write lock
        await db.execute(
            update(User)
            .where(User.id == provider_id)
            .values(id=User.id)
            .execution_options(synchronize_session=False)
        )
        return
    await db.execute(provider_lock_query(provider_id))


def _log_status_change(
    db: AsyncSession,
    booking: Booking,
    from_status: Optional[BookingStatus],
    to_status: BookingStatus,
    actor: Actor,
    reason: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> None:
    """Append an immutable audit log entry for every status change."""
    db.add(BookingAuditLog(
        booking_id=booking.id,
        from_status=from_status.value if from_status else None,
        to_status=to_status.value,
        changed_by_id=actor.id,
        reason=reason,
        audit_metadata=metadata,
    ))


# ── Service ───────────────────────────────────────────────────

class BookingService:
    """Core booking operations. The caller is always passed in as an Actor."""

    def __init__(self, db: AsyncSession, cache: Optional[RedisCache] = None):
        self.db = db
        self.cache = cache

    async def _after_commit(self, booking: Booking, activities: List[Activity]) -> None:
        if self.cache is not None:
            await self.cache.invalidate_stats(booking.requester_id, booking.provider_id)
        for user_id, activity_type, description in activities:
            publish_activity(user_id, activity_type, description, booking_id=booking.id)

    async def _load_bookable_provider(self, provider_id: uuid.UUID) -> ProviderProfile:
        provider = await self.db.get(User, provider_id)
        if not provider or provider.role != UserRole.PROVIDER or not provider.is_active:
            raise NotFoundError("Provider not found")
        profile = (
            await self.db.execute(
                select(ProviderProfile).where(ProviderProfile.user_id == provider_id)
            )
        ).scalar_one_or_none()
        if not profile:
            raise NotFoundError("Provider not found")
        if profile.availability_status == ProviderAvailability.UNAVAILABLE:
            raise ConflictError(f"{profile.stage_name} is not accepting bookings")
        return profile

    # ── Create ────────────────────────────────────────────────

    async def create_booking(
        self,
        actor: Actor,
        provider_id: uuid.UUID,
        details: Mapping[str, Any],
    ) -> Booking:
        """
        Request a booking. Pending requests never block each other; only
        confirmed commitments make the slot unavailable.
        """
        if not actor.can_request_bookings:
            raise AuthorizationError("Only requesters can create bookings")
        if provider_id == actor.id:
            raise AuthorizationError("Cannot book yourself")

        errors = validate_booking_details(details)
        if errors:
            raise ValidationError("Invalid booking details", errors)

        fields = {key: details[key] for key in BOOKING_DETAIL_FIELDS if details.get(key) is not None}
        fields["category"] = EventCategory(fields["category"])
        if "total_amount" in fields:
            fields["total_amount"] = _parse_amount(fields["total_amount"], "total_amount")

        async with unit_of_work(self.db):
            profile = await self._load_bookable_provider(provider_id)

            if await has_conflict(
                self.db, provider_id, fields["event_date"], fields["start_time"], fields.get("end_time")
            ):
                raise ConflictError(f"{profile.stage_name} is not available at the requested time")

            booking = Booking(
                booking_number=_generate_booking_number(),
                requester_id=actor.id,
                provider_id=provider_id,
                status=BookingStatus.PENDING,
                payment_status=BookingPaymentStatus.UNPAID,
                amount_paid=Decimal("0.00"),
                **fields,
            )
            self.db.add(booking)
            await self.db.flush()
            _log_status_change(self.db, booking, None, BookingStatus.PENDING, actor)

        logger.info(f"Booking {booking.booking_number} requested by {actor.id} for provider {provider_id}")
        await self._after_commit(booking, [
            (actor.id, "booking_request_sent", f"Booking request sent for: {booking.title}"),
            (provider_id, "booking_request_received", f"New booking request: {booking.title}"),
        ])
        return booking

    # ── Provider-driven transitions ───────────────────────────

    async def _confirm(self, booking: Booking, extra: Mapping[str, Any]) -> None:
        total_amount = _parse_amount(extra.get("total_amount"), "total_amount")

        await lock_provider(self.db, booking.provider_id)
        if await has_conflict(
            self.db,
            booking.provider_id,
            booking.event_date,
            booking.start_time,
            booking.end_time,
            exclude_booking_id=booking.id,
            exclude_engagement_id=booking.engagement_id,
        ):
            raise ConflictError("The provider already has a commitment overlapping this booking")

        if total_amount is not None:
            booking.total_amount = total_amount
        for key in ("payment_terms", "contract_terms"):
            if extra.get(key) is not None:
                setattr(booking, key, str(extra[key]))

        booking.status = BookingStatus.CONFIRMED
        booking.confirmed_at = _utcnow()
        await sync.confirm_linked(self.db, booking, extra)

    async def _cancel(self, booking: Booking, actor: Actor, reason: Optional[str]) -> None:
        booking.status = BookingStatus.CANCELLED
        booking.cancellation_reason = reason
        booking.cancelled_by = actor.role.value
        booking.cancelled_at = _utcnow()
        await sync.cancel_linked(self.db, booking)

    async def transition_booking(
        self,
        booking_id: uuid.UUID,
        target: Any,
        actor: Actor,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> Booking:
        """Move a booking to a new status on behalf of its provider."""
        target = _coerce_status(target)
        extra = dict(extra or {})
        reason = extra.get("reason")

        async with unit_of_work(self.db):
            booking = await get_booking_or_404(self.db, booking_id, lock=True)
            if booking.provider_id != actor.id:
                raise AuthorizationError("Only the booked provider can change this booking")
            previous = BookingStatus(booking.status)
            assert_transition(previous, target)

            if target == BookingStatus.CONFIRMED:
                await self._confirm(booking, extra)
            elif target == BookingStatus.REJECTED:
                reason = extra.get("rejection_reason") or reason
                booking.rejection_reason = reason
                booking.status = target
            elif target == BookingStatus.CANCELLED:
                await self._cancel(booking, actor, reason)
            else:
                booking.status = target
                if target == BookingStatus.COMPLETED:
                    booking.completed_at = _utcnow()
                await sync.mirror_status(self.db, booking)

            _log_status_change(self.db, booking, previous, target, actor, reason)
            await self.db.flush()

        logger.info(f"Booking {booking.booking_number}: {previous.value} → {target.value}")
        await self._after_commit(booking, [
            (actor.id, f"booking_{target.value}", f"Booking {target.value}: {booking.title}"),
            (booking.requester_id, f"booking_{target.value}_by_provider",
             f"Your booking '{booking.title}' is now {target.value}"),
        ])
        return booking

    # ── Requester cancellation ────────────────────────────────

    async def cancel_booking(
        self,
        booking_id: uuid.UUID,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> Booking:
        """Requester withdraws a pending or confirmed booking."""
        async with unit_of_work(self.db):
            booking = await get_booking_or_404(self.db, booking_id, lock=True)
            if booking.requester_id != actor.id:
                raise AuthorizationError("Only the requester can cancel this booking")
            previous = BookingStatus(booking.status)
            if previous not in REQUESTER_CANCELLABLE:
                raise StateTransitionError(f"Booking in '{previous.value}' state cannot be cancelled")
            assert_transition(previous, BookingStatus.CANCELLED)

            await self._cancel(booking, actor, reason)
            _log_status_change(self.db, booking, previous, BookingStatus.CANCELLED, actor, reason)
            await self.db.flush()

        logger.info(f"Booking {booking.booking_number} cancelled by requester {actor.id}")
        await self._after_commit(booking, [
            (actor.id, "booking_cancelled", f"Booking cancelled: {booking.title}"),
            (booking.provider_id, "booking_cancelled_by_client", f"Booking cancelled by client: {booking.title}"),
        ])
        return booking

    # ── Reschedule ────────────────────────────────────────────

    async def reschedule_booking(
        self,
        booking_id: uuid.UUID,
        schedule: Mapping[str, Any],
        actor: Actor,
        reason: Optional[str] = None,
    ) -> Booking:
        """
        Move a confirmed booking to a new slot. Either party may ask.
        The linked engagement follows the booking to the new slot.
        """
        async with unit_of_work(self.db):
            booking = await get_booking_or_404(self.db, booking_id, lock=True)
            if not actor.is_party_to(booking):
                raise AuthorizationError("Unauthorized to reschedule this booking")

            event_date = schedule.get("event_date")
            start_time = schedule.get("start_time")
            end_time = schedule.get("end_time")
            errors = validate_schedule(event_date, start_time, end_time)
            if errors:
                raise ValidationError("Invalid schedule", errors)

            previous = BookingStatus(booking.status)
            assert_transition(previous, BookingStatus.RESCHEDULED)

            await lock_provider(self.db, booking.provider_id)
            if await has_conflict(
                self.db,
                booking.provider_id,
                event_date,
                start_time,
                end_time,
                exclude_booking_id=booking.id,
                exclude_engagement_id=booking.engagement_id,
            ):
                raise ConflictError("The provider is not available at the new requested time")

            old_slot = {
                "event_date": booking.event_date.isoformat(),
                "start_time": booking.start_time.isoformat(),
                "end_time": booking.end_time.isoformat() if booking.end_time else None,
            }
            booking.event_date = event_date
            booking.start_time = start_time
            booking.end_time = end_time
            booking.status = BookingStatus.RESCHEDULED
            booking.reschedule_reason = reason
            await sync.reschedule_linked(self.db, booking)

            _log_status_change(
                self.db, booking, previous, BookingStatus.RESCHEDULED, actor, reason,
                metadata={"previous_slot": old_slot},
            )
            await self.db.flush()

        other_party = booking.provider_id if actor.id == booking.requester_id else booking.requester_id
        logger.info(f"Booking {booking.booking_number} rescheduled to {booking.event_date} by {actor.id}")
        await self._after_commit(booking, [
            (actor.id, "booking_rescheduled", f"Booking rescheduled: {booking.title}"),
            (other_party, "booking_rescheduled_by_other", "Booking has been rescheduled"),
        ])
        return booking

    # ── Read ──────────────────────────────────────────────────

    async def get_booking(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        booking = await get_booking_or_404(self.db, booking_id)
        if not (actor.is_admin or actor.is_party_to(booking)):
            raise AuthorizationError("Not authorized to view this booking")
        return booking
