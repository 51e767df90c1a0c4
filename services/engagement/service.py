"""
services/engagement/service.py
Engagements a provider manages directly (gigs that did not come from a
booking). Booking-derived engagements only change through their booking.
"""

import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from config.database import unit_of_work
from services.booking.conflicts import has_conflict
from services.booking.service import lock_provider
from services.booking.validation import MAX_TITLE_LENGTH, MAX_VENUE_LENGTH, validate_schedule
from shared.models.models import Engagement, EngagementStatus, EventCategory
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

ENGAGEMENT_TRANSITIONS = {
    EngagementStatus.SCHEDULED: {
        EngagementStatus.CONFIRMED,
        EngagementStatus.CANCELLED,
        EngagementStatus.POSTPONED,
    },
    EngagementStatus.CONFIRMED: {
        EngagementStatus.IN_PROGRESS,
        EngagementStatus.CANCELLED,
        EngagementStatus.POSTPONED,
    },
    EngagementStatus.IN_PROGRESS: {EngagementStatus.COMPLETED},
    EngagementStatus.POSTPONED: {
        EngagementStatus.SCHEDULED,
        EngagementStatus.CONFIRMED,
        EngagementStatus.CANCELLED,
    },
    EngagementStatus.COMPLETED: set(),
    EngagementStatus.CANCELLED: set(),
}

INITIAL_STATUSES = (EngagementStatus.SCHEDULED, EngagementStatus.CONFIRMED)
# Statuses that hold calendar time
HOLDING_STATUSES = (
    EngagementStatus.SCHEDULED,
    EngagementStatus.CONFIRMED,
    EngagementStatus.IN_PROGRESS,
)

ENGAGEMENT_FIELDS = (
    "title",
    "venue_name",
    "venue_address",
    "venue_contact",
    "event_date",
    "start_time",
    "end_time",
    "category",
    "agreed_amount",
    "payment_terms",
    "equipment_required",
    "special_requirements",
    "audience_size",
    "performance_notes",
)


def validate_engagement(data: Mapping[str, Any]) -> list:
    errors = [f"{field} is required" for field in ("title", "venue_name") if not data.get(field)]
    if data.get("title") and len(data["title"]) > MAX_TITLE_LENGTH:
        errors.append(f"Title must be at most {MAX_TITLE_LENGTH} characters")
    if data.get("venue_name") and len(data["venue_name"]) > MAX_VENUE_LENGTH:
        errors.append(f"Venue name must be at most {MAX_VENUE_LENGTH} characters")
    errors += validate_schedule(data.get("event_date"), data.get("start_time"), data.get("end_time"))
    if data.get("category"):
        try:
            EventCategory(data["category"])
        except ValueError:
            errors.append(f"Invalid category: {data['category']}")
    if data.get("agreed_amount") is not None:
        try:
            amount = Decimal(str(data["agreed_amount"]))
            if not amount.is_finite():
                errors.append("agreed_amount must be a number")
            elif amount < 0:
                errors.append("agreed_amount cannot be negative")
        except InvalidOperation:
            errors.append("agreed_amount must be a number")
    if isinstance(data.get("audience_size"), int) and data["audience_size"] < 0:
        errors.append("audience_size cannot be negative")
    return errors


class EngagementService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_owned(self, engagement_id: uuid.UUID, actor: Actor, lock: bool = False) -> Engagement:
        engagement = await self.db.get(Engagement, engagement_id, with_for_update=lock or None)
        if not engagement:
            raise NotFoundError("Engagement not found")
        if engagement.provider_id != actor.id:
            raise AuthorizationError("Not authorized for this engagement")
        return engagement

    async def create_engagement(self, actor: Actor, data: Mapping[str, Any]) -> Engagement:
        """Add a gig straight to the provider's calendar."""
        if not actor.can_perform:
            raise AuthorizationError("Only providers can create engagements")

        errors = validate_engagement(data)
        status = data.get("status") or EngagementStatus.SCHEDULED
        if status not in INITIAL_STATUSES:
            errors.append("New engagements start as scheduled or confirmed")
        else:
            status = EngagementStatus(status)
        if errors:
            raise ValidationError("Invalid engagement", errors)

        fields = {key: data[key] for key in ENGAGEMENT_FIELDS if data.get(key) is not None}
        if "category" in fields:
            fields["category"] = EventCategory(fields["category"])

        async with unit_of_work(self.db):
            await lock_provider(self.db, actor.id)
            if await has_conflict(
                self.db, actor.id, fields["event_date"], fields["start_time"], fields.get("end_time")
            ):
                raise ConflictError("You already have a commitment overlapping this time")

            engagement = Engagement(provider_id=actor.id, status=status, **fields)
            self.db.add(engagement)
            await self.db.flush()

        logger.info(f"Engagement {engagement.id} created by provider {actor.id}")
        publish_activity(actor.id, "gig_created", f"Gig added: {engagement.title}")
        return engagement

    async def update_engagement_status(
        self,
        engagement_id: uuid.UUID,
        status: Any,
        actor: Actor,
    ) -> Engagement:
        try:
            status = EngagementStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown engagement status: {status}", [f"Unknown engagement status: {status}"])

        async with unit_of_work(self.db):
            engagement = await self._get_owned(engagement_id, actor, lock=True)
            if engagement.booking_id is not None:
                raise StateTransitionError("This engagement is managed through its booking")

            current = EngagementStatus(engagement.status)
            if status not in ENGAGEMENT_TRANSITIONS[current]:
                raise StateTransitionError(
                    f"Cannot move engagement from '{current.value}' to '{status.value}'"
                )

            if current not in HOLDING_STATUSES and status in HOLDING_STATUSES:
                await lock_provider(self.db, actor.id)
                if await has_conflict(
                    self.db,
                    actor.id,
                    engagement.event_date,
                    engagement.start_time,
                    engagement.end_time,
                    exclude_engagement_id=engagement.id,
                ):
                    raise ConflictError("The slot has been taken while this gig was postponed")

            engagement.status = status
            await self.db.flush()

        publish_activity(actor.id, f"gig_{status.value}", f"Gig {status.value}: {engagement.title}")
        return engagement

    async def get_engagement(self, engagement_id: uuid.UUID, actor: Actor) -> Engagement:
        engagement = await self.db.get(Engagement, engagement_id)
        if not engagement:
            raise NotFoundError("Engagement not found")
        if not (actor.is_admin or engagement.provider_id == actor.id):
            raise AuthorizationError("Not authorized for this engagement")
        return engagement
