"""
services/booking/validation.py
Field-level checks for booking details and schedules.
Each function returns a list of messages; an empty list means valid.
"""

from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, List, Mapping, Optional
from zoneinfo import ZoneInfo

from config.settings import settings
from shared.models.models import EventCategory

REQUIRED_FIELDS = ("title", "event_date", "start_time", "venue_name", "category")
MAX_TITLE_LENGTH = 200
MAX_VENUE_LENGTH = 200


def local_today() -> date:
    return datetime.now(ZoneInfo(settings.APP_TIMEZONE)).date()


def validate_schedule(
    event_date: Optional[date],
    start_time: Optional[time],
    end_time: Optional[time] = None,
) -> List[str]:
    errors = []
    if event_date is None:
        errors.append("event_date is required")
    elif not isinstance(event_date, date):
        errors.append("event_date must be a date")
    elif event_date < local_today():
        errors.append("Event date cannot be in the past")

    if start_time is None:
        errors.append("start_time is required")
    elif not isinstance(start_time, time):
        errors.append("start_time must be a time")
    elif end_time is not None and end_time <= start_time:
        errors.append("End time must be after start time")
    return errors


def _non_negative(value: Any, field: str) -> Optional[str]:
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
        if not amount.is_finite():
            return f"{field} must be a number"
        if amount < 0:
            return f"{field} cannot be negative"
    except InvalidOperation:
        return f"{field} must be a number"
    return None


def validate_booking_details(details: Mapping[str, Any]) -> List[str]:
    """Checks a create-booking payload. Does not touch the database."""
    errors = [
        f"{field} is required"
        for field in REQUIRED_FIELDS
        if details.get(field) in (None, "")
    ]

    title = details.get("title")
    if title and len(title) > MAX_TITLE_LENGTH:
        errors.append(f"Title must be at most {MAX_TITLE_LENGTH} characters")

    venue_name = details.get("venue_name")
    if venue_name and len(venue_name) > MAX_VENUE_LENGTH:
        errors.append(f"Venue name must be at most {MAX_VENUE_LENGTH} characters")

    category = details.get("category")
    if category:
        try:
            EventCategory(category)
        except ValueError:
            errors.append(f"Invalid category: {category}")

    if details.get("event_date") is not None and details.get("start_time") is not None:
        errors += validate_schedule(
            details["event_date"], details["start_time"], details.get("end_time")
        )

    for field in ("total_amount", "audience_size"):
        message = _non_negative(details.get(field), field)
        if message:
            errors.append(message)
    return errors
