"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.models.models import (
    BookingStatus,
    EngagementStatus,
    EventCategory,
    SettlementMethod,
    SettlementStatus,
    SettlementType,
)


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int


# ── Booking ───────────────────────────────────────────────────

class ScheduleSchema(BaseSchema):
    event_date: date
    start_time: time
    end_time: Optional[time] = None


class BookingCreateRequest(ScheduleSchema):
    provider_id: uuid.UUID
    title: str = Field(..., min_length=1, max_length=200)
    venue_name: str = Field(..., min_length=1, max_length=200)
    venue_address: Optional[str] = Field(None, max_length=1000)
    category: EventCategory
    audience_size: Optional[int] = Field(None, ge=0)
    requested_tags: List[str] = Field(default_factory=list)
    notes: Optional[str] = Field(None, max_length=2000)
    equipment_provided: bool = False
    total_amount: Optional[Decimal] = Field(None, ge=0)


class BookingTransitionRequest(BaseSchema):
    status: BookingStatus
    reason: Optional[str] = Field(None, max_length=1000)
    rejection_reason: Optional[str] = Field(None, max_length=1000)
    # Confirmation only; stored as given
    total_amount: Optional[Decimal] = Field(None, ge=0)
    payment_terms: Optional[str] = None
    contract_terms: Optional[str] = None
    # Overrides for the engagement derived on confirmation
    venue_contact: Optional[str] = Field(None, max_length=100)
    equipment_required: Optional[str] = Field(None, max_length=50)
    special_requirements: Optional[str] = None
    performance_notes: Optional[str] = None


class BookingCancelRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=1000)


class BookingRescheduleRequest(ScheduleSchema):
    reason: Optional[str] = Field(None, max_length=1000)


class BookingResponse(BaseSchema):
    id: uuid.UUID
    booking_number: str
    requester_id: uuid.UUID
    provider_id: uuid.UUID
    title: str
    event_date: date
    start_time: time
    end_time: Optional[time]
    venue_name: str
    venue_address: Optional[str]
    category: str
    audience_size: Optional[int]
    requested_tags: List[str]
    notes: Optional[str]
    equipment_provided: bool
    total_amount: Optional[Decimal]
    payment_terms: Optional[str]
    contract_terms: Optional[str]
    status: str
    payment_status: str
    amount_paid: Decimal
    engagement_id: Optional[uuid.UUID]
    rejection_reason: Optional[str]
    cancellation_reason: Optional[str]
    cancelled_by: Optional[str]
    reschedule_reason: Optional[str]
    confirmed_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class BookingAuditResponse(BaseSchema):
    id: uuid.UUID
    from_status: Optional[str]
    to_status: str
    changed_by_id: Optional[uuid.UUID]
    reason: Optional[str]
    audit_metadata: Optional[Dict[str, Any]]
    created_at: datetime


# ── Engagement ────────────────────────────────────────────────

class EngagementCreateRequest(ScheduleSchema):
    title: str = Field(..., min_length=1, max_length=200)
    venue_name: str = Field(..., min_length=1, max_length=200)
    venue_address: Optional[str] = None
    venue_contact: Optional[str] = Field(None, max_length=100)
    category: EventCategory = EventCategory.OTHER
    status: EngagementStatus = EngagementStatus.SCHEDULED
    agreed_amount: Optional[Decimal] = Field(None, ge=0)
    payment_terms: Optional[str] = None
    equipment_required: Optional[str] = Field(None, max_length=50)
    special_requirements: Optional[str] = None
    audience_size: Optional[int] = Field(None, ge=0)
    performance_notes: Optional[str] = None


class EngagementStatusRequest(BaseSchema):
    status: EngagementStatus


class EngagementResponse(BaseSchema):
    id: uuid.UUID
    provider_id: uuid.UUID
    booking_id: Optional[uuid.UUID]
    title: str
    venue_name: str
    venue_address: Optional[str]
    venue_contact: Optional[str]
    event_date: date
    start_time: time
    end_time: Optional[time]
    category: str
    status: str
    agreed_amount: Optional[Decimal]
    payment_terms: Optional[str]
    equipment_required: Optional[str]
    special_requirements: Optional[str]
    audience_size: Optional[int]
    performance_notes: Optional[str]
    created_at: datetime


class CalendarEvent(BaseSchema):
    id: str
    title: str
    start: str
    end: str
    venue: str
    category: str
    status: str
    amount: Optional[str]
    booking_id: Optional[str]


# ── Settlement ────────────────────────────────────────────────

class SettlementCreateRequest(BaseSchema):
    booking_id: uuid.UUID
    amount: Decimal
    settlement_type: SettlementType = SettlementType.BOOKING
    method: SettlementMethod
    status: SettlementStatus = SettlementStatus.PENDING
    reference_number: Optional[str] = Field(None, min_length=3, max_length=64)
    transaction_id: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=1000)


class SettlementStatusRequest(BaseSchema):
    status: SettlementStatus
    notes: Optional[str] = Field(None, max_length=1000)


class RefundRequest(BaseSchema):
    amount: Decimal = Field(..., gt=0)
    reason: Optional[str] = Field(None, max_length=1000)


class SettlementResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    amount: Decimal
    settlement_type: str
    method: str
    status: str
    reference_number: str
    transaction_id: Optional[str]
    notes: Optional[str]
    paid_at: Optional[datetime]
    verified_at: Optional[datetime]
    refund_of_id: Optional[uuid.UUID]
    created_at: datetime


# ── Activity ──────────────────────────────────────────────────

class ActivityResponse(BaseSchema):
    id: uuid.UUID
    activity_type: str
    description: str
    booking_id: Optional[uuid.UUID]
    created_at: datetime


# ── Generic ───────────────────────────────────────────────────

class ErrorResponse(BaseSchema):
    detail: str
    code: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
