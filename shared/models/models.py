"""
shared/models/models.py
All SQLAlchemy ORM models for the Gig Booking Platform.
Portable column types (Uuid, JSON, Numeric) so the same schema runs on
PostgreSQL and SQLite. UUID primary keys throughout.
"""

import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    """Store enum values (lowercase wire strings), not member names."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    REQUESTER = "requester"
    PROVIDER = "provider"
    ADMIN = "admin"


class ProviderAvailability(str, PyEnum):
    AVAILABLE = "available"
    BUSY = "busy"
    UNAVAILABLE = "unavailable"


class EventCategory(str, PyEnum):
    WEDDING = "wedding"
    PARTY = "party"
    CORPORATE = "corporate"
    CONCERT = "concert"
    FESTIVAL = "festival"
    BAR_CLUB = "bar_club"
    RESTAURANT = "restaurant"
    PRIVATE_EVENT = "private_event"
    CHARITY = "charity"
    OTHER = "other"


EVENT_CATEGORY_TYPE = _enum(EventCategory, "event_category")


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"
    RESCHEDULED = "rescheduled"


class BookingPaymentStatus(str, PyEnum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class EngagementStatus(str, PyEnum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    POSTPONED = "postponed"


class EquipmentArrangement(str, PyEnum):
    PROVIDED_BY_VENUE = "provided_by_venue"
    PROVIDER_BRINGS_OWN = "provider_brings_own"


class SettlementType(str, PyEnum):
    BOOKING = "booking"
    ADVANCE = "advance"
    FINAL = "final"
    REFUND = "refund"
    BONUS = "bonus"


class SettlementMethod(str, PyEnum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    ESEWA = "esewa"
    KHALTI = "khalti"
    IME_PAY = "ime_pay"
    FONEPAY = "fonepay"
    CHEQUE = "cheque"


class SettlementStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_PAID = "partially_paid"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )


# ── Identity ──────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """
    Single identity for every party. What a user may do is decided by role;
    role-specific data lives in the profile tables.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole, "user_role"), nullable=False, default=UserRole.REQUESTER
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("ix_users_role", "role"),
    )

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class ProviderProfile(TimestampMixin, Base):
    """Performer profile. One-to-one with a provider User."""
    __tablename__ = "provider_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    stage_name: Mapped[str] = mapped_column(String(200), nullable=False)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    genres: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    base_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    availability_status: Mapped[ProviderAvailability] = mapped_column(
        _enum(ProviderAvailability, "provider_availability"),
        nullable=False,
        default=ProviderAvailability.AVAILABLE,
    )


class RequesterProfile(TimestampMixin, Base):
    """Client profile. One-to-one with a requester User."""
    __tablename__ = "requester_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    organization: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


# ── Bookings ──────────────────────────────────────────────────

class Booking(TimestampMixin, Base):
    """
    A requested engagement between a requester and a provider.
    Status transitions: PENDING → CONFIRMED | REJECTED | CANCELLED,
    CONFIRMED → IN_PROGRESS | CANCELLED | RESCHEDULED,
    IN_PROGRESS → COMPLETED, RESCHEDULED → CONFIRMED | CANCELLED.
    Never deleted; cancellation is a terminal status.
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    requester_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )

    # Schedule
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)

    # Venue and event details
    venue_name: Mapped[str] = mapped_column(String(200), nullable=False)
    venue_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[EventCategory] = mapped_column(
        EVENT_CATEGORY_TYPE, nullable=False
    )
    audience_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    requested_tags: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    equipment_provided: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Commercial (opaque until confirmation)
    total_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    payment_terms: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    contract_terms: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus, "booking_status"), nullable=False, default=BookingStatus.PENDING
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    reschedule_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Settlement rollup (read model, recomputed from settlements)
    payment_status: Mapped[BookingPaymentStatus] = mapped_column(
        _enum(BookingPaymentStatus, "booking_payment_status"),
        nullable=False,
        default=BookingPaymentStatus.UNPAID,
    )
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)

    # Weak link to the derived engagement: id only, no FK, no cascade
    engagement_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    # Timestamps
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    settlements: Mapped[List["Settlement"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )

    __table_args__ = (
        CheckConstraint(
            "end_time IS NULL OR end_time > start_time", name="ck_bookings_time_window"
        ),
        Index("ix_bookings_requester_id", "requester_id"),
        Index("ix_bookings_provider_date", "provider_id", "event_date"),
        Index("ix_bookings_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Booking {self.booking_number} ({self.status})>"


class BookingAuditLog(Base):
    """Immutable log of all booking status transitions."""
    __tablename__ = "booking_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=False
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    audit_metadata: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_booking_audit_logs_booking_id", "booking_id"),
    )


# ── Engagements ───────────────────────────────────────────────

class Engagement(TimestampMixin, Base):
    """
    A provider's committed calendar slot (a gig). Either derived from a
    confirmed booking (booking_id set) or created directly by the provider.
    """
    __tablename__ = "engagements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    venue_name: Mapped[str] = mapped_column(String(200), nullable=False)
    venue_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    venue_contact: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    category: Mapped[EventCategory] = mapped_column(
        EVENT_CATEGORY_TYPE, nullable=False, default=EventCategory.OTHER
    )
    status: Mapped[EngagementStatus] = mapped_column(
        _enum(EngagementStatus, "engagement_status"),
        nullable=False,
        default=EngagementStatus.SCHEDULED,
    )

    agreed_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    payment_terms: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    equipment_required: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    special_requirements: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    audience_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    performance_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "end_time IS NULL OR end_time > start_time", name="ck_engagements_time_window"
        ),
        Index("ix_engagements_provider_date", "provider_id", "event_date"),
        Index("ix_engagements_booking_id", "booking_id"),
    )

    def __repr__(self) -> str:
        return f"<Engagement {self.title} {self.event_date} ({self.status})>"


# ── Settlements ───────────────────────────────────────────────

class Settlement(TimestampMixin, Base):
    """
    A financial transaction tied to exactly one booking.
    Amount is signed: refunds are stored as negative records.
    """
    __tablename__ = "settlements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    settlement_type: Mapped[SettlementType] = mapped_column(
        _enum(SettlementType, "settlement_type"), nullable=False, default=SettlementType.BOOKING
    )
    method: Mapped[SettlementMethod] = mapped_column(
        _enum(SettlementMethod, "settlement_method"), nullable=False
    )
    status: Mapped[SettlementStatus] = mapped_column(
        _enum(SettlementStatus, "settlement_status"),
        nullable=False,
        default=SettlementStatus.PENDING,
    )
    reference_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    recorded_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    refund_of_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("settlements.id"), nullable=True
    )

    booking: Mapped["Booking"] = relationship(back_populates="settlements", lazy="raise")

    __table_args__ = (
        Index("ix_settlements_booking_id", "booking_id"),
        Index("ix_settlements_status", "status"),
    )


# ── Activity ──────────────────────────────────────────────────

class ActivityLog(Base):
    """Human-readable activity feed. Written only by the Celery sink."""
    __tablename__ = "activity_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    activity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_activity_logs_user_created", "user_id", "created_at"),
    )
