"""
SQLAlchemy ORM models for the appointment scheduling core.

This module defines the tables the scheduling core reads and writes:
- branches: Salon locations with day-of-week working hours
- stylists / stylist_branches: Schedulable staff and their branch assignments
- customers: Salon customers with no-show standing
- appointments / appointment_services: Bookings and their priced service lines
- appointment_status_history: Append-only status change log
- stylist_breaks / stylist_blocked_slots: Stylist unavailability
- audit_logs: Append-only audit trail

All models use:
- UUID primary keys (auto-generated)
- tenant_id on every row (multi-tenant partitioning)
- deleted_at tombstones instead of physical deletes where applicable
- Portable column types (JSONB on PostgreSQL, JSON elsewhere)
"""

from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(UTC)


# ============================================================================
# Base Class
# ============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# ============================================================================
# Enums
# ============================================================================


class AppointmentStatus(str, PyEnum):
    """Appointment lifecycle status."""

    BOOKED = "booked"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"

    def __str__(self):
        return self.value


class BookingStatus(str, PyEnum):
    """Customer booking standing, escalated by no-shows."""

    NORMAL = "normal"
    VIP = "vip"
    BLOCKED = "blocked"
    RESTRICTED = "restricted"
    PREPAID_ONLY = "prepaid_only"

    def __str__(self):
        return self.value


class BookingType(str, PyEnum):
    """How the appointment was booked."""

    ONLINE = "online"
    PHONE = "phone"
    WALK_IN = "walk_in"


def _enum_column(enum_cls: type[PyEnum], name: str) -> SQLEnum:
    # Stored as VARCHAR with the enum .value ("no_show"), not .name
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda x: [e.value for e in x],
    )


# ============================================================================
# Tenancy & Staff
# ============================================================================


class Branch(Base):
    """
    Branch model - A physical salon location belonging to a tenant.

    working_hours is keyed by lowercase day name:
        {"monday": {"isOpen": true, "openTime": "09:00", "closeTime": "20:00"}, ...}
    """

    __tablename__ = "branches"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    working_hours: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Branch(id={self.id}, name='{self.name}')>"


class Stylist(Base):
    """
    Stylist model - The schedulable staff resource.

    A stylist works at one or more branches (see StylistBranch).
    """

    __tablename__ = "stylists"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    branches: Mapped[list["StylistBranch"]] = relationship(
        "StylistBranch", back_populates="stylist", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Stylist(id={self.id}, name='{self.name}')>"


class StylistBranch(Base):
    """Assignment of a stylist to a branch."""

    __tablename__ = "stylist_branches"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    stylist_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("stylists.id", ondelete="CASCADE"), nullable=False
    )
    branch_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True
    )

    stylist: Mapped["Stylist"] = relationship("Stylist", back_populates="branches")

    __table_args__ = (
        Index("idx_stylist_branches_unique", "stylist_id", "branch_id", unique=True),
    )


# ============================================================================
# Customers
# ============================================================================


class Customer(Base):
    """
    Customer model - Referenced by appointments, owned elsewhere.

    The scheduling core only mutates no_show_count and booking_status.
    """

    __tablename__ = "customers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)

    no_show_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    booking_status: Mapped[BookingStatus] = mapped_column(
        _enum_column(BookingStatus, "booking_status"),
        default=BookingStatus.NORMAL,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint("no_show_count >= 0", name="check_no_show_count_non_negative"),
        Index("idx_customers_tenant_phone", "tenant_id", "phone"),
    )

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, name='{self.name}', booking_status='{self.booking_status}')>"


# ============================================================================
# Transactional Models
# ============================================================================


class Appointment(Base):
    """
    Appointment model - Booking with lifecycle state.

    Scheduling is wall-clock: scheduled_date plus "HH:MM" start and end
    strings. end_time is always calculate_end_time(scheduled_time,
    total_duration) and wraps past midnight without a day carry.

    A reschedule never edits the time in place. The original row is marked
    RESCHEDULED and points forward via rescheduled_to_id; the new row points
    back to the chain root via original_appointment_id.
    """

    __tablename__ = "appointments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    branch_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False
    )

    # Customer linkage: either a customer record or freeform guest fields
    customer_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Scheduling
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    total_duration: Mapped[int] = mapped_column(Integer, nullable=False)
    stylist_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("stylists.id", ondelete="SET NULL"), nullable=True
    )

    status: Mapped[AppointmentStatus] = mapped_column(
        _enum_column(AppointmentStatus, "appointment_status"),
        default=AppointmentStatus.BOOKED,
        nullable=False,
    )
    booking_type: Mapped[BookingType] = mapped_column(
        _enum_column(BookingType, "booking_type"),
        default=BookingType.WALK_IN,
        nullable=False,
    )

    # Reschedule chain
    reschedule_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    original_appointment_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True, index=True
    )
    rescheduled_to_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    # Commercial fields, frozen at booking time
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )
    price_locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Cancellation
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_salon_cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Conflict flag (set when a booking was forced over an existing one)
    has_conflict: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    conflict_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    conflict_resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    customer_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    internal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    customer: Mapped[Optional["Customer"]] = relationship("Customer")
    stylist: Mapped[Optional["Stylist"]] = relationship("Stylist")
    services: Mapped[list["AppointmentServiceLine"]] = relationship(
        "AppointmentServiceLine",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentServiceLine.created_at",
    )
    status_history: Mapped[list["AppointmentStatusHistory"]] = relationship(
        "AppointmentStatusHistory",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentStatusHistory.created_at",
    )

    __table_args__ = (
        CheckConstraint("total_duration >= 0", name="check_appointment_duration_non_negative"),
        CheckConstraint("reschedule_count >= 0", name="check_reschedule_count_non_negative"),
        # Conflict detection: one stylist, one day
        Index(
            "idx_appointments_stylist_day",
            "tenant_id",
            "branch_id",
            "stylist_id",
            "scheduled_date",
        ),
        # Resource calendar window queries
        Index(
            "idx_appointments_branch_date_time",
            "tenant_id",
            "branch_id",
            "scheduled_date",
            "scheduled_time",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, date={self.scheduled_date}, "
            f"time='{self.scheduled_time}-{self.end_time}', status='{self.status}')>"
        )


class AppointmentServiceLine(Base):
    """
    A priced service line on an appointment.

    Prices are copied from the catalog at booking time and never recomputed.
    """

    __tablename__ = "appointment_services"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    appointment_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("0.00"), nullable=False
    )
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    stylist_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    appointment: Mapped["Appointment"] = relationship("Appointment", back_populates="services")

    def __repr__(self) -> str:
        return f"<AppointmentServiceLine(id={self.id}, service='{self.service_name}')>"


class AppointmentStatusHistory(Base):
    """Append-only log of appointment status changes."""

    __tablename__ = "appointment_status_history"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    appointment_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    appointment: Mapped["Appointment"] = relationship(
        "Appointment", back_populates="status_history"
    )

    def __repr__(self) -> str:
        return (
            f"<AppointmentStatusHistory(appointment_id={self.appointment_id}, "
            f"{self.from_status}->{self.to_status})>"
        )


# ============================================================================
# Stylist Availability Models
# ============================================================================


class StylistBreak(Base):
    """
    StylistBreak model - Recurring time-of-day break (lunch, tea).

    day_of_week is optional (0=Sunday ... 6=Saturday); NULL means every day.
    """

    __tablename__ = "stylist_breaks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    branch_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    stylist_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("stylists.id", ondelete="CASCADE"), nullable=False, index=True
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_break_end_after_start"),
    )

    def __repr__(self) -> str:
        return f"<StylistBreak(stylist_id={self.stylist_id}, {self.start_time}-{self.end_time})>"


class StylistBlockedSlot(Base):
    """
    StylistBlockedSlot model - Date-specific unavailability.

    Either a full day (is_full_day) or a start/end window on blocked_date.
    A missing start or end means the start or end of the day.
    """

    __tablename__ = "stylist_blocked_slots"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    branch_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    stylist_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("stylists.id", ondelete="CASCADE"), nullable=False
    )

    blocked_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    end_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    is_full_day: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_blocked_slots_stylist_date", "tenant_id", "stylist_id", "blocked_date"),
    )

    def __repr__(self) -> str:
        return f"<StylistBlockedSlot(stylist_id={self.stylist_id}, date={self.blocked_date})>"


# ============================================================================
# Audit
# ============================================================================


class AuditLog(Base):
    """
    AuditLog model - Append-only record of state-changing operations.

    Written inside the same transaction as the change it describes.
    """

    __tablename__ = "audit_logs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    branch_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_audit_logs_entity", "entity_type", "entity_id"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action='{self.action}', entity={self.entity_type}:{self.entity_id})>"
