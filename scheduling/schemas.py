"""
Input and output models for the scheduling core.

Inputs are pydantic models so callers get field validation (date and time
formats, length limits) before any database work starts. Read-models returned
by the calendar are pydantic too; RescheduleResult is a plain dataclass
holding ORM objects.
"""

from dataclasses import dataclass
from datetime import date
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from database.models import Appointment, AppointmentStatus, BookingType

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# ============================================================================
# Lifecycle inputs
# ============================================================================


class CancelAppointmentInput(BaseModel):
    """Cancellation request."""

    reason: str = Field(..., min_length=1, max_length=500)
    is_salon_cancelled: bool = False


class RescheduleAppointmentInput(BaseModel):
    """
    Reschedule request.

    stylist_id is optional; when omitted the new booking keeps the original
    stylist.
    """

    new_date: date
    new_time: str = Field(..., pattern=HHMM_PATTERN)
    stylist_id: UUID | None = None
    reason: str | None = Field(default=None, max_length=500)


# ============================================================================
# Calendar inputs
# ============================================================================


class GetResourceCalendarInput(BaseModel):
    branch_id: UUID
    date: date
    view: Literal["day", "week"] = "day"


class MoveAppointmentInput(BaseModel):
    """Drag-drop move of an appointment to a new slot and/or stylist."""

    new_date: date
    new_time: str = Field(..., pattern=HHMM_PATTERN)
    new_stylist_id: UUID | None = None


# ============================================================================
# Query inputs
# ============================================================================

SORTABLE_FIELDS = ("scheduled_date", "scheduled_time", "created_at", "total_amount", "status")


class ListAppointmentsInput(BaseModel):
    """
    Filters for listing appointments.

    status and booking_type accept a single value or a list.
    """

    branch_id: UUID | None = None
    stylist_id: UUID | None = None
    customer_id: UUID | None = None
    status: AppointmentStatus | list[AppointmentStatus] | None = None
    booking_type: BookingType | list[BookingType] | None = None
    date_from: date | None = None
    date_to: date | None = None
    search: str | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    sort_by: str = "scheduled_date"
    sort_order: Literal["asc", "desc"] = "desc"

    @field_validator("sort_by")
    @classmethod
    def validate_sort_by(cls, value: str) -> str:
        if value not in SORTABLE_FIELDS:
            raise ValueError(f"sort_by must be one of {', '.join(SORTABLE_FIELDS)}")
        return value


# ============================================================================
# Calendar read-model
# ============================================================================


class WorkingHours(BaseModel):
    start: str
    end: str


class CalendarBreak(BaseModel):
    id: UUID
    start: str
    end: str
    name: str


class CalendarBlockedSlot(BaseModel):
    id: UUID
    date: date
    start: str
    end: str
    reason: str | None = None
    is_full_day: bool


class CalendarStylist(BaseModel):
    """One column of the resource calendar."""

    id: UUID
    name: str
    avatar: str | None = None
    color: str
    is_available: bool
    working_hours: WorkingHours
    breaks: list[CalendarBreak] = Field(default_factory=list)
    blocked_slots: list[CalendarBlockedSlot] = Field(default_factory=list)


class CalendarAppointment(BaseModel):
    """Flat projection of an appointment for calendar rendering."""

    model_config = ConfigDict(use_enum_values=True)

    id: UUID
    stylist_id: UUID | None = None
    date: date
    start_time: str
    end_time: str
    customer_name: str
    customer_phone: str | None = None
    services: list[str] = Field(default_factory=list)
    status: AppointmentStatus
    booking_type: BookingType
    total_amount: float
    has_conflict: bool


class ResourceCalendar(BaseModel):
    date: date
    view: Literal["day", "week"]
    stylists: list[CalendarStylist]
    appointments: list[CalendarAppointment]
    working_hours: WorkingHours


class ConflictingAppointment(BaseModel):
    """An existing appointment that overlaps a proposed slot."""

    model_config = ConfigDict(use_enum_values=True)

    id: UUID
    scheduled_time: str
    end_time: str
    customer_name: str | None = None
    status: AppointmentStatus


# ============================================================================
# Availability
# ============================================================================


class GetAvailableSlotsInput(BaseModel):
    """
    Free-slot search for one branch day.

    duration_minutes is the total length of the services being booked.
    stylist_id restricts the search to one stylist.
    """

    branch_id: UUID
    date: date
    duration_minutes: int = Field(..., ge=1, le=720)
    stylist_id: UUID | None = None


class AvailableSlot(BaseModel):
    time: str
    end_time: str
    stylist_id: UUID
    stylist_name: str


class AvailableSlots(BaseModel):
    """Free start times of a day, each with the first stylist who can take it."""

    date: date
    slots: list[AvailableSlot] = Field(default_factory=list)
    next_available_date: date | None = None


class AvailableStylist(BaseModel):
    id: UUID
    name: str


# ============================================================================
# Results
# ============================================================================


@dataclass
class RescheduleResult:
    """Outcome of a reschedule: the superseded record and its replacement."""

    original: Appointment
    new: Appointment
    reschedule_count: int


@dataclass
class PaginationMeta:
    page: int
    limit: int
    total: int
    total_pages: int


@dataclass
class AppointmentPage:
    data: list[Appointment]
    meta: PaginationMeta
