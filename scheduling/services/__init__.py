"""
Scheduling services.

Services:
- lifecycle_service: Status transitions, no-show escalation, reschedule chains
- calendar_service: Resource calendar read-model, conflict checks, moves
- availability_service: Free slots, stylist availability and auto-assignment
- appointment_query_service: Appointment lookups and listings
- no_show_policy: Customer no-show escalation ladder
- audit_service: Audit trail and status history writers
"""

from scheduling.services.appointment_query_service import (
    AppointmentQueryService,
    load_appointment,
)
from scheduling.services.availability_service import AvailabilityService
from scheduling.services.calendar_service import CalendarConfig, CalendarService
from scheduling.services.lifecycle_service import AppointmentLifecycleService
from scheduling.services.no_show_policy import apply_no_show, booking_status_for_count

__all__ = [
    # Lifecycle
    "AppointmentLifecycleService",
    # Calendar
    "CalendarConfig",
    "CalendarService",
    # Availability
    "AvailabilityService",
    # Queries
    "AppointmentQueryService",
    "load_appointment",
    # No-show policy
    "apply_no_show",
    "booking_status_for_count",
]
