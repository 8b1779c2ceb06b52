"""
Appointment lifecycle and scheduling-conflict core.

Subpackages:
- services: lifecycle, calendar and query services
- validators: conflict and stylist-unavailability checks
"""
