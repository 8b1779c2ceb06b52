"""
Slot validators.

Validators:
- find_conflicting_appointments: Overlapping live appointments for a stylist/day
- find_branch_stylist: Tenant- and branch-scoped stylist lookup
- is_stylist_blocked: Blocked-slot and break check for a stylist/day/window
- load_unavailable_windows: Blocked slots and breaks of several stylists for a day
"""

from scheduling.validators.conflict_validators import (
    branch_stylists_query,
    find_branch_stylist,
    find_conflicting_appointments,
    is_stylist_blocked,
    live_appointments_query,
    load_unavailable_windows,
    slots_overlap,
)

__all__ = [
    "branch_stylists_query",
    "find_branch_stylist",
    "find_conflicting_appointments",
    "is_stylist_blocked",
    "live_appointments_query",
    "load_unavailable_windows",
    "slots_overlap",
]
