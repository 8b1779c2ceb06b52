r"""
Appointment lifecycle state machine.

The transition table is the single source of truth for which lifecycle verb
is legal from which appointment status. Services consult it before any
mutation; nothing else decides legality.

                    confirm
        booked ───────────────► confirmed
          │  \                     │
          │   \ check_in           │ check_in
          │    ▼                   ▼
          │   checked_in ◄─────────┘
          │      │ start
          │      ▼
          │   in_progress ── complete ──► completed
          │
          └─ cancel / mark_no_show / reschedule ──► cancelled / no_show / rescheduled

Usage:
    from scheduling.state_machine import LifecycleVerb, AppointmentStateMachine

    if not AppointmentStateMachine.can_transition(appointment.status, LifecycleVerb.START):
        ...
    appointment.status = AppointmentStateMachine.next_status(LifecycleVerb.START)
"""

from enum import Enum
from typing import ClassVar

from database.models import AppointmentStatus


class LifecycleVerb(str, Enum):
    """Operations that move an appointment through its lifecycle."""

    CONFIRM = "confirm"
    CHECK_IN = "check_in"
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"
    MARK_NO_SHOW = "mark_no_show"
    RESCHEDULE = "reschedule"


TERMINAL_STATUSES: frozenset[AppointmentStatus] = frozenset(
    {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
        AppointmentStatus.RESCHEDULED,
    }
)

# Statuses that free the stylist's slot.
# Completed appointments still block their slot.
INACTIVE_STATUSES: frozenset[AppointmentStatus] = frozenset(
    {
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
        AppointmentStatus.RESCHEDULED,
    }
)

_NON_TERMINAL = frozenset(AppointmentStatus) - TERMINAL_STATUSES


class AppointmentStateMachine:
    """Closed transition table for appointment statuses."""

    # verb -> (legal source statuses, target status)
    TRANSITIONS: ClassVar[
        dict[LifecycleVerb, tuple[frozenset[AppointmentStatus], AppointmentStatus]]
    ] = {
        LifecycleVerb.CONFIRM: (
            frozenset({AppointmentStatus.BOOKED}),
            AppointmentStatus.CONFIRMED,
        ),
        LifecycleVerb.CHECK_IN: (
            frozenset({AppointmentStatus.BOOKED, AppointmentStatus.CONFIRMED}),
            AppointmentStatus.CHECKED_IN,
        ),
        LifecycleVerb.START: (
            frozenset({AppointmentStatus.CHECKED_IN}),
            AppointmentStatus.IN_PROGRESS,
        ),
        LifecycleVerb.COMPLETE: (
            frozenset({AppointmentStatus.IN_PROGRESS}),
            AppointmentStatus.COMPLETED,
        ),
        LifecycleVerb.RESCHEDULE: (
            frozenset(
                {
                    AppointmentStatus.BOOKED,
                    AppointmentStatus.CONFIRMED,
                    AppointmentStatus.CHECKED_IN,
                }
            ),
            AppointmentStatus.RESCHEDULED,
        ),
        LifecycleVerb.MARK_NO_SHOW: (_NON_TERMINAL, AppointmentStatus.NO_SHOW),
        LifecycleVerb.CANCEL: (_NON_TERMINAL, AppointmentStatus.CANCELLED),
    }

    # Phrase used in "Cannot <phrase> in current status"
    VERB_PHRASES: ClassVar[dict[LifecycleVerb, str]] = {
        LifecycleVerb.CONFIRM: "confirm appointment",
        LifecycleVerb.CHECK_IN: "check in appointment",
        LifecycleVerb.START: "start appointment",
        LifecycleVerb.COMPLETE: "complete appointment",
        LifecycleVerb.CANCEL: "cancel appointment",
        LifecycleVerb.MARK_NO_SHOW: "mark as no-show",
        LifecycleVerb.RESCHEDULE: "reschedule appointment",
    }

    @classmethod
    def can_transition(cls, status: AppointmentStatus | str, verb: LifecycleVerb) -> bool:
        """Check whether verb is legal from status."""
        sources, _ = cls.TRANSITIONS[verb]
        return AppointmentStatus(status) in sources

    @classmethod
    def next_status(cls, verb: LifecycleVerb) -> AppointmentStatus:
        """Target status of a verb."""
        return cls.TRANSITIONS[verb][1]

    @classmethod
    def illegal_message(cls, verb: LifecycleVerb) -> str:
        return f"Cannot {cls.VERB_PHRASES[verb]} in current status"

    @classmethod
    def allowed_verbs(cls, status: AppointmentStatus | str) -> list[LifecycleVerb]:
        """All verbs legal from status, in declaration order."""
        return [verb for verb in cls.TRANSITIONS if cls.can_transition(status, verb)]


def is_terminal(status: AppointmentStatus | str) -> bool:
    return AppointmentStatus(status) in TERMINAL_STATUSES
