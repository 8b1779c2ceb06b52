"""
Calendar Service - Resource calendar read-model and drag-drop moves.

The resource calendar is a stylist x time grid for one branch over a day or
a Monday..Sunday week. Moves change date, time and/or stylist of a live
appointment in place after checking for conflicts and stylist blocks.

Usage:
    service = CalendarService()

    calendar = await service.get_resource_calendar(
        tenant_id, GetResourceCalendarInput(branch_id=branch_id, date=date(2026, 2, 10))
    )
    moved = await service.move_appointment(
        tenant_id,
        appointment_id,
        MoveAppointmentInput(new_date=date(2026, 2, 10), new_time="11:00"),
        user_id="staff-1",
    )
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from database.connection import SessionFactory, get_async_session
from database.models import (
    Appointment,
    Branch,
    Stylist,
    StylistBlockedSlot,
    StylistBreak,
)
from scheduling.schemas import (
    CalendarAppointment,
    CalendarBlockedSlot,
    CalendarBreak,
    CalendarStylist,
    ConflictingAppointment,
    GetResourceCalendarInput,
    MoveAppointmentInput,
    ResourceCalendar,
    WorkingHours,
)
from scheduling.services.appointment_query_service import load_appointment
from scheduling.services.audit_service import AuditAction, id_or_none, record_audit
from scheduling.state_machine import INACTIVE_STATUSES, TERMINAL_STATUSES
from scheduling.validators.conflict_validators import (
    BLOCK_DEFAULT_END,
    BLOCK_DEFAULT_START,
    branch_stylists_query,
    find_branch_stylist,
    find_conflicting_appointments,
    is_stylist_blocked,
)
from shared.config import get_settings
from shared.errors import (
    IllegalTransitionError,
    NotFoundError,
    ResourceUnavailableError,
    SchedulingConflictError,
)
from shared.time_utils import calculate_end_time, day_name, week_bounds

logger = logging.getLogger(__name__)

GUEST_NAME = "Guest"

DEFAULT_PALETTE = [
    "#6366f1",  # indigo
    "#ec4899",  # pink
    "#14b8a6",  # teal
    "#f59e0b",  # amber
    "#8b5cf6",  # violet
    "#10b981",  # emerald
    "#f97316",  # orange
    "#06b6d4",  # cyan
]


@dataclass
class CalendarConfig:
    """Display configuration for the resource calendar."""

    palette: list[str] = field(default_factory=lambda: list(DEFAULT_PALETTE))
    default_open_time: str = "09:00"
    default_close_time: str = "21:00"

    @classmethod
    def from_settings(cls) -> "CalendarConfig":
        settings = get_settings()
        return cls(
            palette=settings.stylist_palette or list(DEFAULT_PALETTE),
            default_open_time=settings.DEFAULT_OPEN_TIME,
            default_close_time=settings.DEFAULT_CLOSE_TIME,
        )

    @property
    def default_hours(self) -> WorkingHours:
        return WorkingHours(start=self.default_open_time, end=self.default_close_time)

    def color_for(self, index: int) -> str:
        return self.palette[index % len(self.palette)]


def resolve_working_hours(
    branch_hours: dict[str, Any] | None, target: date, config: CalendarConfig
) -> WorkingHours:
    """
    Working hours of a branch for one date.

    Falls back to the configured default when the branch has no entry for
    that day or the day is marked closed.
    """
    if not branch_hours:
        return config.default_hours

    day_hours = branch_hours.get(day_name(target))
    if not day_hours or not day_hours.get("isOpen"):
        return config.default_hours

    return WorkingHours(
        start=day_hours.get("openTime") or config.default_open_time,
        end=day_hours.get("closeTime") or config.default_close_time,
    )


def project_appointment(apt: Appointment) -> CalendarAppointment:
    """Flatten an appointment (customer and services loaded) for the calendar."""
    customer = apt.customer
    return CalendarAppointment(
        id=apt.id,
        stylist_id=apt.stylist_id,
        date=apt.scheduled_date,
        start_time=apt.scheduled_time,
        end_time=apt.end_time,
        customer_name=(customer.name if customer else None) or apt.customer_name or GUEST_NAME,
        customer_phone=(customer.phone if customer else None) or apt.customer_phone,
        services=[line.service_name for line in apt.services],
        status=apt.status,
        booking_type=apt.booking_type,
        total_amount=float(apt.total_amount or Decimal("0")),
        has_conflict=apt.has_conflict,
    )


def project_conflicts(conflicts: list[Appointment]) -> list[dict[str, Any]]:
    return [
        ConflictingAppointment.model_validate(apt, from_attributes=True).model_dump(mode="json")
        for apt in conflicts
    ]


class CalendarService:
    """
    Resource calendar queries and appointment moves.

    Args:
        session_factory: Async context manager factory yielding sessions
        config: Palette and default working hours (defaults from settings)
    """

    def __init__(
        self,
        session_factory: SessionFactory = get_async_session,
        config: CalendarConfig | None = None,
    ):
        self._session_factory = session_factory
        self.config = config or CalendarConfig.from_settings()

    async def get_resource_calendar(
        self, tenant_id: UUID, query: GetResourceCalendarInput
    ) -> ResourceCalendar:
        """
        Build the stylist x time grid for a branch.

        Stylists are active, non-deleted stylists assigned to the branch,
        ordered by (name, id) so colors stay stable between calls.

        Raises:
            NotFoundError: CAL_001 if the branch does not exist in the tenant
        """
        if query.view == "week":
            window_start, window_end = week_bounds(query.date)
        else:
            window_start = window_end = query.date

        async with self._session_factory() as session:
            branch = (
                await session.execute(
                    select(Branch).where(
                        Branch.id == query.branch_id,
                        Branch.tenant_id == tenant_id,
                        Branch.deleted_at.is_(None),
                    )
                )
            ).scalar_one_or_none()

            if branch is None:
                logger.warning(
                    f"Branch not found: {query.branch_id}",
                    extra={"tenant_id": tenant_id, "branch_id": query.branch_id, "error_code": "CAL_001"},
                )
                raise NotFoundError("Branch not found", error_code="CAL_001")

            working_hours = resolve_working_hours(branch.working_hours, query.date, self.config)

            stylists = list(
                (
                    await session.execute(
                        branch_stylists_query(tenant_id, query.branch_id).order_by(
                            Stylist.name, Stylist.id
                        )
                    )
                ).scalars().all()
            )
            stylist_ids = [s.id for s in stylists]

            breaks: list[StylistBreak] = []
            blocked_slots: list[StylistBlockedSlot] = []
            if stylist_ids:
                breaks = list(
                    (
                        await session.execute(
                            select(StylistBreak)
                            .where(
                                StylistBreak.tenant_id == tenant_id,
                                StylistBreak.stylist_id.in_(stylist_ids),
                                StylistBreak.is_active.is_(True),
                            )
                            .order_by(StylistBreak.start_time)
                        )
                    ).scalars().all()
                )
                blocked_slots = list(
                    (
                        await session.execute(
                            select(StylistBlockedSlot)
                            .where(
                                StylistBlockedSlot.tenant_id == tenant_id,
                                StylistBlockedSlot.stylist_id.in_(stylist_ids),
                                StylistBlockedSlot.blocked_date >= window_start,
                                StylistBlockedSlot.blocked_date <= window_end,
                            )
                            .order_by(StylistBlockedSlot.blocked_date, StylistBlockedSlot.start_time)
                        )
                    ).scalars().all()
                )

            appointments = (
                await session.execute(
                    select(Appointment)
                    .where(
                        Appointment.tenant_id == tenant_id,
                        Appointment.branch_id == query.branch_id,
                        Appointment.scheduled_date >= window_start,
                        Appointment.scheduled_date <= window_end,
                        Appointment.status.notin_(list(INACTIVE_STATUSES)),
                        Appointment.deleted_at.is_(None),
                    )
                    .options(
                        selectinload(Appointment.services),
                        selectinload(Appointment.customer),
                    )
                    .order_by(Appointment.scheduled_date, Appointment.scheduled_time)
                )
            ).scalars().all()

            calendar_stylists = [
                self._project_stylist(index, stylist, breaks, blocked_slots, working_hours, query.date)
                for index, stylist in enumerate(stylists)
            ]
            calendar_appointments = [project_appointment(apt) for apt in appointments]

        logger.debug(
            f"Resource calendar {query.view} {window_start}..{window_end}: "
            f"{len(calendar_stylists)} stylists, {len(calendar_appointments)} appointments",
            extra={"tenant_id": tenant_id, "branch_id": query.branch_id},
        )

        return ResourceCalendar(
            date=query.date,
            view=query.view,
            stylists=calendar_stylists,
            appointments=calendar_appointments,
            working_hours=working_hours,
        )

    def _project_stylist(
        self,
        index: int,
        stylist: Stylist,
        breaks: list[StylistBreak],
        blocked_slots: list[StylistBlockedSlot],
        working_hours: WorkingHours,
        requested_date: date,
    ) -> CalendarStylist:
        own_blocks = [b for b in blocked_slots if b.stylist_id == stylist.id]
        full_day_blocked = any(
            b.is_full_day and b.blocked_date == requested_date for b in own_blocks
        )
        return CalendarStylist(
            id=stylist.id,
            name=stylist.name,
            avatar=stylist.avatar_url,
            color=self.config.color_for(index),
            is_available=not full_day_blocked,
            working_hours=working_hours,
            breaks=[
                CalendarBreak(id=b.id, start=b.start_time, end=b.end_time, name=b.name)
                for b in breaks
                if b.stylist_id == stylist.id
            ],
            blocked_slots=[
                CalendarBlockedSlot(
                    id=b.id,
                    date=b.blocked_date,
                    start=b.start_time or BLOCK_DEFAULT_START,
                    end=b.end_time or BLOCK_DEFAULT_END,
                    reason=b.reason,
                    is_full_day=b.is_full_day,
                )
                for b in own_blocks
            ],
        )

    async def check_conflicts(
        self,
        tenant_id: UUID,
        branch_id: UUID,
        target_date: date,
        start_time: str,
        duration_minutes: int,
        stylist_id: UUID | None = None,
        exclude_appointment_id: UUID | None = None,
    ) -> list[dict[str, Any]]:
        """
        List live appointments that would overlap a proposed slot.

        Without a stylist there is nothing to collide with and the result is
        empty.
        """
        if stylist_id is None:
            return []

        async with self._session_factory() as session:
            conflicts = await find_conflicting_appointments(
                session,
                tenant_id,
                branch_id,
                stylist_id,
                target_date,
                start_time,
                duration_minutes,
                exclude_appointment_id=exclude_appointment_id,
                for_update=False,
            )
            return project_conflicts(conflicts)

    async def move_appointment(
        self,
        tenant_id: UUID,
        appointment_id: UUID,
        move: MoveAppointmentInput,
        user_id: str | None = None,
    ) -> Appointment:
        """
        Move an appointment to a new date/time and optionally a new stylist.

        The duration never changes. Conflict and block checks run in the same
        transaction as the update.

        Raises:
            NotFoundError: CAL_002
            NotFoundError: CAL_005 if the new stylist is not an active stylist of
                the appointment's branch in this tenant
            IllegalTransitionError: CAL_003 for terminal statuses
            SchedulingConflictError: CAL_CONFLICT with the colliding appointments
            ResourceUnavailableError: CAL_004 if the stylist is blocked or on a break
        """
        trace_id = f"{appointment_id}_move"
        logger.info(
            f"[{trace_id}] Moving appointment to {move.new_date} {move.new_time}",
            extra={"tenant_id": tenant_id, "stylist_id": move.new_stylist_id},
        )

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    appointment = await load_appointment(
                        session, tenant_id, appointment_id, error_code="CAL_002"
                    )

                    if appointment.status in TERMINAL_STATUSES:
                        logger.warning(
                            f"[{trace_id}] Cannot move appointment in status {appointment.status}",
                            extra={"tenant_id": tenant_id, "error_code": "CAL_003"},
                        )
                        raise IllegalTransitionError(
                            "Cannot move appointment in current status",
                            error_code="CAL_003",
                            details={"status": str(appointment.status)},
                        )

                    if (
                        move.new_stylist_id is not None
                        and move.new_stylist_id != appointment.stylist_id
                        and await find_branch_stylist(
                            session, tenant_id, appointment.branch_id, move.new_stylist_id
                        )
                        is None
                    ):
                        logger.warning(
                            f"[{trace_id}] Stylist {move.new_stylist_id} not found in branch",
                            extra={"tenant_id": tenant_id, "error_code": "CAL_005"},
                        )
                        raise NotFoundError("Stylist not found", error_code="CAL_005")

                    new_end_time = calculate_end_time(move.new_time, appointment.total_duration)
                    target_stylist_id = move.new_stylist_id or appointment.stylist_id

                    if target_stylist_id is not None:
                        conflicts = await find_conflicting_appointments(
                            session,
                            tenant_id,
                            appointment.branch_id,
                            target_stylist_id,
                            move.new_date,
                            move.new_time,
                            appointment.total_duration,
                            exclude_appointment_id=appointment.id,
                        )
                        if conflicts:
                            logger.warning(
                                f"[{trace_id}] Move conflicts with {len(conflicts)} appointment(s)",
                                extra={"tenant_id": tenant_id, "error_code": "CAL_CONFLICT"},
                            )
                            raise SchedulingConflictError(
                                "Time slot conflicts with existing appointments",
                                conflicts=project_conflicts(conflicts),
                            )

                        if await is_stylist_blocked(
                            session,
                            tenant_id,
                            target_stylist_id,
                            move.new_date,
                            move.new_time,
                            new_end_time,
                        ):
                            logger.warning(
                                f"[{trace_id}] Stylist {target_stylist_id} blocked at target slot",
                                extra={"tenant_id": tenant_id, "error_code": "CAL_004"},
                            )
                            raise ResourceUnavailableError("Stylist is not available at this time")

                    old_values = {
                        "scheduledDate": appointment.scheduled_date.isoformat(),
                        "scheduledTime": appointment.scheduled_time,
                        "stylistId": id_or_none(appointment.stylist_id),
                    }

                    appointment.scheduled_date = move.new_date
                    appointment.scheduled_time = move.new_time
                    appointment.end_time = new_end_time
                    appointment.stylist_id = target_stylist_id

                    record_audit(
                        session,
                        tenant_id=tenant_id,
                        branch_id=appointment.branch_id,
                        user_id=user_id,
                        action=AuditAction.MOVED,
                        entity_id=appointment.id,
                        old_values=old_values,
                        new_values={
                            "scheduledDate": move.new_date.isoformat(),
                            "scheduledTime": move.new_time,
                            "stylistId": id_or_none(target_stylist_id),
                        },
                    )
        except SQLAlchemyError:
            logger.error(
                f"[{trace_id}] Database error during move",
                exc_info=True,
                extra={"tenant_id": tenant_id, "appointment_id": appointment_id},
            )
            raise

        logger.info(
            f"[{trace_id}] Appointment moved to {move.new_date} {move.new_time}-{new_end_time}",
            extra={"tenant_id": tenant_id, "appointment_id": appointment_id, "user_id": user_id},
        )
        return appointment
