"""
Availability Service - Free slots and stylist assignment for new bookings.

Answers "when can this be booked, and with whom" for one branch day using the
same rules that guard moves and reschedules:
- Branch working hours for the weekday (closed days have no slots)
- Live appointments of the stylist (cancelled, no-show and rescheduled free
  their slot; completed ones do not)
- Blocked slots on the date and active breaks for the weekday

All reads are plain selects: nothing here locks rows. The writer that finally
books or moves an appointment re-checks under lock.

Usage:
    service = AvailabilityService()

    day = await service.get_available_slots(
        tenant_id,
        GetAvailableSlotsInput(branch_id=branch_id, date=date(2026, 2, 10), duration_minutes=90),
    )
    day.slots[0].time          # "09:30"
    day.next_available_date    # only set when the day has no slots

    stylist_id = await service.auto_assign_stylist(
        tenant_id, branch_id, date(2026, 2, 10), "11:00", 90
    )
"""

import logging
from datetime import date, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import SessionFactory, get_async_session
from database.models import Appointment, Branch, Stylist
from scheduling.schemas import (
    AvailableSlot,
    AvailableSlots,
    AvailableStylist,
    GetAvailableSlotsInput,
    WorkingHours,
)
from scheduling.services.calendar_service import CalendarConfig
from scheduling.state_machine import INACTIVE_STATUSES
from scheduling.validators.conflict_validators import (
    Window,
    branch_stylists_query,
    find_branch_stylist,
    find_conflicting_appointments,
    is_stylist_blocked,
    live_appointments_query,
    load_unavailable_windows,
    slots_overlap,
)
from shared.config import get_settings
from shared.errors import NotFoundError
from shared.time_utils import calculate_end_time, day_name, format_hhmm, parse_hhmm

logger = logging.getLogger(__name__)


def open_hours(
    branch_hours: dict[str, Any] | None, target: date, config: CalendarConfig
) -> WorkingHours | None:
    """
    Bookable hours of a branch on a date, or None if the branch is closed.

    A branch with no working-hours configuration at all uses the configured
    default. Once a branch has a configuration, a missing day or a day marked
    closed means no bookings that day.
    """
    if not branch_hours:
        return config.default_hours

    day_hours = branch_hours.get(day_name(target))
    if not day_hours or not day_hours.get("isOpen"):
        return None

    return WorkingHours(
        start=day_hours.get("openTime") or config.default_open_time,
        end=day_hours.get("closeTime") or config.default_close_time,
    )


def candidate_start_times(
    hours: WorkingHours, duration_minutes: int, interval_minutes: int
) -> list[str]:
    """
    Start times on the interval grid from opening time whose slot ends by closing time.

    Examples:
        >>> candidate_start_times(WorkingHours(start="09:00", end="10:00"), 30, 15)
        ['09:00', '09:15', '09:30']
    """
    open_minutes = parse_hhmm(hours.start)
    close_minutes = parse_hhmm(hours.end)
    return [
        format_hhmm(minutes)
        for minutes in range(open_minutes, close_minutes, interval_minutes)
        if minutes + duration_minutes <= close_minutes
    ]


def is_window_free(start_time: str, end_time: str, busy: list[Window]) -> bool:
    return not any(
        slots_overlap(start_time, end_time, busy_start, busy_end) for busy_start, busy_end in busy
    )


class AvailabilityService:
    """
    Availability queries for booking.

    Args:
        session_factory: Async context manager factory yielding sessions
        config: Default working hours for branches without configuration
        slot_interval_minutes: Override for SLOT_INTERVAL_MINUTES
        search_days: Override for AVAILABILITY_SEARCH_DAYS
    """

    def __init__(
        self,
        session_factory: SessionFactory = get_async_session,
        config: CalendarConfig | None = None,
        slot_interval_minutes: int | None = None,
        search_days: int | None = None,
    ):
        self._session_factory = session_factory
        self.config = config or CalendarConfig.from_settings()
        self.slot_interval_minutes = (
            slot_interval_minutes
            if slot_interval_minutes is not None
            else get_settings().SLOT_INTERVAL_MINUTES
        )
        self.search_days = (
            search_days if search_days is not None else get_settings().AVAILABILITY_SEARCH_DAYS
        )

    # ------------------------------------------------------------------
    # Slot search
    # ------------------------------------------------------------------

    async def get_available_slots(
        self, tenant_id: UUID, query: GetAvailableSlotsInput
    ) -> AvailableSlots:
        """
        Free start times of a branch day for a booking of the given length.

        Each start time is listed once, with the first free stylist in
        (name, id) order. When the day has no free slot (closed, no eligible
        stylist, or fully booked) next_available_date is the next open day.

        Raises:
            NotFoundError: CAL_001 if the branch does not exist in the tenant
        """
        async with self._session_factory() as session:
            branch = await self._load_branch(session, tenant_id, query.branch_id)
            hours = open_hours(branch.working_hours, query.date, self.config)

            slots: list[AvailableSlot] = []
            if hours is not None:
                stmt = branch_stylists_query(tenant_id, query.branch_id).order_by(
                    Stylist.name, Stylist.id
                )
                if query.stylist_id is not None:
                    stmt = stmt.where(Stylist.id == query.stylist_id)
                stylists = list((await session.execute(stmt)).scalars().all())

                if stylists:
                    busy = await self._busy_windows(
                        session, tenant_id, query.branch_id, [s.id for s in stylists], query.date
                    )
                    for start_time in candidate_start_times(
                        hours, query.duration_minutes, self.slot_interval_minutes
                    ):
                        end_time = calculate_end_time(start_time, query.duration_minutes)
                        for stylist in stylists:
                            if is_window_free(start_time, end_time, busy.get(stylist.id, [])):
                                slots.append(
                                    AvailableSlot(
                                        time=start_time,
                                        end_time=end_time,
                                        stylist_id=stylist.id,
                                        stylist_name=stylist.name,
                                    )
                                )
                                break

        next_available_date = None
        if not slots:
            next_available_date = self._next_open_date(branch.working_hours, query.date)

        logger.info(
            f"Found {len(slots)} available slots on {query.date} "
            f"for {query.duration_minutes} min",
            extra={"tenant_id": tenant_id, "branch_id": query.branch_id},
        )
        return AvailableSlots(
            date=query.date, slots=slots, next_available_date=next_available_date
        )

    async def find_next_available_date(
        self, tenant_id: UUID, branch_id: UUID, from_date: date
    ) -> date | None:
        """
        First day after from_date on which the branch is open.

        Looks search_days ahead and returns None if every day is closed.

        Raises:
            NotFoundError: CAL_001 if the branch does not exist in the tenant
        """
        async with self._session_factory() as session:
            branch = await self._load_branch(session, tenant_id, branch_id)
        return self._next_open_date(branch.working_hours, from_date)

    # ------------------------------------------------------------------
    # Single slot
    # ------------------------------------------------------------------

    async def is_slot_available(
        self,
        tenant_id: UUID,
        branch_id: UUID,
        stylist_id: UUID,
        target_date: date,
        start_time: str,
        duration_minutes: int,
    ) -> bool:
        """
        Whether one stylist can take a booking at an exact slot.

        False when the branch is closed that day, the slot starts before
        opening or ends after closing, the stylist cannot work at the branch,
        or the stylist is busy, blocked or on a break.

        Raises:
            NotFoundError: CAL_001 if the branch does not exist in the tenant
        """
        async with self._session_factory() as session:
            branch = await self._load_branch(session, tenant_id, branch_id)
            hours = open_hours(branch.working_hours, target_date, self.config)
            if hours is None:
                return False

            if (
                parse_hhmm(start_time) < parse_hhmm(hours.start)
                or parse_hhmm(start_time) + duration_minutes > parse_hhmm(hours.end)
            ):
                return False

            if await find_branch_stylist(session, tenant_id, branch_id, stylist_id) is None:
                return False

            return await self._is_stylist_free(
                session, tenant_id, branch_id, stylist_id, target_date, start_time, duration_minutes
            )

    async def get_available_stylists(
        self,
        tenant_id: UUID,
        branch_id: UUID,
        target_date: date,
        start_time: str,
        duration_minutes: int,
    ) -> list[AvailableStylist]:
        """Stylists of the branch who are free for the whole slot, in (name, id) order."""
        async with self._session_factory() as session:
            stylists = await self._available_stylists(
                session, tenant_id, branch_id, target_date, start_time, duration_minutes
            )
        return [AvailableStylist(id=s.id, name=s.name) for s in stylists]

    async def auto_assign_stylist(
        self,
        tenant_id: UUID,
        branch_id: UUID,
        target_date: date,
        start_time: str,
        duration_minutes: int,
    ) -> UUID | None:
        """
        Pick a free stylist for a slot, preferring the lightest day.

        Workload is the number of live appointments the stylist has on that
        date across the tenant. Ties go to the first stylist in (name, id)
        order.

        Returns:
            Stylist id, or None when nobody is free
        """
        async with self._session_factory() as session:
            stylists = await self._available_stylists(
                session, tenant_id, branch_id, target_date, start_time, duration_minutes
            )
            if not stylists:
                logger.info(
                    f"No stylist free on {target_date} {start_time} for {duration_minutes} min",
                    extra={"tenant_id": tenant_id, "branch_id": branch_id},
                )
                return None

            result = await session.execute(
                select(Appointment.stylist_id, func.count(Appointment.id))
                .where(
                    Appointment.tenant_id == tenant_id,
                    Appointment.stylist_id.in_([s.id for s in stylists]),
                    Appointment.scheduled_date == target_date,
                    Appointment.status.notin_(list(INACTIVE_STATUSES)),
                    Appointment.deleted_at.is_(None),
                )
                .group_by(Appointment.stylist_id)
            )
            workloads = {stylist_id: count for stylist_id, count in result.all()}

        # min() keeps the first of equal workloads
        chosen = min(stylists, key=lambda s: workloads.get(s.id, 0))

        logger.info(
            f"Auto-assigned stylist {chosen.id} ({workloads.get(chosen.id, 0)} appointments "
            f"on {target_date})",
            extra={"tenant_id": tenant_id, "branch_id": branch_id, "stylist_id": chosen.id},
        )
        return chosen.id

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_branch(self, session: AsyncSession, tenant_id: UUID, branch_id: UUID) -> Branch:
        branch = (
            await session.execute(
                select(Branch).where(
                    Branch.id == branch_id,
                    Branch.tenant_id == tenant_id,
                    Branch.deleted_at.is_(None),
                )
            )
        ).scalar_one_or_none()

        if branch is None:
            logger.warning(
                f"Branch not found: {branch_id}",
                extra={"tenant_id": tenant_id, "branch_id": branch_id, "error_code": "CAL_001"},
            )
            raise NotFoundError("Branch not found", error_code="CAL_001")
        return branch

    def _next_open_date(self, branch_hours: dict[str, Any] | None, from_date: date) -> date | None:
        for offset in range(1, self.search_days + 1):
            candidate = from_date + timedelta(days=offset)
            if open_hours(branch_hours, candidate, self.config) is not None:
                return candidate
        return None

    async def _busy_windows(
        self,
        session: AsyncSession,
        tenant_id: UUID,
        branch_id: UUID,
        stylist_ids: list[UUID],
        target_date: date,
    ) -> dict[UUID, list[Window]]:
        """Appointments, blocked slots and breaks of several stylists for one day."""
        busy = await load_unavailable_windows(session, tenant_id, stylist_ids, target_date)

        appointments = await session.execute(
            live_appointments_query(tenant_id, branch_id, target_date).where(
                Appointment.stylist_id.in_(stylist_ids)
            )
        )
        for apt in appointments.scalars().all():
            busy[apt.stylist_id].append((apt.scheduled_time, apt.end_time))

        return busy

    async def _is_stylist_free(
        self,
        session: AsyncSession,
        tenant_id: UUID,
        branch_id: UUID,
        stylist_id: UUID,
        target_date: date,
        start_time: str,
        duration_minutes: int,
    ) -> bool:
        conflicts = await find_conflicting_appointments(
            session,
            tenant_id,
            branch_id,
            stylist_id,
            target_date,
            start_time,
            duration_minutes,
            for_update=False,
        )
        if conflicts:
            return False

        end_time = calculate_end_time(start_time, duration_minutes)
        return not await is_stylist_blocked(
            session, tenant_id, stylist_id, target_date, start_time, end_time
        )

    async def _available_stylists(
        self,
        session: AsyncSession,
        tenant_id: UUID,
        branch_id: UUID,
        target_date: date,
        start_time: str,
        duration_minutes: int,
    ) -> list[Stylist]:
        stylists = (
            await session.execute(
                branch_stylists_query(tenant_id, branch_id).order_by(Stylist.name, Stylist.id)
            )
        ).scalars().all()

        return [
            stylist
            for stylist in stylists
            if await self._is_stylist_free(
                session, tenant_id, branch_id, stylist.id, target_date, start_time, duration_minutes
            )
        ]
