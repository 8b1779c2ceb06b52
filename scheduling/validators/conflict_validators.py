"""
Slot validators for moves, reschedules and availability searches.

All checks run on the caller's session so they see the same transaction
the subsequent write happens in. They never open their own session.

Conflict scope is one stylist on one day: a salon's binding resource is
stylist time, not chairs or rooms.
"""

import logging
from collections import defaultdict
from datetime import date
from uuid import UUID

from sqlalchemy import Select, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    Appointment,
    Stylist,
    StylistBlockedSlot,
    StylistBranch,
    StylistBreak,
)
from scheduling.state_machine import INACTIVE_STATUSES
from shared.time_utils import (
    END_OF_DAY,
    calculate_end_time,
    effective_end,
    sunday_weekday,
    times_overlap,
)

logger = logging.getLogger(__name__)

BLOCK_DEFAULT_START = "00:00"
BLOCK_DEFAULT_END = "23:59"

# (start, end) "HH:MM" pair
Window = tuple[str, str]


def slots_overlap(start1: str, end1: str, start2: str, end2: str) -> bool:
    """
    Overlap test for stored appointment intervals.

    Same as times_overlap, except an end time earlier than its start
    (an appointment running past midnight) is treated as ending at 24:00.
    """
    return times_overlap(
        start1, effective_end(start1, end1), start2, effective_end(start2, end2)
    )


def live_appointments_query(
    tenant_id: UUID, branch_id: UUID, target_date: date
) -> Select[tuple[Appointment]]:
    """Appointments of a branch day that still occupy their stylist's time."""
    return select(Appointment).where(
        Appointment.tenant_id == tenant_id,
        Appointment.branch_id == branch_id,
        Appointment.scheduled_date == target_date,
        Appointment.status.notin_(list(INACTIVE_STATUSES)),
        Appointment.deleted_at.is_(None),
    )


async def find_conflicting_appointments(
    session: AsyncSession,
    tenant_id: UUID,
    branch_id: UUID,
    stylist_id: UUID,
    target_date: date,
    start_time: str,
    duration_minutes: int,
    exclude_appointment_id: UUID | None = None,
    for_update: bool = True,
) -> list[Appointment]:
    """
    Find live appointments of a stylist overlapping a proposed slot.

    Cancelled, no-show and rescheduled appointments free their slot.
    Soft-deleted appointments are ignored.

    Args:
        session: Session of the enclosing transaction
        tenant_id: Tenant scope
        branch_id: Branch scope
        stylist_id: Stylist whose day is checked
        target_date: Proposed date
        start_time: Proposed start "HH:MM"
        duration_minutes: Proposed duration
        exclude_appointment_id: Appointment being moved (never conflicts with itself)
        for_update: Lock the candidate rows (writers); read-only searches pass False

    Returns:
        Overlapping appointments ordered by start time (empty if the slot is free)
    """
    end_time = calculate_end_time(start_time, duration_minutes)

    stmt = (
        live_appointments_query(tenant_id, branch_id, target_date)
        .where(Appointment.stylist_id == stylist_id)
        .order_by(Appointment.scheduled_time)
    )
    if exclude_appointment_id is not None:
        stmt = stmt.where(Appointment.id != exclude_appointment_id)
    if for_update:
        stmt = stmt.with_for_update()

    result = await session.execute(stmt)
    candidates = result.scalars().all()

    conflicts = [
        apt
        for apt in candidates
        if slots_overlap(start_time, end_time, apt.scheduled_time, apt.end_time)
    ]

    if conflicts:
        logger.info(
            f"Slot {target_date} {start_time}-{end_time} conflicts with "
            f"{len(conflicts)} appointment(s)",
            extra={"tenant_id": tenant_id, "stylist_id": stylist_id},
        )

    return conflicts


def branch_stylists_query(tenant_id: UUID, branch_id: UUID) -> Select[tuple[Stylist]]:
    """Active, non-deleted stylists of the tenant assigned to a branch."""
    return (
        select(Stylist)
        .join(StylistBranch, StylistBranch.stylist_id == Stylist.id)
        .where(
            StylistBranch.branch_id == branch_id,
            Stylist.tenant_id == tenant_id,
            Stylist.is_active.is_(True),
            Stylist.deleted_at.is_(None),
        )
    )


async def find_branch_stylist(
    session: AsyncSession,
    tenant_id: UUID,
    branch_id: UUID,
    stylist_id: UUID,
) -> Stylist | None:
    """
    Load a stylist who can take appointments at a branch.

    The stylist must belong to the tenant, be active, not be soft-deleted and
    be assigned to the branch. Returns None otherwise, so a stylist id from
    another tenant looks exactly like one that does not exist.
    """
    result = await session.execute(
        branch_stylists_query(tenant_id, branch_id).where(Stylist.id == stylist_id)
    )
    return result.scalar_one_or_none()


async def load_unavailable_windows(
    session: AsyncSession,
    tenant_id: UUID,
    stylist_ids: list[UUID],
    target_date: date,
) -> dict[UUID, list[Window]]:
    """
    Collect the windows in which stylists cannot take appointments on a date.

    Two sources make a stylist unavailable:
    - Blocked slots on that date. A full-day block covers 00:00-24:00; a
      partial block with no start or end is open to the start or end of
      the day.
    - Active breaks for that weekday (0=Sunday) or for every day (NULL).

    Args:
        session: Session of the enclosing transaction
        tenant_id: Tenant scope
        stylist_ids: Stylists to load
        target_date: Date to resolve blocks and weekday breaks for

    Returns:
        Windows keyed by stylist id (stylists with none are absent)
    """
    windows: dict[UUID, list[Window]] = defaultdict(list)
    if not stylist_ids:
        return windows

    blocked = await session.execute(
        select(StylistBlockedSlot).where(
            StylistBlockedSlot.tenant_id == tenant_id,
            StylistBlockedSlot.stylist_id.in_(stylist_ids),
            StylistBlockedSlot.blocked_date == target_date,
        )
    )
    for slot in blocked.scalars().all():
        if slot.is_full_day:
            windows[slot.stylist_id].append((BLOCK_DEFAULT_START, END_OF_DAY))
        else:
            windows[slot.stylist_id].append(
                (slot.start_time or BLOCK_DEFAULT_START, slot.end_time or BLOCK_DEFAULT_END)
            )

    breaks = await session.execute(
        select(StylistBreak).where(
            StylistBreak.tenant_id == tenant_id,
            StylistBreak.stylist_id.in_(stylist_ids),
            StylistBreak.is_active.is_(True),
            or_(
                StylistBreak.day_of_week.is_(None),
                StylistBreak.day_of_week == sunday_weekday(target_date),
            ),
        )
    )
    for brk in breaks.scalars().all():
        windows[brk.stylist_id].append((brk.start_time, brk.end_time))

    return windows


async def is_stylist_blocked(
    session: AsyncSession,
    tenant_id: UUID,
    stylist_id: UUID,
    target_date: date,
    start_time: str,
    end_time: str,
) -> bool:
    """
    Check whether a blocked slot or break overlaps the proposed window.

    end_time may wrap past midnight; it is clamped to 24:00 like a stored
    appointment end.
    """
    windows = await load_unavailable_windows(session, tenant_id, [stylist_id], target_date)

    for window_start, window_end in windows.get(stylist_id, []):
        if slots_overlap(start_time, end_time, window_start, window_end):
            logger.debug(
                f"Window {target_date} {start_time}-{end_time} overlaps "
                f"unavailable {window_start}-{window_end}",
                extra={"tenant_id": tenant_id, "stylist_id": stylist_id},
            )
            return True

    return False
