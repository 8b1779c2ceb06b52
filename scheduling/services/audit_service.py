"""
Audit trail and status history writers.

Both helpers only add rows to the caller's session; the caller's transaction
decides whether they are committed together with the change they describe.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Appointment, AppointmentStatusHistory, AuditLog

logger = logging.getLogger(__name__)

ENTITY_APPOINTMENT = "appointment"


class AuditAction:
    """Audit action names written by the scheduling core."""

    STATUS_CHANGED = "APPOINTMENT_STATUS_CHANGED"
    CANCELLED = "APPOINTMENT_CANCELLED"
    NO_SHOW_MARKED = "NO_SHOW_MARKED"
    RESCHEDULED = "APPOINTMENT_RESCHEDULED"
    MOVED = "APPOINTMENT_MOVED"
    CONFLICT_RESOLVED = "CONFLICT_RESOLVED"


def record_audit(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    action: str,
    entity_id: UUID | str,
    user_id: str | None = None,
    branch_id: UUID | None = None,
    entity_type: str = ENTITY_APPOINTMENT,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
) -> AuditLog:
    """Append an audit entry to the session."""
    entry = AuditLog(
        tenant_id=tenant_id,
        branch_id=branch_id,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        old_values=old_values,
        new_values=new_values,
    )
    session.add(entry)
    logger.debug(
        f"Audit {action} on {entity_type}:{entity_id}",
        extra={"tenant_id": tenant_id, "user_id": user_id},
    )
    return entry


def record_status_change(
    session: AsyncSession,
    appointment: Appointment,
    from_status: str | None,
    to_status: str,
    changed_by: str | None,
    notes: str | None = None,
) -> AppointmentStatusHistory:
    """Append a status history row for an appointment."""
    entry = AppointmentStatusHistory(
        tenant_id=appointment.tenant_id,
        appointment_id=appointment.id,
        from_status=str(from_status) if from_status is not None else None,
        to_status=str(to_status),
        changed_by=changed_by,
        notes=notes,
    )
    session.add(entry)
    return entry


def id_or_none(value: UUID | None) -> str | None:
    """Render an optional id for an audit payload."""
    return str(value) if value is not None else None
