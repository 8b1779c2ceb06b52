"""
Appointment Lifecycle Service - Status transitions as atomic operations.

Every operation follows the same contract:
1. Load the appointment by (tenant_id, appointment_id), ignoring soft-deleted rows
2. Validate the current status against AppointmentStateMachine
3. Apply the mutation, the status history row and the audit entry in ONE
   transaction (all succeed or all roll back)
4. Return the updated record (reschedule returns both records)

On any failure no row is mutated.

Usage:
    service = AppointmentLifecycleService()

    appointment = await service.check_in(tenant_id, appointment_id, user_id="staff-1")
    result = await service.reschedule(
        tenant_id,
        appointment_id,
        RescheduleAppointmentInput(new_date=date(2026, 2, 12), new_time="11:00"),
        user_id="staff-1",
    )
    result.new.reschedule_count  # original + 1
"""

import logging
from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import SessionFactory, get_async_session
from database.models import (
    Appointment,
    AppointmentServiceLine,
    AppointmentStatus,
    Customer,
)
from scheduling.schemas import (
    CancelAppointmentInput,
    ConflictingAppointment,
    RescheduleAppointmentInput,
    RescheduleResult,
)
from scheduling.services.appointment_query_service import load_appointment
from scheduling.services.audit_service import (
    AuditAction,
    id_or_none,
    record_audit,
    record_status_change,
)
from scheduling.services.no_show_policy import apply_no_show
from scheduling.state_machine import AppointmentStateMachine, LifecycleVerb
from scheduling.validators.conflict_validators import (
    find_branch_stylist,
    find_conflicting_appointments,
    is_stylist_blocked,
)
from shared.config import get_settings
from shared.errors import (
    IllegalTransitionError,
    LimitExceededError,
    NotFoundError,
    ResourceUnavailableError,
    SchedulingConflictError,
)
from shared.time_utils import calculate_end_time

logger = logging.getLogger(__name__)

# Reschedule uses its own status error code
VERB_ERROR_CODES = {LifecycleVerb.RESCHEDULE: "APT_021"}


class AppointmentLifecycleService:
    """
    Lifecycle operations for appointments.

    Args:
        session_factory: Async context manager factory yielding sessions
            (defaults to database.connection.get_async_session)
        max_reschedules: Override for MAX_RESCHEDULES
    """

    def __init__(
        self,
        session_factory: SessionFactory = get_async_session,
        max_reschedules: int | None = None,
    ):
        self._session_factory = session_factory
        self.max_reschedules = (
            max_reschedules
            if max_reschedules is not None
            else get_settings().MAX_RESCHEDULES
        )

    # ------------------------------------------------------------------
    # Simple transitions
    # ------------------------------------------------------------------

    async def confirm(
        self, tenant_id: UUID, appointment_id: UUID, user_id: str | None = None
    ) -> Appointment:
        """booked -> confirmed"""
        return await self._transition(tenant_id, appointment_id, LifecycleVerb.CONFIRM, user_id)

    async def check_in(
        self, tenant_id: UUID, appointment_id: UUID, user_id: str | None = None
    ) -> Appointment:
        """booked | confirmed -> checked_in"""
        return await self._transition(tenant_id, appointment_id, LifecycleVerb.CHECK_IN, user_id)

    async def start(
        self, tenant_id: UUID, appointment_id: UUID, user_id: str | None = None
    ) -> Appointment:
        """checked_in -> in_progress"""
        return await self._transition(tenant_id, appointment_id, LifecycleVerb.START, user_id)

    async def complete(
        self, tenant_id: UUID, appointment_id: UUID, user_id: str | None = None
    ) -> Appointment:
        """in_progress -> completed"""
        return await self._transition(tenant_id, appointment_id, LifecycleVerb.COMPLETE, user_id)

    async def _transition(
        self,
        tenant_id: UUID,
        appointment_id: UUID,
        verb: LifecycleVerb,
        user_id: str | None,
    ) -> Appointment:
        trace_id = f"{appointment_id}_{verb.value}"
        logger.info(f"[{trace_id}] Starting {verb.value}", extra={"tenant_id": tenant_id})

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    appointment = await load_appointment(session, tenant_id, appointment_id)
                    from_status = self._ensure_transition(appointment, verb, trace_id)
                    to_status = AppointmentStateMachine.next_status(verb)

                    appointment.status = to_status
                    record_status_change(session, appointment, from_status, to_status, user_id)
                    record_audit(
                        session,
                        tenant_id=tenant_id,
                        branch_id=appointment.branch_id,
                        user_id=user_id,
                        action=AuditAction.STATUS_CHANGED,
                        entity_id=appointment.id,
                        old_values={"status": str(from_status)},
                        new_values={"status": str(to_status)},
                    )
        except SQLAlchemyError:
            logger.error(
                f"[{trace_id}] Database error during {verb.value}",
                exc_info=True,
                extra={"tenant_id": tenant_id, "appointment_id": appointment_id},
            )
            raise

        logger.info(
            f"[{trace_id}] Appointment {from_status} -> {to_status}",
            extra={"tenant_id": tenant_id, "appointment_id": appointment_id, "user_id": user_id},
        )
        return appointment

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    async def cancel(
        self,
        tenant_id: UUID,
        appointment_id: UUID,
        data: CancelAppointmentInput,
        user_id: str | None = None,
    ) -> Appointment:
        """
        Cancel an appointment from any non-terminal status.

        Records who cancelled, when, why and whether the salon (not the
        customer) initiated it.
        """
        trace_id = f"{appointment_id}_cancel"
        logger.info(f"[{trace_id}] Starting cancellation", extra={"tenant_id": tenant_id})

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    appointment = await load_appointment(session, tenant_id, appointment_id)
                    from_status = self._ensure_transition(
                        appointment, LifecycleVerb.CANCEL, trace_id
                    )

                    appointment.status = AppointmentStatus.CANCELLED
                    appointment.cancelled_at = datetime.now(UTC)
                    appointment.cancelled_by = user_id
                    appointment.cancellation_reason = data.reason
                    appointment.is_salon_cancelled = data.is_salon_cancelled

                    record_status_change(
                        session,
                        appointment,
                        from_status,
                        AppointmentStatus.CANCELLED,
                        user_id,
                        notes=data.reason,
                    )
                    record_audit(
                        session,
                        tenant_id=tenant_id,
                        branch_id=appointment.branch_id,
                        user_id=user_id,
                        action=AuditAction.CANCELLED,
                        entity_id=appointment.id,
                        old_values={"status": str(from_status)},
                        new_values={
                            "status": str(AppointmentStatus.CANCELLED),
                            "reason": data.reason,
                            "isSalonCancelled": data.is_salon_cancelled,
                        },
                    )
        except SQLAlchemyError:
            logger.error(
                f"[{trace_id}] Database error during cancellation",
                exc_info=True,
                extra={"tenant_id": tenant_id, "appointment_id": appointment_id},
            )
            raise

        logger.info(
            f"[{trace_id}] Appointment cancelled (salon_cancelled={data.is_salon_cancelled})",
            extra={"tenant_id": tenant_id, "appointment_id": appointment_id, "user_id": user_id},
        )
        return appointment

    # ------------------------------------------------------------------
    # No-show
    # ------------------------------------------------------------------

    async def mark_no_show(
        self, tenant_id: UUID, appointment_id: UUID, user_id: str | None = None
    ) -> Appointment:
        """
        Mark an appointment as no-show and escalate the customer's standing.

        The customer's no-show count is re-read inside the same transaction
        (locked FOR UPDATE) so concurrent no-show markings for one customer
        cannot lose an increment. Guest appointments without a linked customer
        only change the appointment.

        NO_SHOW_MARKED is always audited.
        """
        trace_id = f"{appointment_id}_no_show"
        logger.info(f"[{trace_id}] Starting no-show marking", extra={"tenant_id": tenant_id})

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    appointment = await load_appointment(session, tenant_id, appointment_id)
                    from_status = self._ensure_transition(
                        appointment, LifecycleVerb.MARK_NO_SHOW, trace_id
                    )

                    appointment.status = AppointmentStatus.NO_SHOW
                    record_status_change(
                        session, appointment, from_status, AppointmentStatus.NO_SHOW, user_id
                    )

                    new_values: dict = {"status": str(AppointmentStatus.NO_SHOW)}
                    if appointment.customer_id is not None:
                        customer_update = await self._escalate_customer(
                            session, tenant_id, appointment.customer_id, trace_id
                        )
                        if customer_update:
                            new_values.update(customer_update)

                    record_audit(
                        session,
                        tenant_id=tenant_id,
                        branch_id=appointment.branch_id,
                        user_id=user_id,
                        action=AuditAction.NO_SHOW_MARKED,
                        entity_id=appointment.id,
                        old_values={"status": str(from_status)},
                        new_values=new_values,
                    )
        except SQLAlchemyError:
            logger.error(
                f"[{trace_id}] Database error during no-show marking",
                exc_info=True,
                extra={"tenant_id": tenant_id, "appointment_id": appointment_id},
            )
            raise

        logger.info(
            f"[{trace_id}] Appointment marked as no-show",
            extra={
                "tenant_id": tenant_id,
                "appointment_id": appointment_id,
                "customer_id": appointment.customer_id,
            },
        )
        return appointment

    async def _escalate_customer(
        self,
        session: AsyncSession,
        tenant_id: UUID,
        customer_id: UUID,
        trace_id: str,
    ) -> dict | None:
        stmt = (
            select(Customer)
            .where(Customer.id == customer_id, Customer.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        customer = (await session.execute(stmt)).scalar_one_or_none()
        if customer is None:
            logger.warning(
                f"[{trace_id}] Linked customer {customer_id} not found, standing unchanged",
                extra={"tenant_id": tenant_id, "customer_id": customer_id},
            )
            return None

        new_count, new_status = apply_no_show(customer.no_show_count)
        customer.no_show_count = new_count
        customer.booking_status = new_status

        logger.info(
            f"[{trace_id}] Customer no-show count {new_count}, booking status {new_status}",
            extra={"tenant_id": tenant_id, "customer_id": customer_id},
        )
        return {"noShowCount": new_count, "bookingStatus": str(new_status)}

    # ------------------------------------------------------------------
    # Reschedule
    # ------------------------------------------------------------------

    async def reschedule(
        self,
        tenant_id: UUID,
        appointment_id: UUID,
        data: RescheduleAppointmentInput,
        user_id: str | None = None,
    ) -> RescheduleResult:
        """
        Reschedule by superseding the original with a new booking.

        The original keeps its date and time, becomes RESCHEDULED and points
        forward to the new record. The new record is BOOKED at the requested
        slot with reschedule_count + 1, the same prices and copies of the
        service lines.

        Raises:
            NotFoundError: APT_040
            NotFoundError: APT_041 if the requested stylist is not an active
                stylist of the appointment's branch in this tenant
            IllegalTransitionError: APT_021 if the status cannot be rescheduled
            LimitExceededError: APT_020 once reschedule_count reaches the maximum
            SchedulingConflictError: CAL_CONFLICT if the target stylist is busy
            ResourceUnavailableError: CAL_004 if the target stylist is blocked or on a break
        """
        trace_id = f"{appointment_id}_reschedule"
        logger.info(
            f"[{trace_id}] Starting reschedule to {data.new_date} {data.new_time}",
            extra={"tenant_id": tenant_id},
        )

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    original = await load_appointment(
                        session, tenant_id, appointment_id, with_services=True
                    )
                    from_status = self._ensure_transition(
                        original, LifecycleVerb.RESCHEDULE, trace_id
                    )

                    if original.reschedule_count >= self.max_reschedules:
                        logger.warning(
                            f"[{trace_id}] Reschedule limit reached "
                            f"({original.reschedule_count}/{self.max_reschedules})",
                            extra={"tenant_id": tenant_id, "error_code": "APT_020"},
                        )
                        raise LimitExceededError(
                            f"Maximum reschedule limit ({self.max_reschedules}) reached",
                            details={
                                "reschedule_count": original.reschedule_count,
                                "max_reschedules": self.max_reschedules,
                            },
                        )

                    if (
                        data.stylist_id is not None
                        and data.stylist_id != original.stylist_id
                        and await find_branch_stylist(
                            session, tenant_id, original.branch_id, data.stylist_id
                        )
                        is None
                    ):
                        logger.warning(
                            f"[{trace_id}] Stylist {data.stylist_id} not found in branch",
                            extra={"tenant_id": tenant_id, "error_code": "APT_041"},
                        )
                        raise NotFoundError("Stylist not found", error_code="APT_041")

                    new_end_time = calculate_end_time(data.new_time, original.total_duration)
                    target_stylist_id = data.stylist_id or original.stylist_id

                    if target_stylist_id is not None:
                        await self._ensure_slot_free(
                            session,
                            tenant_id,
                            original,
                            target_stylist_id,
                            data,
                            new_end_time,
                            trace_id,
                        )

                    new_appointment = self._build_rescheduled(
                        original, data, new_end_time, target_stylist_id, user_id
                    )
                    session.add(new_appointment)

                    original.status = AppointmentStatus.RESCHEDULED
                    original.rescheduled_to_id = new_appointment.id

                    record_status_change(
                        session,
                        original,
                        from_status,
                        AppointmentStatus.RESCHEDULED,
                        user_id,
                        notes=data.reason,
                    )
                    record_status_change(
                        session,
                        new_appointment,
                        None,
                        AppointmentStatus.BOOKED,
                        user_id,
                        notes=f"Rescheduled from appointment {original.id}",
                    )
                    record_audit(
                        session,
                        tenant_id=tenant_id,
                        branch_id=original.branch_id,
                        user_id=user_id,
                        action=AuditAction.RESCHEDULED,
                        entity_id=original.id,
                        old_values={
                            "scheduledDate": original.scheduled_date.isoformat(),
                            "scheduledTime": original.scheduled_time,
                            "stylistId": id_or_none(original.stylist_id),
                            "status": str(from_status),
                        },
                        new_values={
                            "newAppointmentId": str(new_appointment.id),
                            "newScheduledDate": data.new_date.isoformat(),
                            "newScheduledTime": data.new_time,
                            "stylistId": id_or_none(target_stylist_id),
                            "rescheduleCount": new_appointment.reschedule_count,
                            "reason": data.reason,
                        },
                    )
        except SQLAlchemyError:
            logger.error(
                f"[{trace_id}] Database error during reschedule",
                exc_info=True,
                extra={"tenant_id": tenant_id, "appointment_id": appointment_id},
            )
            raise

        logger.info(
            f"[{trace_id}] Rescheduled to {new_appointment.id} "
            f"(count={new_appointment.reschedule_count})",
            extra={"tenant_id": tenant_id, "appointment_id": appointment_id, "user_id": user_id},
        )
        return RescheduleResult(
            original=original,
            new=new_appointment,
            reschedule_count=new_appointment.reschedule_count,
        )

    async def _ensure_slot_free(
        self,
        session: AsyncSession,
        tenant_id: UUID,
        original: Appointment,
        stylist_id: UUID,
        data: RescheduleAppointmentInput,
        new_end_time: str,
        trace_id: str,
    ) -> None:
        conflicts = await find_conflicting_appointments(
            session,
            tenant_id,
            original.branch_id,
            stylist_id,
            data.new_date,
            data.new_time,
            original.total_duration,
            exclude_appointment_id=original.id,
        )
        if conflicts:
            logger.warning(
                f"[{trace_id}] Reschedule target conflicts with {len(conflicts)} appointment(s)",
                extra={"tenant_id": tenant_id, "stylist_id": stylist_id, "error_code": "CAL_CONFLICT"},
            )
            raise SchedulingConflictError(
                "Time slot conflicts with existing appointments",
                conflicts=[
                    ConflictingAppointment.model_validate(apt, from_attributes=True).model_dump(
                        mode="json"
                    )
                    for apt in conflicts
                ],
            )

        if await is_stylist_blocked(
            session, tenant_id, stylist_id, data.new_date, data.new_time, new_end_time
        ):
            logger.warning(
                f"[{trace_id}] Stylist {stylist_id} blocked at reschedule target",
                extra={"tenant_id": tenant_id, "stylist_id": stylist_id, "error_code": "CAL_004"},
            )
            raise ResourceUnavailableError("Stylist is not available at this time")

    @staticmethod
    def _build_rescheduled(
        original: Appointment,
        data: RescheduleAppointmentInput,
        new_end_time: str,
        stylist_id: UUID | None,
        user_id: str | None,
    ) -> Appointment:
        new_appointment = Appointment(
            id=uuid4(),
            tenant_id=original.tenant_id,
            branch_id=original.branch_id,
            customer_id=original.customer_id,
            customer_name=original.customer_name,
            customer_phone=original.customer_phone,
            scheduled_date=data.new_date,
            scheduled_time=data.new_time,
            end_time=new_end_time,
            total_duration=original.total_duration,
            stylist_id=stylist_id,
            status=AppointmentStatus.BOOKED,
            booking_type=original.booking_type,
            reschedule_count=original.reschedule_count + 1,
            original_appointment_id=original.original_appointment_id or original.id,
            subtotal=original.subtotal,
            tax_amount=original.tax_amount,
            total_amount=original.total_amount,
            price_locked_at=original.price_locked_at,
            customer_notes=original.customer_notes,
            internal_notes=original.internal_notes,
            created_by=user_id,
        )
        new_appointment.services = [
            AppointmentServiceLine(
                tenant_id=line.tenant_id,
                service_id=line.service_id,
                service_name=line.service_name,
                unit_price=line.unit_price,
                quantity=line.quantity,
                tax_rate=line.tax_rate,
                tax_amount=line.tax_amount,
                total_amount=line.total_amount,
                duration_minutes=line.duration_minutes,
                stylist_id=data.stylist_id or line.stylist_id,
                status="pending",
            )
            for line in original.services
        ]
        return new_appointment

    # ------------------------------------------------------------------
    # Conflict flag
    # ------------------------------------------------------------------

    async def resolve_conflict(
        self, tenant_id: UUID, appointment_id: UUID, user_id: str | None = None
    ) -> Appointment:
        """
        Clear the has_conflict flag set when a booking was forced over another.

        Raises:
            IllegalTransitionError: APT_050 if the appointment has no conflict
        """
        trace_id = f"{appointment_id}_resolve_conflict"

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    appointment = await load_appointment(session, tenant_id, appointment_id)
                    if not appointment.has_conflict:
                        logger.warning(
                            f"[{trace_id}] No conflict to resolve",
                            extra={"tenant_id": tenant_id, "error_code": "APT_050"},
                        )
                        raise IllegalTransitionError(
                            "Appointment has no conflict to resolve", error_code="APT_050"
                        )

                    old_notes = appointment.conflict_notes
                    appointment.has_conflict = False
                    appointment.conflict_resolved_at = datetime.now(UTC)

                    record_audit(
                        session,
                        tenant_id=tenant_id,
                        branch_id=appointment.branch_id,
                        user_id=user_id,
                        action=AuditAction.CONFLICT_RESOLVED,
                        entity_id=appointment.id,
                        old_values={"hasConflict": True, "conflictNotes": old_notes},
                        new_values={"hasConflict": False},
                    )
        except SQLAlchemyError:
            logger.error(
                f"[{trace_id}] Database error while resolving conflict",
                exc_info=True,
                extra={"tenant_id": tenant_id, "appointment_id": appointment_id},
            )
            raise

        logger.info(f"[{trace_id}] Conflict resolved", extra={"tenant_id": tenant_id})
        return appointment

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_transition(
        appointment: Appointment, verb: LifecycleVerb, trace_id: str
    ) -> AppointmentStatus:
        """Return the current status, or raise if verb is illegal from it."""
        current = AppointmentStatus(appointment.status)
        if not AppointmentStateMachine.can_transition(current, verb):
            error_code = VERB_ERROR_CODES.get(verb, "APT_030")
            logger.warning(
                f"[{trace_id}] Illegal {verb.value} from status {current}",
                extra={
                    "tenant_id": appointment.tenant_id,
                    "appointment_id": appointment.id,
                    "error_code": error_code,
                },
            )
            raise IllegalTransitionError(
                AppointmentStateMachine.illegal_message(verb),
                error_code=error_code,
                details={"status": str(current), "verb": verb.value},
            )
        return current
