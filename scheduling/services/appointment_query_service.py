"""
Appointment Query Service - Read paths over appointments.

Provides tenant-scoped lookups used by the lifecycle and calendar services
and by callers that need to display appointments:
- load_appointment: Point lookup inside a caller's transaction
- get_appointment: Single appointment with service lines and status history
- list_appointments: Filtered, searchable, paginated listing
- get_reschedule_chain: Every record descending from one original booking

Usage:
    service = AppointmentQueryService()
    page = await service.list_appointments(tenant_id, ListAppointmentsInput(search="ana"))
"""

import logging
import math
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from database.connection import SessionFactory, get_async_session
from database.models import Appointment, Customer
from scheduling.schemas import AppointmentPage, ListAppointmentsInput, PaginationMeta
from shared.errors import NotFoundError

logger = logging.getLogger(__name__)


async def load_appointment(
    session: AsyncSession,
    tenant_id: UUID,
    appointment_id: UUID,
    *,
    error_code: str = "APT_040",
    for_update: bool = True,
    with_services: bool = False,
) -> Appointment:
    """
    Load a live appointment by (tenant_id, id) on the caller's session.

    Soft-deleted rows and rows of other tenants are invisible.

    Raises:
        NotFoundError: If no such appointment exists
    """
    stmt = select(Appointment).where(
        Appointment.id == appointment_id,
        Appointment.tenant_id == tenant_id,
        Appointment.deleted_at.is_(None),
    )
    if with_services:
        stmt = stmt.options(selectinload(Appointment.services))
    if for_update:
        stmt = stmt.with_for_update()

    result = await session.execute(stmt)
    appointment = result.scalar_one_or_none()
    if appointment is None:
        logger.warning(
            f"Appointment not found: {appointment_id}",
            extra={"tenant_id": tenant_id, "appointment_id": appointment_id},
        )
        raise NotFoundError("Appointment not found", error_code=error_code)
    return appointment


class AppointmentQueryService:
    """Read-only appointment queries."""

    def __init__(self, session_factory: SessionFactory = get_async_session):
        self._session_factory = session_factory

    async def get_appointment(self, tenant_id: UUID, appointment_id: UUID) -> Appointment:
        """
        Get one appointment with its service lines and status history.

        Raises:
            NotFoundError: APT_040 if absent, soft-deleted or in another tenant
        """
        async with self._session_factory() as session:
            stmt = (
                select(Appointment)
                .where(
                    Appointment.id == appointment_id,
                    Appointment.tenant_id == tenant_id,
                    Appointment.deleted_at.is_(None),
                )
                .options(
                    selectinload(Appointment.services),
                    selectinload(Appointment.status_history),
                    selectinload(Appointment.customer),
                )
            )
            result = await session.execute(stmt)
            appointment = result.scalar_one_or_none()

        if appointment is None:
            raise NotFoundError("Appointment not found", error_code="APT_040")
        return appointment

    async def list_appointments(
        self, tenant_id: UUID, filters: ListAppointmentsInput
    ) -> AppointmentPage:
        """
        List appointments matching filters.

        search matches guest name/phone and linked customer name/phone,
        case-insensitively.

        Returns:
            AppointmentPage with data and meta {page, limit, total, total_pages}
        """
        conditions = [
            Appointment.tenant_id == tenant_id,
            Appointment.deleted_at.is_(None),
        ]

        if filters.branch_id:
            conditions.append(Appointment.branch_id == filters.branch_id)
        if filters.stylist_id:
            conditions.append(Appointment.stylist_id == filters.stylist_id)
        if filters.customer_id:
            conditions.append(Appointment.customer_id == filters.customer_id)
        if filters.status:
            statuses = filters.status if isinstance(filters.status, list) else [filters.status]
            conditions.append(Appointment.status.in_(statuses))
        if filters.booking_type:
            types = (
                filters.booking_type
                if isinstance(filters.booking_type, list)
                else [filters.booking_type]
            )
            conditions.append(Appointment.booking_type.in_(types))
        if filters.date_from:
            conditions.append(Appointment.scheduled_date >= filters.date_from)
        if filters.date_to:
            conditions.append(Appointment.scheduled_date <= filters.date_to)
        if filters.search:
            pattern = f"%{filters.search.strip().lower()}%"
            conditions.append(
                or_(
                    func.lower(Appointment.customer_name).like(pattern),
                    Appointment.customer_phone.like(pattern),
                    Appointment.customer_id.in_(
                        select(Customer.id).where(
                            or_(
                                func.lower(Customer.name).like(pattern),
                                Customer.phone.like(pattern),
                            )
                        )
                    ),
                )
            )

        sort_column = getattr(Appointment, filters.sort_by)
        order = sort_column.asc() if filters.sort_order == "asc" else sort_column.desc()

        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(Appointment).where(*conditions)
            )
            stmt = (
                select(Appointment)
                .where(*conditions)
                .options(selectinload(Appointment.services), selectinload(Appointment.customer))
                .order_by(order, Appointment.id)
                .offset((filters.page - 1) * filters.limit)
                .limit(filters.limit)
            )
            result = await session.execute(stmt)
            appointments = list(result.scalars().all())

        total = total or 0
        return AppointmentPage(
            data=appointments,
            meta=PaginationMeta(
                page=filters.page,
                limit=filters.limit,
                total=total,
                total_pages=math.ceil(total / filters.limit),
            ),
        )

    async def get_reschedule_chain(
        self, tenant_id: UUID, appointment_id: UUID
    ) -> list[Appointment]:
        """
        Return every record of a reschedule chain, oldest first.

        Works from any member of the chain: the root is the record's
        original_appointment_id, or the record itself if it has none.
        """
        async with self._session_factory() as session:
            appointment = await load_appointment(
                session, tenant_id, appointment_id, for_update=False
            )
            root_id = appointment.original_appointment_id or appointment.id

            stmt = (
                select(Appointment)
                .where(
                    Appointment.tenant_id == tenant_id,
                    Appointment.deleted_at.is_(None),
                    or_(
                        Appointment.id == root_id,
                        Appointment.original_appointment_id == root_id,
                    ),
                )
                .order_by(Appointment.reschedule_count, Appointment.created_at)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())
