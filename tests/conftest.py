"""
Test configuration and fixtures.

This module sets up the test environment and provides shared fixtures:
- session_factory: Sessions on a fresh in-memory SQLite database per test
- salon: A seeded tenant with one branch, three stylists and a customer
- create_appointment: Factory inserting appointments with one service line
"""

import os

# Must be set BEFORE any imports of database.connection or shared.config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from database.models import (
    Appointment,
    AppointmentServiceLine,
    AppointmentStatus,
    AuditLog,
    Base,
    Branch,
    BookingType,
    Customer,
    Stylist,
    StylistBranch,
)
from shared.time_utils import calculate_end_time

TENANT_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
OTHER_TENANT_ID = UUID("550e8400-e29b-41d4-a716-4466554400ff")

# Sentinel: "use the seeded stylist / customer"
SEEDED = object()

WORKING_HOURS = {
    "monday": {"isOpen": True, "openTime": "10:00", "closeTime": "20:00"},
    "tuesday": {"isOpen": True, "openTime": "09:30", "closeTime": "19:30"},
    "wednesday": {"isOpen": True, "openTime": "10:00", "closeTime": "20:00"},
    "thursday": {"isOpen": True, "openTime": "10:00", "closeTime": "20:00"},
    "friday": {"isOpen": True, "openTime": "10:00", "closeTime": "21:00"},
    "saturday": {"isOpen": True, "openTime": "09:00", "closeTime": "14:00"},
    "sunday": {"isOpen": False, "openTime": "00:00", "closeTime": "00:00"},
}


@dataclass
class Salon:
    tenant_id: UUID
    branch: Branch
    stylist_a: Stylist
    stylist_b: Stylist
    stylist_c: Stylist
    customer: Customer


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def db_engine():
    """Fresh in-memory database with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory with the same contract as database.connection.get_async_session."""
    maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    @asynccontextmanager
    async def factory():
        async with maker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    return factory


@pytest.fixture
def tenant_id():
    """Fixed tenant UUID for testing."""
    return TENANT_ID


@pytest.fixture
def other_tenant_id():
    """Tenant with no data, for scoping checks."""
    return OTHER_TENANT_ID


# ============================================================================
# Seed data
# ============================================================================


@pytest.fixture
async def salon(session_factory) -> Salon:
    """
    Seed one branch with three assigned stylists and one customer.

    Stylist names are chosen so (name, id) order is Ana, Bea, Carla.
    """
    branch = Branch(id=uuid4(), tenant_id=TENANT_ID, name="Centro", working_hours=WORKING_HOURS)
    stylist_b = Stylist(id=uuid4(), tenant_id=TENANT_ID, name="Bea")
    stylist_a = Stylist(id=uuid4(), tenant_id=TENANT_ID, name="Ana", avatar_url="https://img/ana.png")
    stylist_c = Stylist(id=uuid4(), tenant_id=TENANT_ID, name="Carla")
    customer = Customer(
        id=uuid4(),
        tenant_id=TENANT_ID,
        name="Lucia Gomez",
        phone="+34600111222",
        no_show_count=0,
    )

    async with session_factory() as session:
        async with session.begin():
            session.add_all([branch, stylist_a, stylist_b, stylist_c, customer])
            for stylist in (stylist_b, stylist_a, stylist_c):
                session.add(StylistBranch(stylist_id=stylist.id, branch_id=branch.id))

    return Salon(
        tenant_id=TENANT_ID,
        branch=branch,
        stylist_a=stylist_a,
        stylist_b=stylist_b,
        stylist_c=stylist_c,
        customer=customer,
    )


@pytest.fixture
def create_appointment(session_factory, salon):
    """
    Factory inserting an appointment with a single priced service line.

    Defaults: 2026-02-10 10:00 for 60 minutes with stylist Ana, linked to the
    seeded customer, status BOOKED.
    """

    async def _create(
        scheduled_date: date = date(2026, 2, 10),
        scheduled_time: str = "10:00",
        duration: int = 60,
        stylist_id: Any = SEEDED,
        status: AppointmentStatus = AppointmentStatus.BOOKED,
        customer_id: Any = SEEDED,
        **fields: Any,
    ) -> Appointment:
        if stylist_id is SEEDED:
            stylist_id = salon.stylist_a.id
        if customer_id is SEEDED:
            customer_id = salon.customer.id

        values: dict[str, Any] = {
            "tenant_id": salon.tenant_id,
            "branch_id": salon.branch.id,
            "booking_type": BookingType.ONLINE,
            "subtotal": Decimal("50.00"),
            "tax_amount": Decimal("9.00"),
            "total_amount": Decimal("59.00"),
            "price_locked_at": datetime(2026, 2, 1, 12, 0, tzinfo=UTC),
            "reschedule_count": 0,
        }
        values.update(fields)

        appointment = Appointment(
            id=uuid4(),
            scheduled_date=scheduled_date,
            scheduled_time=scheduled_time,
            end_time=calculate_end_time(scheduled_time, duration),
            total_duration=duration,
            stylist_id=stylist_id,
            status=status,
            customer_id=customer_id,
            **values,
        )
        appointment.services = [
            AppointmentServiceLine(
                tenant_id=salon.tenant_id,
                service_name="Corte y peinado",
                unit_price=Decimal("50.00"),
                quantity=1,
                tax_rate=Decimal("18.00"),
                tax_amount=Decimal("9.00"),
                total_amount=Decimal("59.00"),
                duration_minutes=duration,
                stylist_id=stylist_id,
            )
        ]

        async with session_factory() as session:
            async with session.begin():
                session.add(appointment)
        return appointment

    return _create


# ============================================================================
# Query helpers
# ============================================================================


@pytest.fixture
def fetch(session_factory):
    """Reload a row by primary key in a fresh session."""

    async def _fetch(model: type, pk: UUID):
        async with session_factory() as session:
            return await session.get(model, pk)

    return _fetch


@pytest.fixture
def audit_entries(session_factory):
    """Audit rows for an entity, optionally filtered by action, oldest first."""

    async def _audit_entries(entity_id: UUID, action: str | None = None) -> list[AuditLog]:
        stmt = select(AuditLog).where(AuditLog.entity_id == str(entity_id))
        if action:
            stmt = stmt.where(AuditLog.action == action)
        async with session_factory() as session:
            result = await session.execute(stmt.order_by(AuditLog.created_at))
            return list(result.scalars().all())

    return _audit_entries
