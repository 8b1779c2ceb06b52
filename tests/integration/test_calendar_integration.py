"""
Integration tests for CalendarService against an in-memory database.

Tests coverage:
- Resource calendar day/week windows, stylist filtering and ordering
- Colors, working hours, breaks, blocked slots and availability
- Appointment projection and status filtering
- Drag-drop moves: success, conflicts, stylist blocks and breaks, status and
  lookup errors, target stylist scoping
- Standalone conflict checks including appointments running past midnight
"""

from datetime import UTC, date, datetime
from uuid import uuid4

import pytest

from database.models import (
    Appointment,
    AppointmentStatus,
    Branch,
    Stylist,
    StylistBlockedSlot,
    StylistBranch,
    StylistBreak,
)
from scheduling.schemas import GetResourceCalendarInput, MoveAppointmentInput
from scheduling.services.calendar_service import DEFAULT_PALETTE, CalendarConfig, CalendarService
from shared.errors import (
    IllegalTransitionError,
    NotFoundError,
    ResourceUnavailableError,
    SchedulingConflictError,
)

pytestmark = pytest.mark.integration

TUESDAY = date(2026, 2, 10)
WEDNESDAY = date(2026, 2, 11)
SUNDAY = date(2026, 2, 15)


@pytest.fixture
def calendar(session_factory):
    return CalendarService(session_factory=session_factory, config=CalendarConfig())


@pytest.fixture
def add_rows(session_factory):
    """Insert arbitrary rows in one transaction."""

    async def _add_rows(*rows):
        async with session_factory() as session:
            async with session.begin():
                session.add_all(rows)
        return rows

    return _add_rows


def day_query(salon, target=TUESDAY, view="day") -> GetResourceCalendarInput:
    return GetResourceCalendarInput(branch_id=salon.branch.id, date=target, view=view)


def blocked_slot(salon, stylist, blocked_date, **fields) -> StylistBlockedSlot:
    return StylistBlockedSlot(
        tenant_id=salon.tenant_id,
        branch_id=salon.branch.id,
        stylist_id=stylist.id,
        blocked_date=blocked_date,
        **fields,
    )


def stylist_break(salon, stylist, start_time, end_time, **fields) -> StylistBreak:
    values = {"name": "Comida", "is_active": True}
    values.update(fields)
    return StylistBreak(
        tenant_id=salon.tenant_id,
        branch_id=salon.branch.id,
        stylist_id=stylist.id,
        start_time=start_time,
        end_time=end_time,
        **values,
    )


# ============================================================================
# Resource calendar
# ============================================================================


class TestResourceCalendarStylists:
    """Test stylist columns of the resource calendar."""

    @pytest.mark.asyncio
    async def test_day_view_columns(self, calendar, salon):
        result = await calendar.get_resource_calendar(salon.tenant_id, day_query(salon))

        assert result.view == "day"
        assert result.date == TUESDAY
        assert [s.name for s in result.stylists] == ["Ana", "Bea", "Carla"]
        assert [s.color for s in result.stylists] == DEFAULT_PALETTE[:3]
        assert result.stylists[0].avatar == "https://img/ana.png"
        assert result.stylists[1].avatar is None
        assert all(s.is_available for s in result.stylists)

        # tuesday hours from the branch configuration
        assert (result.working_hours.start, result.working_hours.end) == ("09:30", "19:30")
        assert result.stylists[0].working_hours == result.working_hours

    @pytest.mark.asyncio
    async def test_closed_day_falls_back_to_default_hours(self, calendar, salon):
        result = await calendar.get_resource_calendar(salon.tenant_id, day_query(salon, SUNDAY))

        assert (result.working_hours.start, result.working_hours.end) == ("09:00", "21:00")

    @pytest.mark.asyncio
    async def test_excludes_inactive_deleted_and_unassigned_stylists(
        self, calendar, salon, add_rows
    ):
        other_branch = Branch(id=uuid4(), tenant_id=salon.tenant_id, name="Norte")
        inactive = Stylist(id=uuid4(), tenant_id=salon.tenant_id, name="Amaia", is_active=False)
        deleted = Stylist(
            id=uuid4(),
            tenant_id=salon.tenant_id,
            name="Abril",
            deleted_at=datetime(2026, 1, 1, tzinfo=UTC),
        )
        elsewhere = Stylist(id=uuid4(), tenant_id=salon.tenant_id, name="Alba")
        await add_rows(other_branch, inactive, deleted, elsewhere)
        await add_rows(
            StylistBranch(stylist_id=inactive.id, branch_id=salon.branch.id),
            StylistBranch(stylist_id=deleted.id, branch_id=salon.branch.id),
            StylistBranch(stylist_id=elsewhere.id, branch_id=other_branch.id),
        )

        result = await calendar.get_resource_calendar(salon.tenant_id, day_query(salon))

        assert [s.name for s in result.stylists] == ["Ana", "Bea", "Carla"]

    @pytest.mark.asyncio
    async def test_custom_palette_cycles(self, session_factory, salon):
        service = CalendarService(
            session_factory=session_factory, config=CalendarConfig(palette=["#111111", "#222222"])
        )

        result = await service.get_resource_calendar(salon.tenant_id, day_query(salon))

        assert [s.color for s in result.stylists] == ["#111111", "#222222", "#111111"]

    @pytest.mark.asyncio
    async def test_breaks_only_active(self, calendar, salon, add_rows):
        lunch = StylistBreak(
            id=uuid4(),
            tenant_id=salon.tenant_id,
            branch_id=salon.branch.id,
            stylist_id=salon.stylist_b.id,
            name="Comida",
            start_time="14:00",
            end_time="15:00",
        )
        old = StylistBreak(
            tenant_id=salon.tenant_id,
            branch_id=salon.branch.id,
            stylist_id=salon.stylist_b.id,
            name="Merienda",
            start_time="17:00",
            end_time="17:15",
            is_active=False,
        )
        await add_rows(lunch, old)

        result = await calendar.get_resource_calendar(salon.tenant_id, day_query(salon))

        bea = result.stylists[1]
        assert [(b.id, b.name, b.start, b.end) for b in bea.breaks] == [
            (lunch.id, "Comida", "14:00", "15:00")
        ]
        assert result.stylists[0].breaks == []

    @pytest.mark.asyncio
    async def test_full_day_block_marks_unavailable(self, calendar, salon, add_rows):
        await add_rows(blocked_slot(salon, salon.stylist_c, TUESDAY, is_full_day=True, reason="Sick"))

        result = await calendar.get_resource_calendar(salon.tenant_id, day_query(salon))

        carla = result.stylists[2]
        assert carla.is_available is False
        (slot,) = carla.blocked_slots
        assert slot.is_full_day is True
        assert slot.reason == "Sick"
        assert (slot.start, slot.end) == ("00:00", "23:59")

    @pytest.mark.asyncio
    async def test_block_on_other_day_of_week_keeps_available(self, calendar, salon, add_rows):
        await add_rows(blocked_slot(salon, salon.stylist_c, WEDNESDAY, is_full_day=True))

        result = await calendar.get_resource_calendar(
            salon.tenant_id, day_query(salon, view="week")
        )

        carla = result.stylists[2]
        assert carla.is_available is True
        assert [b.date for b in carla.blocked_slots] == [WEDNESDAY]

    @pytest.mark.asyncio
    async def test_partial_block_defaults(self, calendar, salon, add_rows):
        await add_rows(
            blocked_slot(salon, salon.stylist_a, TUESDAY, start_time="16:00"),
            blocked_slot(salon, salon.stylist_b, TUESDAY, end_time="11:00"),
        )

        result = await calendar.get_resource_calendar(salon.tenant_id, day_query(salon))

        ana, bea, _ = result.stylists
        assert ana.is_available is True
        assert [(b.start, b.end) for b in ana.blocked_slots] == [("16:00", "23:59")]
        assert [(b.start, b.end) for b in bea.blocked_slots] == [("00:00", "11:00")]


class TestResourceCalendarAppointments:
    """Test appointment cells of the resource calendar."""

    @pytest.mark.asyncio
    async def test_day_view_filters_and_orders(self, calendar, salon, create_appointment):
        late = await create_appointment(scheduled_time="12:00")
        early = await create_appointment(scheduled_time="09:30", stylist_id=salon.stylist_b.id)
        await create_appointment(scheduled_date=WEDNESDAY)
        await create_appointment(scheduled_time="15:00", status=AppointmentStatus.CANCELLED)
        await create_appointment(scheduled_time="16:00", status=AppointmentStatus.NO_SHOW)
        await create_appointment(scheduled_time="17:00", status=AppointmentStatus.RESCHEDULED)
        await create_appointment(
            scheduled_time="18:00", deleted_at=datetime(2026, 2, 1, tzinfo=UTC)
        )
        done = await create_appointment(scheduled_time="08:00", status=AppointmentStatus.COMPLETED)

        result = await calendar.get_resource_calendar(salon.tenant_id, day_query(salon))

        assert [a.id for a in result.appointments] == [done.id, early.id, late.id]

    @pytest.mark.asyncio
    async def test_week_view_window(self, calendar, salon, create_appointment):
        monday = await create_appointment(scheduled_date=date(2026, 2, 9))
        sunday = await create_appointment(scheduled_date=SUNDAY)
        await create_appointment(scheduled_date=date(2026, 2, 8))
        await create_appointment(scheduled_date=date(2026, 2, 16))

        result = await calendar.get_resource_calendar(
            salon.tenant_id, day_query(salon, view="week")
        )

        assert result.view == "week"
        assert [a.id for a in result.appointments] == [monday.id, sunday.id]

    @pytest.mark.asyncio
    async def test_appointment_projection(self, calendar, salon, create_appointment):
        linked = await create_appointment(scheduled_time="10:00", duration=45)
        guest = await create_appointment(
            scheduled_time="11:00",
            customer_id=None,
            customer_name="Marta",
            customer_phone="+34611000000",
            has_conflict=True,
        )
        anonymous = await create_appointment(scheduled_time="12:00", customer_id=None)

        result = await calendar.get_resource_calendar(salon.tenant_id, day_query(salon))

        by_id = {a.id: a for a in result.appointments}
        view = by_id[linked.id]
        assert view.stylist_id == salon.stylist_a.id
        assert view.date == TUESDAY
        assert (view.start_time, view.end_time) == ("10:00", "10:45")
        assert view.customer_name == "Lucia Gomez"
        assert view.customer_phone == "+34600111222"
        assert view.services == ["Corte y peinado"]
        assert view.status == "booked"
        assert view.booking_type == "online"
        assert view.total_amount == 59.0
        assert view.has_conflict is False

        assert by_id[guest.id].customer_name == "Marta"
        assert by_id[guest.id].has_conflict is True
        assert by_id[anonymous.id].customer_name == "Guest"

    @pytest.mark.asyncio
    async def test_other_branch_appointments_excluded(
        self, calendar, salon, create_appointment, add_rows
    ):
        other_branch = Branch(id=uuid4(), tenant_id=salon.tenant_id, name="Norte")
        await add_rows(other_branch)
        await create_appointment(branch_id=other_branch.id)

        result = await calendar.get_resource_calendar(salon.tenant_id, day_query(salon))

        assert result.appointments == []


class TestResourceCalendarBranchLookup:
    """Test CAL_001."""

    @pytest.mark.asyncio
    async def test_unknown_branch(self, calendar, salon):
        query = GetResourceCalendarInput(branch_id=uuid4(), date=TUESDAY)

        with pytest.raises(NotFoundError) as exc_info:
            await calendar.get_resource_calendar(salon.tenant_id, query)

        assert exc_info.value.error_code == "CAL_001"
        assert exc_info.value.message == "Branch not found"

    @pytest.mark.asyncio
    async def test_other_tenant(self, calendar, salon, other_tenant_id):
        with pytest.raises(NotFoundError):
            await calendar.get_resource_calendar(other_tenant_id, day_query(salon))

    @pytest.mark.asyncio
    async def test_deleted_branch(self, calendar, salon, add_rows):
        closed = Branch(
            id=uuid4(),
            tenant_id=salon.tenant_id,
            name="Cerrada",
            deleted_at=datetime(2026, 1, 1, tzinfo=UTC),
        )
        await add_rows(closed)

        with pytest.raises(NotFoundError):
            await calendar.get_resource_calendar(
                salon.tenant_id, GetResourceCalendarInput(branch_id=closed.id, date=TUESDAY)
            )


# ============================================================================
# Moves
# ============================================================================


class TestMoveAppointment:
    """Test move_appointment()."""

    @pytest.mark.asyncio
    async def test_move_time_and_stylist(
        self, calendar, salon, create_appointment, fetch, audit_entries
    ):
        appointment = await create_appointment(duration=90)

        moved = await calendar.move_appointment(
            salon.tenant_id,
            appointment.id,
            MoveAppointmentInput(
                new_date=WEDNESDAY, new_time="16:15", new_stylist_id=salon.stylist_b.id
            ),
            user_id="staff-1",
        )

        assert (moved.scheduled_time, moved.end_time) == ("16:15", "17:45")
        stored = await fetch(Appointment, appointment.id)
        assert stored.scheduled_date == WEDNESDAY
        assert (stored.scheduled_time, stored.end_time) == ("16:15", "17:45")
        assert stored.total_duration == 90
        assert stored.stylist_id == salon.stylist_b.id
        assert stored.status == AppointmentStatus.BOOKED

        (audit,) = await audit_entries(appointment.id, "APPOINTMENT_MOVED")
        assert audit.user_id == "staff-1"
        assert audit.old_values == {
            "scheduledDate": "2026-02-10",
            "scheduledTime": "10:00",
            "stylistId": str(salon.stylist_a.id),
        }
        assert audit.new_values == {
            "scheduledDate": "2026-02-11",
            "scheduledTime": "16:15",
            "stylistId": str(salon.stylist_b.id),
        }

    @pytest.mark.asyncio
    async def test_keeps_stylist_when_not_given(self, calendar, salon, create_appointment):
        appointment = await create_appointment()

        moved = await calendar.move_appointment(
            salon.tenant_id, appointment.id, MoveAppointmentInput(new_date=TUESDAY, new_time="13:00")
        )

        assert moved.stylist_id == salon.stylist_a.id

    @pytest.mark.asyncio
    async def test_conflict_rejected(
        self, calendar, salon, create_appointment, fetch, audit_entries
    ):
        busy = await create_appointment(scheduled_time="12:00", duration=60)
        appointment = await create_appointment(scheduled_time="09:00", duration=60)

        with pytest.raises(SchedulingConflictError) as exc_info:
            await calendar.move_appointment(
                salon.tenant_id,
                appointment.id,
                MoveAppointmentInput(new_date=TUESDAY, new_time="11:30"),
            )

        error = exc_info.value
        assert error.status_code == 409
        assert error.message == "Time slot conflicts with existing appointments"
        assert error.conflicts == [
            {
                "id": str(busy.id),
                "scheduled_time": "12:00",
                "end_time": "13:00",
                "customer_name": None,
                "status": "booked",
            }
        ]
        assert (await fetch(Appointment, appointment.id)).scheduled_time == "09:00"
        assert await audit_entries(appointment.id) == []

    @pytest.mark.asyncio
    async def test_conflict_with_target_stylist(self, calendar, salon, create_appointment):
        await create_appointment(scheduled_time="10:00", stylist_id=salon.stylist_b.id)
        appointment = await create_appointment(scheduled_time="10:00")

        with pytest.raises(SchedulingConflictError):
            await calendar.move_appointment(
                salon.tenant_id,
                appointment.id,
                MoveAppointmentInput(
                    new_date=TUESDAY, new_time="10:00", new_stylist_id=salon.stylist_b.id
                ),
            )

    @pytest.mark.asyncio
    async def test_completed_appointment_still_occupies(
        self, calendar, salon, create_appointment
    ):
        await create_appointment(scheduled_time="12:00", status=AppointmentStatus.COMPLETED)
        appointment = await create_appointment(scheduled_time="09:00")

        with pytest.raises(SchedulingConflictError):
            await calendar.move_appointment(
                salon.tenant_id,
                appointment.id,
                MoveAppointmentInput(new_date=TUESDAY, new_time="12:30"),
            )

    @pytest.mark.asyncio
    async def test_touching_slot_allowed(self, calendar, salon, create_appointment):
        await create_appointment(scheduled_time="12:00", duration=60)
        appointment = await create_appointment(scheduled_time="09:00", duration=60)

        moved = await calendar.move_appointment(
            salon.tenant_id, appointment.id, MoveAppointmentInput(new_date=TUESDAY, new_time="11:00")
        )

        assert moved.end_time == "12:00"

    @pytest.mark.asyncio
    async def test_overlap_with_own_slot_allowed(self, calendar, salon, create_appointment):
        appointment = await create_appointment(scheduled_time="10:00", duration=60)

        moved = await calendar.move_appointment(
            salon.tenant_id, appointment.id, MoveAppointmentInput(new_date=TUESDAY, new_time="10:30")
        )

        assert moved.scheduled_time == "10:30"

    @pytest.mark.asyncio
    async def test_dead_appointments_free_their_slot(self, calendar, salon, create_appointment):
        await create_appointment(scheduled_time="12:00", status=AppointmentStatus.CANCELLED)
        await create_appointment(scheduled_time="12:00", status=AppointmentStatus.NO_SHOW)
        await create_appointment(scheduled_time="12:00", status=AppointmentStatus.RESCHEDULED)
        appointment = await create_appointment(scheduled_time="09:00")

        moved = await calendar.move_appointment(
            salon.tenant_id, appointment.id, MoveAppointmentInput(new_date=TUESDAY, new_time="12:00")
        )

        assert moved.scheduled_time == "12:00"

    @pytest.mark.asyncio
    async def test_unassigned_appointment_skips_checks(self, calendar, salon, create_appointment):
        await create_appointment(scheduled_time="12:00")
        appointment = await create_appointment(scheduled_time="09:00", stylist_id=None)

        moved = await calendar.move_appointment(
            salon.tenant_id, appointment.id, MoveAppointmentInput(new_date=TUESDAY, new_time="12:00")
        )

        assert moved.stylist_id is None
        assert moved.scheduled_time == "12:00"

    @pytest.mark.asyncio
    async def test_partial_block_rejected(self, calendar, salon, create_appointment, add_rows, fetch):
        await add_rows(
            blocked_slot(salon, salon.stylist_a, TUESDAY, start_time="13:00", end_time="15:00")
        )
        appointment = await create_appointment(scheduled_time="10:00")

        with pytest.raises(ResourceUnavailableError) as exc_info:
            await calendar.move_appointment(
                salon.tenant_id,
                appointment.id,
                MoveAppointmentInput(new_date=TUESDAY, new_time="12:30"),
            )

        assert exc_info.value.error_code == "CAL_004"
        assert exc_info.value.message == "Stylist is not available at this time"
        assert (await fetch(Appointment, appointment.id)).scheduled_time == "10:00"

    @pytest.mark.asyncio
    async def test_slot_after_partial_block_allowed(
        self, calendar, salon, create_appointment, add_rows
    ):
        await add_rows(
            blocked_slot(salon, salon.stylist_a, TUESDAY, start_time="13:00", end_time="15:00")
        )
        appointment = await create_appointment(scheduled_time="10:00")

        moved = await calendar.move_appointment(
            salon.tenant_id, appointment.id, MoveAppointmentInput(new_date=TUESDAY, new_time="15:00")
        )

        assert moved.scheduled_time == "15:00"

    @pytest.mark.asyncio
    async def test_full_day_block_rejected(self, calendar, salon, create_appointment, add_rows):
        await add_rows(blocked_slot(salon, salon.stylist_b, WEDNESDAY, is_full_day=True))
        appointment = await create_appointment()

        with pytest.raises(ResourceUnavailableError):
            await calendar.move_appointment(
                salon.tenant_id,
                appointment.id,
                MoveAppointmentInput(
                    new_date=WEDNESDAY, new_time="18:00", new_stylist_id=salon.stylist_b.id
                ),
            )

    @pytest.mark.asyncio
    async def test_break_rejected(self, calendar, salon, create_appointment, add_rows, fetch):
        await add_rows(stylist_break(salon, salon.stylist_a, "13:00", "14:00"))
        appointment = await create_appointment(scheduled_time="10:00")

        with pytest.raises(ResourceUnavailableError) as exc_info:
            await calendar.move_appointment(
                salon.tenant_id,
                appointment.id,
                MoveAppointmentInput(new_date=TUESDAY, new_time="13:00"),
            )

        assert exc_info.value.error_code == "CAL_004"
        stored = await fetch(Appointment, appointment.id)
        assert (stored.scheduled_time, stored.end_time) == ("10:00", "11:00")

    @pytest.mark.asyncio
    async def test_break_ending_before_slot_allowed(
        self, calendar, salon, create_appointment, add_rows
    ):
        await add_rows(stylist_break(salon, salon.stylist_a, "13:00", "14:00"))
        appointment = await create_appointment(scheduled_time="10:00")

        moved = await calendar.move_appointment(
            salon.tenant_id, appointment.id, MoveAppointmentInput(new_date=TUESDAY, new_time="14:00")
        )

        assert moved.scheduled_time == "14:00"

    @pytest.mark.asyncio
    async def test_weekday_break_only_applies_on_its_day(
        self, calendar, salon, create_appointment, add_rows
    ):
        # 2 = Tuesday (0 = Sunday)
        await add_rows(stylist_break(salon, salon.stylist_a, "13:00", "14:00", day_of_week=2))
        appointment = await create_appointment(scheduled_time="10:00")

        moved = await calendar.move_appointment(
            salon.tenant_id,
            appointment.id,
            MoveAppointmentInput(new_date=WEDNESDAY, new_time="13:00"),
        )
        assert moved.scheduled_date == WEDNESDAY

        with pytest.raises(ResourceUnavailableError):
            await calendar.move_appointment(
                salon.tenant_id,
                appointment.id,
                MoveAppointmentInput(new_date=TUESDAY, new_time="13:30"),
            )

    @pytest.mark.asyncio
    async def test_inactive_break_ignored(self, calendar, salon, create_appointment, add_rows):
        await add_rows(stylist_break(salon, salon.stylist_a, "13:00", "14:00", is_active=False))
        appointment = await create_appointment(scheduled_time="10:00")

        moved = await calendar.move_appointment(
            salon.tenant_id, appointment.id, MoveAppointmentInput(new_date=TUESDAY, new_time="13:00")
        )

        assert moved.scheduled_time == "13:00"

    @pytest.mark.asyncio
    async def test_break_of_target_stylist_rejected(
        self, calendar, salon, create_appointment, add_rows
    ):
        await add_rows(stylist_break(salon, salon.stylist_b, "13:00", "14:00"))
        appointment = await create_appointment(scheduled_time="10:00")

        with pytest.raises(ResourceUnavailableError):
            await calendar.move_appointment(
                salon.tenant_id,
                appointment.id,
                MoveAppointmentInput(
                    new_date=TUESDAY, new_time="12:30", new_stylist_id=salon.stylist_b.id
                ),
            )

    @pytest.mark.asyncio
    async def test_stylist_of_other_tenant_rejected(
        self, calendar, salon, create_appointment, add_rows, fetch, audit_entries, other_tenant_id
    ):
        # Even a stray assignment row to this branch must not leak the stylist
        foreign = Stylist(id=uuid4(), tenant_id=other_tenant_id, name="Zoe")
        await add_rows(foreign, StylistBranch(stylist_id=foreign.id, branch_id=salon.branch.id))
        appointment = await create_appointment(scheduled_time="10:00")

        with pytest.raises(NotFoundError) as exc_info:
            await calendar.move_appointment(
                salon.tenant_id,
                appointment.id,
                MoveAppointmentInput(new_date=TUESDAY, new_time="12:00", new_stylist_id=foreign.id),
            )

        assert exc_info.value.error_code == "CAL_005"
        assert exc_info.value.message == "Stylist not found"
        stored = await fetch(Appointment, appointment.id)
        assert stored.stylist_id == salon.stylist_a.id
        assert stored.scheduled_time == "10:00"
        assert await audit_entries(appointment.id) == []

    @pytest.mark.asyncio
    async def test_unknown_inactive_or_unassigned_stylist_rejected(
        self, calendar, salon, create_appointment, add_rows
    ):
        other_branch = Branch(id=uuid4(), tenant_id=salon.tenant_id, name="Norte")
        inactive = Stylist(id=uuid4(), tenant_id=salon.tenant_id, name="Amaia", is_active=False)
        elsewhere = Stylist(id=uuid4(), tenant_id=salon.tenant_id, name="Elena")
        await add_rows(
            other_branch,
            inactive,
            elsewhere,
            StylistBranch(stylist_id=inactive.id, branch_id=salon.branch.id),
            StylistBranch(stylist_id=elsewhere.id, branch_id=other_branch.id),
        )
        appointment = await create_appointment(scheduled_time="10:00")

        for stylist_id in (uuid4(), inactive.id, elsewhere.id):
            with pytest.raises(NotFoundError) as exc_info:
                await calendar.move_appointment(
                    salon.tenant_id,
                    appointment.id,
                    MoveAppointmentInput(
                        new_date=TUESDAY, new_time="12:00", new_stylist_id=stylist_id
                    ),
                )
            assert exc_info.value.error_code == "CAL_005"

    @pytest.mark.asyncio
    async def test_same_stylist_given_explicitly(self, calendar, salon, create_appointment):
        appointment = await create_appointment(scheduled_time="10:00")

        moved = await calendar.move_appointment(
            salon.tenant_id,
            appointment.id,
            MoveAppointmentInput(
                new_date=TUESDAY, new_time="12:00", new_stylist_id=salon.stylist_a.id
            ),
        )

        assert moved.stylist_id == salon.stylist_a.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status",
        [
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
            AppointmentStatus.RESCHEDULED,
        ],
    )
    async def test_terminal_status_rejected(self, calendar, salon, create_appointment, status):
        appointment = await create_appointment(status=status)

        with pytest.raises(IllegalTransitionError) as exc_info:
            await calendar.move_appointment(
                salon.tenant_id,
                appointment.id,
                MoveAppointmentInput(new_date=TUESDAY, new_time="15:00"),
            )

        assert exc_info.value.error_code == "CAL_003"
        assert exc_info.value.message == "Cannot move appointment in current status"

    @pytest.mark.asyncio
    async def test_in_progress_can_move(self, calendar, salon, create_appointment):
        appointment = await create_appointment(status=AppointmentStatus.IN_PROGRESS)

        moved = await calendar.move_appointment(
            salon.tenant_id, appointment.id, MoveAppointmentInput(new_date=TUESDAY, new_time="15:00")
        )

        assert moved.status == AppointmentStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_unknown_appointment(self, calendar, salon):
        with pytest.raises(NotFoundError) as exc_info:
            await calendar.move_appointment(
                salon.tenant_id, uuid4(), MoveAppointmentInput(new_date=TUESDAY, new_time="15:00")
            )

        assert exc_info.value.error_code == "CAL_002"

    @pytest.mark.asyncio
    async def test_other_tenant(self, calendar, create_appointment, other_tenant_id):
        appointment = await create_appointment()

        with pytest.raises(NotFoundError) as exc_info:
            await calendar.move_appointment(
                other_tenant_id,
                appointment.id,
                MoveAppointmentInput(new_date=TUESDAY, new_time="15:00"),
            )

        assert exc_info.value.error_code == "CAL_002"


# ============================================================================
# Conflict checks
# ============================================================================


class TestCheckConflicts:
    """Test check_conflicts()."""

    @pytest.mark.asyncio
    async def test_lists_overlaps_in_start_order(self, calendar, salon, create_appointment):
        second = await create_appointment(scheduled_time="11:00", duration=60)
        first = await create_appointment(
            scheduled_time="09:30", duration=60, customer_id=None, customer_name="Marta"
        )
        await create_appointment(scheduled_time="12:00", duration=60)

        conflicts = await calendar.check_conflicts(
            salon.tenant_id, salon.branch.id, TUESDAY, "10:00", 90, stylist_id=salon.stylist_a.id
        )

        assert [c["id"] for c in conflicts] == [str(first.id), str(second.id)]
        assert conflicts[0]["customer_name"] == "Marta"
        assert conflicts[0]["end_time"] == "10:30"

    @pytest.mark.asyncio
    async def test_excluded_appointment(self, calendar, salon, create_appointment):
        appointment = await create_appointment(scheduled_time="10:00")

        conflicts = await calendar.check_conflicts(
            salon.tenant_id,
            salon.branch.id,
            TUESDAY,
            "10:00",
            60,
            stylist_id=salon.stylist_a.id,
            exclude_appointment_id=appointment.id,
        )

        assert conflicts == []

    @pytest.mark.asyncio
    async def test_no_stylist_no_conflicts(self, calendar, salon, create_appointment):
        await create_appointment(scheduled_time="10:00")

        conflicts = await calendar.check_conflicts(
            salon.tenant_id, salon.branch.id, TUESDAY, "10:00", 60
        )

        assert conflicts == []

    @pytest.mark.asyncio
    async def test_other_stylist_and_day_ignored(self, calendar, salon, create_appointment):
        await create_appointment(scheduled_time="10:00", stylist_id=salon.stylist_b.id)
        await create_appointment(scheduled_date=WEDNESDAY, scheduled_time="10:00")

        conflicts = await calendar.check_conflicts(
            salon.tenant_id, salon.branch.id, TUESDAY, "10:00", 60, stylist_id=salon.stylist_a.id
        )

        assert conflicts == []

    @pytest.mark.asyncio
    async def test_appointment_running_past_midnight(self, calendar, salon, create_appointment):
        late = await create_appointment(scheduled_time="23:00", duration=120)
        assert late.end_time == "01:00"

        conflicts = await calendar.check_conflicts(
            salon.tenant_id, salon.branch.id, TUESDAY, "23:30", 15, stylist_id=salon.stylist_a.id
        )
        assert [c["id"] for c in conflicts] == [str(late.id)]

        morning = await calendar.check_conflicts(
            salon.tenant_id, salon.branch.id, TUESDAY, "00:30", 30, stylist_id=salon.stylist_a.id
        )
        assert morning == []
