"""Tests for recording and repairing attendance facts."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from attendance_payroll.calculators.types import WorkerKind
from attendance_payroll.exceptions import (
    AttendanceConflict,
    InvalidAttendanceStatus,
    LocationUnresolved,
    NotFound,
)
from attendance_payroll.models import AttendanceRecord
from attendance_payroll.services.attendance_service import AttendanceService

from .conftest import PERIOD_END, PERIOD_START

DAY = date(2024, 6, 3)


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 6, 3, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def attendance(session, settings) -> AttendanceService:
    return AttendanceService(session, settings=settings)


class TestClock:
    async def test_clock_in_takes_block_location(self, attendance, roster, org, north):
        worker = await roster.worker(org)
        await roster.assign(await roster.block(org, north, DAY), worker)

        record = await attendance.clock_in(org.organization_id, worker.worker_id, at(8))

        assert record.work_date == DAY
        assert record.location_id == north.location_id
        assert record.clock_out is None

    async def test_unscheduled_clock_in_needs_location(self, attendance, roster, org, south):
        worker = await roster.worker(org)

        with pytest.raises(LocationUnresolved):
            await attendance.clock_in(org.organization_id, worker.worker_id, at(8))

        record = await attendance.clock_in(org.organization_id, worker.worker_id, at(8), south.location_id)
        assert record.location_id == south.location_id

    async def test_double_clock_in(self, attendance, roster, org, north):
        worker = await roster.worker(org)
        await attendance.clock_in(org.organization_id, worker.worker_id, at(8), north.location_id)

        with pytest.raises(AttendanceConflict):
            await attendance.clock_in(org.organization_id, worker.worker_id, at(9), north.location_id)

    @pytest.mark.parametrize(
        ("clock_out", "hours", "status"),
        [
            (at(17), Decimal("9.00"), "present_full"),
            (at(12), Decimal("4.00"), "present_partial"),
            (at(10, 30), Decimal("2.50"), "absent"),
        ],
    )
    async def test_clock_out_classifies_hours(self, attendance, roster, org, north, clock_out, hours, status):
        worker = await roster.worker(org)
        await attendance.clock_in(org.organization_id, worker.worker_id, at(8), north.location_id)

        record = await attendance.clock_out(org.organization_id, worker.worker_id, clock_out)

        assert record.total_hours == hours
        assert record.status == status

    async def test_clock_out_conflicts(self, attendance, roster, org, north):
        worker = await roster.worker(org)

        with pytest.raises(AttendanceConflict):
            await attendance.clock_out(org.organization_id, worker.worker_id, at(17))

        await attendance.clock_in(org.organization_id, worker.worker_id, at(12), north.location_id)
        with pytest.raises(AttendanceConflict):
            await attendance.clock_out(org.organization_id, worker.worker_id, at(8))

        await attendance.clock_out(org.organization_id, worker.worker_id, at(17))
        with pytest.raises(AttendanceConflict):
            await attendance.clock_out(org.organization_id, worker.worker_id, at(18))

    async def test_offset_shift_across_sessions(self, session_factory, settings, roster, org, north):
        worker = await roster.worker(org)
        nairobi = timezone(timedelta(hours=3))

        async with session_factory() as morning:
            await AttendanceService(morning, settings=settings).clock_in(
                org.organization_id, worker.worker_id, datetime(2024, 6, 3, 8, 0, tzinfo=nairobi), north.location_id
            )

        async with session_factory() as evening:
            record = await AttendanceService(evening, settings=settings).clock_out(
                org.organization_id, worker.worker_id, datetime(2024, 6, 3, 16, 0, tzinfo=nairobi)
            )

        assert record.work_date == DAY
        assert record.total_hours == Decimal("8.00")
        assert record.status == "present_full"

    async def test_work_date_follows_local_calendar(self, attendance, roster, org, north):
        worker = await roster.worker(org)
        early = datetime(2024, 6, 3, 1, 30, tzinfo=timezone(timedelta(hours=3)))

        record = await attendance.clock_in(org.organization_id, worker.worker_id, early, north.location_id)

        assert record.work_date == DAY

    async def test_inactive_worker_cannot_clock_in(self, attendance, roster, org, north):
        worker = await roster.worker(org, status="inactive")

        with pytest.raises(AttendanceConflict):
            await attendance.clock_in(org.organization_id, worker.worker_id, at(8), north.location_id)

    async def test_worker_of_other_organization(self, attendance, roster, org, north):
        other = await roster.organization("Elsewhere")
        worker = await roster.worker(other)

        with pytest.raises(NotFound):
            await attendance.clock_in(org.organization_id, worker.worker_id, at(8), north.location_id)


class TestLocumAttendance:
    async def test_record_then_rerecord(self, attendance, roster, org, north, south):
        block = await roster.block(org, south, DAY)
        booking = await roster.booking(org, block, cached_location=north)

        worked = await attendance.record_locum_attendance(org.organization_id, booking.locum_booking_id, "worked")

        # Location comes from the block, not the booking's cached copy
        assert worked.location_id == south.location_id
        assert worked.work_date == DAY
        assert worked.locum_status == "WORKED"
        assert worked.status == "present_full"
        assert worked.total_hours == Decimal("8")

        no_show = await attendance.record_locum_attendance(
            org.organization_id, booking.locum_booking_id, "no-show", notes="Called in sick"
        )

        assert no_show.attendance_id == worked.attendance_id
        assert no_show.locum_status == "NO_SHOW"
        assert no_show.status == "absent"
        assert no_show.total_hours == Decimal("0")
        assert no_show.notes == "Called in sick"

    async def test_invalid_status(self, attendance, roster, org, north):
        booking = await roster.booking(org, await roster.block(org, north, DAY))

        with pytest.raises(InvalidAttendanceStatus):
            await attendance.record_locum_attendance(org.organization_id, booking.locum_booking_id, "MAYBE")

    async def test_unknown_booking(self, attendance, org):
        with pytest.raises(NotFound):
            await attendance.record_locum_attendance(org.organization_id, uuid4(), "WORKED")


class TestReview:
    async def test_override_status(self, attendance, roster, org, north):
        worker = await roster.worker(org)
        record = await roster.staff_attendance(org, worker, DAY, "present_full", north)

        reviewed = await attendance.review_attendance(
            org.organization_id, record.attendance_id, status="half_day", notes="Left early", reviewer_id="sup-1"
        )

        assert reviewed.status == "present_partial"
        assert reviewed.is_reviewed is True
        assert reviewed.reviewed_by == "sup-1"
        assert reviewed.reviewed_at is not None
        assert reviewed.notes == "Left early"

    async def test_invalid_override_changes_nothing(self, attendance, roster, org, north):
        worker = await roster.worker(org)
        record = await roster.staff_attendance(org, worker, DAY, "present_full", north)

        with pytest.raises(InvalidAttendanceStatus):
            await attendance.review_attendance(org.organization_id, record.attendance_id, status="vacation")

        stored = await attendance.session.get(AttendanceRecord, record.attendance_id)
        assert stored.status == "present_full"
        assert stored.is_reviewed is False


class TestLocationRepair:
    async def test_backfill_fills_only_missing(self, attendance, roster, org, north, south):
        scheduled = await roster.worker(org, first_name="Scheduled")
        unscheduled = await roster.worker(org, first_name="Unscheduled")
        stamped = await roster.worker(org, first_name="Stamped")
        await roster.assign(await roster.block(org, north, DAY), scheduled)
        await roster.assign(await roster.block(org, north, DAY), stamped)
        missing = await roster.staff_attendance(org, scheduled, DAY, location=None)
        orphan = await roster.staff_attendance(org, unscheduled, DAY, location=None)
        kept = await roster.staff_attendance(org, stamped, DAY, location=south)

        report = await attendance.backfill_missing_locations(org.organization_id)

        assert report.repaired == [missing.attendance_id]
        assert [issue.entity_id for issue in report.unresolved] == [orphan.attendance_id]
        assert (await attendance.session.get(AttendanceRecord, missing.attendance_id)).location_id == north.location_id
        # Existing locations are never rewritten by the backfill
        assert (await attendance.session.get(AttendanceRecord, kept.attendance_id)).location_id == south.location_id

    async def test_repair_fact_location(self, attendance, roster, org, north, south):
        worker = await roster.worker(org)
        await roster.assign(await roster.block(org, north, DAY), worker)
        record = await roster.staff_attendance(org, worker, DAY, location=south)

        repaired = await attendance.repair_fact_location(org.organization_id, record.attendance_id, "ops")

        assert repaired.location_id == north.location_id

    async def test_repair_unscheduled_fact(self, attendance, roster, org, south):
        worker = await roster.worker(org)
        record = await roster.staff_attendance(org, worker, DAY, location=south)

        with pytest.raises(NotFound):
            await attendance.repair_fact_location(org.organization_id, record.attendance_id)

    async def test_repair_booking_location(self, attendance, roster, org, north, south):
        booking = await roster.booking(org, await roster.block(org, south, DAY), cached_location=north)

        repaired = await attendance.repair_booking_location(org.organization_id, booking.locum_booking_id, "ops")

        assert repaired.location_id == south.location_id


class TestListAttendance:
    async def test_lists_with_filters(self, attendance, roster, org, north):
        worker = await roster.worker(org)
        await roster.staff_attendance(org, worker, DAY, "present_full", north)
        await roster.booking(org, await roster.block(org, north, DAY))

        everything = await attendance.list_attendance(org.organization_id, PERIOD_START, PERIOD_END)
        staff_only = await attendance.list_attendance(
            org.organization_id, PERIOD_START, PERIOD_END, worker_type=WorkerKind.STAFF
        )

        assert len(everything.lines) == 2
        assert len(everything.unrecorded_lines) == 1
        assert len(staff_only.lines) == 1
