"""Recording and repairing attendance facts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_payroll.calculators.attendance_aggregator import (
    AggregationResult,
    AttendanceAggregator,
    classify_hours,
    hours_between,
)
from attendance_payroll.calculators.location_resolver import LocationResolver
from attendance_payroll.calculators.types import (
    AttendanceOutcome,
    WorkerKind,
    WorkerRef,
    parse_locum_status,
    parse_staff_status,
)
from attendance_payroll.config import Settings, get_settings
from attendance_payroll.database import transaction
from attendance_payroll.exceptions import (
    AttendanceConflict,
    InvalidAttendanceStatus,
    LocationError,
    LocationUnresolved,
    NotFound,
    PayrollEngineError,
)
from attendance_payroll.models import AttendanceRecord, LocumBooking, ScheduleBlock, Worker

logger = logging.getLogger(__name__)

LOCUM_WORKED_HOURS = Decimal("8")


def _as_utc(at: datetime) -> datetime:
    """Timestamps are stored in UTC; naive input is taken as UTC already."""
    if at.tzinfo is None:
        return at.replace(tzinfo=timezone.utc)
    return at.astimezone(timezone.utc)


@dataclass
class BackfillReport:
    """Outcome of stamping resolved locations onto facts that had none."""

    repaired: list[UUID] = field(default_factory=list)
    unresolved: list[PayrollEngineError] = field(default_factory=list)


class AttendanceService:
    """Time-tracking entry points that create and correct attendance facts.

    New facts get their location from the LocationResolver. Existing
    locations are only ever replaced by the explicit repair operations.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.policy = self.settings.unit_policy()
        self.resolver = LocationResolver(session)

    async def list_attendance(
        self,
        organization_id: UUID,
        period_start: date,
        period_end: date,
        location_id: UUID | None = None,
        worker_type: WorkerKind | None = None,
    ) -> AggregationResult:
        """Normalized attendance lines for review and data entry."""
        aggregator = AttendanceAggregator(self.session, self.policy, self.resolver)
        return await aggregator.aggregate(organization_id, period_start, period_end, location_id, worker_type)

    async def clock_in(
        self,
        organization_id: UUID,
        worker_id: UUID,
        at: datetime,
        location_id: UUID | None = None,
    ) -> AttendanceRecord:
        """Open the day's record for a staff worker.

        The work date is the calendar date of `at` in its own offset.

        Raises:
            AttendanceConflict: Already clocked in on that date, or the
                worker is inactive.
            LocationUnresolved: No location given and no assignment that day.
        """
        async with transaction(self.session):
            worker = await self._get_worker(organization_id, worker_id)
            work_date = at.date()
            at = _as_utc(at)
            if worker.status != "active":
                raise AttendanceConflict(worker_id, work_date, "worker is inactive")

            record = await self._find_staff_record(worker_id, work_date)
            if record is not None and record.clock_in is not None:
                raise AttendanceConflict(worker_id, work_date, "already clocked in")

            resolved = await self.resolver.location_for_new_fact(WorkerRef.staff(worker_id), work_date, location_id)
            if record is None:
                record = AttendanceRecord(
                    organization_id=organization_id,
                    worker_id=worker_id,
                    work_date=work_date,
                    location_id=resolved,
                )
                self.session.add(record)
            elif record.location_id is None:
                record.location_id = resolved
            record.clock_in = at
            await self.session.flush()

            logger.info("Worker %s clocked in on %s at location %s", worker_id, work_date, record.location_id)
            return record

    async def clock_out(self, organization_id: UUID, worker_id: UUID, at: datetime) -> AttendanceRecord:
        """Close the day's record and derive hours and status.

        Raises:
            AttendanceConflict: No open clock-in, or clock-out before clock-in.
        """
        async with transaction(self.session):
            await self._get_worker(organization_id, worker_id)
            work_date = at.date()
            at = _as_utc(at)

            record = await self._find_staff_record(worker_id, work_date)
            if record is None or record.clock_in is None:
                raise AttendanceConflict(worker_id, work_date, "no clock-in to close")
            if record.clock_out is not None:
                raise AttendanceConflict(worker_id, work_date, "already clocked out")

            hours = hours_between(record.clock_in, at)
            if hours < 0:
                raise AttendanceConflict(worker_id, work_date, "clock-out precedes clock-in")

            record.clock_out = at
            record.total_hours = hours
            record.status = classify_hours(self.policy, hours).value
            await self.session.flush()

            logger.info("Worker %s clocked out on %s: %s h, %s", worker_id, work_date, hours, record.status)
            return record

    async def record_locum_attendance(
        self,
        organization_id: UUID,
        locum_booking_id: UUID,
        status: str,
        work_date: date | None = None,
        notes: str | None = None,
    ) -> AttendanceRecord:
        """Record WORKED or NO_SHOW for a booking; one fact per booking and date.

        The block's location is stamped on creation. Re-recording updates
        the status and leaves the stored location alone.
        """
        async with transaction(self.session):
            booking, block = await self._get_booking(organization_id, locum_booking_id)
            day = work_date or block.work_date
            try:
                outcome = parse_locum_status(status)
            except ValueError:
                raise InvalidAttendanceStatus(None, status, day) from None

            result = await self.session.execute(
                select(AttendanceRecord).where(
                    AttendanceRecord.locum_booking_id == locum_booking_id,
                    AttendanceRecord.work_date == day,
                )
            )
            record = result.scalar_one_or_none()
            if record is None:
                record = AttendanceRecord(
                    organization_id=organization_id,
                    locum_booking_id=locum_booking_id,
                    work_date=day,
                    location_id=block.location_id,
                )
                self.session.add(record)

            self._apply_locum_outcome(record, outcome)
            if notes is not None:
                record.notes = notes
            await self.session.flush()

            logger.info("Locum booking %s recorded %s on %s", booking.locum_booking_id, outcome.value, day)
            return record

    async def review_attendance(
        self,
        organization_id: UUID,
        attendance_id: UUID,
        status: str | None = None,
        notes: str | None = None,
        reviewer_id: str | None = None,
    ) -> AttendanceRecord:
        """Supervisor review: optionally override the status, then mark reviewed."""
        async with transaction(self.session):
            record = await self._get_record(organization_id, attendance_id)
            if status is not None:
                try:
                    if record.is_locum:
                        self._apply_locum_outcome(record, parse_locum_status(status))
                    else:
                        record.status = parse_staff_status(status).value
                except ValueError:
                    raise InvalidAttendanceStatus(attendance_id, status, record.work_date) from None
            if notes is not None:
                record.notes = notes
            record.is_reviewed = True
            record.reviewed_by = reviewer_id
            record.reviewed_at = datetime.now(timezone.utc)
            await self.session.flush()
            return record

    async def backfill_missing_locations(self, organization_id: UUID) -> BackfillReport:
        """Stamp resolved locations onto facts with a null location.

        Facts that already carry a location are never touched; ones that
        cannot be resolved are reported.
        """
        report = BackfillReport()
        async with transaction(self.session):
            result = await self.session.execute(
                select(AttendanceRecord)
                .where(
                    AttendanceRecord.organization_id == organization_id,
                    AttendanceRecord.location_id.is_(None),
                )
                .order_by(AttendanceRecord.work_date)
            )
            for record in result.scalars().all():
                try:
                    location_id = await self.resolver.verify_fact(record)
                except LocationError as exc:
                    report.unresolved.append(exc)
                    continue
                except NotFound:
                    report.unresolved.append(LocationUnresolved("attendance", record.attendance_id, record.work_date))
                    continue
                record.location_id = location_id
                report.repaired.append(record.attendance_id)

        logger.info(
            "Location backfill for organization %s: %d repaired, %d unresolved",
            organization_id,
            len(report.repaired),
            len(report.unresolved),
        )
        return report

    async def repair_fact_location(
        self,
        organization_id: UUID,
        attendance_id: UUID,
        actor_id: str | None = None,
    ) -> AttendanceRecord:
        """Operator overwrite of a fact's location with the resolved one."""
        async with transaction(self.session):
            record = await self._get_record(organization_id, attendance_id)
            if record.is_locum:
                resolved = await self.resolver.resolve(WorkerRef.locum(record.locum_booking_id), record.work_date)
            else:
                resolved = await self.resolver.resolve_for_staff(record.worker_id, record.work_date)

            if record.location_id != resolved:
                logger.info(
                    "Attendance %s location repaired by %s: %s -> %s",
                    attendance_id,
                    actor_id,
                    record.location_id,
                    resolved,
                )
                record.location_id = resolved
            return record

    async def repair_booking_location(
        self,
        organization_id: UUID,
        locum_booking_id: UUID,
        actor_id: str | None = None,
    ) -> LocumBooking:
        """Operator refresh of a booking's cached location from its block."""
        async with transaction(self.session):
            booking = await self.resolver.repair_booking_cache(organization_id, locum_booking_id)
            logger.info("Locum booking %s location cache checked by %s", locum_booking_id, actor_id)
            return booking

    @staticmethod
    def _apply_locum_outcome(record: AttendanceRecord, outcome: AttendanceOutcome) -> None:
        worked = outcome is AttendanceOutcome.WORKED
        record.locum_status = outcome.value
        record.status = AttendanceOutcome.FULL_DAY.value if worked else AttendanceOutcome.ABSENT.value
        record.total_hours = LOCUM_WORKED_HOURS if worked else Decimal("0")

    async def _get_worker(self, organization_id: UUID, worker_id: UUID) -> Worker:
        worker = await self.session.get(Worker, worker_id)
        if worker is None or worker.organization_id != organization_id:
            raise NotFound("worker", worker_id)
        return worker

    async def _get_booking(self, organization_id: UUID, locum_booking_id: UUID) -> tuple[LocumBooking, ScheduleBlock]:
        result = await self.session.execute(
            select(LocumBooking, ScheduleBlock)
            .join(ScheduleBlock, LocumBooking.block_id == ScheduleBlock.block_id)
            .where(
                LocumBooking.locum_booking_id == locum_booking_id,
                LocumBooking.organization_id == organization_id,
            )
        )
        row = result.one_or_none()
        if row is None:
            raise NotFound("locum_booking", locum_booking_id)
        return row[0], row[1]

    async def _get_record(self, organization_id: UUID, attendance_id: UUID) -> AttendanceRecord:
        record = await self.session.get(AttendanceRecord, attendance_id)
        if record is None or record.organization_id != organization_id:
            raise NotFound("attendance", attendance_id)
        return record

    async def _find_staff_record(self, worker_id: UUID, work_date: date) -> AttendanceRecord | None:
        result = await self.session.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.worker_id == worker_id,
                AttendanceRecord.work_date == work_date,
            )
        )
        return result.scalar_one_or_none()
