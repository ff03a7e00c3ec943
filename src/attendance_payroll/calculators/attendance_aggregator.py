"""Attendance aggregation into a single unit scale."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_payroll.calculators.location_resolver import LocationResolver
from attendance_payroll.calculators.types import (
    ZERO,
    AttendanceOutcome,
    NormalizedAttendanceLine,
    SubjectTotals,
    UnitTotals,
    WorkerKind,
    WorkerRef,
    parse_locum_status,
    parse_staff_status,
)
from attendance_payroll.config import AttendanceUnitPolicy
from attendance_payroll.exceptions import (
    InvalidAttendanceStatus,
    LocationError,
    LocationUnresolved,
    NotFound,
    PayrollEngineError,
)
from attendance_payroll.models import (
    AttendanceRecord,
    LeaveRequest,
    LocumBooking,
    ScheduleBlock,
)

logger = logging.getLogger(__name__)

ONE = Decimal("1")


def hours_between(start: datetime, end: datetime) -> Decimal:
    """Hours from start to end, tolerant of naive and aware mixes."""

    def as_naive_utc(value: datetime) -> datetime:
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    seconds = (as_naive_utc(end) - as_naive_utc(start)).total_seconds()
    return (Decimal(int(seconds)) / Decimal(3600)).quantize(Decimal("0.01"))


def classify_hours(policy: AttendanceUnitPolicy, hours: Decimal) -> AttendanceOutcome:
    """Classify clocked hours as a full day, partial day or absence."""
    if hours >= policy.full_day_hours:
        return AttendanceOutcome.FULL_DAY
    if hours >= policy.partial_day_hours:
        return AttendanceOutcome.PARTIAL_DAY
    return AttendanceOutcome.ABSENT


def outcome_units(policy: AttendanceUnitPolicy, outcome: AttendanceOutcome | None) -> Decimal:
    """Units credited for one day with the given outcome."""
    if outcome in (AttendanceOutcome.FULL_DAY, AttendanceOutcome.WORKED):
        return ONE
    if outcome is AttendanceOutcome.PARTIAL_DAY:
        return policy.partial_day_units
    if outcome is not None and outcome.is_leave:
        return ONE
    return ZERO


@dataclass
class AggregationResult:
    """Normalized lines for a period plus the facts that need repair."""

    lines: list[NormalizedAttendanceLine] = field(default_factory=list)
    issues: list[PayrollEngineError] = field(default_factory=list)

    @property
    def payable_lines(self) -> list[NormalizedAttendanceLine]:
        return [line for line in self.lines if line.is_payable]

    @property
    def unrecorded_lines(self) -> list[NormalizedAttendanceLine]:
        return [line for line in self.lines if not line.is_recorded and line.issue is None]

    def lines_for(self, worker: WorkerRef) -> list[NormalizedAttendanceLine]:
        return [line for line in self.lines if line.worker == worker]

    def totals_by_subject(self) -> dict[str, SubjectTotals]:
        """Sum payable lines per worker.

        Leave is additive with worked units. An absence on a day that is
        also covered by leave is not counted as absent.
        """
        worked: dict[str, Decimal] = {}
        paid_leave: dict[str, Decimal] = {}
        unpaid_leave: dict[str, Decimal] = {}
        absent_days: dict[str, set[date]] = {}
        leave_days: dict[str, set[date]] = {}
        locations: dict[str, set[str]] = {}
        workers: dict[str, WorkerRef] = {}

        for line in self.payable_lines:
            key = line.worker.key
            workers.setdefault(key, line.worker)
            outcome = line.outcome
            if outcome.is_work:
                worked[key] = worked.get(key, ZERO) + line.units
            elif outcome is AttendanceOutcome.PAID_LEAVE:
                paid_leave[key] = paid_leave.get(key, ZERO) + line.units
                leave_days.setdefault(key, set()).add(line.work_date)
            elif outcome is AttendanceOutcome.UNPAID_LEAVE:
                unpaid_leave[key] = unpaid_leave.get(key, ZERO) + line.units
                leave_days.setdefault(key, set()).add(line.work_date)
            elif outcome.is_absence:
                absent_days.setdefault(key, set()).add(line.work_date)
            if line.location_id is not None:
                locations.setdefault(key, set()).add(str(line.location_id))

        totals: dict[str, SubjectTotals] = {}
        for key, worker in workers.items():
            absent = absent_days.get(key, set()) - leave_days.get(key, set())
            totals[key] = SubjectTotals(
                worker=worker,
                units=UnitTotals(
                    worked_units=worked.get(key, ZERO),
                    paid_leave_units=paid_leave.get(key, ZERO),
                    unpaid_leave_units=unpaid_leave.get(key, ZERO),
                    absent_units=Decimal(len(absent)),
                ),
                location_ids=sorted(locations.get(key, set())),
            )
        return totals


class AttendanceAggregator:
    """Loads a period's attendance and normalizes it to units.

    Pipeline (per call):
    1) Staff and locum facts, each verified by the LocationResolver
    2) Unrecorded lines for locum bookings with no fact for their date
    3) Approved leave, one line per covered day

    Resolution problems are collected as issues and the affected lines are
    kept but marked, so the rest of the period still aggregates.
    """

    def __init__(
        self,
        session: AsyncSession,
        policy: AttendanceUnitPolicy | None = None,
        resolver: LocationResolver | None = None,
    ):
        self.session = session
        self.policy = policy or AttendanceUnitPolicy()
        self.resolver = resolver or LocationResolver(session)

    async def aggregate(
        self,
        organization_id: UUID,
        period_start: date,
        period_end: date,
        location_id: UUID | None = None,
        worker_type: WorkerKind | None = None,
    ) -> AggregationResult:
        """Aggregate attendance for an organization over an inclusive period."""
        result = AggregationResult()
        seen: set[tuple[str, date]] = set()

        records = await self._load_records(organization_id, period_start, period_end, worker_type)
        for record in records:
            line = await self._normalize_record(record, result)
            seen.add((line.worker.key, line.work_date))
            if location_id is None or line.location_id == location_id:
                result.lines.append(line)

        if worker_type in (None, WorkerKind.LOCUM):
            for line in await self._unrecorded_locum_lines(organization_id, period_start, period_end, seen):
                if location_id is None or line.location_id == location_id:
                    result.lines.append(line)

        if worker_type in (None, WorkerKind.STAFF):
            staff_in_view = {line.worker.key for line in result.lines if line.worker.kind is WorkerKind.STAFF}
            for line in await self._leave_lines(organization_id, period_start, period_end):
                if location_id is None or line.worker.key in staff_in_view:
                    result.lines.append(line)

        result.lines.sort(key=lambda l: (l.work_date, l.worker.key))
        logger.debug(
            "Aggregated %d lines (%d issues) for organization %s %s..%s",
            len(result.lines),
            len(result.issues),
            organization_id,
            period_start,
            period_end,
        )
        return result

    def classify(self, record: AttendanceRecord) -> AttendanceOutcome | None:
        """Map a stored record to an outcome; None when nothing is recorded yet.

        Raises:
            InvalidAttendanceStatus: If a status string is not recognized.
        """
        try:
            if record.locum_booking_id is not None:
                if record.locum_status is None:
                    return None
                return parse_locum_status(record.locum_status)

            if record.status is not None:
                return parse_staff_status(record.status)
        except ValueError:
            raw = record.locum_status if record.locum_booking_id is not None else record.status
            raise InvalidAttendanceStatus(record.attendance_id, raw, record.work_date) from None

        if record.clock_in is not None and record.clock_out is not None:
            return classify_hours(self.policy, hours_between(record.clock_in, record.clock_out))
        if record.total_hours is not None:
            return classify_hours(self.policy, Decimal(record.total_hours))
        # Clocked in but not out
        return None

    async def _normalize_record(
        self, record: AttendanceRecord, result: AggregationResult
    ) -> NormalizedAttendanceLine:
        if record.locum_booking_id is not None:
            worker = WorkerRef.locum(record.locum_booking_id)
        else:
            worker = WorkerRef.staff(record.worker_id)

        issue: str | None = None
        outcome: AttendanceOutcome | None = None
        location_id = record.location_id

        try:
            outcome = self.classify(record)
        except InvalidAttendanceStatus as exc:
            logger.warning("%s", exc)
            result.issues.append(exc)
            issue = exc.code

        try:
            location_id = await self.resolver.verify_fact(record)
        except LocationError as exc:
            result.issues.append(exc)
            issue = issue or exc.code
        except NotFound:
            exc = LocationUnresolved("attendance", record.attendance_id, record.work_date)
            result.issues.append(exc)
            issue = issue or exc.code

        return NormalizedAttendanceLine(
            worker=worker,
            work_date=record.work_date,
            outcome=outcome,
            units=outcome_units(self.policy, outcome),
            location_id=location_id,
            attendance_id=record.attendance_id,
            issue=issue,
        )

    async def _load_records(
        self,
        organization_id: UUID,
        period_start: date,
        period_end: date,
        worker_type: WorkerKind | None,
    ) -> list[AttendanceRecord]:
        query = select(AttendanceRecord).where(
            AttendanceRecord.organization_id == organization_id,
            AttendanceRecord.work_date >= period_start,
            AttendanceRecord.work_date <= period_end,
        )
        if worker_type is WorkerKind.STAFF:
            query = query.where(AttendanceRecord.worker_id.is_not(None))
        elif worker_type is WorkerKind.LOCUM:
            query = query.where(AttendanceRecord.locum_booking_id.is_not(None))

        result = await self.session.execute(
            query.order_by(AttendanceRecord.work_date, AttendanceRecord.attendance_id)
        )
        return list(result.scalars().all())

    async def _unrecorded_locum_lines(
        self,
        organization_id: UUID,
        period_start: date,
        period_end: date,
        seen: set[tuple[str, date]],
    ) -> list[NormalizedAttendanceLine]:
        result = await self.session.execute(
            select(LocumBooking.locum_booking_id, ScheduleBlock.work_date, ScheduleBlock.location_id)
            .join(ScheduleBlock, LocumBooking.block_id == ScheduleBlock.block_id)
            .where(
                LocumBooking.organization_id == organization_id,
                ScheduleBlock.work_date >= period_start,
                ScheduleBlock.work_date <= period_end,
            )
        )

        lines: list[NormalizedAttendanceLine] = []
        for booking_id, work_date, block_location_id in result.all():
            worker = WorkerRef.locum(booking_id)
            if (worker.key, work_date) in seen:
                continue
            seen.add((worker.key, work_date))
            lines.append(
                NormalizedAttendanceLine(
                    worker=worker,
                    work_date=work_date,
                    outcome=None,
                    units=ZERO,
                    location_id=block_location_id,
                    synthesized=True,
                )
            )
        return lines

    async def _leave_lines(
        self,
        organization_id: UUID,
        period_start: date,
        period_end: date,
    ) -> list[NormalizedAttendanceLine]:
        result = await self.session.execute(
            select(LeaveRequest)
            .where(
                LeaveRequest.organization_id == organization_id,
                LeaveRequest.status == "approved",
                LeaveRequest.start_date <= period_end,
                LeaveRequest.end_date >= period_start,
            )
            .order_by(LeaveRequest.start_date, LeaveRequest.leave_request_id)
        )

        lines: list[NormalizedAttendanceLine] = []
        covered: set[tuple[UUID, date]] = set()
        for leave in result.scalars().all():
            outcome = AttendanceOutcome.PAID_LEAVE if leave.is_paid else AttendanceOutcome.UNPAID_LEAVE
            day = max(leave.start_date, period_start)
            last = min(leave.end_date, period_end)
            while day <= last:
                counts = self.policy.leave_counts_weekends or day.weekday() < 5
                if counts and (leave.worker_id, day) not in covered:
                    covered.add((leave.worker_id, day))
                    lines.append(
                        NormalizedAttendanceLine(
                            worker=WorkerRef.staff(leave.worker_id),
                            work_date=day,
                            outcome=outcome,
                            units=outcome_units(self.policy, outcome),
                            leave_request_id=leave.leave_request_id,
                        )
                    )
                day += timedelta(days=1)
        return lines
