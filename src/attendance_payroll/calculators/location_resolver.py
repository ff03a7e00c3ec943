"""Authoritative location resolution for attendance facts."""

from __future__ import annotations

import logging
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_payroll.calculators.types import WorkerKind, WorkerRef
from attendance_payroll.exceptions import (
    AmbiguousLocation,
    LocationMismatch,
    LocationUnresolved,
    NotFound,
)
from attendance_payroll.models import (
    Assignment,
    AttendanceRecord,
    LocumBooking,
    ScheduleBlock,
)

logger = logging.getLogger(__name__)


class LocationResolver:
    """Resolves the single location a worker is at on a given date.

    Resolution rules:
    1. Staff: the location of the schedule block behind any assignment for
       that worker on that date. Assignments at two or more different
       locations raise AmbiguousLocation; none raises NotFound.
    2. Locum booking: the owning block's location. The booking's own
       location_id is a cache and is only checked, never trusted.

    Existing facts are verified, not rewritten: a stored location that
    disagrees with the resolved one raises LocationMismatch.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve(self, worker: WorkerRef, work_date: date) -> UUID:
        """Resolve the authoritative location for a worker on a date."""
        if worker.kind is WorkerKind.LOCUM:
            _, block = await self._load_booking_with_block(worker.id)
            return block.location_id
        return await self.resolve_for_staff(worker.id, work_date)

    async def resolve_for_staff(self, worker_id: UUID, work_date: date) -> UUID:
        """Resolve a staff worker's location through their assignments."""
        result = await self.session.execute(
            select(ScheduleBlock.location_id)
            .join(Assignment, Assignment.block_id == ScheduleBlock.block_id)
            .where(
                Assignment.worker_id == worker_id,
                ScheduleBlock.work_date == work_date,
            )
            .distinct()
        )
        location_ids = list(result.scalars().all())

        if not location_ids:
            raise NotFound(
                "assignment",
                None,
                f"worker {worker_id} has no assignment on {work_date.isoformat()}",
            )
        if len(location_ids) > 1:
            raise AmbiguousLocation(worker_id, work_date, location_ids)
        return location_ids[0]

    async def location_for_new_fact(
        self,
        worker: WorkerRef,
        work_date: date,
        explicit_location_id: UUID | None = None,
    ) -> UUID:
        """Location to stamp on a new attendance fact.

        An explicit location is kept as given; it is checked against the
        schedule when the fact is aggregated.
        """
        if explicit_location_id is not None:
            return explicit_location_id
        try:
            return await self.resolve(worker, work_date)
        except NotFound:
            raise LocationUnresolved(worker.kind.value, worker.id, work_date) from None

    async def verify_fact(self, record: AttendanceRecord) -> UUID:
        """Return the authoritative location of an existing fact.

        Raises:
            LocationMismatch: Stored location, booking cache and block disagree.
            AmbiguousLocation: Staff assignments point at several locations.
            LocationUnresolved: Nothing stored and nothing to resolve from.
        """
        if record.locum_booking_id is not None:
            return await self._verify_locum_fact(record)
        return await self._verify_staff_fact(record)

    async def _verify_locum_fact(self, record: AttendanceRecord) -> UUID:
        booking, block = await self._load_booking_with_block(record.locum_booking_id)
        resolved = block.location_id

        if booking.location_id is not None and booking.location_id != resolved:
            logger.warning(
                "Locum booking %s caches location %s but block %s is at %s (attendance %s, %s)",
                booking.locum_booking_id,
                booking.location_id,
                block.block_id,
                resolved,
                record.attendance_id,
                record.work_date,
            )
            raise LocationMismatch(
                "locum_booking",
                booking.locum_booking_id,
                booking.location_id,
                resolved,
                record.work_date,
            )

        if record.location_id is not None and record.location_id != resolved:
            logger.warning(
                "Attendance %s stores location %s but booking %s resolves to %s (%s)",
                record.attendance_id,
                record.location_id,
                booking.locum_booking_id,
                resolved,
                record.work_date,
            )
            raise LocationMismatch(
                "attendance",
                record.attendance_id,
                record.location_id,
                resolved,
                record.work_date,
            )
        return resolved

    async def _verify_staff_fact(self, record: AttendanceRecord) -> UUID:
        try:
            resolved = await self.resolve_for_staff(record.worker_id, record.work_date)
        except NotFound:
            # Unscheduled clock-in: the stored location is all there is
            if record.location_id is None:
                raise LocationUnresolved("attendance", record.attendance_id, record.work_date) from None
            return record.location_id
        except AmbiguousLocation:
            logger.warning(
                "Attendance %s: worker %s has assignments at several locations on %s",
                record.attendance_id,
                record.worker_id,
                record.work_date,
            )
            raise

        if record.location_id is not None and record.location_id != resolved:
            logger.warning(
                "Attendance %s stores location %s but worker %s is scheduled at %s on %s",
                record.attendance_id,
                record.location_id,
                record.worker_id,
                resolved,
                record.work_date,
            )
            raise LocationMismatch(
                "attendance",
                record.attendance_id,
                record.location_id,
                resolved,
                record.work_date,
            )
        return resolved

    async def find_booking_drift(self, organization_id: UUID) -> list[LocationMismatch]:
        """Report every booking whose cached location differs from its block."""
        result = await self.session.execute(
            select(LocumBooking, ScheduleBlock)
            .join(ScheduleBlock, LocumBooking.block_id == ScheduleBlock.block_id)
            .where(
                LocumBooking.organization_id == organization_id,
                LocumBooking.location_id.is_not(None),
                LocumBooking.location_id != ScheduleBlock.location_id,
            )
        )
        return [
            LocationMismatch(
                "locum_booking",
                booking.locum_booking_id,
                booking.location_id,
                block.location_id,
                block.work_date,
            )
            for booking, block in result.all()
        ]

    async def repair_booking_cache(self, organization_id: UUID, locum_booking_id: UUID) -> LocumBooking:
        """Overwrite a booking's cached location with its block's location."""
        booking, block = await self._load_booking_with_block(locum_booking_id)
        if booking.organization_id != organization_id:
            raise NotFound("locum_booking", locum_booking_id)
        if booking.location_id != block.location_id:
            logger.info(
                "Repairing locum booking %s location cache: %s -> %s",
                locum_booking_id,
                booking.location_id,
                block.location_id,
            )
            booking.location_id = block.location_id
        return booking

    async def _load_booking_with_block(self, locum_booking_id: UUID) -> tuple[LocumBooking, ScheduleBlock]:
        result = await self.session.execute(
            select(LocumBooking, ScheduleBlock)
            .join(ScheduleBlock, LocumBooking.block_id == ScheduleBlock.block_id)
            .where(LocumBooking.locum_booking_id == locum_booking_id)
        )
        row = result.one_or_none()
        if row is None:
            raise NotFound("locum_booking", locum_booking_id)
        return row[0], row[1]
