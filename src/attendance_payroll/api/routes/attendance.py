"""Attendance API endpoints."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from attendance_payroll.api.dependencies import ActorId, AppSettings, DbSession, OrgId
from attendance_payroll.api.schemas import (
    AttendanceLineResponse,
    AttendanceListResponse,
    AttendanceResponse,
    BackfillResponse,
    ClockInRequest,
    ClockOutRequest,
    ErrorResponse,
    LocumAttendanceRequest,
    ReviewRequest,
)
from attendance_payroll.calculators.types import WorkerKind
from attendance_payroll.services.attendance_service import AttendanceService

router = APIRouter(prefix="/attendance", tags=["attendance"])


@router.get(
    "",
    response_model=AttendanceListResponse,
)
async def list_attendance(
    db: DbSession,
    organization_id: OrgId,
    settings: AppSettings,
    start: Annotated[date, Query()],
    end: Annotated[date, Query()],
    location_id: UUID | None = None,
    worker_type: WorkerKind | None = None,
) -> AttendanceListResponse:
    """Normalized attendance lines, including unrecorded locum bookings."""
    service = AttendanceService(db, settings)
    result = await service.list_attendance(organization_id, start, end, location_id, worker_type)
    return AttendanceListResponse(
        lines=[AttendanceLineResponse.from_line(line) for line in result.lines],
        issues=[ErrorResponse.from_error(issue) for issue in result.issues],
    )


@router.post(
    "/clock-in",
    response_model=AttendanceResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def clock_in(
    db: DbSession,
    organization_id: OrgId,
    settings: AppSettings,
    payload: ClockInRequest,
) -> AttendanceResponse:
    """Clock a staff worker in."""
    service = AttendanceService(db, settings)
    record = await service.clock_in(organization_id, payload.worker_id, payload.at, payload.location_id)
    return AttendanceResponse.model_validate(record)


@router.post(
    "/clock-out",
    response_model=AttendanceResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def clock_out(
    db: DbSession,
    organization_id: OrgId,
    settings: AppSettings,
    payload: ClockOutRequest,
) -> AttendanceResponse:
    """Clock a staff worker out and derive the day's status."""
    service = AttendanceService(db, settings)
    record = await service.clock_out(organization_id, payload.worker_id, payload.at)
    return AttendanceResponse.model_validate(record)


@router.post(
    "/locum",
    response_model=AttendanceResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def record_locum_attendance(
    db: DbSession,
    organization_id: OrgId,
    settings: AppSettings,
    payload: LocumAttendanceRequest,
) -> AttendanceResponse:
    """Record WORKED or NO_SHOW for a locum booking."""
    service = AttendanceService(db, settings)
    record = await service.record_locum_attendance(
        organization_id,
        payload.locum_booking_id,
        payload.status,
        payload.work_date,
        payload.notes,
    )
    return AttendanceResponse.model_validate(record)


@router.patch(
    "/{attendance_id}/review",
    response_model=AttendanceResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def review_attendance(
    db: DbSession,
    organization_id: OrgId,
    actor_id: ActorId,
    settings: AppSettings,
    attendance_id: Annotated[UUID, Path()],
    payload: ReviewRequest,
) -> AttendanceResponse:
    """Supervisor review of one attendance fact."""
    service = AttendanceService(db, settings)
    record = await service.review_attendance(
        organization_id,
        attendance_id,
        status=payload.status,
        notes=payload.notes,
        reviewer_id=actor_id,
    )
    return AttendanceResponse.model_validate(record)


@router.post(
    "/backfill-locations",
    response_model=BackfillResponse,
)
async def backfill_locations(
    db: DbSession,
    organization_id: OrgId,
    settings: AppSettings,
) -> BackfillResponse:
    """Stamp resolved locations onto facts that have none."""
    service = AttendanceService(db, settings)
    report = await service.backfill_missing_locations(organization_id)
    return BackfillResponse(
        repaired=report.repaired,
        unresolved=[ErrorResponse.from_error(issue) for issue in report.unresolved],
    )
