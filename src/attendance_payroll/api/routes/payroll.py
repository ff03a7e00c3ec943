"""Payroll API endpoints."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, Response, status

from attendance_payroll.api.dependencies import ActorId, AppSettings, DbSession, OrgId
from attendance_payroll.api.schemas import (
    AllowanceResponse,
    AllowancesUpdate,
    ErrorResponse,
    MarkAllPaidResponse,
    PaidUpdate,
    PayrollItemResponse,
    PayrollPeriodResponse,
    PayrollRunResponse,
    RunSettingsUpdate,
)
from attendance_payroll.models import Allowance, PayrollItem
from attendance_payroll.services.export_service import ExportService
from attendance_payroll.services.payroll_run_service import PayrollRunService

router = APIRouter(prefix="/payroll", tags=["payroll"])


def _item_response(item: PayrollItem, allowances: list[Allowance]) -> PayrollItemResponse:
    response = PayrollItemResponse.model_validate(item)
    response.allowances = [AllowanceResponse.model_validate(a) for a in allowances]
    return response


# ============================================================================
# Period and run
# ============================================================================


@router.get(
    "",
    response_model=PayrollPeriodResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def get_payroll_for_period(
    db: DbSession,
    organization_id: OrgId,
    actor_id: ActorId,
    settings: AppSettings,
    start: Annotated[date, Query()],
    end: Annotated[date, Query()],
    location_id: UUID | None = None,
) -> PayrollPeriodResponse:
    """Load the period's run, recomputing items while it is draft."""
    service = PayrollRunService(db, settings)
    period = await service.get_payroll_for_period(organization_id, start, end, location_id, actor_id)
    allowances = await service.allowances_by_item(period.run.payroll_run_id)

    return PayrollPeriodResponse(
        run=PayrollRunResponse.model_validate(period.run),
        items=[_item_response(item, allowances.get(item.payroll_item_id, [])) for item in period.items],
        issues=[ErrorResponse.from_error(issue) for issue in period.issues],
    )


@router.patch(
    "/runs/{payroll_run_id}",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def update_run_settings(
    db: DbSession,
    organization_id: OrgId,
    actor_id: ActorId,
    settings: AppSettings,
    payroll_run_id: Annotated[UUID, Path()],
    payload: RunSettingsUpdate,
) -> PayrollRunResponse:
    """Update marked-by and/or the month-unit divisor."""
    service = PayrollRunService(db, settings)
    run = await service.update_run_settings(
        organization_id,
        payroll_run_id,
        marked_by=payload.marked_by,
        month_units_divisor=payload.month_units_divisor,
        actor_id=actor_id,
    )
    return PayrollRunResponse.model_validate(run)


@router.post(
    "/runs/{payroll_run_id}/mark-all-paid",
    response_model=MarkAllPaidResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def mark_all_paid(
    db: DbSession,
    organization_id: OrgId,
    actor_id: ActorId,
    settings: AppSettings,
    payroll_run_id: Annotated[UUID, Path()],
) -> MarkAllPaidResponse:
    """Mark every unpaid item of a draft run paid."""
    service = PayrollRunService(db, settings)
    updated = await service.mark_all_paid(organization_id, payroll_run_id, actor_id)
    return MarkAllPaidResponse(updated=updated)


@router.post(
    "/runs/{payroll_run_id}/finalize",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def finalize_run(
    db: DbSession,
    organization_id: OrgId,
    actor_id: ActorId,
    settings: AppSettings,
    payroll_run_id: Annotated[UUID, Path()],
) -> PayrollRunResponse:
    """Finalize a run whose items are all paid."""
    service = PayrollRunService(db, settings)
    run = await service.finalize_run(organization_id, payroll_run_id, actor_id)
    return PayrollRunResponse.model_validate(run)


@router.delete(
    "/runs/{payroll_run_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def delete_run(
    db: DbSession,
    organization_id: OrgId,
    actor_id: ActorId,
    settings: AppSettings,
    payroll_run_id: Annotated[UUID, Path()],
) -> Response:
    """Delete a draft run."""
    service = PayrollRunService(db, settings)
    await service.delete_run(organization_id, payroll_run_id, actor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/runs/{payroll_run_id}/export",
    response_class=Response,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def export_run(
    db: DbSession,
    organization_id: OrgId,
    payroll_run_id: Annotated[UUID, Path()],
) -> Response:
    """Export a finalized run as CSV."""
    service = ExportService(db)
    rows = await service.export_run(organization_id, payroll_run_id)
    run = await PayrollRunService(db).get_run(organization_id, payroll_run_id)
    return Response(
        content=service.to_csv(rows),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{service.filename(run)}"'},
    )


# ============================================================================
# Items
# ============================================================================


@router.put(
    "/items/{payroll_item_id}/allowances",
    response_model=PayrollItemResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def update_item_allowances(
    db: DbSession,
    organization_id: OrgId,
    actor_id: ActorId,
    settings: AppSettings,
    payroll_item_id: Annotated[UUID, Path()],
    payload: AllowancesUpdate,
) -> PayrollItemResponse:
    """Replace an item's allowance list."""
    service = PayrollRunService(db, settings)
    item = await service.update_item_allowances(
        organization_id,
        payroll_item_id,
        [a.model_dump() for a in payload.allowances],
        actor_id,
    )
    allowances = await service.ledger.list_allowances(item.payroll_item_id)
    return _item_response(item, allowances)


@router.patch(
    "/items/{payroll_item_id}/paid",
    response_model=PayrollItemResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def set_item_paid(
    db: DbSession,
    organization_id: OrgId,
    actor_id: ActorId,
    settings: AppSettings,
    payroll_item_id: Annotated[UUID, Path()],
    payload: PaidUpdate,
) -> PayrollItemResponse:
    """Mark an item paid or unpaid."""
    service = PayrollRunService(db, settings)
    item = await service.set_item_paid(organization_id, payroll_item_id, payload.is_paid, actor_id)
    allowances = await service.ledger.list_allowances(item.payroll_item_id)
    return _item_response(item, allowances)
