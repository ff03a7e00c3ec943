"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from attendance_payroll.calculators.types import NormalizedAttendanceLine
from attendance_payroll.exceptions import PayrollEngineError


# ============================================================================
# Errors
# ============================================================================


class ErrorResponse(BaseModel):
    """Error body naming the entity and the rule that was broken."""

    detail: str
    code: str
    entity_type: str | None = None
    entity_id: str | None = None
    invariant: str | None = None

    @classmethod
    def from_error(cls, exc: PayrollEngineError) -> "ErrorResponse":
        return cls(**exc.to_dict())


# ============================================================================
# Payroll run schemas
# ============================================================================


class PayrollRunResponse(BaseModel):
    """Schema for payroll run response."""

    model_config = ConfigDict(from_attributes=True)

    payroll_run_id: UUID
    organization_id: UUID
    period_start: date
    period_end: date
    marked_by: str | None = None
    month_units_divisor: Decimal
    status: str
    finalized_at: datetime | None = None
    finalized_by: str | None = None
    created_at: datetime
    updated_at: datetime


class RunSettingsUpdate(BaseModel):
    """Schema for updating run settings; omitted fields are unchanged."""

    marked_by: str | None = None
    month_units_divisor: Any = None


# ============================================================================
# Payroll item schemas
# ============================================================================


class AllowanceIn(BaseModel):
    """Allowance as submitted; the amount is validated by the ledger."""

    amount: Any = None
    note: str = Field(default="", validation_alias=AliasChoices("note", "notes"))


class AllowancesUpdate(BaseModel):
    """Full replacement list of allowances for one item."""

    allowances: list[AllowanceIn]


class AllowanceResponse(BaseModel):
    """Schema for allowance response."""

    model_config = ConfigDict(from_attributes=True)

    allowance_id: UUID
    position: int
    amount: Decimal
    note: str


class PaidUpdate(BaseModel):
    """Schema for toggling an item's paid flag."""

    is_paid: bool


class PayrollItemResponse(BaseModel):
    """Schema for payroll item response."""

    model_config = ConfigDict(from_attributes=True)

    payroll_item_id: UUID
    payroll_run_id: UUID
    subject_key: str
    worker_id: UUID | None = None
    locum_booking_id: UUID | None = None
    worker_name: str
    role: str | None = None
    location_ids: list[str] = Field(default_factory=list)
    worked_units: Decimal
    paid_leave_units: Decimal
    unpaid_leave_units: Decimal
    absent_units: Decimal
    paid_units: Decimal
    pay_model: str
    pay_method: str
    base_rate: Decimal
    base_pay: Decimal
    allowance_total: Decimal
    gross_pay: Decimal
    is_paid: bool
    paid_at: datetime | None = None
    paid_by: str | None = None
    has_warning: bool
    allowances: list[AllowanceResponse] = Field(default_factory=list)


class PayrollPeriodResponse(BaseModel):
    """Run, items and attendance issues for one period."""

    run: PayrollRunResponse
    items: list[PayrollItemResponse]
    issues: list[ErrorResponse]


class MarkAllPaidResponse(BaseModel):
    """Count of items changed by mark-all-paid."""

    updated: int


# ============================================================================
# Attendance schemas
# ============================================================================


class AttendanceLineResponse(BaseModel):
    """One normalized worker-day."""

    worker_kind: str
    worker_id: UUID
    work_date: date
    outcome: str | None = None
    units: Decimal
    location_id: UUID | None = None
    attendance_id: UUID | None = None
    leave_request_id: UUID | None = None
    issue: str | None = None
    synthesized: bool = False

    @classmethod
    def from_line(cls, line: NormalizedAttendanceLine) -> "AttendanceLineResponse":
        return cls(
            worker_kind=line.worker.kind.value,
            worker_id=line.worker.id,
            work_date=line.work_date,
            outcome=line.outcome.value if line.outcome is not None else None,
            units=line.units,
            location_id=line.location_id,
            attendance_id=line.attendance_id,
            leave_request_id=line.leave_request_id,
            issue=line.issue,
            synthesized=line.synthesized,
        )


class AttendanceListResponse(BaseModel):
    """Normalized attendance for a period."""

    lines: list[AttendanceLineResponse]
    issues: list[ErrorResponse]


class AttendanceResponse(BaseModel):
    """Schema for a stored attendance fact."""

    model_config = ConfigDict(from_attributes=True)

    attendance_id: UUID
    organization_id: UUID
    location_id: UUID | None = None
    worker_id: UUID | None = None
    locum_booking_id: UUID | None = None
    work_date: date
    clock_in: datetime | None = None
    clock_out: datetime | None = None
    total_hours: Decimal | None = None
    status: str | None = None
    locum_status: str | None = None
    notes: str | None = None
    is_reviewed: bool
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None


class ClockInRequest(BaseModel):
    """Schema for a staff clock-in."""

    worker_id: UUID
    at: datetime
    location_id: UUID | None = None


class ClockOutRequest(BaseModel):
    """Schema for a staff clock-out."""

    worker_id: UUID
    at: datetime


class LocumAttendanceRequest(BaseModel):
    """Schema for recording a locum's attendance."""

    locum_booking_id: UUID
    status: str
    work_date: date | None = None
    notes: str | None = None


class ReviewRequest(BaseModel):
    """Schema for supervisor review of an attendance fact."""

    status: str | None = None
    notes: str | None = None


class BackfillResponse(BaseModel):
    """Result of the location backfill."""

    repaired: list[UUID]
    unresolved: list[ErrorResponse]
