"""Type definitions for the attendance and pay pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

ZERO = Decimal("0")


class WorkerKind(str, Enum):
    """Kind of worker an attendance fact or payroll item is about."""

    STAFF = "staff"
    LOCUM = "locum"


class PayModel(str, Enum):
    """How a worker's base pay is derived from units."""

    SALARIED = "salaried"
    DAILY = "daily"
    CASUAL = "casual"
    LOCUM = "locum"

    @property
    def accrues_paid_leave(self) -> bool:
        return self is PayModel.SALARIED


class PayMethod(str, Enum):
    """Display label for how base pay was reached."""

    FIXED = "fixed"
    PRORATED = "prorated"
    DAILY = "daily"


class AttendanceOutcome(str, Enum):
    """Closed set of per-day attendance outcomes."""

    FULL_DAY = "present_full"
    PARTIAL_DAY = "present_partial"
    ABSENT = "absent"
    WORKED = "WORKED"
    NO_SHOW = "NO_SHOW"
    PAID_LEAVE = "paid_leave"
    UNPAID_LEAVE = "unpaid_leave"

    @property
    def is_work(self) -> bool:
        return self in (AttendanceOutcome.FULL_DAY, AttendanceOutcome.PARTIAL_DAY, AttendanceOutcome.WORKED)

    @property
    def is_absence(self) -> bool:
        return self in (AttendanceOutcome.ABSENT, AttendanceOutcome.NO_SHOW)

    @property
    def is_leave(self) -> bool:
        return self in (AttendanceOutcome.PAID_LEAVE, AttendanceOutcome.UNPAID_LEAVE)


# Source representations seen in staff clock records and reviews
STAFF_STATUS_MAP: dict[str, AttendanceOutcome] = {
    "present_full": AttendanceOutcome.FULL_DAY,
    "present": AttendanceOutcome.FULL_DAY,
    "full_day": AttendanceOutcome.FULL_DAY,
    "present_partial": AttendanceOutcome.PARTIAL_DAY,
    "partial": AttendanceOutcome.PARTIAL_DAY,
    "half_day": AttendanceOutcome.PARTIAL_DAY,
    "absent": AttendanceOutcome.ABSENT,
}

# Source representations seen in locum confirmations
LOCUM_STATUS_MAP: dict[str, AttendanceOutcome] = {
    "WORKED": AttendanceOutcome.WORKED,
    "NO_SHOW": AttendanceOutcome.NO_SHOW,
}


def parse_staff_status(raw: str) -> AttendanceOutcome:
    """Map a staff status string to an outcome.

    Raises:
        ValueError: If the string is not a known staff status.
    """
    key = raw.strip().lower()
    if key not in STAFF_STATUS_MAP:
        raise ValueError(f"Unknown staff attendance status: {raw!r}")
    return STAFF_STATUS_MAP[key]


def parse_locum_status(raw: str) -> AttendanceOutcome:
    """Map a locum status string to an outcome.

    Raises:
        ValueError: If the string is not a known locum status.
    """
    key = raw.strip().upper().replace("-", "_").replace(" ", "_")
    if key not in LOCUM_STATUS_MAP:
        raise ValueError(f"Unknown locum attendance status: {raw!r}")
    return LOCUM_STATUS_MAP[key]


@dataclass(frozen=True)
class WorkerRef:
    """Identity of a staff worker or a locum booking."""

    kind: WorkerKind
    id: UUID

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.id}"

    @classmethod
    def staff(cls, worker_id: UUID) -> WorkerRef:
        return cls(WorkerKind.STAFF, worker_id)

    @classmethod
    def locum(cls, locum_booking_id: UUID) -> WorkerRef:
        return cls(WorkerKind.LOCUM, locum_booking_id)


@dataclass(frozen=True)
class NormalizedAttendanceLine:
    """One worker-day after normalization.

    outcome is None for a locum booking with nothing recorded yet. Lines
    with an issue, and unrecorded lines, never contribute units.
    """

    worker: WorkerRef
    work_date: date
    outcome: AttendanceOutcome | None
    units: Decimal
    location_id: UUID | None = None
    attendance_id: UUID | None = None
    leave_request_id: UUID | None = None
    issue: str | None = None
    synthesized: bool = False

    @property
    def is_recorded(self) -> bool:
        return self.outcome is not None

    @property
    def is_payable(self) -> bool:
        return self.outcome is not None and self.issue is None


@dataclass(frozen=True)
class UnitTotals:
    """Unit totals for one worker over a period."""

    worked_units: Decimal = ZERO
    paid_leave_units: Decimal = ZERO
    unpaid_leave_units: Decimal = ZERO
    absent_units: Decimal = ZERO


@dataclass
class SubjectTotals:
    """Aggregated units and contributing locations for one worker."""

    worker: WorkerRef
    units: UnitTotals
    location_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PayProfile:
    """Pay model and rate for one worker.

    rate is the monthly salary for SALARIED and the daily rate otherwise.
    """

    pay_model: PayModel
    rate: Decimal
    name: str = ""
    role: str | None = None


@dataclass(frozen=True)
class PayComputation:
    """Result of computing pay for one worker."""

    base_pay: Decimal
    allowance_total: Decimal
    gross_pay: Decimal
    paid_units: Decimal
    pay_method: PayMethod

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_pay": str(self.base_pay),
            "allowance_total": str(self.allowance_total),
            "gross_pay": str(self.gross_pay),
            "paid_units": str(self.paid_units),
            "pay_method": self.pay_method.value,
        }
