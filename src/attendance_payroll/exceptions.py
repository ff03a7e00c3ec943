"""Error taxonomy for the payroll engine.

Every error names the entity it concerns and the rule that was broken, so
the message alone is enough for an operator to act on.
"""

from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID


class PayrollEngineError(Exception):
    """Base class for all engine errors."""

    code = "PAYROLL_ERROR"

    def __init__(
        self,
        message: str,
        entity_type: str | None = None,
        entity_id: UUID | str | None = None,
        invariant: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.invariant = invariant
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serializable view used by the API error handlers."""
        return {
            "detail": str(self),
            "code": self.code,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id is not None else None,
            "invariant": self.invariant,
        }


class NotFound(PayrollEngineError):
    """Raised when a referenced entity does not exist in the organization."""

    code = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: UUID | str | None, detail: str | None = None):
        message = f"{entity_type} {entity_id} not found"
        if detail:
            message += f": {detail}"
        super().__init__(message, entity_type, entity_id, "entity must exist")


# ===== Location resolution =====


class LocationError(PayrollEngineError):
    """Base for location inconsistencies recoverable by an operator."""

    code = "LOCATION_ERROR"

    def __init__(
        self,
        message: str,
        entity_type: str,
        entity_id: UUID | str | None,
        invariant: str,
        work_date: date | None = None,
    ):
        self.work_date = work_date
        super().__init__(message, entity_type, entity_id, invariant)


class AmbiguousLocation(LocationError):
    """Worker has assignments at more than one location on the same date."""

    code = "AMBIGUOUS_LOCATION"

    def __init__(self, worker_id: UUID, work_date: date, location_ids: list[UUID]):
        self.worker_id = worker_id
        self.location_ids = sorted(location_ids, key=str)
        super().__init__(
            f"Worker {worker_id} is assigned to {len(self.location_ids)} locations "
            f"on {work_date.isoformat()}: {', '.join(str(l) for l in self.location_ids)}",
            "worker",
            worker_id,
            "one location per worker per day",
            work_date,
        )


class LocationMismatch(LocationError):
    """Stored location disagrees with the location resolved from the schedule."""

    code = "LOCATION_MISMATCH"

    def __init__(
        self,
        entity_type: str,
        entity_id: UUID,
        stored_location_id: UUID | None,
        resolved_location_id: UUID,
        work_date: date | None = None,
    ):
        self.stored_location_id = stored_location_id
        self.resolved_location_id = resolved_location_id
        super().__init__(
            f"{entity_type} {entity_id} stores location {stored_location_id} "
            f"but its schedule block is at {resolved_location_id}",
            entity_type,
            entity_id,
            "location must match the owning schedule block",
            work_date,
        )


class LocationUnresolved(LocationError):
    """No stored location and nothing in the schedule to resolve one from."""

    code = "LOCATION_UNRESOLVED"

    def __init__(self, entity_type: str, entity_id: UUID, work_date: date | None = None):
        super().__init__(
            f"{entity_type} {entity_id} has no location and no scheduled assignment "
            f"on {work_date.isoformat() if work_date else 'its date'}",
            entity_type,
            entity_id,
            "every attendance fact needs exactly one location",
            work_date,
        )


class InvalidAttendanceStatus(LocationError):
    """Attendance status outside the known set of source representations."""

    code = "INVALID_ATTENDANCE_STATUS"

    def __init__(self, attendance_id: UUID | None, raw_status: Any, work_date: date | None = None):
        self.raw_status = raw_status
        super().__init__(
            f"Attendance {attendance_id} has unrecognized status {raw_status!r}",
            "attendance",
            attendance_id,
            "status must map to a known attendance outcome",
            work_date,
        )


# ===== Payroll run state =====


class RunLocked(PayrollEngineError):
    """Mutation attempted against a finalized payroll run."""

    code = "RUN_LOCKED"

    def __init__(self, run_id: UUID, action: str, entity_type: str = "payroll_run", entity_id: UUID | None = None):
        self.run_id = run_id
        self.action = action
        super().__init__(
            f"Cannot {action}: payroll run {run_id} is finalized",
            entity_type,
            entity_id or run_id,
            "finalized runs are immutable",
        )


class UnpaidItems(PayrollEngineError):
    """Finalize attempted while some items are not marked paid."""

    code = "UNPAID_ITEMS"

    def __init__(self, run_id: UUID, unpaid_item_ids: list[UUID]):
        self.run_id = run_id
        self.unpaid_item_ids = unpaid_item_ids
        super().__init__(
            f"Payroll run {run_id} has {len(unpaid_item_ids)} unpaid item(s); "
            "mark them paid before finalizing",
            "payroll_run",
            run_id,
            "every item must be paid before finalize",
        )


class RunNotFinalized(PayrollEngineError):
    """Operation requires a finalized run."""

    code = "RUN_NOT_FINALIZED"

    def __init__(self, run_id: UUID, action: str):
        super().__init__(
            f"Cannot {action}: payroll run {run_id} is not finalized",
            "payroll_run",
            run_id,
            "only finalized runs can be exported",
        )


class InvalidAmount(PayrollEngineError):
    """Allowance amount is missing, malformed or not finite."""

    code = "INVALID_AMOUNT"

    def __init__(self, item_id: UUID | None, raw_amount: Any, position: int | None = None):
        self.raw_amount = raw_amount
        self.position = position
        where = f" at position {position}" if position is not None else ""
        super().__init__(
            f"Allowance amount {raw_amount!r}{where} for payroll item {item_id} "
            "is not a finite number",
            "payroll_item",
            item_id,
            "allowance amounts must be finite numbers",
        )


class InvalidSetting(PayrollEngineError):
    """Run setting or period parameter out of range."""

    code = "INVALID_SETTING"

    def __init__(self, name: str, value: Any, rule: str, entity_id: UUID | None = None):
        self.name = name
        self.value = value
        super().__init__(
            f"Invalid {name} {value!r}: {rule}",
            "payroll_run",
            entity_id,
            rule,
        )


# ===== Attendance recording =====


class AttendanceConflict(PayrollEngineError):
    """Clock event inconsistent with the existing record for the day."""

    code = "ATTENDANCE_CONFLICT"

    def __init__(self, worker_id: UUID, work_date: date, reason: str):
        super().__init__(
            f"Worker {worker_id} on {work_date.isoformat()}: {reason}",
            "worker",
            worker_id,
            "one clock-in and one clock-out per worker per day",
        )
