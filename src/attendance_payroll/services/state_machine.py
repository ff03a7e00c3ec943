"""Payroll run state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from attendance_payroll.exceptions import PayrollEngineError, RunLocked

if TYPE_CHECKING:
    from attendance_payroll.models import PayrollRun


class PayrollRunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "draft"
    FINALIZED = "finalized"


class InvalidTransitionError(PayrollEngineError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, "payroll_run", None, "draft -> finalized is the only transition")


class PayrollRunStateMachine:
    """State machine for payroll run status transitions.

    Allowed transitions:
    - draft → finalized

    finalized is terminal. Items, allowances and run settings are mutable
    only while the run is draft.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrollRunStatus.DRAFT: [PayrollRunStatus.FINALIZED],
        PayrollRunStatus.FINALIZED: [],  # Terminal state
    }

    MUTABLE = {PayrollRunStatus.DRAFT}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def is_mutable(cls, status: str) -> bool:
        """Check if the run and its items may still change."""
        return status in cls.MUTABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def ensure_mutable(
        cls,
        run: PayrollRun,
        action: str,
        entity_type: str = "payroll_run",
        entity_id=None,
    ) -> None:
        """Raise RunLocked unless the run is still draft."""
        if not cls.is_mutable(run.status):
            raise RunLocked(run.payroll_run_id, action, entity_type, entity_id)
