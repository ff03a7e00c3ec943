"""Payroll engine services."""

from attendance_payroll.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
)
from attendance_payroll.services.payroll_run_service import PayrollPeriod, PayrollRunService
from attendance_payroll.services.allowance_ledger import AllowanceLedger
from attendance_payroll.services.attendance_service import AttendanceService
from attendance_payroll.services.export_service import ExportService
from attendance_payroll.services.locking_service import OrganizationLockRegistry

__all__ = [
    "PayrollRunStateMachine",
    "PayrollRunStatus",
    "InvalidTransitionError",
    "PayrollRunService",
    "PayrollPeriod",
    "AllowanceLedger",
    "AttendanceService",
    "ExportService",
    "OrganizationLockRegistry",
]
