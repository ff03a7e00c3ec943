"""ORM models."""

from attendance_payroll.models.base import Base, TimestampMixin
from attendance_payroll.models.organization import Location, Organization
from attendance_payroll.models.worker import Worker
from attendance_payroll.models.scheduling import Assignment, LocumBooking, ScheduleBlock
from attendance_payroll.models.attendance import AttendanceRecord, LeaveRequest
from attendance_payroll.models.payroll import (
    Allowance,
    PayrollAuditEvent,
    PayrollItem,
    PayrollRun,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "Organization",
    "Location",
    "Worker",
    "ScheduleBlock",
    "Assignment",
    "LocumBooking",
    "AttendanceRecord",
    "LeaveRequest",
    "PayrollRun",
    "PayrollItem",
    "Allowance",
    "PayrollAuditEvent",
]
