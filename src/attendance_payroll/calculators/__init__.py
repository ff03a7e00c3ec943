"""Attendance normalization and pay calculation."""

from attendance_payroll.calculators.attendance_aggregator import AggregationResult, AttendanceAggregator
from attendance_payroll.calculators.location_resolver import LocationResolver
from attendance_payroll.calculators.pay_calculator import PayrollCalculator

__all__ = [
    "AggregationResult",
    "AttendanceAggregator",
    "LocationResolver",
    "PayrollCalculator",
]
