"""Pure pay computation per pay model."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from attendance_payroll.calculators.types import (
    ZERO,
    PayComputation,
    PayMethod,
    PayModel,
    PayProfile,
    UnitTotals,
)


class HasAmount(Protocol):
    amount: Decimal


class PayrollCalculator:
    """Turns a pay profile and unit totals into base and gross pay.

    Formulas:
    - SALARIED: round(salary / month_units_divisor * (worked + paid leave))
    - DAILY / CASUAL / LOCUM: round(daily_rate * worked); paid leave does
      not apply
    - gross: round(base + sum(allowances))

    The divisor is a run-level setting, not the calendar length of the
    period. Rounding is to whole currency units, ties away from zero.
    Inputs are never mutated.
    """

    CURRENCY_PRECISION = Decimal("1")

    def __init__(self, month_units_divisor: Decimal = Decimal("30")):
        divisor = Decimal(month_units_divisor)
        if not divisor.is_finite() or divisor <= 0:
            raise ValueError(f"month_units_divisor must be a positive number, got {month_units_divisor!r}")
        self.month_units_divisor = divisor

    @staticmethod
    def round_currency(amount: Decimal) -> Decimal:
        """Round to whole currency units, ties away from zero."""
        return amount.quantize(PayrollCalculator.CURRENCY_PRECISION, rounding=ROUND_HALF_UP)

    def paid_units(self, profile: PayProfile, units: UnitTotals) -> Decimal:
        """Units that earn pay under the profile's pay model."""
        if profile.pay_model.accrues_paid_leave:
            return units.worked_units + units.paid_leave_units
        return units.worked_units

    def base_pay(self, profile: PayProfile, units: UnitTotals) -> Decimal:
        """Compute base pay before allowances."""
        paid_units = self.paid_units(profile, units)
        if profile.pay_model is PayModel.SALARIED:
            return self.round_currency(profile.rate / self.month_units_divisor * paid_units)
        return self.round_currency(profile.rate * paid_units)

    def pay_method(self, profile: PayProfile, units: UnitTotals) -> PayMethod:
        """Label how base pay was reached."""
        if profile.pay_model is not PayModel.SALARIED:
            return PayMethod.DAILY
        if self.paid_units(profile, units) >= self.month_units_divisor:
            return PayMethod.FIXED
        return PayMethod.PRORATED

    @staticmethod
    def allowance_total(allowances: Iterable[HasAmount]) -> Decimal:
        """Sum allowance amounts; negative amounts reduce the total."""
        return sum((Decimal(a.amount) for a in allowances), ZERO)

    def compute(
        self,
        profile: PayProfile,
        units: UnitTotals,
        allowances: Iterable[HasAmount] = (),
    ) -> PayComputation:
        """Compute base and gross pay for one worker."""
        base = self.base_pay(profile, units)
        allowance_total = self.allowance_total(allowances)
        return PayComputation(
            base_pay=base,
            allowance_total=allowance_total,
            gross_pay=self.round_currency(base + allowance_total),
            paid_units=self.paid_units(profile, units),
            pay_method=self.pay_method(profile, units),
        )
