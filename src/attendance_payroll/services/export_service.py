"""Tabular export of finalized payroll runs."""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable
from dataclasses import astuple, dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_payroll.exceptions import NotFound, RunNotFinalized
from attendance_payroll.models import PayrollItem, PayrollRun
from attendance_payroll.services.state_machine import PayrollRunStatus

EXPORT_HEADER = [
    "Staff",
    "Role",
    "DaysWorked",
    "PaidUnits",
    "MonthUnits",
    "Rate",
    "PayMethod",
    "BaseGross",
    "AllowancesTotal",
    "TotalGross",
    "Status",
    "PaidDate",
    "MarkedPaidBy",
]

PAID_DATE_FORMAT = "%d/%m/%Y"


def _number(value: Decimal) -> str:
    """Render without trailing zeros: 20.00 -> 20, 0.50 -> 0.5."""
    value = Decimal(value)
    if value == value.to_integral_value():
        return str(value.quantize(Decimal("1")))
    return str(value.normalize())


@dataclass(frozen=True)
class ExportRow:
    """One exported payroll line, already formatted for display."""

    staff: str
    role: str
    days_worked: str
    paid_units: str
    month_units: str
    rate: str
    pay_method: str
    base_gross: str
    allowances_total: str
    total_gross: str
    status: str
    paid_date: str
    marked_paid_by: str

    @classmethod
    def from_item(cls, item: PayrollItem, run: PayrollRun) -> ExportRow:
        return cls(
            staff=item.worker_name,
            role=item.role or "-",
            days_worked=_number(item.worked_units),
            paid_units=_number(item.paid_units),
            month_units=_number(run.month_units_divisor),
            rate=_number(item.base_rate),
            pay_method=item.pay_method,
            base_gross=_number(item.base_pay),
            allowances_total=_number(item.allowance_total),
            total_gross=_number(item.gross_pay),
            status="Paid" if item.is_paid else "Unpaid",
            paid_date=item.paid_at.strftime(PAID_DATE_FORMAT) if item.paid_at else "-",
            marked_paid_by=item.paid_by or "-",
        )


class ExportService:
    """Export a finalized run as rows or CSV."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def export_run(self, organization_id: UUID, payroll_run_id: UUID) -> list[ExportRow]:
        """Rows for every item of a finalized run, ordered by worker name.

        Raises:
            NotFound: Run does not exist in the organization.
            RunNotFinalized: Run is still draft.
        """
        result = await self.session.execute(
            select(PayrollRun).where(
                PayrollRun.payroll_run_id == payroll_run_id,
                PayrollRun.organization_id == organization_id,
            )
        )
        run = result.scalar_one_or_none()
        if run is None:
            raise NotFound("payroll_run", payroll_run_id)
        if run.status != PayrollRunStatus.FINALIZED.value:
            raise RunNotFinalized(run.payroll_run_id, "export")

        items_result = await self.session.execute(
            select(PayrollItem)
            .where(PayrollItem.payroll_run_id == payroll_run_id)
            .order_by(PayrollItem.worker_name, PayrollItem.subject_key)
        )
        return [ExportRow.from_item(item, run) for item in items_result.scalars().all()]

    @staticmethod
    def to_csv(rows: Iterable[ExportRow]) -> str:
        """Serialize rows to CSV with a header line; every field is quoted."""
        output = io.StringIO()
        writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")

        writer.writerow(EXPORT_HEADER)
        for row in rows:
            writer.writerow(astuple(row))

        return output.getvalue()

    @staticmethod
    def filename(run: PayrollRun) -> str:
        return f"payroll-{run.period_start.isoformat()}-{run.period_end.isoformat()}.csv"
