"""Tests for payroll export."""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from attendance_payroll.exceptions import NotFound, RunNotFinalized
from attendance_payroll.models import PayrollItem, PayrollRun
from attendance_payroll.services.export_service import EXPORT_HEADER, ExportRow, ExportService
from attendance_payroll.services.payroll_run_service import PayrollRunService

from .conftest import PERIOD_END, PERIOD_START, workdays


def make_run(**overrides) -> PayrollRun:
    values = dict(
        payroll_run_id=uuid4(),
        period_start=PERIOD_START,
        period_end=PERIOD_END,
        month_units_divisor=Decimal("30.00"),
        status="finalized",
    )
    values.update(overrides)
    return PayrollRun(**values)


def make_item(**overrides) -> PayrollItem:
    values = dict(
        worker_name="Amina Otieno",
        role="Nurse",
        pay_model="salaried",
        pay_method="prorated",
        worked_units=Decimal("20.00"),
        paid_leave_units=Decimal("1.50"),
        base_rate=Decimal("30000.00"),
        base_pay=Decimal("21500.00"),
        allowance_total=Decimal("0.00"),
        gross_pay=Decimal("21500.00"),
        is_paid=False,
        paid_at=None,
        paid_by=None,
    )
    values.update(overrides)
    return PayrollItem(**values)


class TestExportRow:
    def test_formats_numbers_and_placeholders(self):
        row = ExportRow.from_item(make_item(role=None), make_run())

        assert row.role == "-"
        assert row.days_worked == "20"
        assert row.paid_units == "21.5"
        assert row.month_units == "30"
        assert row.rate == "30000"
        assert row.base_gross == "21500"
        assert row.allowances_total == "0"
        assert row.status == "Unpaid"
        assert row.paid_date == "-"
        assert row.marked_paid_by == "-"

    def test_paid_item(self):
        item = make_item(
            is_paid=True,
            paid_at=datetime(2024, 7, 2, 9, 30, tzinfo=timezone.utc),
            paid_by="Finance Office",
            allowance_total=Decimal("-50.50"),
            gross_pay=Decimal("21450.00"),
        )

        row = ExportRow.from_item(item, make_run())

        assert row.status == "Paid"
        assert row.paid_date == "02/07/2024"
        assert row.marked_paid_by == "Finance Office"
        assert row.allowances_total == "-50.5"
        assert row.total_gross == "21450"

    def test_daily_items_exclude_paid_leave_from_paid_units(self):
        item = make_item(pay_model="daily", pay_method="daily", worked_units=Decimal("4"), paid_leave_units=Decimal("2"))

        assert ExportRow.from_item(item, make_run()).paid_units == "4"


class TestCsv:
    def test_header_and_quoting(self):
        row = ExportRow.from_item(make_item(worker_name='Wanjiru, "Jo"'), make_run())

        lines = ExportService.to_csv([row]).split("\n")

        assert lines[0] == ",".join(f'"{name}"' for name in EXPORT_HEADER)
        assert lines[1].startswith('"Wanjiru, ""Jo""","Nurse","20","21.5","30","30000","prorated"')
        assert lines[2] == ""

    def test_empty_run_has_header_only(self):
        assert ExportService.to_csv([]) == ",".join(f'"{name}"' for name in EXPORT_HEADER) + "\n"

    def test_filename(self):
        assert ExportService.filename(make_run()) == "payroll-2024-06-01-2024-06-30.csv"


class TestExportService:
    async def test_exports_finalized_run(self, session, settings, locks, roster, org, north):
        nurse = await roster.worker(org, "Amina", "Otieno", "salaried", "30000", "Nurse")
        cleaner = await roster.worker(org, "Brian", "Mwangi", "daily", "1500", None)
        for day in workdays(PERIOD_START, 20):
            await roster.staff_attendance(org, nurse, day, "present_full", north)
        for day in workdays(PERIOD_START, 4):
            await roster.staff_attendance(org, cleaner, day, "present_full", north)
        await roster.leave(org, nurse, date(2024, 6, 29), date(2024, 6, 30))

        payroll = PayrollRunService(session, settings=settings, locks=locks)
        period = await payroll.get_payroll_for_period(org.organization_id, PERIOD_START, PERIOD_END)
        run_id = period.run.payroll_run_id
        cleaner_item = next(i for i in period.items if i.worker_id == cleaner.worker_id)
        await payroll.update_item_allowances(
            org.organization_id,
            cleaner_item.payroll_item_id,
            [{"amount": "500", "note": "Transport"}, {"amount": "-50.50", "note": "Advance"}],
        )
        await payroll.update_run_settings(org.organization_id, run_id, marked_by="Finance Office")
        await payroll.mark_all_paid(org.organization_id, run_id, "clerk")
        await payroll.finalize_run(org.organization_id, run_id, "admin")

        rows = await ExportService(session).export_run(org.organization_id, run_id)

        assert [row.staff for row in rows] == ["Amina Otieno", "Brian Mwangi"]
        nurse_row, cleaner_row = rows
        nurse_item = next(i for i in period.items if i.worker_id == nurse.worker_id)
        paid_date = nurse_item.paid_at.strftime("%d/%m/%Y")
        assert nurse_row == ExportRow(
            staff="Amina Otieno",
            role="Nurse",
            days_worked="20",
            paid_units="22",
            month_units="30",
            rate="30000",
            pay_method="prorated",
            base_gross="22000",
            allowances_total="0",
            total_gross="22000",
            status="Paid",
            paid_date=paid_date,
            marked_paid_by="Finance Office",
        )
        assert cleaner_row.role == "-"
        assert cleaner_row.days_worked == "4"
        assert cleaner_row.allowances_total == "449.5"
        assert cleaner_row.total_gross == "6450"

    async def test_draft_run_cannot_be_exported(self, session, settings, locks, org):
        payroll = PayrollRunService(session, settings=settings, locks=locks)
        run = await payroll.get_or_create_run(org.organization_id, PERIOD_START, PERIOD_END)

        with pytest.raises(RunNotFinalized):
            await ExportService(session).export_run(org.organization_id, run.payroll_run_id)

    async def test_unknown_run(self, session, org):
        with pytest.raises(NotFound):
            await ExportService(session).export_run(org.organization_id, uuid4())
