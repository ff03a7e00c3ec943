"""Payroll run, item, allowance and audit models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from attendance_payroll.models.base import Base, TimestampMixin, utcnow


class PayrollRun(Base, TimestampMixin):
    """One payroll computation for an organization and a date period."""

    __tablename__ = "payroll_run"

    payroll_run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    marked_by: Mapped[str | None] = mapped_column(String, nullable=True)
    month_units_divisor: Mapped[Decimal] = mapped_column(
        Numeric(6, 2), nullable=False, default=Decimal("30")
    )
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finalized_by: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "period_start",
            "period_end",
            name="payroll_run_org_period_unique",
        ),
        CheckConstraint(
            "status IN ('draft', 'finalized')",
            name="payroll_run_status_check",
        ),
        CheckConstraint("period_end >= period_start", name="payroll_run_dates_check"),
        CheckConstraint("month_units_divisor > 0", name="payroll_run_divisor_check"),
    )


class PayrollItem(Base, TimestampMixin):
    """Computed payable line for one worker within one run.

    subject_key is 'staff:<worker_id>' or 'locum:<locum_booking_id>' and is
    unique per run, which keeps recomputation an upsert.
    """

    __tablename__ = "payroll_item"

    payroll_item_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id", ondelete="CASCADE"),
        nullable=False,
    )
    subject_key: Mapped[str] = mapped_column(String, nullable=False)
    worker_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("worker.worker_id", ondelete="SET NULL"),
        nullable=True,
    )
    locum_booking_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("locum_booking.locum_booking_id", ondelete="SET NULL"),
        nullable=True,
    )
    worker_name: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str | None] = mapped_column(String, nullable=True)
    location_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Units
    worked_units: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))
    paid_leave_units: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))
    unpaid_leave_units: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))
    absent_units: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))

    # Pay
    pay_model: Mapped[str] = mapped_column(String, nullable=False)
    pay_method: Mapped[str] = mapped_column(String, nullable=False)
    base_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    base_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    allowance_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    gross_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    # Payment state
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_by: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("payroll_run_id", "subject_key", name="payroll_item_run_subject_unique"),
        CheckConstraint(
            "pay_model IN ('salaried', 'daily', 'casual', 'locum')",
            name="payroll_item_pay_model_check",
        ),
    )

    @property
    def paid_units(self) -> Decimal:
        """Units that earn pay; paid leave counts only for salaried items."""
        if self.pay_model == "salaried":
            return self.worked_units + self.paid_leave_units
        return self.worked_units

    @property
    def has_warning(self) -> bool:
        """Salaried worker with nothing to pay for in the period."""
        return self.pay_model == "salaried" and self.paid_units == 0


class Allowance(Base, TimestampMixin):
    """Manual adjustment on a payroll item; negative amounts are deductions."""

    __tablename__ = "allowance"

    allowance_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_item_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_item.payroll_item_id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    note: Mapped[str] = mapped_column(Text, nullable=False, default="")


class PayrollAuditEvent(Base, TimestampMixin):
    """Audit trail entry for payroll run actions."""

    __tablename__ = "payroll_audit_event"

    audit_event_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    payroll_run_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id", ondelete="SET NULL"),
        nullable=True,
    )
    entity_type: Mapped[str] = mapped_column(String, nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    action: Mapped[str] = mapped_column(String, nullable=False)
    details_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
