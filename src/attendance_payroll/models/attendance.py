"""Attendance facts and leave requests."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from attendance_payroll.models.base import Base, TimestampMixin


class AttendanceRecord(Base, TimestampMixin):
    """One attendance fact for a staff worker or a locum booking.

    Staff facts carry clock times and a derived status; locum facts carry
    locum_status (WORKED / NO_SHOW). Exactly one of worker_id and
    locum_booking_id is set.
    """

    __tablename__ = "attendance"

    attendance_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    location_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("location.location_id", ondelete="RESTRICT"),
        nullable=True,
    )
    worker_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("worker.worker_id", ondelete="CASCADE"),
        nullable=True,
    )
    locum_booking_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("locum_booking.locum_booking_id", ondelete="CASCADE"),
        nullable=True,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    clock_in: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    clock_out: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    total_hours: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    status: Mapped[str | None] = mapped_column(String, nullable=True)
    locum_status: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_reviewed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reviewed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "(worker_id IS NOT NULL AND locum_booking_id IS NULL) OR "
            "(worker_id IS NULL AND locum_booking_id IS NOT NULL)",
            name="attendance_subject_check",
        ),
        UniqueConstraint("worker_id", "work_date", name="attendance_worker_date_unique"),
        UniqueConstraint("locum_booking_id", "work_date", name="attendance_locum_date_unique"),
    )

    @property
    def is_locum(self) -> bool:
        return self.locum_booking_id is not None


class LeaveRequest(Base, TimestampMixin):
    """Leave request for a staff worker over an inclusive date range."""

    __tablename__ = "leave_request"

    leave_request_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    worker_id: Mapped[UUID] = mapped_column(
        ForeignKey("worker.worker_id", ondelete="CASCADE"),
        nullable=False,
    )
    leave_type: Mapped[str] = mapped_column(String, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="leave_request_status_check",
        ),
        CheckConstraint("end_date >= start_date", name="leave_request_dates_check"),
    )
