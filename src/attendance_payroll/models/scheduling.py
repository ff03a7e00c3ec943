"""Schedule blocks, staff assignments and locum bookings."""

from __future__ import annotations

from datetime import date, time
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_payroll.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from attendance_payroll.models.organization import Location
    from attendance_payroll.models.worker import Worker


class ScheduleBlock(Base, TimestampMixin):
    """A shift at one location on one date."""

    __tablename__ = "schedule_block"

    block_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    location_id: Mapped[UUID] = mapped_column(
        ForeignKey("location.location_id", ondelete="RESTRICT"),
        nullable=False,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    role_requirement: Mapped[str | None] = mapped_column(String, nullable=True)
    headcount: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("headcount >= 0", name="schedule_block_headcount_check"),
    )

    # Relationships
    location: Mapped[Location] = relationship()
    assignments: Mapped[list[Assignment]] = relationship(back_populates="block")
    locum_bookings: Mapped[list[LocumBooking]] = relationship(back_populates="block")


class Assignment(Base, TimestampMixin):
    """Staff worker assigned to a schedule block.

    Has no location of its own; the block's location applies.
    """

    __tablename__ = "assignment"

    assignment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    block_id: Mapped[UUID] = mapped_column(
        ForeignKey("schedule_block.block_id", ondelete="CASCADE"),
        nullable=False,
    )
    worker_id: Mapped[UUID] = mapped_column(
        ForeignKey("worker.worker_id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("block_id", "worker_id", name="assignment_block_worker_unique"),
    )

    # Relationships
    block: Mapped[ScheduleBlock] = relationship(back_populates="assignments")
    worker: Mapped[Worker] = relationship()


class LocumBooking(Base, TimestampMixin):
    """External locum booked for one schedule block at a flat daily rate.

    location_id is a cached copy of the block's location. The block is the
    source of truth; see LocationResolver.
    """

    __tablename__ = "locum_booking"

    locum_booking_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    block_id: Mapped[UUID] = mapped_column(
        ForeignKey("schedule_block.block_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    role: Mapped[str | None] = mapped_column(String, nullable=True)
    daily_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    supervisor_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("worker.worker_id", ondelete="SET NULL"),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    location_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("location.location_id", ondelete="SET NULL"),
        nullable=True,
    )

    # Relationships
    block: Mapped[ScheduleBlock] = relationship(back_populates="locum_bookings")
