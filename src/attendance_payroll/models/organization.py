"""Organization and physical location models."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_payroll.models.base import Base, TimestampMixin


class Organization(Base, TimestampMixin):
    """Tenant organization."""

    __tablename__ = "organization"

    organization_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'inactive')",
            name="organization_status_check",
        ),
    )

    # Relationships
    locations: Mapped[list[Location]] = relationship(back_populates="organization")


class Location(Base, TimestampMixin):
    """Physical site where shifts are worked.

    Referenced by historical attendance, so rows are deactivated rather
    than deleted.
    """

    __tablename__ = "location"

    location_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="location_org_name_unique"),
    )

    # Relationships
    organization: Mapped[Organization] = relationship(back_populates="locations")
