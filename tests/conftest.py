"""Pytest fixtures for attendance payroll tests."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from attendance_payroll.config import Settings
from attendance_payroll.models import (
    Assignment,
    AttendanceRecord,
    Base,
    LeaveRequest,
    Location,
    LocumBooking,
    Organization,
    ScheduleBlock,
    Worker,
)
from attendance_payroll.services.locking_service import OrganizationLockRegistry

# In-memory SQLite shared across sessions through a single connection
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

PERIOD_START = date(2024, 6, 1)
PERIOD_END = date(2024, 6, 30)


def workdays(start: date, count: int) -> list[date]:
    """The first `count` Monday-Friday dates from start onwards."""
    days: list[date] = []
    day = start
    while len(days) < count:
        if day.weekday() < 5:
            days.append(day)
        day += timedelta(days=1)
    return days


@pytest_asyncio.fixture
async def engine():
    """Create a fresh test database engine per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def settings() -> Settings:
    """Settings with the default unit policy and a 30-unit month."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="DEBUG",
        default_month_units=Decimal("30"),
        full_day_hours=Decimal("6"),
        partial_day_hours=Decimal("3"),
        partial_day_units=Decimal("0.5"),
        leave_counts_weekends=True,
    )


@pytest.fixture
def locks() -> OrganizationLockRegistry:
    """Lock registry private to one test."""
    return OrganizationLockRegistry()


class Roster:
    """Builds organizations, schedules and attendance for tests.

    Every helper commits, so data is visible to the session under test and
    a rolled-back service call never removes it.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _save(self, obj):
        self.session.add(obj)
        await self.session.commit()
        return obj

    async def organization(self, name: str = "Riverside Clinics") -> Organization:
        return await self._save(Organization(name=name))

    async def location(self, org: Organization, name: str) -> Location:
        return await self._save(Location(organization_id=org.organization_id, name=name))

    async def worker(
        self,
        org: Organization,
        first_name: str = "Amina",
        last_name: str = "Otieno",
        pay_model: str = "salaried",
        pay_rate: Decimal | str = Decimal("30000"),
        job_title: str | None = "Nurse",
        status: str = "active",
    ) -> Worker:
        return await self._save(
            Worker(
                organization_id=org.organization_id,
                first_name=first_name,
                last_name=last_name,
                pay_model=pay_model,
                pay_rate=Decimal(pay_rate),
                job_title=job_title,
                status=status,
            )
        )

    async def block(self, org: Organization, location: Location, work_date: date) -> ScheduleBlock:
        return await self._save(
            ScheduleBlock(
                organization_id=org.organization_id,
                location_id=location.location_id,
                work_date=work_date,
                start_time=time(8, 0),
                end_time=time(17, 0),
                role_requirement="Nurse",
                headcount=1,
            )
        )

    async def assign(self, block: ScheduleBlock, worker: Worker) -> Assignment:
        return await self._save(Assignment(block_id=block.block_id, worker_id=worker.worker_id))

    async def booking(
        self,
        org: Organization,
        block: ScheduleBlock,
        name: str = "Peter Kamau",
        daily_rate: Decimal | str = Decimal("2000"),
        cached_location: Location | None | bool = True,
    ) -> LocumBooking:
        """Locum booking; the location cache copies the block unless overridden."""
        if cached_location is True:
            location_id: UUID | None = block.location_id
        elif cached_location is False or cached_location is None:
            location_id = None
        else:
            location_id = cached_location.location_id
        return await self._save(
            LocumBooking(
                organization_id=org.organization_id,
                block_id=block.block_id,
                name=name,
                role="Locum Nurse",
                daily_rate=Decimal(daily_rate),
                location_id=location_id,
            )
        )

    async def staff_attendance(
        self,
        org: Organization,
        worker: Worker,
        work_date: date,
        status: str | None = "present_full",
        location: Location | None = None,
        clock_in: datetime | None = None,
        clock_out: datetime | None = None,
    ) -> AttendanceRecord:
        return await self._save(
            AttendanceRecord(
                organization_id=org.organization_id,
                worker_id=worker.worker_id,
                work_date=work_date,
                status=status,
                location_id=location.location_id if location else None,
                clock_in=clock_in,
                clock_out=clock_out,
            )
        )

    async def locum_attendance(
        self,
        org: Organization,
        booking: LocumBooking,
        work_date: date,
        locum_status: str | None = "WORKED",
        location: Location | None = None,
    ) -> AttendanceRecord:
        return await self._save(
            AttendanceRecord(
                organization_id=org.organization_id,
                locum_booking_id=booking.locum_booking_id,
                work_date=work_date,
                locum_status=locum_status,
                location_id=location.location_id if location else None,
            )
        )

    async def leave(
        self,
        org: Organization,
        worker: Worker,
        start_date: date,
        end_date: date,
        is_paid: bool = True,
        status: str = "approved",
        leave_type: str = "annual",
    ) -> LeaveRequest:
        return await self._save(
            LeaveRequest(
                organization_id=org.organization_id,
                worker_id=worker.worker_id,
                leave_type=leave_type,
                start_date=start_date,
                end_date=end_date,
                is_paid=is_paid,
                status=status,
            )
        )


@pytest_asyncio.fixture
async def roster(session_factory) -> AsyncGenerator[Roster, None]:
    """Roster on its own session, unaffected by rollbacks in the code under test."""
    async with session_factory() as roster_session:
        yield Roster(roster_session)


@pytest_asyncio.fixture
async def org(roster: Roster) -> Organization:
    return await roster.organization()


@pytest_asyncio.fixture
async def north(roster: Roster, org: Organization) -> Location:
    return await roster.location(org, "North Wing")


@pytest_asyncio.fixture
async def south(roster: Roster, org: Organization) -> Location:
    return await roster.location(org, "South Wing")
