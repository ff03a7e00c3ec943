"""Report and repair attendance location inconsistencies.

Usage:
    python -m scripts.repair_attendance_locations --organization-id UUID
    python -m scripts.repair_attendance_locations --organization-id UUID --dry-run
    python -m scripts.repair_attendance_locations --organization-id UUID --repair-bookings

Stamps the resolved location onto attendance facts that have none and
reports locum bookings whose cached location drifted from their block.
Facts that already carry a location are never overwritten here.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from attendance_payroll.calculators.location_resolver import LocationResolver
from attendance_payroll.config import configure_logging, get_settings
from attendance_payroll.services.attendance_service import AttendanceService

logger = logging.getLogger(__name__)


async def repair_locations(
    organization_id: UUID,
    database_url: str,
    dry_run: bool = False,
    repair_bookings: bool = False,
) -> int:
    """Run the backfill and drift report; returns the number of open issues."""
    engine = create_async_engine(database_url, echo=False)

    try:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            drift = await LocationResolver(session).find_booking_drift(organization_id)
            print(f"Locum bookings with drifted location cache: {len(drift)}")
            for mismatch in drift:
                print(f"  {mismatch}")

            if dry_run:
                await session.rollback()
                print("\nDry run: no changes written.")
                return len(drift)

            service = AttendanceService(session, get_settings())
            report = await service.backfill_missing_locations(organization_id)

            print("\nAttendance location backfill:")
            print(f"  Repaired: {len(report.repaired)}")
            print(f"  Unresolved: {len(report.unresolved)}")
            for issue in report.unresolved:
                print(f"    {issue.code}: {issue}")

            if repair_bookings:
                for mismatch in drift:
                    await service.repair_booking_location(organization_id, mismatch.entity_id, "repair-script")
                print(f"\nRepaired {len(drift)} booking location cache(s).")
                drift = []

            return len(report.unresolved) + len(drift)

    finally:
        await engine.dispose()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Repair attendance location data")
    parser.add_argument(
        "--organization-id",
        type=UUID,
        required=True,
        help="Organization to scan",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=get_settings().database_url,
        help="Database URL (default: from settings)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report; write nothing",
    )
    parser.add_argument(
        "--repair-bookings",
        action="store_true",
        help="Also refresh drifted locum booking caches from their blocks",
    )

    args = parser.parse_args()
    configure_logging(get_settings())

    open_issues = asyncio.run(
        repair_locations(args.organization_id, args.database_url, args.dry_run, args.repair_bookings)
    )
    raise SystemExit(1 if open_issues else 0)


if __name__ == "__main__":
    main()
