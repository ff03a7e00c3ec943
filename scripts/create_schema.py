"""Create the database schema from the ORM models.

Usage:
    python -m scripts.create_schema
    python -m scripts.create_schema --database-url postgresql+asyncpg://...
    python -m scripts.create_schema --drop
"""

from __future__ import annotations

import argparse
import asyncio

from sqlalchemy.ext.asyncio import create_async_engine

from attendance_payroll.config import get_settings
from attendance_payroll.models import Base


async def create_schema(database_url: str, drop: bool = False) -> None:
    """Create every table, optionally dropping existing ones first."""
    engine = create_async_engine(database_url, echo=False)

    try:
        async with engine.begin() as conn:
            if drop:
                await conn.run_sync(Base.metadata.drop_all)
                print("Dropped existing tables")
            await conn.run_sync(Base.metadata.create_all)
        print(f"Created {len(Base.metadata.tables)} tables:")
        for name in sorted(Base.metadata.tables):
            print(f"  {name}")
    finally:
        await engine.dispose()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Create the attendance payroll schema")
    parser.add_argument(
        "--database-url",
        type=str,
        default=get_settings().database_url,
        help="Database URL (default: from settings)",
    )
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop all tables before creating them",
    )

    args = parser.parse_args()

    asyncio.run(create_schema(args.database_url, args.drop))


if __name__ == "__main__":
    main()
