"""Per-organization serialization of payroll mutations."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from attendance_payroll.database import acquire_organization_lock, transaction


class OrganizationLockRegistry:
    """In-process locks keyed by organization.

    Every payroll mutation for an organization runs inside unit_of_work():
    1. The organization's asyncio.Lock is acquired
    2. A transaction is opened and, on PostgreSQL, the advisory lock taken
    3. The work is committed, or rolled back as a whole on any error

    This makes paid toggles and finalize strictly sequential, so finalize
    always sees every paid flag written before it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, organization_id: UUID) -> asyncio.Lock:
        key = str(organization_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def is_held(self, organization_id: UUID) -> bool:
        return self.lock_for(organization_id).locked()

    @asynccontextmanager
    async def unit_of_work(self, session: AsyncSession, organization_id: UUID) -> AsyncIterator[AsyncSession]:
        """Run the block under the organization lock in one transaction."""
        async with self.lock_for(organization_id):
            async with transaction(session):
                await acquire_organization_lock(session, organization_id)
                yield session


default_registry = OrganizationLockRegistry()
