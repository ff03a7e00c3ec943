"""Allowance CRUD scoped to one payroll item."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Union
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_payroll.calculators.pay_calculator import PayrollCalculator
from attendance_payroll.exceptions import InvalidAmount, NotFound
from attendance_payroll.models import Allowance, PayrollItem, PayrollRun
from attendance_payroll.services.state_machine import PayrollRunStateMachine

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
MAX_AMOUNT = Decimal(10) ** 10


@dataclass(frozen=True)
class AllowanceEntry:
    """Validated allowance ready to persist."""

    amount: Decimal
    note: str = ""


AllowanceInput = Union[AllowanceEntry, Mapping[str, Any]]


def validate_amount(raw: Any, item_id: UUID | None = None, position: int | None = None) -> Decimal:
    """Parse an allowance amount, rejecting anything that is not a finite number.

    Negative amounts are deductions and are accepted.

    Raises:
        InvalidAmount: For None, booleans, NaN, infinities, unparsable input
            and amounts of 10 billion or more either way.
    """
    if raw is None or isinstance(raw, bool):
        raise InvalidAmount(item_id, raw, position)
    try:
        if isinstance(raw, Decimal):
            amount = raw
        elif isinstance(raw, (int, float)):
            amount = Decimal(str(raw))
        elif isinstance(raw, str):
            amount = Decimal(raw.strip())
        else:
            raise InvalidAmount(item_id, raw, position)
        if not amount.is_finite():
            raise InvalidAmount(item_id, raw, position)
        amount = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmount(item_id, raw, position) from None
    if abs(amount) >= MAX_AMOUNT:
        raise InvalidAmount(item_id, raw, position)
    return amount


def coerce_entry(raw: AllowanceInput, item_id: UUID | None = None, position: int | None = None) -> AllowanceEntry:
    """Build an AllowanceEntry from an entry or a {amount, note} mapping."""
    if isinstance(raw, AllowanceEntry):
        return AllowanceEntry(validate_amount(raw.amount, item_id, position), raw.note or "")
    if not isinstance(raw, Mapping) or "amount" not in raw:
        raise InvalidAmount(item_id, raw, position)
    note = raw.get("note", raw.get("notes")) or ""
    return AllowanceEntry(validate_amount(raw["amount"], item_id, position), str(note))


class AllowanceLedger:
    """Ordered allowances on a payroll item, editable only while its run is draft.

    Every mutation validates first and then refreshes the item's allowance
    total and gross pay, so a rejected call leaves nothing changed. The
    ledger does not commit; callers own the unit of work and the
    organization lock.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def load_item(self, organization_id: UUID, payroll_item_id: UUID) -> tuple[PayrollItem, PayrollRun]:
        """Load an item and its run, scoped to the organization."""
        result = await self.session.execute(
            select(PayrollItem, PayrollRun)
            .join(PayrollRun, PayrollItem.payroll_run_id == PayrollRun.payroll_run_id)
            .where(
                PayrollItem.payroll_item_id == payroll_item_id,
                PayrollRun.organization_id == organization_id,
            )
        )
        row = result.one_or_none()
        if row is None:
            raise NotFound("payroll_item", payroll_item_id)
        return row[0], row[1]

    async def list_allowances(self, payroll_item_id: UUID) -> list[Allowance]:
        """Allowances in insertion order."""
        result = await self.session.execute(
            select(Allowance)
            .where(Allowance.payroll_item_id == payroll_item_id)
            .order_by(Allowance.position, Allowance.created_at)
        )
        return list(result.scalars().all())

    async def replace_allowances(
        self,
        organization_id: UUID,
        payroll_item_id: UUID,
        allowances: Iterable[AllowanceInput],
    ) -> list[Allowance]:
        """Replace the whole list; resubmitting the same list is a no-op in effect."""
        item, run = await self.load_item(organization_id, payroll_item_id)
        PayrollRunStateMachine.ensure_mutable(run, "update allowances", "payroll_item", item.payroll_item_id)

        entries = [coerce_entry(raw, item.payroll_item_id, i) for i, raw in enumerate(allowances)]

        await self.session.execute(delete(Allowance).where(Allowance.payroll_item_id == item.payroll_item_id))
        rows = [
            Allowance(
                payroll_item_id=item.payroll_item_id,
                position=i,
                amount=entry.amount,
                note=entry.note,
            )
            for i, entry in enumerate(entries)
        ]
        self.session.add_all(rows)
        await self.session.flush()

        await self._refresh_totals(item)
        logger.info(
            "Replaced allowances on payroll item %s: %d entries, total %s",
            item.payroll_item_id,
            len(rows),
            item.allowance_total,
        )
        return rows

    async def add_allowance(
        self,
        organization_id: UUID,
        payroll_item_id: UUID,
        amount: Any,
        note: str = "",
    ) -> Allowance:
        """Append one allowance to the end of the list."""
        item, run = await self.load_item(organization_id, payroll_item_id)
        PayrollRunStateMachine.ensure_mutable(run, "add allowance", "payroll_item", item.payroll_item_id)

        existing = await self.list_allowances(item.payroll_item_id)
        position = max((a.position for a in existing), default=-1) + 1
        allowance = Allowance(
            payroll_item_id=item.payroll_item_id,
            position=position,
            amount=validate_amount(amount, item.payroll_item_id, position),
            note=note or "",
        )
        self.session.add(allowance)
        await self.session.flush()

        await self._refresh_totals(item)
        return allowance

    async def update_allowance(
        self,
        organization_id: UUID,
        allowance_id: UUID,
        amount: Any = None,
        note: str | None = None,
    ) -> Allowance:
        """Change the amount and/or note of one allowance."""
        allowance, item = await self._load_allowance(organization_id, allowance_id)
        if amount is not None:
            new_amount = validate_amount(amount, item.payroll_item_id, allowance.position)
            allowance.amount = new_amount
        if note is not None:
            allowance.note = note
        await self.session.flush()

        await self._refresh_totals(item)
        return allowance

    async def remove_allowance(self, organization_id: UUID, allowance_id: UUID) -> PayrollItem:
        """Delete one allowance and return the refreshed item."""
        allowance, item = await self._load_allowance(organization_id, allowance_id)
        await self.session.delete(allowance)
        await self.session.flush()

        await self._refresh_totals(item)
        return item

    async def _load_allowance(self, organization_id: UUID, allowance_id: UUID) -> tuple[Allowance, PayrollItem]:
        allowance = await self.session.get(Allowance, allowance_id)
        if allowance is None:
            raise NotFound("allowance", allowance_id)
        try:
            item, run = await self.load_item(organization_id, allowance.payroll_item_id)
        except NotFound:
            raise NotFound("allowance", allowance_id) from None
        PayrollRunStateMachine.ensure_mutable(run, "edit allowance", "allowance", allowance_id)
        return allowance, item

    async def _refresh_totals(self, item: PayrollItem) -> None:
        allowances = await self.list_allowances(item.payroll_item_id)
        item.allowance_total = PayrollCalculator.allowance_total(allowances)
        item.gross_pay = PayrollCalculator.round_currency(Decimal(item.base_pay) + item.allowance_total)
