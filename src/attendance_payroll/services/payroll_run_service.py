"""Payroll run service - main orchestrator for payroll operations."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_payroll.calculators.attendance_aggregator import AggregationResult, AttendanceAggregator
from attendance_payroll.calculators.pay_calculator import PayrollCalculator
from attendance_payroll.calculators.types import (
    ZERO,
    PayModel,
    PayProfile,
    SubjectTotals,
    UnitTotals,
    WorkerKind,
)
from attendance_payroll.config import Settings, get_settings
from attendance_payroll.database import dialect_name
from attendance_payroll.exceptions import (
    InvalidSetting,
    NotFound,
    PayrollEngineError,
    RunLocked,
    UnpaidItems,
)
from attendance_payroll.models import (
    Allowance,
    LocumBooking,
    Organization,
    PayrollAuditEvent,
    PayrollItem,
    PayrollRun,
    Worker,
)
from attendance_payroll.services.allowance_ledger import AllowanceInput, AllowanceLedger
from attendance_payroll.services.locking_service import OrganizationLockRegistry, default_registry
from attendance_payroll.services.state_machine import PayrollRunStateMachine, PayrollRunStatus

logger = logging.getLogger(__name__)

DIVISOR_STEP = Decimal("0.01")
MAX_DIVISOR = Decimal("10000")


@dataclass
class PayrollPeriod:
    """Run, its items and the attendance issues found while computing them."""

    run: PayrollRun
    items: list[PayrollItem] = field(default_factory=list)
    issues: list[PayrollEngineError] = field(default_factory=list)


class PayrollRunService:
    """Service for managing payroll run lifecycle.

    Operations:
    - get_or_create_run: idempotent run per organization and period
    - get_payroll_for_period: aggregate attendance and upsert items while draft
    - update_run_settings: marked-by and month-unit divisor
    - update_item_allowances / set_item_paid / mark_all_paid
    - finalize_run: draft → finalized, only when every item is paid
    - delete_run: remove a draft run

    Organization and actor are explicit parameters on every call. Every
    mutation runs in one organization-scoped unit of work.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        locks: OrganizationLockRegistry | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.locks = locks or default_registry
        self.ledger = AllowanceLedger(session)

    # ===== Runs =====

    async def get_run(self, organization_id: UUID, payroll_run_id: UUID) -> PayrollRun:
        """Load a run scoped to the organization."""
        result = await self.session.execute(
            select(PayrollRun).where(
                PayrollRun.payroll_run_id == payroll_run_id,
                PayrollRun.organization_id == organization_id,
            )
        )
        run = result.scalar_one_or_none()
        if run is None:
            raise NotFound("payroll_run", payroll_run_id)
        return run

    async def list_items(self, payroll_run_id: UUID) -> list[PayrollItem]:
        """Items of a run ordered by worker name."""
        result = await self.session.execute(
            select(PayrollItem)
            .where(PayrollItem.payroll_run_id == payroll_run_id)
            .order_by(PayrollItem.worker_name, PayrollItem.subject_key)
        )
        return list(result.scalars().all())

    async def get_or_create_run(
        self,
        organization_id: UUID,
        period_start: date,
        period_end: date,
        actor_id: str | None = None,
    ) -> PayrollRun:
        """Return the run for the period, creating it on first use.

        Repeated and retried calls return the same run.
        """
        async with self.locks.unit_of_work(self.session, organization_id):
            return await self._get_or_create_run(organization_id, period_start, period_end, actor_id)

    async def get_payroll_for_period(
        self,
        organization_id: UUID,
        period_start: date,
        period_end: date,
        location_id: UUID | None = None,
        actor_id: str | None = None,
    ) -> PayrollPeriod:
        """Compute or load payroll for a period.

        While the run is draft its items are recomputed from current
        attendance, keeping allowances and paid state. A finalized run is
        returned as stored. The location filter only narrows which items are
        returned; computation always covers every location.
        """
        async with self.locks.unit_of_work(self.session, organization_id):
            run = await self._get_or_create_run(organization_id, period_start, period_end, actor_id)

            aggregator = AttendanceAggregator(self.session, self.settings.unit_policy())
            aggregation = await aggregator.aggregate(organization_id, period_start, period_end)

            if PayrollRunStateMachine.is_mutable(run.status):
                await self._recompute_items(run, aggregation)

            items = await self.list_items(run.payroll_run_id)

        if location_id is not None:
            wanted = str(location_id)
            items = [item for item in items if wanted in (item.location_ids or [])]

        return PayrollPeriod(run=run, items=items, issues=aggregation.issues)

    async def update_run_settings(
        self,
        organization_id: UUID,
        payroll_run_id: UUID,
        marked_by: str | None = None,
        month_units_divisor: Any = None,
        actor_id: str | None = None,
    ) -> PayrollRun:
        """Update marked-by and/or the month-unit divisor of a draft run.

        Changing the divisor reprices every salaried item immediately.
        """
        async with self.locks.unit_of_work(self.session, organization_id):
            run = await self.get_run(organization_id, payroll_run_id)
            PayrollRunStateMachine.ensure_mutable(run, "update run settings")

            changes: dict[str, Any] = {}
            if marked_by is not None:
                changes["marked_by"] = {"from": run.marked_by, "to": marked_by}
                run.marked_by = marked_by

            if month_units_divisor is not None:
                divisor = self._validate_divisor(month_units_divisor, run.payroll_run_id)
                if divisor != Decimal(run.month_units_divisor):
                    changes["month_units_divisor"] = {
                        "from": str(run.month_units_divisor),
                        "to": str(divisor),
                    }
                    run.month_units_divisor = divisor
                    await self._reprice_items(run)

            if changes:
                await self._record_audit(run, "payroll_run", run.payroll_run_id, "settings_updated", actor_id, changes)
                logger.info("Payroll run %s settings updated: %s", run.payroll_run_id, sorted(changes))
            return run

    async def delete_run(self, organization_id: UUID, payroll_run_id: UUID, actor_id: str | None = None) -> None:
        """Delete a draft run with its items and allowances."""
        async with self.locks.unit_of_work(self.session, organization_id):
            run = await self.get_run(organization_id, payroll_run_id)
            PayrollRunStateMachine.ensure_mutable(run, "delete run")

            item_ids = select(PayrollItem.payroll_item_id).where(PayrollItem.payroll_run_id == payroll_run_id)
            await self.session.execute(delete(Allowance).where(Allowance.payroll_item_id.in_(item_ids)))
            await self.session.execute(delete(PayrollItem).where(PayrollItem.payroll_run_id == payroll_run_id))
            await self.session.delete(run)

            self.session.add(
                PayrollAuditEvent(
                    organization_id=organization_id,
                    payroll_run_id=None,
                    entity_type="payroll_run",
                    entity_id=payroll_run_id,
                    actor_id=actor_id,
                    action="deleted",
                    details_json={
                        "period_start": run.period_start.isoformat(),
                        "period_end": run.period_end.isoformat(),
                    },
                )
            )
            logger.info("Deleted draft payroll run %s", payroll_run_id)

    # ===== Items =====

    async def update_item_allowances(
        self,
        organization_id: UUID,
        payroll_item_id: UUID,
        allowances: Iterable[AllowanceInput],
        actor_id: str | None = None,
    ) -> PayrollItem:
        """Replace an item's allowance list and refresh its gross pay."""
        async with self.locks.unit_of_work(self.session, organization_id):
            rows = await self.ledger.replace_allowances(organization_id, payroll_item_id, allowances)
            item, run = await self.ledger.load_item(organization_id, payroll_item_id)
            await self._record_audit(
                run,
                "payroll_item",
                item.payroll_item_id,
                "allowances_replaced",
                actor_id,
                {
                    "allowances": [{"amount": str(a.amount), "note": a.note} for a in rows],
                    "allowance_total": str(item.allowance_total),
                    "gross_pay": str(item.gross_pay),
                },
            )
            return item

    async def set_item_paid(
        self,
        organization_id: UUID,
        payroll_item_id: UUID,
        is_paid: bool,
        actor_id: str | None = None,
    ) -> PayrollItem:
        """Mark an item paid or unpaid.

        Paid-at and paid-by are stamped on the transition to paid and
        cleared on the transition to unpaid. Setting the current value again
        changes nothing.
        """
        async with self.locks.unit_of_work(self.session, organization_id):
            item, run = await self.ledger.load_item(organization_id, payroll_item_id)
            PayrollRunStateMachine.ensure_mutable(run, "set paid", "payroll_item", item.payroll_item_id)

            if bool(is_paid) != item.is_paid:
                self._apply_paid(item, run, bool(is_paid), actor_id)
                await self._record_audit(
                    run,
                    "payroll_item",
                    item.payroll_item_id,
                    "marked_paid" if is_paid else "marked_unpaid",
                    actor_id,
                    {"paid_by": item.paid_by},
                )
                logger.info(
                    "Payroll item %s marked %s by %s",
                    item.payroll_item_id,
                    "paid" if is_paid else "unpaid",
                    actor_id,
                )
            return item

    async def mark_all_paid(self, organization_id: UUID, payroll_run_id: UUID, actor_id: str | None = None) -> int:
        """Mark every unpaid item of a draft run paid; returns how many changed."""
        async with self.locks.unit_of_work(self.session, organization_id):
            run = await self.get_run(organization_id, payroll_run_id)
            PayrollRunStateMachine.ensure_mutable(run, "mark all paid")

            changed = 0
            for item in await self.list_items(run.payroll_run_id):
                if not item.is_paid:
                    self._apply_paid(item, run, True, actor_id)
                    changed += 1

            if changed:
                await self._record_audit(
                    run, "payroll_run", run.payroll_run_id, "marked_all_paid", actor_id, {"count": changed}
                )
            logger.info("Marked %d item(s) paid on payroll run %s", changed, run.payroll_run_id)
            return changed

    async def finalize_run(self, organization_id: UUID, payroll_run_id: UUID, actor_id: str | None = None) -> PayrollRun:
        """Transition a run to finalized.

        Never marks anything paid. Rejects with UnpaidItems if any item is
        unpaid, and with RunLocked if the run is already finalized.
        """
        async with self.locks.unit_of_work(self.session, organization_id):
            run = await self.get_run(organization_id, payroll_run_id)
            if not PayrollRunStateMachine.is_mutable(run.status):
                raise RunLocked(run.payroll_run_id, "finalize")
            PayrollRunStateMachine.validate_transition(run.status, PayrollRunStatus.FINALIZED)

            unpaid = await self.session.execute(
                select(PayrollItem.payroll_item_id).where(
                    PayrollItem.payroll_run_id == payroll_run_id,
                    PayrollItem.is_paid.is_(False),
                )
            )
            unpaid_ids = list(unpaid.scalars().all())
            if unpaid_ids:
                raise UnpaidItems(run.payroll_run_id, unpaid_ids)

            # Conditional update guards against a concurrent finalize
            now = datetime.now(timezone.utc)
            result = await self.session.execute(
                update(PayrollRun)
                .where(
                    PayrollRun.payroll_run_id == payroll_run_id,
                    PayrollRun.status == PayrollRunStatus.DRAFT.value,
                )
                .values(
                    status=PayrollRunStatus.FINALIZED.value,
                    finalized_at=now,
                    finalized_by=actor_id,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise RunLocked(run.payroll_run_id, "finalize")

            await self.session.refresh(run)
            await self._record_audit(run, "payroll_run", run.payroll_run_id, "finalized", actor_id)
            logger.info("Payroll run %s finalized by %s", run.payroll_run_id, actor_id)
            return run

    # ===== Internals =====

    async def _get_or_create_run(
        self,
        organization_id: UUID,
        period_start: date,
        period_end: date,
        actor_id: str | None,
    ) -> PayrollRun:
        if period_end < period_start:
            raise InvalidSetting(
                "period",
                f"{period_start.isoformat()}..{period_end.isoformat()}",
                "period_end must not precede period_start",
            )
        if await self.session.get(Organization, organization_id) is None:
            raise NotFound("organization", organization_id)

        values = {
            "payroll_run_id": uuid4(),
            "organization_id": organization_id,
            "period_start": period_start,
            "period_end": period_end,
            "month_units_divisor": self.settings.default_month_units,
            "status": PayrollRunStatus.DRAFT.value,
        }
        dialect = dialect_name(self.session)
        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert
            stmt = (
                insert(PayrollRun)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["organization_id", "period_start", "period_end"])
            )
            result = await self.session.execute(stmt)
            created = bool(result.rowcount)
            run = await self._find_run(organization_id, period_start, period_end)
        else:
            run = await self._find_run(organization_id, period_start, period_end)
            created = run is None
            if run is None:
                run = PayrollRun(**values)
                self.session.add(run)
                await self.session.flush()

        if run is None:
            raise NotFound("payroll_run", None, f"{period_start}..{period_end}")

        if created:
            await self._record_audit(
                run,
                "payroll_run",
                run.payroll_run_id,
                "created",
                actor_id,
                {"period_start": period_start.isoformat(), "period_end": period_end.isoformat()},
            )
            logger.info(
                "Created payroll run %s for organization %s %s..%s",
                run.payroll_run_id,
                organization_id,
                period_start,
                period_end,
            )
        return run

    async def _find_run(self, organization_id: UUID, period_start: date, period_end: date) -> PayrollRun | None:
        result = await self.session.execute(
            select(PayrollRun).where(
                PayrollRun.organization_id == organization_id,
                PayrollRun.period_start == period_start,
                PayrollRun.period_end == period_end,
            )
        )
        return result.scalar_one_or_none()

    async def _recompute_items(self, run: PayrollRun, aggregation: AggregationResult) -> None:
        """Upsert one item per worker, keeping allowances and paid state."""
        totals = aggregation.totals_by_subject()
        profiles = await self._load_profiles(run.organization_id, totals.values())
        calculator = PayrollCalculator(run.month_units_divisor)

        existing = {item.subject_key: item for item in await self.list_items(run.payroll_run_id)}
        allowances = await self.allowances_by_item(run.payroll_run_id)

        for key, subject in totals.items():
            profile = profiles.get(key)
            if profile is None:
                logger.warning("No pay profile for %s in run %s; skipped", key, run.payroll_run_id)
                continue

            item = existing.pop(key, None)
            if item is None:
                item = PayrollItem(
                    payroll_run_id=run.payroll_run_id,
                    subject_key=key,
                    worker_id=subject.worker.id if subject.worker.kind is WorkerKind.STAFF else None,
                    locum_booking_id=subject.worker.id if subject.worker.kind is WorkerKind.LOCUM else None,
                    is_paid=False,
                )
                self.session.add(item)

            computation = calculator.compute(
                profile, subject.units, allowances.get(item.payroll_item_id, [])
            )
            item.worker_name = profile.name
            item.role = profile.role
            item.location_ids = list(subject.location_ids)
            item.worked_units = subject.units.worked_units
            item.paid_leave_units = subject.units.paid_leave_units
            item.unpaid_leave_units = subject.units.unpaid_leave_units
            item.absent_units = subject.units.absent_units
            item.pay_model = profile.pay_model.value
            item.pay_method = computation.pay_method.value
            item.base_rate = profile.rate
            item.base_pay = computation.base_pay
            item.allowance_total = computation.allowance_total
            item.gross_pay = computation.gross_pay

        # Workers whose attendance no longer yields any payable line
        for item in existing.values():
            kept = allowances.get(item.payroll_item_id)
            if not item.is_paid and not kept:
                await self.session.delete(item)
                continue
            item.worked_units = ZERO
            item.paid_leave_units = ZERO
            item.unpaid_leave_units = ZERO
            item.absent_units = ZERO
            item.location_ids = []
            item.base_pay = ZERO
            item.allowance_total = PayrollCalculator.allowance_total(kept or [])
            item.gross_pay = PayrollCalculator.round_currency(item.allowance_total)

        await self.session.flush()

    async def _reprice_items(self, run: PayrollRun) -> None:
        """Recompute pay from stored units after a run setting changed."""
        calculator = PayrollCalculator(run.month_units_divisor)
        allowances = await self.allowances_by_item(run.payroll_run_id)
        for item in await self.list_items(run.payroll_run_id):
            profile = PayProfile(PayModel(item.pay_model), Decimal(item.base_rate), item.worker_name, item.role)
            units = UnitTotals(
                worked_units=Decimal(item.worked_units),
                paid_leave_units=Decimal(item.paid_leave_units),
                unpaid_leave_units=Decimal(item.unpaid_leave_units),
                absent_units=Decimal(item.absent_units),
            )
            computation = calculator.compute(profile, units, allowances.get(item.payroll_item_id, []))
            item.pay_method = computation.pay_method.value
            item.base_pay = computation.base_pay
            item.allowance_total = computation.allowance_total
            item.gross_pay = computation.gross_pay
        await self.session.flush()

    async def allowances_by_item(self, payroll_run_id: UUID) -> dict[UUID, list[Allowance]]:
        result = await self.session.execute(
            select(Allowance)
            .join(PayrollItem, Allowance.payroll_item_id == PayrollItem.payroll_item_id)
            .where(PayrollItem.payroll_run_id == payroll_run_id)
            .order_by(Allowance.position)
        )
        grouped: dict[UUID, list[Allowance]] = {}
        for allowance in result.scalars().all():
            grouped.setdefault(allowance.payroll_item_id, []).append(allowance)
        return grouped

    async def _load_profiles(
        self,
        organization_id: UUID,
        subjects: Iterable[SubjectTotals],
    ) -> dict[str, PayProfile]:
        """Pay profiles for staff workers and locum bookings, keyed by subject key.

        Inactive workers keep their profile so days already worked are paid.
        """
        staff_ids: list[UUID] = []
        locum_ids: list[UUID] = []
        for subject in subjects:
            if subject.worker.kind is WorkerKind.STAFF:
                staff_ids.append(subject.worker.id)
            else:
                locum_ids.append(subject.worker.id)

        profiles: dict[str, PayProfile] = {}
        if staff_ids:
            result = await self.session.execute(
                select(Worker).where(
                    Worker.organization_id == organization_id,
                    Worker.worker_id.in_(staff_ids),
                )
            )
            for worker in result.scalars().all():
                profiles[f"{WorkerKind.STAFF.value}:{worker.worker_id}"] = PayProfile(
                    pay_model=PayModel(worker.pay_model),
                    rate=Decimal(worker.pay_rate),
                    name=worker.full_name,
                    role=worker.job_title,
                )
        if locum_ids:
            result = await self.session.execute(
                select(LocumBooking).where(
                    LocumBooking.organization_id == organization_id,
                    LocumBooking.locum_booking_id.in_(locum_ids),
                )
            )
            for booking in result.scalars().all():
                profiles[f"{WorkerKind.LOCUM.value}:{booking.locum_booking_id}"] = PayProfile(
                    pay_model=PayModel.LOCUM,
                    rate=Decimal(booking.daily_rate),
                    name=booking.name,
                    role=booking.role or "Locum",
                )
        return profiles

    @staticmethod
    def _validate_divisor(raw: Any, payroll_run_id: UUID) -> Decimal:
        rule = "must be a number between 0.01 and 9999.99"
        if isinstance(raw, bool):
            raise InvalidSetting("month_units_divisor", raw, rule, payroll_run_id)
        try:
            divisor = Decimal(str(raw)) if not isinstance(raw, Decimal) else raw
            if not divisor.is_finite():
                raise InvalidSetting("month_units_divisor", raw, rule, payroll_run_id)
            divisor = divisor.quantize(DIVISOR_STEP, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            raise InvalidSetting("month_units_divisor", raw, rule, payroll_run_id) from None
        if not 0 < divisor < MAX_DIVISOR:
            raise InvalidSetting("month_units_divisor", raw, rule, payroll_run_id)
        return divisor

    @staticmethod
    def _apply_paid(item: PayrollItem, run: PayrollRun, is_paid: bool, actor_id: str | None) -> None:
        if is_paid:
            item.is_paid = True
            item.paid_at = datetime.now(timezone.utc)
            item.paid_by = run.marked_by or actor_id
        else:
            item.is_paid = False
            item.paid_at = None
            item.paid_by = None

    async def _record_audit(
        self,
        run: PayrollRun,
        entity_type: str,
        entity_id: UUID,
        action: str,
        actor_id: str | None = None,
        details: dict | None = None,
    ) -> None:
        """Record an audit event for a payroll run action."""
        event = PayrollAuditEvent(
            organization_id=run.organization_id,
            payroll_run_id=run.payroll_run_id,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            action=action,
            details_json=details,
        )
        self.session.add(event)
