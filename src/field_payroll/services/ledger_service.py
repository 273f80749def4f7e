"""Earnings ledger: additive, reversible monthly accumulation per worker.

Provides:
- ``contribute``: add a work order's earnings to a worker's month
- ``retract``: remove them again, deleting empty entries and ledgers
- Deduction recomputation on every gross change
- Row locks on the ledger and entry so concurrent settlements never lose
  an increment
"""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from field_payroll.calculators.deduction_engine import DeductionEngine
from field_payroll.calculators.months import parse_month
from field_payroll.config import get_settings
from field_payroll.models import LedgerEntry, MonthlyLedger, Worker
from field_payroll.result import Failure, Result, Success

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class EarningsLedger:
    """Per-(worker, month) gross earnings with derived deductions and net pay.

    Must be used inside a transaction: the ledger and entry rows are locked
    with ``SELECT ... FOR UPDATE`` for the remainder of it.
    """

    def __init__(self, session: AsyncSession, engine: DeductionEngine | None = None):
        self.session = session
        self.engine = engine or DeductionEngine(session)

    async def get_monthly_ledger(self, month: str) -> MonthlyLedger | None:
        """Load a month's ledger with its entries."""
        result = await self.session.execute(
            select(MonthlyLedger).where(MonthlyLedger.month == month)
        )
        return result.scalar_one_or_none()

    async def get_ledger_entry(self, month: str, worker_id: UUID) -> LedgerEntry | None:
        """Load one worker's entry for a month."""
        result = await self.session.execute(
            select(LedgerEntry)
            .join(MonthlyLedger, LedgerEntry.monthly_ledger_id == MonthlyLedger.monthly_ledger_id)
            .where(MonthlyLedger.month == month, LedgerEntry.worker_id == worker_id)
        )
        return result.scalar_one_or_none()

    async def contribute(self, month: str, worker: Worker, amount: Decimal) -> Result[LedgerEntry]:
        """Add ``amount`` to the worker's gross for ``month``.

        Creates the month's ledger and the worker's entry on first use.
        """
        parse_month(month)
        if amount < 0:
            raise ValueError("Contribution amount must not be negative")

        ledger = await self._lock_ledger(month)
        if ledger is None:
            ledger = MonthlyLedger(month=month, entries=[])
            self.session.add(ledger)
            await self.session.flush()
            logger.info("Created monthly ledger for %s", month)

        entry = await self._lock_entry(ledger, worker.worker_id)
        if entry is None:
            entry = LedgerEntry(
                worker_id=worker.worker_id,
                currency=get_settings().currency,
                gross_salary=ZERO,
                employee_deduction=ZERO,
                employer_deduction=ZERO,
                net_salary=ZERO,
                deduction_breakdown={},
            )
            ledger.entries.append(entry)
            logger.info("Created ledger entry for worker %s in %s", worker.worker_id, month)

        entry.gross_salary = entry.gross_salary + amount
        await self._apply_deductions(month, entry, worker.nationality)
        ledger.refresh_totals()
        await self.session.flush()

        return Success(entry, f"Credited {amount} to worker {worker.worker_id} for {month}")

    async def retract(
        self, month: str, worker: Worker, amount: Decimal
    ) -> Result[LedgerEntry | None]:
        """Subtract ``amount`` from the worker's gross for ``month``.

        An entry whose gross reaches zero is deleted, and a ledger left with
        no entries is deleted with it. A missing ledger or entry is a
        successful no-op.
        """
        ledger = await self._lock_ledger(month)
        if ledger is None:
            return Success(None, f"No ledger for {month}; nothing to retract")

        entry = await self._lock_entry(ledger, worker.worker_id)
        if entry is None:
            return Success(None, f"No entry for worker {worker.worker_id} in {month}; nothing to retract")

        remaining = entry.gross_salary - amount
        if remaining <= 0:
            ledger.entries.remove(entry)
            logger.info("Removed ledger entry for worker %s in %s", worker.worker_id, month)
            entry = None
        else:
            entry.gross_salary = remaining
            await self._apply_deductions(month, entry, worker.nationality)

        if ledger.entries:
            ledger.refresh_totals()
        else:
            await self.session.delete(ledger)
            logger.info("Removed empty monthly ledger for %s", month)
        await self.session.flush()

        return Success(entry, f"Retracted {amount} from worker {worker.worker_id} for {month}")

    async def recalculate(self, entry: LedgerEntry) -> Result[LedgerEntry]:
        """Recompute deductions for an entry's current gross.

        Administrative correction; bypasses the contribute/retract
        accumulation.
        """
        ledger = await self.session.get(MonthlyLedger, entry.monthly_ledger_id, with_for_update=True)
        if ledger is None:
            return Failure.not_found(f"Ledger {entry.monthly_ledger_id} not found")

        locked = await self._lock_entry(ledger, entry.worker_id)
        if locked is None:
            return Failure.not_found(
                f"Ledger entry for worker {entry.worker_id} not found in {ledger.month}"
            )

        worker = await self.session.get(Worker, locked.worker_id)
        if worker is None:
            return Failure.not_found(f"Worker {locked.worker_id} not found")

        await self._apply_deductions(ledger.month, locked, worker.nationality)
        ledger.refresh_totals()
        await self.session.flush()

        logger.info("Recalculated ledger entry for worker %s in %s", worker.worker_id, ledger.month)
        return Success(locked, f"Recalculated deductions for {ledger.month}")

    async def recalculate_month(self, month: str) -> Result[MonthlyLedger]:
        """Recompute deductions for every entry of a month."""
        ledger = await self._lock_ledger(month)
        if ledger is None:
            return Failure.not_found(f"No ledger for {month}")

        for entry in list(ledger.entries):
            worker = await self.session.get(Worker, entry.worker_id)
            if worker is None:
                return Failure.not_found(f"Worker {entry.worker_id} not found")
            await self._apply_deductions(month, entry, worker.nationality)

        ledger.refresh_totals()
        await self.session.flush()
        return Success(ledger, f"Recalculated {len(ledger.entries)} entries for {month}")

    async def _apply_deductions(self, month: str, entry: LedgerEntry, nationality: str) -> None:
        """Overwrite deductions, breakdown and net pay from the entry's gross."""
        result = await self.engine.compute(month, entry.gross_salary, nationality)
        entry.employee_deduction = result.employee_total
        entry.employer_deduction = result.employer_total
        entry.deduction_breakdown = result.breakdown
        entry.net_salary = entry.gross_salary - result.employee_total

    async def _lock_ledger(self, month: str) -> MonthlyLedger | None:
        result = await self.session.execute(
            select(MonthlyLedger)
            .where(MonthlyLedger.month == month)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def _lock_entry(self, ledger: MonthlyLedger, worker_id: UUID) -> LedgerEntry | None:
        if ledger.monthly_ledger_id is None:
            return None
        await self.session.execute(
            select(LedgerEntry.ledger_entry_id)
            .where(
                LedgerEntry.monthly_ledger_id == ledger.monthly_ledger_id,
                LedgerEntry.worker_id == worker_id,
            )
            .with_for_update()
        )
        return ledger.entry_for(worker_id)
