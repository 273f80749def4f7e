"""Settlement and reversal of completed work orders against the ledger."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from field_payroll.calculators.months import parse_month
from field_payroll.models import WorkOrder
from field_payroll.models.base import utcnow
from field_payroll.result import Failure, Result, Success
from field_payroll.services.ledger_service import EarningsLedger

logger = logging.getLogger(__name__)


class SettlementProcessor:
    """Credits a completed work order's assignments to the completion month.

    Runs inside the approval transaction; a failure for any worker aborts
    the approval.
    """

    def __init__(self, session: AsyncSession, ledger: EarningsLedger | None = None):
        self.session = session
        self.ledger = ledger or EarningsLedger(session)

    async def settle(self, work_order: WorkOrder | None, month: str) -> Result[WorkOrder | None]:
        if work_order is None:
            return Failure.not_found("Work order not found for settlement")

        parse_month(month)

        if work_order.is_resource_only:
            logger.info(
                "Work order %s is resource-only; no ledger update",
                work_order.work_order_id,
            )
            return Success(work_order, "Resource work order completed with no financial impact")

        if not work_order.assignments:
            return Success(work_order, "Work order has no workers; nothing to settle")

        for assignment in work_order.assignments:
            result = await self.ledger.contribute(month, assignment.worker, assignment.contribution)
            if result.is_failure:
                logger.warning(
                    "Settlement of work order %s failed for worker %s: %s",
                    work_order.work_order_id,
                    assignment.worker_id,
                    result.message,
                )
                return result

        work_order.settled_at = utcnow()
        logger.info(
            "Settled work order %s into %s for %d worker(s)",
            work_order.work_order_id,
            month,
            len(work_order.assignments),
        )
        return Success(
            work_order,
            f"Settled {len(work_order.assignments)} worker contribution(s) into {month}",
        )


class ReversalProcessor:
    """Withdraws a settled work order's contributions from its completion month.

    Idempotent: an order that was never settled, or was already reversed,
    is left untouched.
    """

    def __init__(self, session: AsyncSession, ledger: EarningsLedger | None = None):
        self.session = session
        self.ledger = ledger or EarningsLedger(session)

    async def reverse(self, work_order: WorkOrder | None) -> Result[WorkOrder | None]:
        if work_order is None:
            return Failure.not_found("Work order not found for reversal")

        if not work_order.is_completed or not work_order.completion_month:
            return Success(work_order, "Work order is not completed; nothing to reverse")
        if work_order.settled_at is None:
            return Success(work_order, "Work order was never settled; nothing to reverse")
        if work_order.reversed_at is not None:
            return Success(work_order, "Work order already reversed")

        month = work_order.completion_month
        if await self.ledger.get_monthly_ledger(month) is None:
            logger.info("No ledger for %s; skipping reversal of %s", month, work_order.work_order_id)
            return Success(work_order, f"No ledger for {month}; nothing to reverse")

        for assignment in work_order.assignments:
            result = await self.ledger.retract(month, assignment.worker, assignment.contribution)
            if result.is_failure:
                return result

        work_order.reversed_at = utcnow()
        logger.info("Reversed work order %s from %s", work_order.work_order_id, month)
        return Success(work_order, f"Reversed worker contributions from {month}")
