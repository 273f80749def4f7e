"""Integration tests for the work order lifecycle.

Each lifecycle operation is one transaction: status change, history and
ledger effect commit together or are rolled back together.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from field_payroll.models import (
    ImmutableRecordError,
    LedgerEntry,
    MonthlyLedger,
    WorkOrder,
    WorkOrderHistory,
)
from field_payroll.result import ErrorKind, Failure
from field_payroll.services.ledger_service import EarningsLedger
from field_payroll.services.settlement_service import SettlementProcessor
from field_payroll.services.state_machine import DEFAULT_REMARKS, GUARD_FAILURE_MESSAGE
from field_payroll.services.work_order_service import AssignmentParams, WorkOrderParams
from tests.conftest import labor_params, resource_params

COMPLETED_ON = date(2025, 3, 20)
MONTH = "2025-03"


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


async def _entry(session_factory, worker):
    async with session_factory() as session:
        return await EarningsLedger(session).get_ledger_entry(MONTH, worker.worker_id)


async def _approved(lifecycle, params):
    order = (await lifecycle.create_and_submit(params, "clerk")).unwrap()
    return (await lifecycle.approve(order, "manager", completed_on=COMPLETED_ON)).unwrap()


class TestCreate:
    """Creating work orders."""

    async def test_create_draft(self, lifecycle, session_factory):
        result = await lifecycle.create_draft(WorkOrderParams(start_date=date(2025, 3, 3)), "clerk")

        assert result.is_success
        order = result.value
        assert order.status == "ongoing"
        assert order.created_by == "clerk"
        assert await _count(session_factory, WorkOrderHistory) == 0

    async def test_create_and_submit(self, lifecycle, local_worker, emitter):
        received = []
        emitter.on_all(received.append)

        result = await lifecycle.create_and_submit(labor_params((local_worker, "150.00", "20")), "clerk")

        assert result.is_success
        order = result.value
        assert order.status == "pending"
        assert order.rate_name == "Harvesting"
        assert order.assignments[0].contribution == Decimal("3000.00")
        assert order.assignments[0].worker_name == "Ahmad Faizal"

        history = order.histories[0]
        assert (history.from_state, history.to_state, history.action) == ("ongoing", "pending", "submit")
        assert history.actor == "clerk"
        assert history.remarks == DEFAULT_REMARKS["submit"]
        assert history.snapshot["assignments"][0]["contribution"] == "3000.00"

        assert [e.action for e in received] == ["submit"]
        assert received[0].work_order_id == order.work_order_id

    async def test_create_and_submit_with_items_only(self, lifecycle):
        result = await lifecycle.create_and_submit(resource_params(), "clerk")

        assert result.is_success
        assert result.value.status == "pending"
        assert result.value.items[0].item_name == "NPK 15-15-15"

    async def test_create_and_submit_as_draft(self, lifecycle, local_worker):
        result = await lifecycle.create_and_submit(
            labor_params((local_worker, "150.00", "20")), "clerk", draft=True
        )

        assert result.value.status == "ongoing"

    async def test_guard_failure_rolls_back_creation(self, lifecycle, session_factory, emitter):
        received = []
        emitter.on_all(received.append)

        result = await lifecycle.create_and_submit(WorkOrderParams(start_date=date(2025, 3, 3)), "clerk")

        assert result.is_failure
        assert result.kind == ErrorKind.GUARD_VIOLATION
        assert result.message == GUARD_FAILURE_MESSAGE
        assert await _count(session_factory, WorkOrder) == 0
        assert received == []

    async def test_unknown_worker_rolls_back_creation(self, lifecycle, session_factory):
        params = WorkOrderParams(
            start_date=date(2025, 3, 3),
            assignments=[AssignmentParams(worker_id=uuid4(), rate=Decimal("10"), quantity=Decimal("1"))],
        )

        result = await lifecycle.create_and_submit(params, "clerk")

        assert result.kind == ErrorKind.NOT_FOUND
        assert await _count(session_factory, WorkOrder) == 0


class TestUpdateAndSubmit:
    """Field updates with optional submission."""

    async def test_update_without_submit(self, lifecycle, local_worker):
        order = (await lifecycle.create_draft(WorkOrderParams(start_date=date(2025, 3, 3)), "clerk")).value

        result = await lifecycle.update_and_submit(
            order, WorkOrderParams(block_number="C-7"), "clerk", submit=False
        )

        assert result.value.status == "ongoing"
        assert result.value.block_number == "C-7"

    async def test_update_and_submit_from_ongoing(self, lifecycle, local_worker):
        order = (await lifecycle.create_draft(WorkOrderParams(start_date=date(2025, 3, 3)), "clerk")).value

        result = await lifecycle.update_and_submit(
            order.work_order_id, labor_params((local_worker, "150.00", "20")), "clerk", submit=True
        )

        assert result.is_success
        assert result.value.status == "pending"
        assert len(result.value.assignments) == 1

    async def test_update_and_submit_reopens_amendment(self, lifecycle, local_worker, other_local_worker):
        order = (await lifecycle.create_and_submit(labor_params((local_worker, "150.00", "20")), "clerk")).value
        await lifecycle.request_amendment(order, "manager", "Wrong worker")

        result = await lifecycle.update_and_submit(
            order, labor_params((other_local_worker, "150.00", "20")), "clerk", submit=True
        )

        assert result.is_success
        updated = result.value
        assert updated.status == "pending"
        assert [a.worker_id for a in updated.assignments] == [other_local_worker.worker_id]
        assert [h.action for h in updated.histories] == ["submit", "request_amendment", "reopen"]
        assert updated.histories[1].remarks == "Wrong worker"
        assert updated.histories[2].remarks == DEFAULT_REMARKS["reopen"]

    async def test_update_rejected_while_pending(self, lifecycle, local_worker):
        order = (await lifecycle.create_and_submit(labor_params((local_worker, "150.00", "20")), "clerk")).value

        result = await lifecycle.update_and_submit(
            order, WorkOrderParams(block_number="C-7"), "clerk", submit=True
        )

        assert result.kind == ErrorKind.INVALID_TRANSITION
        reloaded = await lifecycle.get_work_order(order.work_order_id)
        assert reloaded.block_number == "B-12"

    async def test_failed_submit_rolls_back_field_updates(self, lifecycle, local_worker):
        order = (await lifecycle.create_draft(labor_params((local_worker, "150.00", "20")), "clerk")).value

        result = await lifecycle.update_and_submit(
            order, WorkOrderParams(block_number="C-7", assignments=[]), "clerk", submit=True
        )

        assert result.kind == ErrorKind.GUARD_VIOLATION
        reloaded = await lifecycle.get_work_order(order.work_order_id)
        assert reloaded.status == "ongoing"
        assert reloaded.block_number == "B-12"
        assert len(reloaded.assignments) == 1


class TestApprove:
    """Approval and settlement."""

    async def test_approve_settles_into_completion_month(self, lifecycle, session_factory, statutory_rules, local_worker):
        order = (await lifecycle.create_and_submit(labor_params((local_worker, "150.00", "20")), "clerk")).value

        result = await lifecycle.approve(order, "manager", "Looks good", completed_on=COMPLETED_ON)

        assert result.is_success
        approved = result.value
        assert approved.status == "completed"
        assert approved.completion_month == MONTH
        assert approved.approved_by == "manager"
        assert approved.approved_at is not None
        assert approved.settled_at is not None
        assert approved.histories[-1].remarks == "Looks good"

        entry = await _entry(session_factory, local_worker)
        assert entry.gross_salary == Decimal("3000")
        assert entry.employee_deduction == Decimal("351.00")
        assert entry.employer_deduction == Decimal("418.50")
        assert entry.net_salary == Decimal("2649.00")

    async def test_second_order_accumulates(self, lifecycle, session_factory, statutory_rules, local_worker):
        await _approved(lifecycle, labor_params((local_worker, "150.00", "20")))
        await _approved(lifecycle, labor_params((local_worker, "50.00", "10")))

        entry = await _entry(session_factory, local_worker)
        assert entry.gross_salary == Decimal("3500")
        assert entry.employee_deduction == Decimal("409.50")
        assert entry.net_salary == Decimal("3090.50")

    async def test_resource_order_approves_without_ledger(self, lifecycle, session_factory):
        order = (await lifecycle.create_and_submit(resource_params(), "clerk")).value

        result = await lifecycle.approve(order, "manager", completed_on=COMPLETED_ON)

        assert result.is_success
        assert "no financial impact" in result.message
        assert await _count(session_factory, LedgerEntry) == 0

    async def test_approve_from_ongoing_is_invalid(self, lifecycle, local_worker):
        order = (await lifecycle.create_draft(labor_params((local_worker, "150.00", "20")), "clerk")).value

        result = await lifecycle.approve(order, "manager")

        assert result.kind == ErrorKind.INVALID_TRANSITION
        assert (await lifecycle.get_work_order(order.work_order_id)).status == "ongoing"

    async def test_settlement_failure_rolls_back_approval(
        self, lifecycle, session_factory, statutory_rules, local_worker, monkeypatch
    ):
        async def unavailable(self, work_order, month):
            return Failure.not_found("Ledger unavailable")

        order = (await lifecycle.create_and_submit(labor_params((local_worker, "150.00", "20")), "clerk")).value
        monkeypatch.setattr(SettlementProcessor, "settle", unavailable)

        result = await lifecycle.approve(order, "manager", completed_on=COMPLETED_ON)

        assert result.is_failure
        assert result.message == "Ledger unavailable"
        reloaded = await lifecycle.get_work_order(order.work_order_id)
        assert reloaded.status == "pending"
        assert reloaded.completion_month is None
        assert reloaded.approved_by is None
        assert [h.action for h in reloaded.histories] == ["submit"]

    async def test_failure_mid_settlement_rolls_back_earlier_contributions(
        self, lifecycle, session_factory, statutory_rules, local_worker, other_local_worker, monkeypatch
    ):
        contribute = EarningsLedger.contribute
        credited = []

        async def fail_on_second_worker(self, month, worker, amount):
            credited.append(worker.worker_id)
            if len(credited) == 2:
                return Failure.not_found("Ledger unavailable")
            return await contribute(self, month, worker, amount)

        params = labor_params((local_worker, "150.00", "20"), (other_local_worker, "50.00", "10"))
        order = (await lifecycle.create_and_submit(params, "clerk")).value
        monkeypatch.setattr(EarningsLedger, "contribute", fail_on_second_worker)

        result = await lifecycle.approve(order, "manager", completed_on=COMPLETED_ON)

        assert result.message == "Ledger unavailable"
        assert len(credited) == 2
        assert await _entry(session_factory, local_worker) is None
        assert await _entry(session_factory, other_local_worker) is None
        assert await _count(session_factory, MonthlyLedger) == 0
        assert await _count(session_factory, LedgerEntry) == 0
        reloaded = await lifecycle.get_work_order(order.work_order_id)
        assert reloaded.status == "pending"
        assert reloaded.settled_at is None

    async def test_request_amendment(self, lifecycle, local_worker):
        order = (await lifecycle.create_and_submit(labor_params((local_worker, "150.00", "20")), "clerk")).value

        result = await lifecycle.request_amendment(order, "manager", "Quantity too high")

        assert result.value.status == "amendment_required"
        assert result.value.histories[-1].to_state == "amendment_required"

    async def test_unknown_event(self, lifecycle, local_worker):
        order = (await lifecycle.create_draft(labor_params((local_worker, "150.00", "20")), "clerk")).value

        result = await lifecycle.attempt_transition(order, "teleport", "clerk")

        assert result.kind == ErrorKind.INVALID_TRANSITION

    async def test_missing_work_order(self, lifecycle):
        result = await lifecycle.attempt_transition(uuid4(), "submit", "clerk")

        assert result.kind == ErrorKind.NOT_FOUND


class TestArchive:
    """Withdrawal and reversal."""

    async def test_archive_completed_reverses_settlement(self, lifecycle, session_factory, statutory_rules, local_worker):
        order = await _approved(lifecycle, labor_params((local_worker, "150.00", "20")))

        result = await lifecycle.archive(order, "manager")

        assert result.is_success
        archived = result.value
        assert archived.status == "completed"
        assert archived.archived_at is not None
        assert archived.reversed_at is not None
        last = archived.histories[-1]
        assert (last.action, last.from_state, last.to_state) == ("archive", "completed", "completed")
        assert await _entry(session_factory, local_worker) is None
        assert await _count(session_factory, MonthlyLedger) == 0

    async def test_archive_first_of_two_orders(self, lifecycle, session_factory, statutory_rules, local_worker):
        first = await _approved(lifecycle, labor_params((local_worker, "150.00", "20")))
        await _approved(lifecycle, labor_params((local_worker, "50.00", "10")))

        await lifecycle.archive(first, "manager")

        entry = await _entry(session_factory, local_worker)
        assert entry.gross_salary == Decimal("500")
        assert entry.employee_deduction == Decimal("58.50")
        assert entry.net_salary == Decimal("441.50")

    async def test_archive_twice_is_idempotent(self, lifecycle, session_factory, statutory_rules, local_worker):
        order = await _approved(lifecycle, labor_params((local_worker, "150.00", "20")))
        await lifecycle.archive(order, "manager")

        result = await lifecycle.archive(order, "manager")

        assert result.is_success
        assert result.message == "Work order already archived"
        assert await _count(session_factory, WorkOrderHistory) == 3

    async def test_archive_pending_has_no_ledger_effect(self, lifecycle, local_worker):
        order = (await lifecycle.create_and_submit(labor_params((local_worker, "150.00", "20")), "clerk")).value

        result = await lifecycle.archive(order, "clerk")

        assert result.value.archived_at is not None
        assert result.value.reversed_at is None

        approve = await lifecycle.approve(order, "manager")
        assert approve.kind == ErrorKind.INVALID_TRANSITION

    async def test_archived_order_rejects_updates(self, lifecycle, local_worker):
        order = (await lifecycle.create_draft(labor_params((local_worker, "150.00", "20")), "clerk")).value
        await lifecycle.archive(order, "clerk")

        result = await lifecycle.update_and_submit(
            order, WorkOrderParams(block_number="C-7"), "clerk", submit=False
        )

        assert result.kind == ErrorKind.INVALID_TRANSITION
        assert result.message == "Cannot update an archived work order"
        reloaded = await lifecycle.get_work_order(order.work_order_id)
        assert reloaded.status == "ongoing"
        assert reloaded.block_number == "B-12"


class TestHistoryImmutability:
    """History rows are append-only."""

    async def test_update_rejected(self, lifecycle, session_factory, local_worker):
        await lifecycle.create_and_submit(labor_params((local_worker, "150.00", "20")), "clerk")

        async with session_factory() as session:
            history = await session.scalar(select(WorkOrderHistory))
            history.remarks = "rewritten"
            with pytest.raises(ImmutableRecordError):
                await session.flush()

    async def test_delete_rejected(self, lifecycle, session_factory, local_worker):
        await lifecycle.create_and_submit(labor_params((local_worker, "150.00", "20")), "clerk")

        async with session_factory() as session:
            history = await session.scalar(select(WorkOrderHistory))
            await session.delete(history)
            with pytest.raises(ImmutableRecordError):
                await session.flush()
