"""Work order lifecycle - orchestrates transitions, history and settlement.

Every public operation is one unit of work: the status change, the history
row and any settlement or reversal commit together or not at all. Expected
failures are returned as ``Failure`` results after the unit of work has been
rolled back; storage faults are raised as ``PersistenceError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Awaitable, Callable, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from field_payroll.calculators.months import format_month
from field_payroll.database import PersistenceError
from field_payroll.events import AuditEmitter, TransitionEvent
from field_payroll.models import (
    WorkOrder,
    WorkOrderAssignment,
    WorkOrderHistory,
    WorkOrderItem,
    Worker,
)
from field_payroll.models.base import utcnow
from field_payroll.result import Failure, Result, Success
from field_payroll.services.settlement_service import ReversalProcessor, SettlementProcessor
from field_payroll.services.state_machine import (
    DEFAULT_REMARKS,
    GuardViolationError,
    InvalidTransitionError,
    WorkOrderEvent,
    WorkOrderStateMachine,
    WorkOrderStatus,
)

logger = logging.getLogger(__name__)

WorkOrderRef = Union[WorkOrder, UUID]


@dataclass
class AssignmentParams:
    """Worker credited on a work order."""

    worker_id: UUID
    rate: Decimal
    quantity: Decimal
    remarks: str | None = None


@dataclass
class ItemParams:
    """Material used on a work order."""

    item_name: str
    amount_used: int | None = None
    unit_name: str | None = None
    category_name: str | None = None
    price: Decimal | None = None
    inventory_id: UUID | None = None


@dataclass
class WorkOrderParams:
    """Field values for creating or updating a work order.

    ``None`` leaves a field unchanged on update. ``assignments`` and ``items``
    replace the whole collection when given.
    """

    start_date: date | None = None
    rate_type: str | None = None
    rate_name: str | None = None
    unit_rate: Decimal | None = None
    block_id: UUID | None = None
    block_number: str | None = None
    field_conductor_name: str | None = None
    remarks: str | None = None
    assignments: list[AssignmentParams] | None = None
    items: list[ItemParams] | None = None

    SCALAR_FIELDS = (
        "start_date",
        "rate_type",
        "rate_name",
        "unit_rate",
        "block_id",
        "block_number",
        "field_conductor_name",
        "remarks",
    )


class _Abort(Exception):
    """Carries a domain failure out of a unit of work so it is rolled back."""

    def __init__(self, failure: Failure):
        self.failure = failure
        super().__init__(failure.message)


@dataclass
class _UnitOfWork:
    session: AsyncSession
    events: list[TransitionEvent] = field(default_factory=list)


class WorkOrderLifecycle:
    """Guarded work order transitions with settlement and audit trail.

    Operations:
    - create_draft: persist a new order in ``ongoing``
    - create_and_submit: persist and submit in one unit
    - update_and_submit: apply field updates, optionally submit or reopen
    - attempt_transition: fire any event (submit, approve, request_amendment,
      reopen, archive)
    - approve / request_amendment / reopen / submit / archive: shortcuts
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        emitter: AuditEmitter | None = None,
    ):
        self.session_factory = session_factory
        self.emitter = emitter or AuditEmitter()

    # -- public operations -------------------------------------------------

    async def create_draft(self, params: WorkOrderParams, actor: str | None) -> Result[WorkOrder]:
        """Persist a new work order in ``ongoing`` with no transition."""

        async def work(uow: _UnitOfWork) -> Success[WorkOrder]:
            order = await self._build(uow.session, params, actor)
            await uow.session.flush()
            logger.info("Created work order %s as draft", order.work_order_id)
            return Success(order, "Work order was successfully created.")

        return await self._run("create_draft", work)

    async def create_and_submit(
        self, params: WorkOrderParams, actor: str | None, draft: bool = False
    ) -> Result[WorkOrder]:
        """Persist a new work order and submit it for approval.

        A failing submission rolls back the creation as well.
        """
        if draft:
            return await self.create_draft(params, actor)

        async def work(uow: _UnitOfWork) -> Success[WorkOrder]:
            order = await self._build(uow.session, params, actor)
            await uow.session.flush()
            await self._fire(uow, order, WorkOrderEvent.SUBMIT, actor, None)
            return Success(order, "Work order was successfully submitted for approval.")

        return await self._run("create_and_submit", work)

    async def update_and_submit(
        self,
        work_order: WorkOrderRef,
        params: WorkOrderParams,
        actor: str | None,
        submit: bool = False,
    ) -> Result[WorkOrder]:
        """Apply field updates and, if ``submit``, move the order to ``pending``.

        ``ongoing`` orders are submitted; ``amendment_required`` orders are
        reopened. Updates and the transition commit together.
        """

        async def work(uow: _UnitOfWork) -> Success[WorkOrder]:
            order = await self._load_for_update(uow.session, work_order)
            if order.is_archived:
                raise _Abort(
                    Failure.invalid_transition(
                        "Cannot update an archived work order", order.status
                    )
                )
            if not WorkOrderStateMachine.can_modify_inputs(order.status):
                raise _Abort(
                    Failure.invalid_transition(
                        f"Work order cannot be updated in '{order.status}' status",
                        order.status,
                    )
                )

            await self._apply(uow.session, order, params)
            await uow.session.flush()

            if not submit:
                logger.info("Updated work order %s", order.work_order_id)
                return Success(order, "Work order was successfully updated.")

            if order.status == WorkOrderStatus.AMENDMENT_REQUIRED:
                event = WorkOrderEvent.REOPEN
            else:
                event = WorkOrderEvent.SUBMIT
            await self._fire(uow, order, event, actor, None)
            return Success(order, "Work order was successfully submitted for approval.")

        return await self._run("update_and_submit", work)

    async def attempt_transition(
        self,
        work_order: WorkOrderRef,
        event: str,
        actor: str | None,
        remarks: str | None = None,
        completed_on: date | None = None,
    ) -> Result[WorkOrder]:
        """Fire ``event`` on the work order.

        ``completed_on`` selects the completion month on approval; it defaults
        to today.
        """
        try:
            event = WorkOrderEvent(event)
        except ValueError:
            return Failure.invalid_transition(f"Unknown work order event '{event}'", str(event))

        async def work(uow: _UnitOfWork) -> Success[WorkOrder]:
            order = await self._load_for_update(uow.session, work_order)
            message = await self._fire(uow, order, event, actor, remarks, completed_on)
            return Success(order, message)

        return await self._run(event.value, work)

    async def submit(self, work_order: WorkOrderRef, actor: str | None, remarks: str | None = None) -> Result[WorkOrder]:
        return await self.attempt_transition(work_order, WorkOrderEvent.SUBMIT, actor, remarks)

    async def approve(
        self,
        work_order: WorkOrderRef,
        actor: str | None,
        remarks: str | None = None,
        completed_on: date | None = None,
    ) -> Result[WorkOrder]:
        """Complete a pending order and settle it into the completion month."""
        return await self.attempt_transition(
            work_order, WorkOrderEvent.APPROVE, actor, remarks, completed_on=completed_on
        )

    async def request_amendment(
        self, work_order: WorkOrderRef, actor: str | None, remarks: str | None = None
    ) -> Result[WorkOrder]:
        return await self.attempt_transition(
            work_order, WorkOrderEvent.REQUEST_AMENDMENT, actor, remarks
        )

    async def reopen(self, work_order: WorkOrderRef, actor: str | None, remarks: str | None = None) -> Result[WorkOrder]:
        return await self.attempt_transition(work_order, WorkOrderEvent.REOPEN, actor, remarks)

    async def archive(self, work_order: WorkOrderRef, actor: str | None, remarks: str | None = None) -> Result[WorkOrder]:
        """Withdraw a work order, reversing its ledger effect if it was completed."""
        return await self.attempt_transition(work_order, WorkOrderEvent.ARCHIVE, actor, remarks)

    async def get_work_order(self, work_order_id: UUID) -> WorkOrder | None:
        """Load a work order with assignments, items and history."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(WorkOrder).where(WorkOrder.work_order_id == work_order_id)
            )
            return result.scalar_one_or_none()

    # -- transitions -------------------------------------------------------

    async def _fire(
        self,
        uow: _UnitOfWork,
        order: WorkOrder,
        event: WorkOrderEvent,
        actor: str | None,
        remarks: str | None,
        completed_on: date | None = None,
    ) -> str:
        """Validate, apply side effects, change status and record history."""
        if event == WorkOrderEvent.ARCHIVE:
            return await self._archive(uow, order, actor, remarks)

        from_status = order.status
        if order.is_archived:
            raise _Abort(
                Failure.invalid_transition(
                    f"Cannot {event.value} an archived work order", from_status, event.value
                )
            )

        try:
            WorkOrderStateMachine.validate_work_order_for_event(order, event)
        except GuardViolationError as e:
            logger.warning("Guard failed for %s on work order %s", event.value, order.work_order_id)
            raise _Abort(Failure.guard_violation(str(e), from_status, event.value)) from e
        except InvalidTransitionError as e:
            logger.warning("Rejected %s on work order %s in '%s'", event.value, order.work_order_id, from_status)
            raise _Abort(Failure.invalid_transition(str(e), from_status, event.value)) from e

        to_status = WorkOrderStateMachine.target_status(from_status, event)
        message = f"Work order moved from {from_status} to {to_status}"

        if WorkOrderStateMachine.is_settling(from_status, to_status):
            today = date.today()
            if order.completed_on is None:
                order.completed_on = completed_on or today
            if order.completion_month is None:
                order.completion_month = format_month(order.completed_on)
            order.approved_by = actor
            order.approved_at = utcnow()
            order.status = to_status

            result = await SettlementProcessor(uow.session).settle(order, order.completion_month)
            if result.is_failure:
                raise _Abort(result)
            message = result.message
        else:
            order.status = to_status

        await self._record_history(uow, order, from_status, to_status, event, actor, remarks)
        logger.info(
            "Work order %s: %s (%s -> %s) by %s",
            order.work_order_id,
            event.value,
            from_status,
            to_status,
            actor,
        )
        return message

    async def _archive(
        self,
        uow: _UnitOfWork,
        order: WorkOrder,
        actor: str | None,
        remarks: str | None,
    ) -> str:
        if order.is_archived:
            return "Work order already archived"

        message = "Work order archived"
        if WorkOrderStateMachine.is_reversing(order, WorkOrderEvent.ARCHIVE):
            result = await ReversalProcessor(uow.session).reverse(order)
            if result.is_failure:
                raise _Abort(result)
            message = f"Work order archived. {result.message}"

        order.archived_at = utcnow()
        await self._record_history(
            uow, order, order.status, order.status, WorkOrderEvent.ARCHIVE, actor, remarks
        )
        logger.info("Work order %s archived by %s", order.work_order_id, actor)
        return message

    async def _record_history(
        self,
        uow: _UnitOfWork,
        order: WorkOrder,
        from_status: str,
        to_status: str,
        event: WorkOrderEvent,
        actor: str | None,
        remarks: str | None,
    ) -> WorkOrderHistory:
        history = WorkOrderHistory(
            from_state=str(from_status),
            to_state=str(to_status),
            action=event.value,
            actor=actor,
            remarks=remarks or DEFAULT_REMARKS[event],
            snapshot=order.snapshot(),
        )
        order.histories.append(history)
        await uow.session.flush()
        uow.events.append(TransitionEvent.from_history(history))
        return history

    # -- building and updating --------------------------------------------

    async def _build(
        self, session: AsyncSession, params: WorkOrderParams, actor: str | None
    ) -> WorkOrder:
        order = WorkOrder(
            status=WorkOrderStatus.ONGOING.value,
            start_date=params.start_date or date.today(),
            rate_type=params.rate_type or "normal",
            created_by=actor,
            assignments=[],
            items=[],
            histories=[],
        )
        await self._apply(session, order, params)
        session.add(order)
        return order

    async def _apply(self, session: AsyncSession, order: WorkOrder, params: WorkOrderParams) -> None:
        for name in WorkOrderParams.SCALAR_FIELDS:
            value = getattr(params, name)
            if value is not None:
                setattr(order, name, value)

        if params.assignments is not None:
            order.assignments = [
                await self._build_assignment(session, a) for a in params.assignments
            ]
        if params.items is not None:
            order.items = [
                WorkOrderItem(
                    inventory_id=i.inventory_id,
                    item_name=i.item_name,
                    unit_name=i.unit_name,
                    category_name=i.category_name,
                    amount_used=i.amount_used,
                    price=i.price,
                )
                for i in params.items
            ]

    async def _build_assignment(
        self, session: AsyncSession, params: AssignmentParams
    ) -> WorkOrderAssignment:
        worker = await session.get(Worker, params.worker_id)
        if worker is None:
            raise _Abort(Failure.not_found(f"Worker {params.worker_id} not found"))

        assignment = WorkOrderAssignment(
            worker_id=worker.worker_id,
            worker_name=worker.name,
            rate=params.rate,
            quantity=params.quantity,
            remarks=params.remarks,
        )
        assignment.worker = worker
        return assignment

    # -- unit of work ------------------------------------------------------

    async def _load_for_update(self, session: AsyncSession, ref: WorkOrderRef) -> WorkOrder:
        work_order_id = ref.work_order_id if isinstance(ref, WorkOrder) else ref
        result = await session.execute(
            select(WorkOrder)
            .where(WorkOrder.work_order_id == work_order_id)
            .with_for_update()
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise _Abort(Failure.not_found(f"Work order {work_order_id} not found"))
        return order

    async def _run(
        self,
        operation: str,
        work: Callable[[_UnitOfWork], Awaitable[Success[WorkOrder]]],
    ) -> Result[WorkOrder]:
        """Run ``work`` in its own transaction and publish its events after commit."""
        try:
            async with self.session_factory() as session:
                uow = _UnitOfWork(session)
                async with session.begin():
                    result = await work(uow)
        except _Abort as abort:
            logger.info("%s rolled back: %s", operation, abort.failure.message)
            return abort.failure
        except SQLAlchemyError as e:
            logger.exception("Persistence failure during %s", operation)
            raise PersistenceError(operation, e) from e

        if uow.events:
            with self.emitter.batch() as batch:
                for event in uow.events:
                    batch.add(event)
        return result
