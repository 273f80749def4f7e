"""Field payroll services."""

from field_payroll.services.ledger_service import EarningsLedger
from field_payroll.services.settlement_service import ReversalProcessor, SettlementProcessor
from field_payroll.services.state_machine import (
    GuardViolationError,
    InvalidTransitionError,
    WorkOrderEvent,
    WorkOrderStateMachine,
    WorkOrderStatus,
)
from field_payroll.services.work_order_service import (
    AssignmentParams,
    ItemParams,
    WorkOrderLifecycle,
    WorkOrderParams,
)

__all__ = [
    "EarningsLedger",
    "ReversalProcessor",
    "SettlementProcessor",
    "GuardViolationError",
    "InvalidTransitionError",
    "WorkOrderEvent",
    "WorkOrderStateMachine",
    "WorkOrderStatus",
    "AssignmentParams",
    "ItemParams",
    "WorkOrderLifecycle",
    "WorkOrderParams",
]
