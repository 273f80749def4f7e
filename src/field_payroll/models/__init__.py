"""ORM models."""

from field_payroll.models.base import Base, TimestampMixin
from field_payroll.models.deduction import DeductionRule, WageBracket
from field_payroll.models.ledger import LedgerEntry, MonthlyLedger
from field_payroll.models.work_order import (
    ImmutableRecordError,
    WorkOrder,
    WorkOrderAssignment,
    WorkOrderHistory,
    WorkOrderItem,
)
from field_payroll.models.worker import Worker

__all__ = [
    "Base",
    "TimestampMixin",
    "DeductionRule",
    "WageBracket",
    "LedgerEntry",
    "MonthlyLedger",
    "ImmutableRecordError",
    "WorkOrder",
    "WorkOrderAssignment",
    "WorkOrderHistory",
    "WorkOrderItem",
    "Worker",
]
