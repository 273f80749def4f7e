"""Work order, assignment, material usage and transition history models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from field_payroll.models.base import Base, JSONType, TimestampMixin, utcnow

if TYPE_CHECKING:
    from field_payroll.models.worker import Worker

CENT = Decimal("0.01")

RATE_TYPES = ("normal", "resources", "work_days")


class ImmutableRecordError(Exception):
    """Raised when an append-only record is updated or deleted."""

    def __init__(self, entity_type: str, entity_id: Any, operation: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.operation = operation
        super().__init__(f"{entity_type} {entity_id} is immutable; {operation} is not allowed")


class WorkOrder(Base, TimestampMixin):
    """Unit of field labor and material usage moving through approval.

    ``rate_name``, ``block_number`` and ``field_conductor_name`` are snapshots
    taken when the order is written; they are not refreshed if the master
    data changes later.
    """

    __tablename__ = "work_order"

    work_order_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    status: Mapped[str] = mapped_column(String, nullable=False, default="ongoing")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    block_id: Mapped[UUID | None] = mapped_column(nullable=True)
    block_number: Mapped[str | None] = mapped_column(String, nullable=True)
    field_conductor_name: Mapped[str | None] = mapped_column(String, nullable=True)

    rate_name: Mapped[str | None] = mapped_column(String, nullable=True)
    rate_type: Mapped[str] = mapped_column(String, nullable=False, default="normal")
    unit_rate: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Set once when approved; reversal always targets this month
    completion_month: Mapped[str | None] = mapped_column(String(7), nullable=True)
    completed_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reversed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('ongoing', 'pending', 'amendment_required', 'completed')",
            name="work_order_status_check",
        ),
        CheckConstraint(
            "rate_type IN ('normal', 'resources', 'work_days')",
            name="work_order_rate_type_check",
        ),
        Index("ix_work_order_status_completion_month", "status", "completion_month"),
    )

    # Relationships
    assignments: Mapped[list[WorkOrderAssignment]] = relationship(
        back_populates="work_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    items: Mapped[list[WorkOrderItem]] = relationship(
        back_populates="work_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    histories: Mapped[list[WorkOrderHistory]] = relationship(
        back_populates="work_order",
        cascade="save-update, merge",
        lazy="selectin",
        order_by="WorkOrderHistory.created_at",
    )

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @property
    def is_resource_only(self) -> bool:
        return self.rate_type == "resources"

    def has_workers_or_items(self) -> bool:
        """Submission guard: at least one worker assignment or one item usage."""
        return len(self.assignments) > 0 or len(self.items) > 0

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe view of the order stored alongside each history row."""
        return {
            "status": self.status,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "rate_type": self.rate_type,
            "rate_name": self.rate_name,
            "unit_rate": str(self.unit_rate) if self.unit_rate is not None else None,
            "block_number": self.block_number,
            "completion_month": self.completion_month,
            "assignments": [
                {
                    "worker_id": str(a.worker_id),
                    "rate": str(a.rate),
                    "quantity": str(a.quantity),
                    "contribution": str(a.contribution),
                }
                for a in self.assignments
            ],
            "item_count": len(self.items),
        }


class WorkOrderAssignment(Base, TimestampMixin):
    """Worker credited on a work order.

    ``quantity`` is the worked area for ``normal``/``resources`` orders and
    the number of days for ``work_days`` orders. ``contribution`` is
    recomputed whenever ``rate`` or ``quantity`` is assigned.
    """

    __tablename__ = "work_order_assignment"

    assignment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    work_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("work_order.work_order_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    worker_id: Mapped[UUID] = mapped_column(
        ForeignKey("worker.worker_id"),
        nullable=False,
        index=True,
    )
    worker_name: Mapped[str | None] = mapped_column(String, nullable=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False, default=Decimal("0"))
    contribution: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("rate >= 0", name="work_order_assignment_rate_check"),
        CheckConstraint("quantity >= 0", name="work_order_assignment_quantity_check"),
    )

    # Relationships
    work_order: Mapped[WorkOrder] = relationship(back_populates="assignments")
    worker: Mapped[Worker] = relationship(lazy="selectin")

    @validates("rate", "quantity")
    def _recompute_contribution(self, key: str, value: Any) -> Decimal:
        value = Decimal(str(value)) if value is not None else Decimal("0")
        rate = value if key == "rate" else (self.rate or Decimal("0"))
        quantity = value if key == "quantity" else (self.quantity or Decimal("0"))
        self.contribution = (rate * quantity).quantize(CENT, rounding=ROUND_HALF_UP)
        return value


class WorkOrderItem(Base, TimestampMixin):
    """Material usage recorded on a work order."""

    __tablename__ = "work_order_item"

    item_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    work_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("work_order.work_order_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    inventory_id: Mapped[UUID | None] = mapped_column(nullable=True)
    item_name: Mapped[str | None] = mapped_column(String, nullable=True)
    unit_name: Mapped[str | None] = mapped_column(String, nullable=True)
    category_name: Mapped[str | None] = mapped_column(String, nullable=True)
    amount_used: Mapped[int | None] = mapped_column(Integer, nullable=True)
    price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "amount_used IS NULL OR amount_used > 0",
            name="work_order_item_amount_used_check",
        ),
    )

    # Relationships
    work_order: Mapped[WorkOrder] = relationship(back_populates="items")


class WorkOrderHistory(Base):
    """Append-only record of one work order transition."""

    __tablename__ = "work_order_history"

    history_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    work_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("work_order.work_order_id"),
        nullable=False,
    )
    from_state: Mapped[str] = mapped_column(String, nullable=False)
    to_state: Mapped[str] = mapped_column(String, nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    actor: Mapped[str | None] = mapped_column(String, nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    snapshot: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_work_order_history_order_created", "work_order_id", "created_at"),
    )

    # Relationships
    work_order: Mapped[WorkOrder] = relationship(back_populates="histories")


@event.listens_for(WorkOrderHistory, "before_update")
def _block_history_update(mapper, connection, target: WorkOrderHistory) -> None:
    raise ImmutableRecordError("WorkOrderHistory", target.history_id, "update")


@event.listens_for(WorkOrderHistory, "before_delete")
def _block_history_delete(mapper, connection, target: WorkOrderHistory) -> None:
    raise ImmutableRecordError("WorkOrderHistory", target.history_id, "delete")
