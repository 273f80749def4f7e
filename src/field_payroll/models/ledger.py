"""Monthly earnings ledger and per-worker entries."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from field_payroll.models.base import Base, JSONType, TimestampMixin

if TYPE_CHECKING:
    from field_payroll.models.worker import Worker


class MonthlyLedger(Base, TimestampMixin):
    """All workers' pay for one calendar month (``YYYY-MM``).

    The totals are cached sums over the ledger's entries.
    """

    __tablename__ = "monthly_ledger"

    monthly_ledger_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    total_gross_salary: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    total_employee_deductions: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    total_employer_deductions: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    total_net_salary: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )

    __table_args__ = (UniqueConstraint("month", name="monthly_ledger_month_unique"),)

    # Relationships
    entries: Mapped[list[LedgerEntry]] = relationship(
        back_populates="ledger",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def refresh_totals(self) -> None:
        """Recompute cached totals from the loaded entries."""
        zero = Decimal("0")
        self.total_gross_salary = sum((e.gross_salary for e in self.entries), zero)
        self.total_employee_deductions = sum((e.employee_deduction for e in self.entries), zero)
        self.total_employer_deductions = sum((e.employer_deduction for e in self.entries), zero)
        self.total_net_salary = sum((e.net_salary for e in self.entries), zero)

    def entry_for(self, worker_id: UUID) -> LedgerEntry | None:
        return next((e for e in self.entries if e.worker_id == worker_id), None)


class LedgerEntry(Base, TimestampMixin):
    """One worker's accumulated earnings and deductions within a month."""

    __tablename__ = "ledger_entry"

    ledger_entry_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    monthly_ledger_id: Mapped[UUID] = mapped_column(
        ForeignKey("monthly_ledger.monthly_ledger_id", ondelete="CASCADE"),
        nullable=False,
    )
    worker_id: Mapped[UUID] = mapped_column(
        ForeignKey("worker.worker_id"),
        nullable=False,
        index=True,
    )
    currency: Mapped[str] = mapped_column(String, nullable=False, default="RM")
    gross_salary: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    employee_deduction: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    employer_deduction: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    net_salary: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    deduction_breakdown: Mapped[dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=dict
    )

    __table_args__ = (
        UniqueConstraint("monthly_ledger_id", "worker_id", name="ledger_entry_worker_unique"),
        CheckConstraint("gross_salary >= 0", name="ledger_entry_gross_check"),
    )

    # Relationships
    ledger: Mapped[MonthlyLedger] = relationship(back_populates="entries")
    worker: Mapped[Worker] = relationship(lazy="selectin")
