"""Time-versioned statutory deduction rules and wage brackets."""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from field_payroll.models.base import Base, TimestampMixin

CALCULATION_TYPES = ("percentage", "fixed")
NATIONALITY_APPLICABILITY = ("all", "local", "foreigner", "foreigner_no_passport")


class DeductionRule(Base, TimestampMixin):
    """Deduction rule valid over ``[effective_from, effective_until]``.

    ``code`` is the business key. The same code may appear on several rows
    as long as their validity windows do not overlap; at most one active row
    per code may be open-ended. ``employee_contribution`` and
    ``employer_contribution`` hold a percentage for ``percentage`` rules and
    a flat amount for ``fixed`` rules.
    """

    __tablename__ = "deduction_rule"

    deduction_rule_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    applies_to_nationality: Mapped[str] = mapped_column(String, nullable=False, default="all")
    calculation_type: Mapped[str] = mapped_column(String, nullable=False, default="percentage")
    employee_contribution: Mapped[Decimal] = mapped_column(
        Numeric(10, 4), nullable=False, default=Decimal("0")
    )
    employer_contribution: Mapped[Decimal] = mapped_column(
        Numeric(10, 4), nullable=False, default=Decimal("0")
    )
    rounding_precision: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "calculation_type IN ('percentage', 'fixed')",
            name="deduction_rule_calculation_type_check",
        ),
        CheckConstraint(
            "applies_to_nationality IN ('all', 'local', 'foreigner', 'foreigner_no_passport')",
            name="deduction_rule_nationality_check",
        ),
        CheckConstraint(
            "effective_until IS NULL OR effective_until >= effective_from",
            name="deduction_rule_dates_check",
        ),
        CheckConstraint(
            "employee_contribution >= 0 AND employer_contribution >= 0",
            name="deduction_rule_contribution_check",
        ),
        Index("ix_deduction_rule_code_until", "code", "effective_until"),
    )

    # Relationships
    wage_brackets: Mapped[list[WageBracket]] = relationship(
        back_populates="deduction_rule",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="WageBracket.min_wage",
    )

    @staticmethod
    def validate_rules(rules: Iterable[DeductionRule]) -> list[str]:
        """Check a rule set for overlapping windows and overlapping brackets.

        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []
        by_code: dict[str, list[DeductionRule]] = defaultdict(list)
        for rule in rules:
            if rule.is_active:
                by_code[rule.code].append(rule)

        for code, versions in by_code.items():
            open_ended = [r for r in versions if r.effective_until is None]
            if len(open_ended) > 1:
                errors.append(f"{code}: more than one active rule without an end date")

            ordered = sorted(versions, key=lambda r: r.effective_from)
            for earlier, later in zip(ordered, ordered[1:]):
                if earlier.effective_until is None or earlier.effective_until >= later.effective_from:
                    errors.append(
                        f"{code}: window starting {earlier.effective_from} overlaps "
                        f"window starting {later.effective_from}"
                    )

        for versions in by_code.values():
            for rule in versions:
                errors.extend(WageBracket.validate_brackets(rule.code, rule.wage_brackets))

        return errors


class WageBracket(Base, TimestampMixin):
    """Salary band ``[min_wage, max_wage)`` within a fixed deduction rule.

    A null ``max_wage`` means "and above".
    """

    __tablename__ = "wage_bracket"

    wage_bracket_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    deduction_rule_id: Mapped[UUID] = mapped_column(
        ForeignKey("deduction_rule.deduction_rule_id", ondelete="CASCADE"),
        nullable=False,
    )
    min_wage: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    max_wage: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    calculation_method: Mapped[str] = mapped_column(String, nullable=False, default="fixed")
    employee_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0")
    )
    employer_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0")
    )
    employee_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("0")
    )
    employer_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("0")
    )

    __table_args__ = (
        CheckConstraint(
            "max_wage IS NULL OR max_wage >= min_wage",
            name="wage_bracket_range_check",
        ),
        CheckConstraint(
            "calculation_method IN ('fixed', 'percentage')",
            name="wage_bracket_method_check",
        ),
        Index("ix_wage_bracket_lookup", "deduction_rule_id", "min_wage", "max_wage"),
    )

    # Relationships
    deduction_rule: Mapped[DeductionRule] = relationship(back_populates="wage_brackets")

    @property
    def display(self) -> str:
        upper = f"{self.max_wage:,.2f}" if self.max_wage is not None else "and above"
        return f"{self.min_wage:,.2f} - {upper}"

    @staticmethod
    def validate_brackets(code: str, brackets: Iterable[WageBracket]) -> list[str]:
        errors: list[str] = []
        ordered = sorted(brackets, key=lambda b: b.min_wage)
        for bracket in ordered:
            if bracket.max_wage is not None and bracket.max_wage < bracket.min_wage:
                errors.append(f"{code}: bracket {bracket.display} has max below min")
        for lower, upper in zip(ordered, ordered[1:]):
            if lower.max_wage is None or lower.max_wage > upper.min_wage:
                errors.append(f"{code}: bracket {lower.display} overlaps {upper.display}")
        return errors
