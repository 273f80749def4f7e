"""Type definitions for deduction computation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from field_payroll.models import DeductionRule, WageBracket


@dataclass(frozen=True)
class BracketSpec:
    """Wage bracket ``[min_wage, max_wage)``; ``max_wage=None`` means no upper limit."""

    min_wage: Decimal
    max_wage: Decimal | None
    calculation_method: str = "fixed"
    employee_amount: Decimal = Decimal("0")
    employer_amount: Decimal = Decimal("0")
    employee_percentage: Decimal = Decimal("0")
    employer_percentage: Decimal = Decimal("0")

    def contains(self, salary: Decimal) -> bool:
        if salary < self.min_wage:
            return False
        return self.max_wage is None or salary < self.max_wage

    @property
    def display(self) -> str:
        upper = f"{self.max_wage:.2f}" if self.max_wage is not None else "and above"
        return f"{self.min_wage:.2f} - {upper}"

    @classmethod
    def from_model(cls, bracket: WageBracket) -> BracketSpec:
        return cls(
            min_wage=bracket.min_wage,
            max_wage=bracket.max_wage,
            calculation_method=bracket.calculation_method,
            employee_amount=bracket.employee_amount,
            employer_amount=bracket.employer_amount,
            employee_percentage=bracket.employee_percentage,
            employer_percentage=bracket.employer_percentage,
        )


@dataclass(frozen=True)
class RuleSpec:
    """Immutable copy of a deduction rule as used by the computation."""

    code: str
    name: str
    calculation_type: str  # 'percentage' | 'fixed'
    employee_contribution: Decimal
    employer_contribution: Decimal
    effective_from: date
    effective_until: date | None = None
    applies_to_nationality: str = "all"
    is_active: bool = True
    rounding_precision: int = 2
    brackets: tuple[BracketSpec, ...] = ()

    @classmethod
    def from_model(cls, rule: DeductionRule) -> RuleSpec:
        return cls(
            code=rule.code,
            name=rule.name,
            calculation_type=rule.calculation_type,
            employee_contribution=rule.employee_contribution,
            employer_contribution=rule.employer_contribution,
            effective_from=rule.effective_from,
            effective_until=rule.effective_until,
            applies_to_nationality=rule.applies_to_nationality,
            is_active=rule.is_active,
            rounding_precision=rule.rounding_precision,
            brackets=tuple(BracketSpec.from_model(b) for b in rule.wage_brackets),
        )


@dataclass(frozen=True)
class DeductionLine:
    """One rule's contribution to a worker's deductions."""

    code: str
    name: str
    calculation_type: str
    nationality: str
    employee_amount: Decimal
    employer_amount: Decimal
    employee_rate: Decimal | None = None
    employer_rate: Decimal | None = None
    wage_bracket: str | None = None

    def to_breakdown(self) -> dict[str, Any]:
        """JSON-safe form stored in ``LedgerEntry.deduction_breakdown``."""
        entry: dict[str, Any] = {
            "name": self.name,
            "calculation_type": self.calculation_type,
            "nationality": self.nationality,
            "employee_amount": str(self.employee_amount),
            "employer_amount": str(self.employer_amount),
        }
        if self.employee_rate is not None:
            entry["employee_rate"] = str(self.employee_rate)
        if self.employer_rate is not None:
            entry["employer_rate"] = str(self.employer_rate)
        if self.wage_bracket is not None:
            entry["wage_bracket"] = self.wage_bracket
        return entry


@dataclass(frozen=True)
class DeductionResult:
    """Employee/employer totals with the per-rule breakdown."""

    employee_total: Decimal = Decimal("0")
    employer_total: Decimal = Decimal("0")
    lines: tuple[DeductionLine, ...] = field(default_factory=tuple)

    @property
    def breakdown(self) -> dict[str, dict[str, Any]]:
        return {line.code: line.to_breakdown() for line in self.lines}
