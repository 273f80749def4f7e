"""Statutory deduction computation over date-versioned rules."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from field_payroll.calculators.months import month_bounds
from field_payroll.calculators.types import (
    BracketSpec,
    DeductionLine,
    DeductionResult,
    RuleSpec,
)
from field_payroll.models import DeductionRule

ZERO = Decimal("0")


class RuleConflictError(Exception):
    """Raised when more than one version of a rule is in force for a month."""

    def __init__(self, code: str, month: str):
        self.code = code
        self.month = month
        super().__init__(f"More than one '{code}' rule is in force for {month}")


def _round(amount: Decimal, places: int = 2) -> Decimal:
    return amount.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def filter_active_rules(
    rules: Iterable[RuleSpec], month: str, nationality: str
) -> list[RuleSpec]:
    """Rules active for the whole of ``month`` that apply to ``nationality``.

    A rule is selected when it starts on or before the first day of the month
    and has no end date or ends on or after the last day of the month.
    """
    first_day, last_day = month_bounds(month)
    selected = [
        rule
        for rule in rules
        if rule.is_active
        and rule.effective_from <= first_day
        and (rule.effective_until is None or rule.effective_until >= last_day)
        and rule.applies_to_nationality in ("all", nationality)
    ]
    return sorted(selected, key=lambda r: (r.code, r.effective_from))


def _find_bracket(brackets: Iterable[BracketSpec], salary: Decimal) -> BracketSpec | None:
    return next((b for b in sorted(brackets, key=lambda b: b.min_wage) if b.contains(salary)), None)


def compute_rule(rule: RuleSpec, gross_salary: Decimal, nationality: str) -> DeductionLine:
    """Employee and employer amounts for a single rule."""
    places = rule.rounding_precision

    if rule.calculation_type == "percentage":
        employee = _round(gross_salary * rule.employee_contribution / 100, places)
        employer = _round(gross_salary * rule.employer_contribution / 100, places)
        return DeductionLine(
            code=rule.code,
            name=rule.name,
            calculation_type=rule.calculation_type,
            nationality=nationality,
            employee_amount=employee,
            employer_amount=employer,
            employee_rate=rule.employee_contribution,
            employer_rate=rule.employer_contribution,
        )

    if rule.brackets:
        bracket = _find_bracket(rule.brackets, gross_salary)
        if bracket is None:
            employee = employer = ZERO
            label = None
        elif bracket.calculation_method == "percentage":
            employee = _round(gross_salary * bracket.employee_percentage / 100, places)
            employer = _round(gross_salary * bracket.employer_percentage / 100, places)
            label = bracket.display
        else:
            employee = _round(bracket.employee_amount, places)
            employer = _round(bracket.employer_amount, places)
            label = bracket.display
        return DeductionLine(
            code=rule.code,
            name=rule.name,
            calculation_type=rule.calculation_type,
            nationality=nationality,
            employee_amount=employee,
            employer_amount=employer,
            wage_bracket=label,
        )

    return DeductionLine(
        code=rule.code,
        name=rule.name,
        calculation_type=rule.calculation_type,
        nationality=nationality,
        employee_amount=_round(rule.employee_contribution, places),
        employer_amount=_round(rule.employer_contribution, places),
    )


def compute_deductions(
    month: str,
    gross_salary: Decimal,
    nationality: str,
    rules: Iterable[RuleSpec],
) -> DeductionResult:
    """Deductions owed on ``gross_salary`` for ``month``.

    Pure: the result depends only on the arguments, never on the current
    date, so recomputing a historical month yields the same figures. Each
    rule is rounded individually; totals are plain sums of the rounded
    amounts.

    Raises RuleConflictError when two versions of the same rule code are in
    force for the month.
    """
    if gross_salary <= 0:
        return DeductionResult()

    selected = filter_active_rules(rules, month, nationality)
    for earlier, later in zip(selected, selected[1:]):
        if earlier.code == later.code:
            raise RuleConflictError(later.code, month)

    lines = tuple(compute_rule(rule, gross_salary, nationality) for rule in selected)
    return DeductionResult(
        employee_total=sum((line.employee_amount for line in lines), ZERO),
        employer_total=sum((line.employer_amount for line in lines), ZERO),
        lines=lines,
    )


class DeductionEngine:
    """Loads the deduction rules in force for a month and computes amounts.

    Rule sets are cached per (month, nationality) for the lifetime of the
    engine, which is one unit of work.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self._rule_cache: dict[tuple[str, str], list[RuleSpec]] = {}

    async def select_active_rules(self, month: str, nationality: str) -> list[RuleSpec]:
        """Rules in force for the whole month that apply to ``nationality``."""
        cache_key = (month, nationality)
        if cache_key in self._rule_cache:
            return self._rule_cache[cache_key]

        first_day, last_day = month_bounds(month)
        result = await self.session.execute(
            select(DeductionRule).where(
                DeductionRule.is_active.is_(True),
                DeductionRule.effective_from <= first_day,
                or_(
                    DeductionRule.effective_until.is_(None),
                    DeductionRule.effective_until >= last_day,
                ),
                DeductionRule.applies_to_nationality.in_(["all", nationality]),
            )
        )
        specs = [RuleSpec.from_model(rule) for rule in result.scalars().all()]
        rules = filter_active_rules(specs, month, nationality)

        self._rule_cache[cache_key] = rules
        return rules

    async def compute(
        self, month: str, gross_salary: Decimal, nationality: str
    ) -> DeductionResult:
        """Compute deductions for a worker's gross in ``month``."""
        rules = await self.select_active_rules(month, nationality)
        return compute_deductions(month, gross_salary, nationality, rules)
