"""Deduction calculation."""

from field_payroll.calculators.deduction_engine import (
    DeductionEngine,
    RuleConflictError,
    compute_deductions,
    filter_active_rules,
)
from field_payroll.calculators.months import format_month, month_bounds, parse_month
from field_payroll.calculators.types import BracketSpec, DeductionLine, DeductionResult, RuleSpec

__all__ = [
    "DeductionEngine",
    "RuleConflictError",
    "compute_deductions",
    "filter_active_rules",
    "format_month",
    "month_bounds",
    "parse_month",
    "BracketSpec",
    "DeductionLine",
    "DeductionResult",
    "RuleSpec",
]
