"""Pytest fixtures for field payroll tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from field_payroll.calculators.types import BracketSpec, RuleSpec
from field_payroll.database import create_schema, make_session_factory
from field_payroll.events import AuditEmitter
from field_payroll.models import DeductionRule, WageBracket, Worker
from field_payroll.services.work_order_service import (
    AssignmentParams,
    ItemParams,
    WorkOrderLifecycle,
    WorkOrderParams,
)

RULES_EFFECTIVE_FROM = date(2024, 1, 1)


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'field_payroll.db'}")
    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for direct service tests; rolled back after each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def statutory_rules(session_factory) -> list[DeductionRule]:
    """EPF 11/12 for locals, SOCSO 0.5/1.75 and SIP 0.2/0.2 for everyone."""
    rules = [
        DeductionRule(
            code="EPF",
            name="Employees Provident Fund",
            applies_to_nationality="local",
            calculation_type="percentage",
            employee_contribution=Decimal("11"),
            employer_contribution=Decimal("12"),
            effective_from=RULES_EFFECTIVE_FROM,
        ),
        DeductionRule(
            code="SOCSO",
            name="Social Security Organisation",
            applies_to_nationality="all",
            calculation_type="percentage",
            employee_contribution=Decimal("0.5"),
            employer_contribution=Decimal("1.75"),
            effective_from=RULES_EFFECTIVE_FROM,
        ),
        DeductionRule(
            code="SIP",
            name="Employment Insurance System",
            applies_to_nationality="all",
            calculation_type="percentage",
            employee_contribution=Decimal("0.2"),
            employer_contribution=Decimal("0.2"),
            effective_from=RULES_EFFECTIVE_FROM,
        ),
    ]
    async with session_factory() as session:
        async with session.begin():
            session.add_all(rules)
    return rules


@pytest.fixture
async def bracketed_rule(session_factory) -> DeductionRule:
    """Fixed levy for foreigners with wage brackets."""
    rule = DeductionRule(
        code="LEVY",
        name="Foreign Worker Levy",
        applies_to_nationality="foreigner",
        calculation_type="fixed",
        effective_from=RULES_EFFECTIVE_FROM,
        wage_brackets=[
            WageBracket(
                min_wage=Decimal("0"),
                max_wage=Decimal("1000"),
                employee_amount=Decimal("5.00"),
                employer_amount=Decimal("10.00"),
            ),
            WageBracket(
                min_wage=Decimal("1000"),
                max_wage=None,
                employee_amount=Decimal("15.00"),
                employer_amount=Decimal("30.00"),
            ),
        ],
    )
    async with session_factory() as session:
        async with session.begin():
            session.add(rule)
    return rule


async def _add_worker(session_factory, name: str, nationality: str) -> Worker:
    worker = Worker(worker_id=uuid4(), name=name, nationality=nationality)
    async with session_factory() as session:
        async with session.begin():
            session.add(worker)
    return worker


@pytest.fixture
async def local_worker(session_factory) -> Worker:
    return await _add_worker(session_factory, "Ahmad Faizal", "local")


@pytest.fixture
async def other_local_worker(session_factory) -> Worker:
    return await _add_worker(session_factory, "Siti Aminah", "local")


@pytest.fixture
async def foreign_worker(session_factory) -> Worker:
    return await _add_worker(session_factory, "Budi Santoso", "foreigner")


@pytest.fixture
def emitter() -> AuditEmitter:
    return AuditEmitter()


@pytest.fixture
def lifecycle(session_factory, emitter) -> WorkOrderLifecycle:
    return WorkOrderLifecycle(session_factory, emitter)


def labor_params(*assignments: tuple[Worker, str, str], rate_type: str = "normal") -> WorkOrderParams:
    """Work order params crediting ``(worker, rate, quantity)`` tuples."""
    return WorkOrderParams(
        start_date=date(2025, 3, 3),
        rate_type=rate_type,
        rate_name="Harvesting",
        block_number="B-12",
        field_conductor_name="Rahim",
        assignments=[
            AssignmentParams(worker_id=w.worker_id, rate=Decimal(rate), quantity=Decimal(qty))
            for w, rate, qty in assignments
        ],
    )


def resource_params() -> WorkOrderParams:
    """Resources-only work order: items, no workers."""
    return WorkOrderParams(
        start_date=date(2025, 3, 3),
        rate_type="resources",
        rate_name="Fertiliser application",
        items=[ItemParams(item_name="NPK 15-15-15", unit_name="bag", amount_used=4, price=Decimal("85.00"))],
    )


def percentage_rule_specs() -> list[RuleSpec]:
    """In-memory copy of the statutory rule set."""
    return [
        RuleSpec("EPF", "Employees Provident Fund", "percentage", Decimal("11"), Decimal("12"),
                 RULES_EFFECTIVE_FROM, applies_to_nationality="local"),
        RuleSpec("SOCSO", "Social Security Organisation", "percentage", Decimal("0.5"),
                 Decimal("1.75"), RULES_EFFECTIVE_FROM),
        RuleSpec("SIP", "Employment Insurance System", "percentage", Decimal("0.2"),
                 Decimal("0.2"), RULES_EFFECTIVE_FROM),
    ]


def levy_rule_spec() -> RuleSpec:
    return RuleSpec(
        "LEVY", "Foreign Worker Levy", "fixed", Decimal("0"), Decimal("0"), RULES_EFFECTIVE_FROM,
        applies_to_nationality="foreigner",
        brackets=(
            BracketSpec(Decimal("0"), Decimal("1000"), employee_amount=Decimal("5"), employer_amount=Decimal("10")),
            BracketSpec(Decimal("1000"), None, employee_amount=Decimal("15"), employer_amount=Decimal("30")),
        ),
    )
