"""Field payroll command line interface.

Provides operational tools for:
- Schema creation
- Monthly ledger queries
- Administrative deduction recalculation
- Deduction rule verification

Usage:
    python -m field_payroll init-db
    python -m field_payroll ledger --month 2025-03
    python -m field_payroll recalculate --month 2025-03 [--worker-id X]
    python -m field_payroll check-rules
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from field_payroll.calculators.months import parse_month
from field_payroll.config import configure_logging
from field_payroll.database import PersistenceError, create_schema, get_engine, make_session_factory
from field_payroll.models import DeductionRule
from field_payroll.services.ledger_service import EarningsLedger

logger = logging.getLogger(__name__)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def month_arg(s: str) -> str:
    """Validate a ``YYYY-MM`` month argument."""
    try:
        parse_month(s)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e
    return s


class FieldPayrollCli:
    """Field payroll command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m field_payroll",
            description="Field payroll operational tools",
        )
        parser.add_argument(
            "--database-url",
            type=str,
            help="Override DATABASE_URL",
        )
        parser.add_argument(
            "--log-level",
            type=str,
            help="Override LOG_LEVEL",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create all tables")

        ledger = subparsers.add_parser("ledger", help="Show a monthly ledger")
        ledger.add_argument(
            "--month",
            type=month_arg,
            required=True,
            help="Ledger month (YYYY-MM)",
        )

        recalc = subparsers.add_parser(
            "recalculate",
            help="Recompute deductions for a month or one worker",
        )
        recalc.add_argument(
            "--month",
            type=month_arg,
            required=True,
            help="Ledger month (YYYY-MM)",
        )
        recalc.add_argument(
            "--worker-id",
            type=parse_uuid,
            help="Only recalculate this worker's entry",
        )

        subparsers.add_parser(
            "check-rules",
            help="Verify deduction rule versions and wage brackets do not overlap",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        configure_logging(parsed.log_level)

        handlers: dict[str, Callable[[argparse.Namespace], int]] = {
            "init-db": self._cmd_init_db,
            "ledger": self._cmd_ledger,
            "recalculate": self._cmd_recalculate,
            "check-rules": self._cmd_check_rules,
        }

        handler = handlers.get(parsed.command)
        if handler:
            return handler(parsed)

        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return 1

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create the schema."""

        async def go() -> None:
            engine = get_engine(args.database_url)
            try:
                await create_schema(engine)
            finally:
                await engine.dispose()

        asyncio.run(go())
        print("Schema created.")
        return 0

    def _cmd_ledger(self, args: argparse.Namespace) -> int:
        """Print a month's ledger entries and totals."""

        async def go() -> int:
            engine = get_engine(args.database_url)
            try:
                async with make_session_factory(engine)() as session:
                    ledger = await EarningsLedger(session).get_monthly_ledger(args.month)
                    if ledger is None:
                        print(f"No ledger for {args.month}")
                        return 1

                    print(f"Ledger {ledger.month}")
                    print("=" * 72)
                    print(f"{'Worker':<38}{'Gross':>10}{'Deduct':>12}{'Net':>12}")
                    for entry in sorted(ledger.entries, key=lambda e: str(e.worker_id)):
                        print(
                            f"{str(entry.worker_id):<38}"
                            f"{entry.gross_salary:>10,.2f}"
                            f"{entry.employee_deduction:>12,.2f}"
                            f"{entry.net_salary:>12,.2f}"
                        )
                    print("-" * 72)
                    print(f"  Gross:               {ledger.total_gross_salary:>15,.2f}")
                    print(f"  Employee deductions: {ledger.total_employee_deductions:>15,.2f}")
                    print(f"  Employer deductions: {ledger.total_employer_deductions:>15,.2f}")
                    print(f"  Net:                 {ledger.total_net_salary:>15,.2f}")
                    return 0
            except SQLAlchemyError as e:
                logger.exception("Persistence failure during ledger")
                raise PersistenceError("ledger", e) from e
            finally:
                await engine.dispose()

        return asyncio.run(go())

    def _cmd_recalculate(self, args: argparse.Namespace) -> int:
        """Recompute deductions for a month, or a single worker's entry."""

        async def go() -> int:
            engine = get_engine(args.database_url)
            try:
                async with make_session_factory(engine)() as session:
                    async with session.begin():
                        ledger = EarningsLedger(session)
                        if args.worker_id is None:
                            result = await ledger.recalculate_month(args.month)
                        else:
                            entry = await ledger.get_ledger_entry(args.month, args.worker_id)
                            if entry is None:
                                print(
                                    f"ERROR: No entry for worker {args.worker_id} in {args.month}",
                                    file=sys.stderr,
                                )
                                return 1
                            result = await ledger.recalculate(entry)
            except SQLAlchemyError as e:
                logger.exception("Persistence failure during recalculate")
                raise PersistenceError("recalculate", e) from e
            finally:
                await engine.dispose()

            if result.is_failure:
                print(f"ERROR: {result.message}", file=sys.stderr)
                return 1
            print(result.message)
            return 0

        return asyncio.run(go())

    def _cmd_check_rules(self, args: argparse.Namespace) -> int:
        """Verify deduction rule versions and wage brackets do not overlap."""

        async def go() -> list[str]:
            engine = get_engine(args.database_url)
            try:
                async with make_session_factory(engine)() as session:
                    rules = (await session.execute(select(DeductionRule))).scalars().all()
                    return DeductionRule.validate_rules(rules)
            except SQLAlchemyError as e:
                logger.exception("Persistence failure during check-rules")
                raise PersistenceError("check-rules", e) from e
            finally:
                await engine.dispose()

        errors = asyncio.run(go())

        print("Deduction Rule Verification")
        print("=" * 60)
        if errors:
            for error in errors:
                print(f"  ✗ {error}")
            print(f"\n{len(errors)} problem(s) found")
            return 1

        print("  ✓ No overlapping rule versions or wage brackets")
        return 0


def main() -> int:
    """CLI entry point."""
    cli = FieldPayrollCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
