"""Tests for model helpers that need no database."""

from decimal import Decimal

from field_payroll.models import WageBracket, WorkOrder, WorkOrderAssignment, WorkOrderItem, Worker


class TestWorkOrderAssignment:
    def test_contribution_recomputed_on_write(self):
        assignment = WorkOrderAssignment(rate=Decimal("12.50"), quantity=Decimal("3.333"))
        assert assignment.contribution == Decimal("41.66")

        assignment.quantity = Decimal("4")
        assert assignment.contribution == Decimal("50.00")

        assignment.rate = "10"
        assert assignment.contribution == Decimal("40.00")


class TestWorkOrder:
    def test_submission_guard(self):
        order = WorkOrder(rate_type="resources", assignments=[], items=[])
        assert order.is_resource_only
        assert not order.has_workers_or_items()

        order.items.append(WorkOrderItem(item_name="NPK 15-15-15", amount_used=2))
        assert order.has_workers_or_items()

    def test_snapshot_lists_assignments(self):
        order = WorkOrder(
            status="pending",
            rate_type="work_days",
            assignments=[WorkOrderAssignment(rate=Decimal("100"), quantity=Decimal("5"))],
            items=[],
        )

        snapshot = order.snapshot()

        assert snapshot["status"] == "pending"
        assert snapshot["assignments"][0]["contribution"] == "500.00"
        assert snapshot["item_count"] == 0


def test_bracket_display():
    assert WageBracket(min_wage=Decimal("0"), max_wage=None).display == "0.00 - and above"
    assert WageBracket(min_wage=Decimal("1000"), max_wage=Decimal("2500")).display == "1,000.00 - 2,500.00"


def test_to_dict():
    worker = Worker(name="Siti Aminah", nationality="local")

    data = worker.to_dict()

    assert data["name"] == "Siti Aminah"
    assert data["nationality"] == "local"
