"""Work order state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from field_payroll.models import WorkOrder


class WorkOrderStatus(str, Enum):
    """Work order status values."""

    ONGOING = "ongoing"
    PENDING = "pending"
    AMENDMENT_REQUIRED = "amendment_required"
    COMPLETED = "completed"


class WorkOrderEvent(str, Enum):
    """Events that move a work order between statuses."""

    SUBMIT = "submit"
    APPROVE = "approve"
    REQUEST_AMENDMENT = "request_amendment"
    REOPEN = "reopen"
    ARCHIVE = "archive"


GUARD_FAILURE_MESSAGE = (
    "Cannot submit work order: Please add at least one worker or item before submitting."
)

DEFAULT_REMARKS: dict[str, str] = {
    WorkOrderEvent.SUBMIT: "Work order submitted for approval",
    WorkOrderEvent.APPROVE: "Work order approved and completed",
    WorkOrderEvent.REQUEST_AMENDMENT: "Amendment requested by approver",
    WorkOrderEvent.REOPEN: "Work order resubmitted after amendments",
    WorkOrderEvent.ARCHIVE: "Work order archived",
}


class InvalidTransitionError(Exception):
    """Raised when an event is not legal from the current status."""

    def __init__(self, from_status: str, event: str, reason: str | None = None):
        self.from_status = from_status
        self.event = event
        self.reason = reason
        msg = f"Cannot {event} work order in '{from_status}' status"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class GuardViolationError(Exception):
    """Raised when a transition's precondition on the work order's data fails."""

    def __init__(self, event: str, message: str = GUARD_FAILURE_MESSAGE):
        self.event = event
        super().__init__(message)


class WorkOrderStateMachine:
    """State machine for work order status transitions.

    Allowed transitions:
    - ongoing → pending (submit, guarded)
    - pending → completed (approve)
    - pending → amendment_required (request_amendment)
    - amendment_required → pending (reopen, guarded)

    ``archive`` does not change the status; it is accepted from any status
    and routed through the same transition path so that a completed order
    has its ledger contribution reversed.
    """

    # {event: ({allowed_from_statuses}, to_status)}
    TRANSITIONS: dict[str, tuple[frozenset[str], str | None]] = {
        WorkOrderEvent.SUBMIT: (frozenset({WorkOrderStatus.ONGOING}), WorkOrderStatus.PENDING),
        WorkOrderEvent.APPROVE: (frozenset({WorkOrderStatus.PENDING}), WorkOrderStatus.COMPLETED),
        WorkOrderEvent.REQUEST_AMENDMENT: (
            frozenset({WorkOrderStatus.PENDING}),
            WorkOrderStatus.AMENDMENT_REQUIRED,
        ),
        WorkOrderEvent.REOPEN: (
            frozenset({WorkOrderStatus.AMENDMENT_REQUIRED}),
            WorkOrderStatus.PENDING,
        ),
        WorkOrderEvent.ARCHIVE: (frozenset(s.value for s in WorkOrderStatus), None),
    }

    # Events that require at least one worker or item
    GUARDED_EVENTS = {WorkOrderEvent.SUBMIT, WorkOrderEvent.REOPEN}

    # Statuses where fields, assignments and items can be modified
    INPUTS_MUTABLE = {
        WorkOrderStatus.ONGOING,
        WorkOrderStatus.AMENDMENT_REQUIRED,
    }

    @classmethod
    def can_fire(cls, from_status: str, event: str) -> bool:
        """Check if an event is legal from a status."""
        transition = cls.TRANSITIONS.get(event)
        if transition is None:
            return False
        return from_status in transition[0]

    @classmethod
    def target_status(cls, from_status: str, event: str) -> str:
        """Status after firing ``event``; raises InvalidTransitionError if illegal."""
        if not cls.can_fire(from_status, event):
            raise InvalidTransitionError(from_status, event)
        to_status = cls.TRANSITIONS[event][1]
        return str(to_status.value if isinstance(to_status, Enum) else to_status or from_status)

    @classmethod
    def can_modify_inputs(cls, status: str) -> bool:
        """Check if the order's fields, assignments and items can be changed."""
        return status in cls.INPUTS_MUTABLE

    @classmethod
    def is_settling(cls, from_status: str, to_status: str) -> bool:
        """Check if this transition completes the order (applies settlement)."""
        return from_status != WorkOrderStatus.COMPLETED and to_status == WorkOrderStatus.COMPLETED

    @classmethod
    def is_reversing(cls, work_order: WorkOrder, event: str) -> bool:
        """Check if this event withdraws a completed order (applies reversal)."""
        return event == WorkOrderEvent.ARCHIVE and work_order.status == WorkOrderStatus.COMPLETED

    @classmethod
    def validate_work_order_for_event(cls, work_order: WorkOrder, event: str) -> None:
        """Validate a work order for a specific event.

        Raises InvalidTransitionError or GuardViolationError.
        """
        cls.target_status(work_order.status, event)

        if event in cls.GUARDED_EVENTS and not work_order.has_workers_or_items():
            raise GuardViolationError(event)
