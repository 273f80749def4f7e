"""Audit emitter publishing work order transitions to subscribers.

The emitter provides:
- Handler registration per action (submit, approve, ...) or for all actions
- Error isolation (handler failures don't break other handlers)
- Batching, so a unit of work publishes only after it commits
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol, runtime_checkable
from uuid import UUID

from field_payroll.models import WorkOrderHistory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionEvent:
    """Immutable view of one work order history record."""

    history_id: UUID
    work_order_id: UUID
    action: str
    from_state: str
    to_state: str
    actor: str | None
    remarks: str | None
    occurred_at: datetime
    snapshot: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_history(cls, history: WorkOrderHistory) -> TransitionEvent:
        return cls(
            history_id=history.history_id,
            work_order_id=history.work_order_id,
            action=history.action,
            from_state=history.from_state,
            to_state=history.to_state,
            actor=history.actor,
            remarks=history.remarks,
            occurred_at=history.created_at,
            snapshot=dict(history.snapshot or {}),
        )


@runtime_checkable
class TransitionHandler(Protocol):
    """Protocol for audit subscribers."""

    def __call__(self, event: TransitionEvent) -> None:
        ...


@dataclass
class HandlerRegistration:
    """Registration of a transition handler."""

    handler: TransitionHandler | Callable[[TransitionEvent], None]
    actions: set[str] | None  # None = all actions


class AuditEmitter:
    """Synchronous emitter for transition events.

    Usage:
        emitter = AuditEmitter()
        emitter.on("approve", notify_payroll_clerk)
        emitter.on_all(write_audit_log)

        with emitter.batch() as batch:
            batch.add(event)
        # Events are dispatched when the context exits without error
    """

    def __init__(self) -> None:
        self._handlers: list[HandlerRegistration] = []
        self._batching = False
        self._batch: list[TransitionEvent] = []

    def on(self, action: str | list[str], handler: TransitionHandler) -> None:
        """Register handler for specific action(s)."""
        actions = set(action) if isinstance(action, list) else {action}
        self._handlers.append(HandlerRegistration(handler=handler, actions=actions))

    def on_all(self, handler: TransitionHandler) -> None:
        """Register handler for all actions."""
        self._handlers.append(HandlerRegistration(handler=handler, actions=None))

    def off(self, handler: TransitionHandler) -> None:
        """Unregister a handler."""
        self._handlers = [reg for reg in self._handlers if reg.handler is not handler]

    def emit(self, event: TransitionEvent) -> list[Exception]:
        """Emit an event to all matching handlers.

        Returns list of any exceptions raised by handlers.
        """
        if self._batching:
            self._batch.append(event)
            return []

        return self._dispatch(event)

    def _dispatch(self, event: TransitionEvent) -> list[Exception]:
        errors: list[Exception] = []

        for reg in self._handlers:
            if reg.actions and event.action not in reg.actions:
                continue

            try:
                reg.handler(event)
            except Exception as e:
                logger.exception(
                    "Audit handler %s failed for %s on work order %s",
                    reg.handler,
                    event.action,
                    event.work_order_id,
                )
                errors.append(e)

        return errors

    def batch(self) -> EventBatch:
        """Create a batch context for collecting events."""
        return EventBatch(self)

    def _start_batch(self) -> None:
        self._batching = True
        self._batch = []

    def _end_batch(self) -> list[Exception]:
        self._batching = False
        events = self._batch
        self._batch = []

        errors: list[Exception] = []
        for event in events:
            errors.extend(self._dispatch(event))
        return errors

    def _discard_batch(self) -> None:
        self._batching = False
        self._batch = []


class EventBatch:
    """Context manager for batching events."""

    def __init__(self, emitter: AuditEmitter) -> None:
        self._emitter = emitter
        self._errors: list[Exception] = []

    def __enter__(self) -> EventBatch:
        self._emitter._start_batch()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is None:
            self._errors = self._emitter._end_batch()
        else:
            # Exception occurred - discard batch
            self._emitter._discard_batch()

    def add(self, event: TransitionEvent) -> None:
        """Add event to batch."""
        self._emitter.emit(event)

    @property
    def errors(self) -> list[Exception]:
        """Errors from handler execution (available after context exits)."""
        return self._errors
