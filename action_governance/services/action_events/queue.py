"""Action event envelopes and their Redis queue persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import UUID

from action_governance.core.config import settings
from action_governance.core.logging import get_logger
from action_governance.services.queue import QueuedTask, TaskQueue

logger = get_logger(__name__)
TASK_TYPE = "action_event"

EVENT_CREATE = "action.create"
EVENT_UPDATE = "action.update"
EVENT_EXECUTE = "action.execute"
EVENT_REVERT = "action.revert"


@dataclass(frozen=True)
class ActionEvent:
    """Outbound notification about a completed or reverted action."""

    event_type: str
    audit_id: UUID
    user_id: UUID
    collection: str | None = None
    record_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    attempts: int = 0


class ActionEventPublisher(Protocol):
    def publish(self, event: ActionEvent) -> bool: ...


def _task_from_event(event: ActionEvent) -> QueuedTask:
    return QueuedTask(
        task_type=TASK_TYPE,
        payload={
            "event_type": event.event_type,
            "audit_id": str(event.audit_id),
            "user_id": str(event.user_id),
            "collection": event.collection,
            "record_id": event.record_id,
            "payload": event.payload,
        },
        created_at=event.created_at,
        attempts=event.attempts,
    )


def decode_action_event_task(task: QueuedTask) -> ActionEvent:
    """Decode a QueuedTask into an ActionEvent."""
    if task.task_type != TASK_TYPE:
        raise ValueError(f"Unexpected task_type={task.task_type!r}; expected {TASK_TYPE!r}")
    p: dict[str, Any] = task.payload
    return ActionEvent(
        event_type=str(p["event_type"]),
        audit_id=UUID(p["audit_id"]),
        user_id=UUID(p["user_id"]),
        collection=p.get("collection"),
        record_id=p.get("record_id"),
        payload=p.get("payload") or {},
        created_at=task.created_at,
        attempts=task.attempts,
    )


class QueueActionEventPublisher:
    """Publishes action events onto the worker queue.

    Publishing never raises: the action has already been committed when events
    go out, so a queue outage is logged and reported as ``False``.
    """

    def __init__(self, queue: TaskQueue | None = None) -> None:
        self.queue = queue or TaskQueue()

    def publish(self, event: ActionEvent) -> bool:
        queued = self.queue.push(_task_from_event(event))
        if queued:
            logger.info(
                "action.event.enqueued",
                extra={"event_type": event.event_type, "audit_id": str(event.audit_id)},
            )
        else:
            logger.warning(
                "action.event.enqueue_failed",
                extra={"event_type": event.event_type, "audit_id": str(event.audit_id)},
            )
        return queued


class DisabledActionEventPublisher:
    """Drops events; used when ``ACTION_EVENTS_ENABLED`` is false."""

    def publish(self, event: ActionEvent) -> bool:
        logger.debug(
            "action.event.skipped",
            extra={"event_type": event.event_type, "audit_id": str(event.audit_id)},
        )
        return False


def default_publisher() -> ActionEventPublisher:
    if settings.action_events_enabled:
        return QueueActionEventPublisher()
    return DisabledActionEventPublisher()


def requeue_action_event_task(task: QueuedTask, *, delay_seconds: float = 0) -> bool:
    """Requeue a failed action event with capped retries."""
    return TaskQueue().retry(task, delay_seconds=delay_seconds)
