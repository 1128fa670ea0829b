"""Action event dispatch handler run by the queue worker."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from action_governance.core.logging import get_logger
from action_governance.services.action_events.queue import (
    ActionEvent,
    decode_action_event_task,
)
from action_governance.services.queue import QueuedTask

logger = get_logger(__name__)

ActionEventHandler = Callable[[ActionEvent], Awaitable[None]]

_SUBSCRIBERS: dict[str, list[ActionEventHandler]] = {}


def subscribe(event_type: str, handler: ActionEventHandler) -> None:
    """Register ``handler`` for one event type (``*`` receives every event)."""
    _SUBSCRIBERS.setdefault(event_type, []).append(handler)


def clear_subscribers() -> None:
    _SUBSCRIBERS.clear()


def _handlers_for(event_type: str) -> list[ActionEventHandler]:
    return [*_SUBSCRIBERS.get(event_type, []), *_SUBSCRIBERS.get("*", [])]


async def process_action_event_task(task: QueuedTask) -> None:
    """Decode an action event and hand it to every subscriber.

    A subscriber failure propagates so the worker retries the whole event;
    subscribers must therefore tolerate redelivery.
    """
    event = decode_action_event_task(task)
    handlers = _handlers_for(event.event_type)
    logger.info(
        "action.event.dispatch",
        extra={
            "event_type": event.event_type,
            "audit_id": str(event.audit_id),
            "collection": event.collection,
            "record_id": event.record_id,
            "subscriber_count": len(handlers),
            "attempt": event.attempts,
        },
    )
    for handler in handlers:
        await handler(event)
