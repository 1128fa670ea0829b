"""Action event queueing + dispatch utilities."""

from action_governance.services.action_events.queue import (
    EVENT_CREATE,
    EVENT_EXECUTE,
    EVENT_REVERT,
    EVENT_UPDATE,
    TASK_TYPE,
    ActionEvent,
    ActionEventPublisher,
    DisabledActionEventPublisher,
    QueueActionEventPublisher,
    decode_action_event_task,
    default_publisher,
)

__all__ = [
    "EVENT_CREATE",
    "EVENT_EXECUTE",
    "EVENT_REVERT",
    "EVENT_UPDATE",
    "TASK_TYPE",
    "ActionEvent",
    "ActionEventPublisher",
    "DisabledActionEventPublisher",
    "QueueActionEventPublisher",
    "decode_action_event_task",
    "default_publisher",
]
