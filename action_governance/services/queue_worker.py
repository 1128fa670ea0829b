"""Queue worker: pops tasks and dispatches them by task type."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from action_governance.core.config import settings
from action_governance.core.logging import configure_logging, get_logger
from action_governance.services.action_events.dispatch import process_action_event_task
from action_governance.services.action_events.queue import TASK_TYPE as ACTION_EVENT_TASK_TYPE
from action_governance.services.queue import QueuedTask, TaskQueue, retry_delay_seconds

logger = get_logger(__name__)
_WORKER_BLOCK_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class _TaskHandler:
    handler: Callable[[QueuedTask], Awaitable[None]]
    attempts_to_delay: Callable[[int], float] = retry_delay_seconds


_TASK_HANDLERS: dict[str, _TaskHandler] = {
    ACTION_EVENT_TASK_TYPE: _TaskHandler(handler=process_action_event_task),
}


async def flush_queue(
    queue: TaskQueue | None = None,
    *,
    block: bool = False,
    block_timeout: float = 0,
) -> int:
    """Consume ready tasks until the queue is empty; return how many succeeded."""
    queue = queue or TaskQueue()
    processed = 0
    while True:
        try:
            task = queue.pop(block=block, timeout=block_timeout)
        except Exception:
            logger.exception("queue.worker.dequeue_failed", extra={"queue_name": queue.name})
            continue

        if task is None:
            break

        handler = _TASK_HANDLERS.get(task.task_type)
        if handler is None:
            logger.warning(
                "queue.worker.task_unhandled",
                extra={"task_type": task.task_type, "queue_name": queue.name},
            )
            continue

        try:
            await handler.handler(task)
            processed += 1
            logger.info(
                "queue.worker.success",
                extra={"task_type": task.task_type, "attempt": task.attempts},
            )
        except Exception as exc:
            logger.exception(
                "queue.worker.failed",
                extra={"task_type": task.task_type, "attempt": task.attempts, "error": str(exc)},
            )
            if not queue.retry(task, delay_seconds=handler.attempts_to_delay(task.attempts)):
                logger.warning(
                    "queue.worker.drop_task",
                    extra={"task_type": task.task_type, "attempt": task.attempts},
                )
        await asyncio.sleep(settings.rq_dispatch_throttle_seconds)

    if processed > 0:
        logger.info("queue.worker.batch_complete", extra={"count": processed})
    return processed


async def _run_worker_loop() -> None:
    queue = TaskQueue()
    while True:
        try:
            # Finite timeout so scheduled retries are released periodically.
            await flush_queue(queue, block=True, block_timeout=_WORKER_BLOCK_TIMEOUT_SECONDS)
        except Exception:
            logger.exception("queue.worker.loop_failed", extra={"queue_name": queue.name})
            await asyncio.sleep(1)


def run_worker() -> None:
    """Console entrypoint for continuous action event processing."""
    configure_logging()
    logger.info(
        "queue.worker.started",
        extra={
            "queue_name": settings.rq_queue_name,
            "throttle_seconds": settings.rq_dispatch_throttle_seconds,
        },
    )
    try:
        asyncio.run(_run_worker_loop())
    finally:
        logger.info("queue.worker.stopped", extra={"queue_name": settings.rq_queue_name})
