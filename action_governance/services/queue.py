"""Redis list queue with delayed delivery and capped retries.

Ready tasks live in a list (``LPUSH``/``RPOP``); delayed tasks live in a
sorted set ``<queue>:scheduled`` scored by their due time and are moved onto
the list whenever a consumer polls.
"""

from __future__ import annotations

import json
import random
import time
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any, cast

import redis

from action_governance.core.config import settings
from action_governance.core.logging import get_logger

logger = get_logger(__name__)

_SCHEDULED_SUFFIX = ":scheduled"
_DRAIN_BATCH_SIZE = 100


@dataclass(frozen=True)
class QueuedTask:
    """Envelope stored on the queue: a task type plus its JSON payload."""

    task_type: str
    payload: dict[str, Any]
    created_at: datetime
    attempts: int = 0

    def to_json(self) -> str:
        return json.dumps(
            {
                "task_type": self.task_type,
                "payload": self.payload,
                "created_at": self.created_at.isoformat(),
                "attempts": self.attempts,
            },
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> QueuedTask:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data: dict[str, Any] = json.loads(raw)
        return cls(
            task_type=str(data["task_type"]),
            payload=dict(data.get("payload") or {}),
            created_at=datetime.fromisoformat(data["created_at"]),
            attempts=int(data.get("attempts", 0)),
        )

    def next_attempt(self) -> QueuedTask:
        return replace(self, attempts=self.attempts + 1)


def _redis_client(redis_url: str | None = None) -> redis.Redis:
    return redis.Redis.from_url(redis_url or settings.rq_redis_url)


def retry_delay_seconds(attempts: int) -> float:
    """Exponential backoff with a little jitter, capped by configuration."""
    base = min(
        settings.rq_dispatch_retry_base_seconds * (2 ** max(0, attempts)),
        settings.rq_dispatch_retry_max_seconds,
    )
    jitter = random.uniform(0, min(settings.rq_dispatch_retry_max_seconds / 10, base * 0.1))
    return base + jitter


class TaskQueue:
    """One named queue on one Redis server."""

    def __init__(self, name: str | None = None, *, redis_url: str | None = None) -> None:
        self.name = name or settings.rq_queue_name
        self.redis_url = redis_url or settings.rq_redis_url

    @property
    def scheduled_name(self) -> str:
        return f"{self.name}{_SCHEDULED_SUFFIX}"

    def _client(self) -> redis.Redis:
        return _redis_client(redis_url=self.redis_url)

    def push(self, task: QueuedTask, *, delay_seconds: float = 0) -> bool:
        """Queue a task now, or schedule it ``delay_seconds`` from now.

        Returns False (and logs) when Redis refuses the write.
        """
        delay = max(0.0, float(delay_seconds))
        try:
            client = self._client()
            if delay == 0:
                client.lpush(self.name, task.to_json())
            else:
                client.zadd(self.scheduled_name, {task.to_json(): time.time() + delay})
        except redis.RedisError as exc:
            logger.warning(
                "queue.push_failed",
                extra={"task_type": task.task_type, "queue_name": self.name, "error": str(exc)},
            )
            return False
        logger.info(
            "queue.pushed",
            extra={
                "task_type": task.task_type,
                "queue_name": self.name,
                "attempt": task.attempts,
                "delay_seconds": delay,
            },
        )
        return True

    def _release_due(self, client: redis.Redis) -> float | None:
        """Move due scheduled tasks onto the list; return seconds until the next one."""
        now = time.time()
        due = cast(
            list[str | bytes],
            client.zrangebyscore(self.scheduled_name, "-inf", now, start=0, num=_DRAIN_BATCH_SIZE),
        )
        if due:
            client.lpush(self.name, *due)
            client.zrem(self.scheduled_name, *due)
            logger.debug("queue.released_scheduled", extra={"queue_name": self.name, "count": len(due)})
        upcoming = cast(
            list[tuple[str | bytes, float]],
            client.zrangebyscore(
                self.scheduled_name,
                now,
                "+inf",
                start=0,
                num=1,
                withscores=True,
            ),
        )
        if not upcoming:
            return None
        return max(0.0, float(upcoming[0][1]) - now)

    def pop(self, *, block: bool = False, timeout: float = 0) -> QueuedTask | None:
        """Take the oldest ready task, optionally waiting up to ``timeout`` seconds."""
        client = self._client()
        raw: str | bytes | None
        if block:
            wait = max(0.0, float(timeout))
            next_due = self._release_due(client)
            if next_due is not None:
                wait = min(wait, next_due) if wait else next_due
            popped = cast(
                tuple[bytes | str, bytes | str] | None,
                client.brpop([self.name], timeout=wait),
            )
            raw = popped[1] if popped is not None else None
        else:
            self._release_due(client)
            raw = cast(str | bytes | None, client.rpop(self.name))
        if raw is None:
            return None
        try:
            return QueuedTask.from_json(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.error(
                "queue.decode_failed",
                extra={"queue_name": self.name, "raw_payload": str(raw), "error": str(exc)},
            )
            raise

    def retry(
        self,
        task: QueuedTask,
        *,
        max_retries: int | None = None,
        delay_seconds: float = 0,
    ) -> bool:
        """Re-queue a failed task unless it has used up its retries."""
        limit = settings.rq_dispatch_max_retries if max_retries is None else max_retries
        retried = task.next_attempt()
        if retried.attempts > limit:
            logger.warning(
                "queue.task_dropped",
                extra={
                    "task_type": task.task_type,
                    "queue_name": self.name,
                    "attempts": retried.attempts,
                },
            )
            return False
        return self.push(retried, delay_seconds=delay_seconds)


def new_task(task_type: str, payload: dict[str, Any]) -> QueuedTask:
    return QueuedTask(task_type=task_type, payload=payload, created_at=datetime.now(UTC))
