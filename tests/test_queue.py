# ruff: noqa: INP001
"""Redis task queue tests against an in-memory fake."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
import redis

from action_governance.services.queue import QueuedTask, TaskQueue, new_task


class _FakeRedis:
    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}

    def lpush(self, key: str, *values: str) -> int:
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    def rpop(self, key: str) -> str | None:
        items = self.lists.get(key) or []
        if not items:
            return None
        return items.pop()

    def brpop(self, keys: list[str], timeout: float = 0) -> tuple[str, str] | None:
        del timeout
        for key in keys:
            value = self.rpop(key)
            if value is not None:
                return key, value
        return None

    def zadd(self, key: str, mapping: dict[str, float]) -> int:
        self.zsets.setdefault(key, {}).update(mapping)
        return len(mapping)

    def zrangebyscore(
        self,
        key: str,
        low: float | str,
        high: float | str,
        *,
        start: int = 0,
        num: int | None = None,
        withscores: bool = False,
    ) -> list[object]:
        lo = float(low)
        hi = float(high)
        members = sorted(
            (item for item in self.zsets.get(key, {}).items() if lo <= item[1] <= hi),
            key=lambda item: item[1],
        )
        members = members[start : None if num is None else start + num]
        if withscores:
            return list(members)
        return [member for member, _ in members]

    def zrem(self, key: str, *members: str) -> int:
        zset = self.zsets.get(key, {})
        return sum(1 for member in members if zset.pop(member, None) is not None)


class _BrokenRedis:
    def lpush(self, key: str, *values: str) -> int:
        raise redis.ConnectionError("connection refused")


@pytest.fixture
def fake(monkeypatch: pytest.MonkeyPatch) -> _FakeRedis:
    client = _FakeRedis()

    def _fake_redis(redis_url: str | None = None) -> _FakeRedis:
        del redis_url
        return client

    monkeypatch.setattr("action_governance.services.queue._redis_client", _fake_redis)
    return client


@pytest.mark.parametrize("attempts", [0, 1, 2])
def test_queue_roundtrip(fake: _FakeRedis, attempts: int) -> None:
    queue = TaskQueue("generic-queue")
    task = QueuedTask(
        task_type="generic-task",
        payload={"name": "action.create"},
        created_at=datetime.now(UTC),
        attempts=attempts,
    )

    assert queue.push(task)
    item = queue.pop()

    assert item == task
    assert queue.pop() is None


def test_pop_is_fifo(fake: _FakeRedis) -> None:
    queue = TaskQueue("fifo")
    for index in range(3):
        queue.push(new_task("generic-task", {"index": index}))

    assert [queue.pop().payload["index"] for _ in range(3)] == [0, 1, 2]  # type: ignore[union-attr]


def test_delayed_task_waits_until_due(
    fake: _FakeRedis,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    now = [1_000.0]
    monkeypatch.setattr("action_governance.services.queue.time.time", lambda: now[0])
    queue = TaskQueue("delayed")

    assert queue.push(new_task("generic-task", {"n": 1}), delay_seconds=30)
    assert fake.zsets["delayed:scheduled"]
    assert queue.pop() is None

    now[0] += 31
    item = queue.pop()

    assert item is not None
    assert item.payload == {"n": 1}
    assert fake.zsets["delayed:scheduled"] == {}


@pytest.mark.parametrize("attempts", [0, 1, 2, 3])
def test_retry_respects_cap(fake: _FakeRedis, attempts: int) -> None:
    queue = TaskQueue("retry-queue")
    task = QueuedTask(
        task_type="generic-task",
        payload={"attempt": attempts},
        created_at=datetime.now(UTC),
        attempts=attempts,
    )

    if attempts >= 3:
        assert queue.retry(task, max_retries=3) is False
        assert fake.lists.get("retry-queue", []) == []
    else:
        assert queue.retry(task, max_retries=3) is True
        requeued = queue.pop()
        assert requeued is not None
        assert requeued.attempts == attempts + 1


def test_push_reports_redis_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "action_governance.services.queue._redis_client",
        lambda redis_url=None: _BrokenRedis(),
    )

    assert TaskQueue("down").push(new_task("generic-task", {})) is False


def test_pop_raises_on_malformed_payload(fake: _FakeRedis) -> None:
    fake.lpush("broken", "not json")

    with pytest.raises(ValueError):
        TaskQueue("broken").pop()


def test_from_json_accepts_bytes() -> None:
    task = new_task("generic-task", {"k": "v"})

    assert QueuedTask.from_json(task.to_json().encode("utf-8")) == task
