"""Reward-evaluation work queue with swappable backends."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Mapping, Protocol
from uuid import UUID

from loguru import logger
from redis.asyncio import Redis

from rewards_api.core.settings import Settings


@dataclass(frozen=True, slots=True)
class RewardWorkItem:
    """Request to evaluate rewards after a committed purchase."""

    user_id: UUID
    transaction_id: UUID

    def to_payload(self) -> dict[str, str]:
        return {"user_id": str(self.user_id), "transaction_id": str(self.transaction_id)}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RewardWorkItem":
        return cls(
            user_id=UUID(str(payload["user_id"])),
            transaction_id=UUID(str(payload["transaction_id"])),
        )


class RewardPipeline(Protocol):
    """Queue contract the engine depends on, regardless of the broker behind it."""

    name: str

    async def enqueue(self, item: RewardWorkItem) -> None:
        ...

    async def consume(self, timeout: float | None = None) -> RewardWorkItem | None:
        ...

    async def ack(self, item: RewardWorkItem) -> None:
        """Mark a consumed item as finished so it is never redelivered."""

    async def recover(self) -> int:
        """Requeue items consumed but never acknowledged; returns how many."""

    async def is_available(self) -> bool:
        ...

    async def stats(self) -> dict[str, Any]:
        ...


class InMemoryRewardPipeline:
    """Process-local queue for tests and single-process development."""

    name = "memory"

    def __init__(self) -> None:
        self._queue: asyncio.Queue[RewardWorkItem] = asyncio.Queue()

    async def enqueue(self, item: RewardWorkItem) -> None:
        await self._queue.put(item)

    async def consume(self, timeout: float | None = None) -> RewardWorkItem | None:
        if not timeout:
            try:
                return self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return None
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def ack(self, item: RewardWorkItem) -> None:
        return None

    async def recover(self) -> int:
        return 0

    async def is_available(self) -> bool:
        return True

    async def stats(self) -> dict[str, Any]:
        return {"backend": self.name, "queue": "in-process", "depth": self._queue.qsize(), "connected": True}


class RedisRewardPipeline:
    """Redis list used as a durable FIFO with a processing list for in-flight items.

    Producers ``LPUSH`` onto the queue. Consumers ``(B)LMOVE`` each item into
    ``<queue>:processing`` and remove it only on :meth:`ack`, so an item held by
    a worker that dies is still in Redis and :meth:`recover` puts it back.
    """

    name = "redis"

    def __init__(
        self,
        redis_client: Redis | None = None,
        *,
        redis_url: str | None = None,
        queue_name: str = "rewards:evaluations",
    ) -> None:
        self._redis = redis_client or Redis.from_url(
            redis_url or "redis://localhost:6379/0",
            encoding="utf-8",
            decode_responses=True,
        )
        self._queue_name = queue_name
        self._processing_name = f"{queue_name}:processing"
        self._in_flight: dict[RewardWorkItem, str] = {}

    @property
    def processing_name(self) -> str:
        return self._processing_name

    async def enqueue(self, item: RewardWorkItem) -> None:
        await self._redis.lpush(self._queue_name, json.dumps(item.to_payload()))
        logger.debug("Queued reward evaluation", queue=self._queue_name, **item.to_payload())

    async def consume(self, timeout: float | None = None) -> RewardWorkItem | None:
        if not timeout:
            raw = await self._redis.lmove(self._queue_name, self._processing_name, "RIGHT", "LEFT")
        else:
            raw = await self._redis.blmove(
                self._queue_name,
                self._processing_name,
                max(1, int(timeout)),
                "RIGHT",
                "LEFT",
            )
        if raw is None:
            return None

        try:
            item = RewardWorkItem.from_payload(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Dropping malformed reward work item", queue=self._queue_name, payload=raw, error=str(exc))
            await self._redis.lrem(self._processing_name, 1, raw)
            return None
        self._in_flight[item] = raw
        return item

    async def ack(self, item: RewardWorkItem) -> None:
        raw = self._in_flight.pop(item, None) or json.dumps(item.to_payload())
        await self._redis.lrem(self._processing_name, 1, raw)

    async def recover(self) -> int:
        """Move items left in the processing list back onto the queue, oldest served first."""

        moved = 0
        while await self._redis.lmove(self._processing_name, self._queue_name, "LEFT", "RIGHT") is not None:
            moved += 1
        self._in_flight.clear()
        if moved:
            logger.warning("Requeued unacknowledged reward work items", queue=self._queue_name, count=moved)
        return moved

    async def is_available(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception as exc:
            logger.warning("Reward pipeline redis unavailable", error=str(exc))
            return False

    async def stats(self) -> dict[str, Any]:
        try:
            depth = int(await self._redis.llen(self._queue_name))
            in_flight = int(await self._redis.llen(self._processing_name))
        except Exception as exc:
            return {"backend": self.name, "queue": self._queue_name, "connected": False, "error": str(exc)}
        return {"backend": self.name, "queue": self._queue_name, "depth": depth, "in_flight": in_flight, "connected": True}


class CeleryRewardPipeline:
    """Hands work items to the Celery task; Celery workers are the consumers."""

    name = "celery"

    def __init__(self, *, queue_name: str, task: Any | None = None, app: Any | None = None) -> None:
        self._queue_name = queue_name
        self._task = task
        self._app = app

    def _resolve_task(self) -> Any:
        if self._task is None:
            from rewards_api.celery_tasks.rewards import evaluate_purchase_rewards_task  # noqa: WPS433

            self._task = evaluate_purchase_rewards_task
        return self._task

    def _resolve_app(self) -> Any:
        if self._app is None:
            from rewards_api.celery_app import celery_app  # noqa: WPS433

            self._app = celery_app
        return self._app

    async def enqueue(self, item: RewardWorkItem) -> None:
        task = self._resolve_task()
        await asyncio.to_thread(task.apply_async, kwargs=item.to_payload(), queue=self._queue_name)
        logger.debug("Dispatched reward evaluation task", queue=self._queue_name, **item.to_payload())

    async def consume(self, timeout: float | None = None) -> RewardWorkItem | None:
        raise NotImplementedError("Celery workers consume reward evaluations directly")

    async def ack(self, item: RewardWorkItem) -> None:
        # Celery acknowledges the task message itself (acks_late).
        return None

    async def recover(self) -> int:
        return 0

    async def is_available(self) -> bool:
        app = self._resolve_app()

        def _probe() -> None:
            with app.connection_for_write() as connection:
                connection.ensure_connection(max_retries=1)

        try:
            await asyncio.to_thread(_probe)
        except Exception as exc:
            logger.warning("Reward pipeline broker unavailable", error=str(exc))
            return False
        return True

    async def stats(self) -> dict[str, Any]:
        return {
            "backend": self.name,
            "queue": self._queue_name,
            "depth": None,
            "connected": await self.is_available(),
        }


def build_pipeline(settings: Settings, *, redis_client: Redis | None = None) -> RewardPipeline:
    backend = settings.reward_pipeline_backend
    if backend == "redis":
        return RedisRewardPipeline(
            redis_client,
            redis_url=settings.redis_url,
            queue_name=settings.reward_pipeline_queue_name,
        )
    if backend == "memory":
        return InMemoryRewardPipeline()
    return CeleryRewardPipeline(queue_name=settings.reward_evaluation_task_queue)


__all__ = [
    "CeleryRewardPipeline",
    "InMemoryRewardPipeline",
    "RedisRewardPipeline",
    "RewardPipeline",
    "RewardWorkItem",
    "build_pipeline",
]
