"""In-process worker draining pull-based reward pipelines (redis, memory)."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from loguru import logger

from rewards_api.observability.rewards import RewardsObservabilityStore, get_rewards_store
from rewards_api.services.rewards.broadcast import Broadcaster
from rewards_api.services.rewards.config import RewardsConfig
from rewards_api.services.rewards.errors import RewardsNotFoundError
from rewards_api.services.rewards.pipeline import RewardPipeline, RewardWorkItem
from rewards_api.tasks.reward_evaluation import (
    SessionFactory,
    evaluate_purchase_rewards,
    record_evaluation_failure,
)

Handler = Callable[[RewardWorkItem], Awaitable[Any]]
FailureRecorder = Callable[..., Awaitable[None]]


class RewardEvaluationWorker:
    """Consumes work items and evaluates rewards with bounded, fixed-backoff retries."""

    def __init__(
        self,
        pipeline: RewardPipeline,
        *,
        session_factory: SessionFactory,
        config: RewardsConfig,
        broadcaster: Broadcaster | None = None,
        handler: Handler | None = None,
        failure_recorder: FailureRecorder | None = None,
        poll_timeout_seconds: float = 5.0,
        batch_size: int = 25,
        observability: RewardsObservabilityStore | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._pipeline = pipeline
        self._session_factory = session_factory
        self._config = config
        self._broadcaster = broadcaster
        self._handler = handler or self._evaluate
        self._failure_recorder = failure_recorder or self._record_failure
        self.poll_timeout_seconds = poll_timeout_seconds
        self._batch_size = batch_size
        self._observability = observability or get_rewards_store()
        self._sleep = sleep
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Reward evaluation worker started",
            backend=self._pipeline.name,
            batch_size=self._batch_size,
            max_attempts=self._config.max_attempts,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Reward evaluation worker stopped")

    async def run_once(self) -> dict[str, int]:
        """Drain up to one batch of queued items without blocking."""

        summary = {"processed": 0, "succeeded": 0, "dropped": 0, "failed": 0}
        for _ in range(self._batch_size):
            item = await self._pipeline.consume(timeout=None)
            if item is None:
                break
            summary["processed"] += 1
            outcome = await self.process_item(item)
            summary[outcome] += 1
        return summary

    async def process_item(self, item: RewardWorkItem) -> str:
        """Run one work item to a terminal outcome, then acknowledge it.

        Returns ``succeeded``, ``dropped`` or ``failed``. Until the ack lands the
        pipeline still holds the item, so a worker killed mid-evaluation (or
        mid-backoff) leaves it for :meth:`recover_in_flight` to redeliver.
        """

        outcome = await self._attempt(item)
        try:
            await self._pipeline.ack(item)
        except Exception as exc:
            logger.exception(
                "Could not acknowledge reward work item",
                user_id=str(item.user_id),
                transaction_id=str(item.transaction_id),
                outcome=outcome,
                error=str(exc),
            )
        return outcome

    async def recover_in_flight(self) -> int:
        return await self._pipeline.recover()

    async def _attempt(self, item: RewardWorkItem) -> str:
        last_error: BaseException | None = None
        max_attempts = self._config.max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                await asyncio.wait_for(self._handler(item), timeout=self._config.timeout_seconds)
            except RewardsNotFoundError as exc:
                self._observability.record_pipeline("dropped")
                logger.warning(
                    "Dropping reward evaluation for missing rows",
                    user_id=str(item.user_id),
                    transaction_id=str(item.transaction_id),
                    error=str(exc),
                )
                return "dropped"
            except asyncio.TimeoutError as exc:
                last_error = exc
                logger.warning(
                    "Reward evaluation timed out",
                    user_id=str(item.user_id),
                    transaction_id=str(item.transaction_id),
                    attempt=attempt,
                    timeout_seconds=self._config.timeout_seconds,
                )
            except Exception as exc:
                last_error = exc
                logger.exception(
                    "Reward evaluation attempt failed",
                    user_id=str(item.user_id),
                    transaction_id=str(item.transaction_id),
                    attempt=attempt,
                    error=str(exc),
                )
            else:
                self._observability.record_pipeline("processed")
                return "succeeded"

            if attempt < max_attempts:
                self._observability.record_pipeline("retried")
                await self._sleep(self._config.backoff_seconds)

        self._observability.record_pipeline("failed")
        try:
            await self._failure_recorder(
                item,
                attempts=max_attempts,
                error=last_error,
                backend=self._pipeline.name,
            )
        except Exception as exc:  # pragma: no cover - defensive logging
            logger.exception(
                "Could not record reward evaluation failure",
                user_id=str(item.user_id),
                transaction_id=str(item.transaction_id),
                error=str(exc),
            )
        return "failed"

    async def _run_loop(self) -> None:
        try:
            await self.recover_in_flight()
        except Exception as exc:
            logger.exception("Could not requeue in-flight reward work items", error=str(exc))
        while not self._stop_event.is_set():
            try:
                summary = await self.run_once()
                if summary["processed"]:
                    logger.info("Reward evaluation worker iteration", summary=summary)
            except Exception as exc:  # pragma: no cover - defensive logging
                logger.exception("Reward evaluation worker iteration failed", error=str(exc))
                summary = {"processed": 0}
            if summary["processed"]:
                continue
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_timeout_seconds)
            except asyncio.TimeoutError:
                continue

    async def _evaluate(self, item: RewardWorkItem) -> dict[str, Any]:
        return await evaluate_purchase_rewards(
            item,
            session_factory=self._session_factory,
            broadcaster=self._broadcaster,
        )

    async def _record_failure(self, item: RewardWorkItem, **kwargs: Any) -> None:
        await record_evaluation_failure(item, session_factory=self._session_factory, **kwargs)


__all__ = ["RewardEvaluationWorker"]
