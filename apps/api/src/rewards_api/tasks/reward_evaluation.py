"""Reward evaluation entry helpers.

Celery tasks, the in-process pull worker and the operator CLI all run reward
evaluation through these helpers so the lookup / unlock / failure-recording
steps behave the same regardless of which transport delivered the work item.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.core.settings import settings
from rewards_api.db.session import async_session, worker_session_factory
from rewards_api.models.events import RewardEvaluationFailure
from rewards_api.models.transaction import RewardTransaction
from rewards_api.models.user import User
from rewards_api.services.rewards.broadcast import AchievementUnlocked, Broadcaster, build_broadcaster
from rewards_api.services.rewards.errors import RewardsNotFoundError, TransientStorageError
from rewards_api.services.rewards.pipeline import RewardWorkItem
from rewards_api.services.rewards.unlocks import UnlockCoordinator

SessionFactory = Callable[[], AsyncSession]


def _summarize(user_id: UUID, events: list[Any], **extra: Any) -> dict[str, Any]:
    achievements = [str(event.achievement_id) for event in events if isinstance(event, AchievementUnlocked)]
    badges = [str(event.badge_id) for event in events if not isinstance(event, AchievementUnlocked)]
    return {
        "userId": str(user_id),
        **extra,
        "unlocked": len(events),
        "achievements": achievements,
        "badges": badges,
    }


@asynccontextmanager
async def _broadcaster_scope(broadcaster: Broadcaster | None) -> AsyncIterator[Broadcaster]:
    """Yield the caller's broadcaster, or build one from settings and close it afterwards."""

    if broadcaster is not None:
        yield broadcaster
        return

    owned = build_broadcaster(settings)
    try:
        yield owned
    finally:
        close = getattr(owned, "aclose", None)
        if close is not None:
            await close()


async def _require_user(session: AsyncSession, user_id: UUID) -> User:
    try:
        user = await session.get(User, user_id)
    except DBAPIError as exc:
        raise TransientStorageError(f"Could not load user {user_id}") from exc
    if user is None:
        raise RewardsNotFoundError(f"User {user_id} not found")
    return user


async def evaluate_purchase_rewards(
    item: RewardWorkItem,
    *,
    session_factory: SessionFactory | None = None,
    broadcaster: Broadcaster | None = None,
) -> dict[str, Any]:
    """Evaluate and unlock rewards for the purchase referenced by ``item``.

    Raises ``RewardsNotFoundError`` when the user or transaction is gone (the
    caller drops the item) and lets every other failure propagate so the
    caller's retry policy applies.
    """

    factory = session_factory or async_session
    async with factory() as session:
        await _require_user(session, item.user_id)
        try:
            transaction = await session.get(RewardTransaction, item.transaction_id)
        except DBAPIError as exc:
            raise TransientStorageError(f"Could not load transaction {item.transaction_id}") from exc
        if transaction is None or transaction.user_id != item.user_id:
            raise RewardsNotFoundError(
                f"Transaction {item.transaction_id} not found for user {item.user_id}"
            )

    async with _broadcaster_scope(broadcaster) as active:
        events = await UnlockCoordinator(factory, broadcaster=active).unlock_all(item.user_id)
    summary = _summarize(item.user_id, events, transactionId=str(item.transaction_id))
    logger.bind(summary=summary).info("Reward evaluation completed")
    return summary


async def run_manual_unlock(
    user_id: UUID,
    *,
    session_factory: SessionFactory | None = None,
    broadcaster: Broadcaster | None = None,
) -> dict[str, Any]:
    """Unlock pass outside of a purchase (operator or simulated unlock)."""

    factory = session_factory or async_session
    async with factory() as session:
        await _require_user(session, user_id)

    async with _broadcaster_scope(broadcaster) as active:
        events = await UnlockCoordinator(factory, broadcaster=active).unlock_all(user_id)
    summary = _summarize(user_id, events, trigger="manual")
    logger.bind(summary=summary).info("Manual unlock pass completed")
    return summary


async def record_evaluation_failure(
    item: RewardWorkItem,
    *,
    attempts: int,
    error: BaseException | None,
    backend: str,
    session_factory: SessionFactory | None = None,
) -> None:
    factory = session_factory or async_session
    async with factory() as session:
        session.add(
            RewardEvaluationFailure(
                user_id=item.user_id,
                transaction_id=item.transaction_id,
                attempts=attempts,
                error_type=type(error).__name__ if error is not None else None,
                error_message=str(error)[:2000] if error is not None else None,
                backend=backend,
            )
        )
        await session.commit()
    logger.error(
        "Reward evaluation exhausted retries",
        user_id=str(item.user_id),
        transaction_id=str(item.transaction_id),
        attempts=attempts,
        backend=backend,
        error=str(error) if error is not None else None,
    )


def evaluate_purchase_rewards_sync(user_id: str | UUID, transaction_id: str | UUID) -> dict[str, Any]:
    """Convenience wrapper so Celery/cron integrations can call the async helper."""

    item = RewardWorkItem(user_id=UUID(str(user_id)), transaction_id=UUID(str(transaction_id)))

    async def _run() -> dict[str, Any]:
        async with worker_session_factory() as factory:
            return await evaluate_purchase_rewards(item, session_factory=factory)

    return asyncio.run(_run())


def record_evaluation_failure_sync(
    user_id: str | UUID,
    transaction_id: str | UUID,
    *,
    attempts: int,
    error: BaseException | None,
    backend: str = "celery",
) -> None:
    item = RewardWorkItem(user_id=UUID(str(user_id)), transaction_id=UUID(str(transaction_id)))

    async def _run() -> None:
        async with worker_session_factory() as factory:
            await record_evaluation_failure(
                item,
                attempts=attempts,
                error=error,
                backend=backend,
                session_factory=factory,
            )

    asyncio.run(_run())


__all__ = [
    "evaluate_purchase_rewards",
    "evaluate_purchase_rewards_sync",
    "record_evaluation_failure",
    "record_evaluation_failure_sync",
    "run_manual_unlock",
]
