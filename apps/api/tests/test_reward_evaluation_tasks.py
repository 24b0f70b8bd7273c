from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from rewards_api.models.events import RewardEvaluationFailure
from rewards_api.models.rewards import BadgeDefinition
from rewards_api.models.user import User
from rewards_api.services.rewards.broadcast import InMemoryBroadcaster
from rewards_api.services.rewards.config import RewardsConfig
from rewards_api.services.rewards.errors import RewardsNotFoundError
from rewards_api.services.rewards.pipeline import RewardWorkItem
from rewards_api.services.rewards.processor import TransactionProcessor
from rewards_api.tasks import reward_evaluation as reward_evaluation_tasks
from rewards_api.tasks.reward_evaluation import (
    evaluate_purchase_rewards,
    record_evaluation_failure,
    run_manual_unlock,
)


@pytest.mark.asyncio
async def test_evaluation_summary_lists_unlocked_badges(session_factory, member) -> None:
    async with session_factory() as session:
        badge = BadgeDefinition(slug="bronze", name="Bronze Member", tier=1, requirements={"points_minimum": 100})
        session.add(badge)
        await session.commit()

    async with session_factory() as session:
        transaction = await TransactionProcessor(session, config=RewardsConfig()).process_purchase(member, "12.00")

    summary = await evaluate_purchase_rewards(
        RewardWorkItem(user_id=member, transaction_id=transaction.id),
        session_factory=session_factory,
        broadcaster=InMemoryBroadcaster(),
    )

    assert summary["unlocked"] == 1
    assert summary["badges"] == [str(badge.id)]
    assert summary["achievements"] == []
    assert summary["transactionId"] == str(transaction.id)


@pytest.mark.asyncio
async def test_transaction_of_another_user_is_not_found(session_factory, member) -> None:
    async with session_factory() as session:
        other = User(email="other@example.com")
        session.add(other)
        await session.commit()

    async with session_factory() as session:
        transaction = await TransactionProcessor(session, config=RewardsConfig()).process_purchase(other.id, Decimal("5"))

    with pytest.raises(RewardsNotFoundError):
        await evaluate_purchase_rewards(
            RewardWorkItem(user_id=member, transaction_id=transaction.id),
            session_factory=session_factory,
            broadcaster=InMemoryBroadcaster(),
        )


@pytest.mark.asyncio
async def test_missing_user_is_not_found(session_factory) -> None:
    with pytest.raises(RewardsNotFoundError):
        await evaluate_purchase_rewards(
            RewardWorkItem(user_id=uuid4(), transaction_id=uuid4()),
            session_factory=session_factory,
            broadcaster=InMemoryBroadcaster(),
        )


@pytest.mark.asyncio
async def test_manual_unlock_runs_without_a_purchase(session_factory, member) -> None:
    async with session_factory() as session:
        session.add(BadgeDefinition(slug="bronze", name="Bronze Member", tier=1, requirements={"points_minimum": 100}))
        await session.commit()

    async with session_factory() as session:
        await TransactionProcessor(session, config=RewardsConfig()).award_points(member, 100, reason="migration")

    broadcaster = InMemoryBroadcaster()
    summary = await run_manual_unlock(member, session_factory=session_factory, broadcaster=broadcaster)

    assert summary["trigger"] == "manual"
    assert summary["unlocked"] == 1
    assert broadcaster.published[0].name == "Bronze Member"


@pytest.mark.asyncio
async def test_failure_record_keeps_error_details(session_factory) -> None:
    item = RewardWorkItem(user_id=uuid4(), transaction_id=uuid4())
    await record_evaluation_failure(
        item,
        attempts=3,
        error=RuntimeError("x" * 5000),
        backend="redis",
        session_factory=session_factory,
    )

    async with session_factory() as session:
        failure = (await session.execute(select(RewardEvaluationFailure))).scalar_one()

    assert failure.error_type == "RuntimeError"
    assert len(failure.error_message) == 2000
    assert failure.backend == "redis"


class ClosingBroadcaster(InMemoryBroadcaster):
    closed: int = 0

    async def aclose(self) -> None:
        self.closed += 1


@pytest.mark.asyncio
async def test_broadcaster_built_from_settings_is_closed(session_factory, member, monkeypatch) -> None:
    built: list[ClosingBroadcaster] = []

    def fake_build_broadcaster(settings):
        broadcaster = ClosingBroadcaster()
        built.append(broadcaster)
        return broadcaster

    monkeypatch.setattr(reward_evaluation_tasks, "build_broadcaster", fake_build_broadcaster)

    async with session_factory() as session:
        transaction = await TransactionProcessor(session, config=RewardsConfig()).process_purchase(member, "5.00")

    await evaluate_purchase_rewards(
        RewardWorkItem(user_id=member, transaction_id=transaction.id),
        session_factory=session_factory,
    )
    await run_manual_unlock(member, session_factory=session_factory)

    assert [broadcaster.closed for broadcaster in built] == [1, 1]


@pytest.mark.asyncio
async def test_caller_supplied_broadcaster_stays_open(session_factory, member) -> None:
    broadcaster = ClosingBroadcaster()

    await run_manual_unlock(member, session_factory=session_factory, broadcaster=broadcaster)

    assert broadcaster.closed == 0
