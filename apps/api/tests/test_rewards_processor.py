from __future__ import annotations

import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from rewards_api.models.events import RewardEvent, RewardEventType
from rewards_api.models.ledger import PointBalance
from rewards_api.models.transaction import RewardTransaction, TransactionStatus, TransactionType
from rewards_api.services.rewards.config import RewardsConfig
from rewards_api.services.rewards.errors import InvalidAmountError, RewardsNotFoundError
from rewards_api.services.rewards.pipeline import InMemoryRewardPipeline, RewardWorkItem
from rewards_api.services.rewards.processor import TransactionProcessor, compute_points


class BrokenPipeline:
    name = "broken"

    async def enqueue(self, item: RewardWorkItem) -> None:
        raise ConnectionError("broker unreachable")


def test_points_are_floored() -> None:
    assert compute_points(Decimal("100.00"), Decimal("10")) == 1000
    assert compute_points(Decimal("9.99"), Decimal("10")) == 99
    assert compute_points(Decimal("0.05"), Decimal("10")) == 0
    assert compute_points(Decimal("10.00"), Decimal("1.5")) == 15


@pytest.mark.asyncio
async def test_purchase_credits_points_synchronously_and_enqueues(session_factory, member, reset_rewards_store) -> None:
    pipeline = InMemoryRewardPipeline()
    async with session_factory() as session:
        processor = TransactionProcessor(session, config=RewardsConfig(), pipeline=pipeline)
        transaction = await processor.process_purchase(member, Decimal("100.00"), metadata={"order": "A-100"})
        balance = await processor.balance(member)

    assert transaction.points_earned == 1000
    assert transaction.transaction_type == TransactionType.PURCHASE
    assert transaction.status == TransactionStatus.COMPLETED
    assert transaction.metadata_json["order"] == "A-100"
    assert transaction.metadata_json["points_rate"] == "10"
    assert "processed_at" in transaction.metadata_json
    assert balance.available == 1000

    queued = await pipeline.consume()
    assert queued == RewardWorkItem(user_id=member, transaction_id=transaction.id)
    assert reset_rewards_store.snapshot().pipeline == {"enqueued": 1}


@pytest.mark.asyncio
async def test_rate_comes_from_config(session_factory, member) -> None:
    async with session_factory() as session:
        processor = TransactionProcessor(session, config=RewardsConfig(points_per_currency_unit=Decimal("2")))
        transaction = await processor.process_purchase(member, "12.75")

    assert transaction.points_earned == 25


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5, "0.00", "0.001", "0.009", "NaN", "Infinity", "abc"])
async def test_invalid_amount_writes_nothing(session_factory, member, amount) -> None:
    async with session_factory() as session:
        processor = TransactionProcessor(session, config=RewardsConfig(), pipeline=InMemoryRewardPipeline())
        with pytest.raises(InvalidAmountError):
            await processor.process_purchase(member, amount)

    async with session_factory() as session:
        assert (await session.execute(select(RewardTransaction))).scalars().all() == []
        assert (await session.execute(select(PointBalance))).scalars().all() == []


@pytest.mark.asyncio
async def test_unknown_user_is_rejected(session_factory) -> None:
    async with session_factory() as session:
        processor = TransactionProcessor(session, config=RewardsConfig())
        with pytest.raises(RewardsNotFoundError):
            await processor.process_purchase(uuid4(), Decimal("10"))


@pytest.mark.asyncio
async def test_enqueue_failure_keeps_purchase(session_factory, member, reset_rewards_store) -> None:
    async with session_factory() as session:
        processor = TransactionProcessor(session, config=RewardsConfig(), pipeline=BrokenPipeline())
        transaction = await processor.process_purchase(member, Decimal("20.00"))

    async with session_factory() as session:
        stored = await session.get(RewardTransaction, transaction.id)
        balance = (await session.execute(select(PointBalance))).scalar_one()

    assert stored is not None
    assert balance.available == 200
    assert reset_rewards_store.snapshot().pipeline == {"enqueue_failed": 1}


@pytest.mark.asyncio
async def test_replayed_external_reference_is_idempotent(session_factory, member) -> None:
    pipeline = InMemoryRewardPipeline()
    async with session_factory() as session:
        processor = TransactionProcessor(session, config=RewardsConfig(), pipeline=pipeline)
        first = await processor.process_purchase(member, Decimal("30.00"), external_ref="pay_123")
        replay = await processor.process_purchase(member, Decimal("30.00"), external_ref="pay_123")
        balance = await processor.balance(member)

    assert replay.id == first.id
    assert balance.available == 300
    assert (await pipeline.stats())["depth"] == 1


@pytest.mark.asyncio
async def test_redeem_points_records_audit_trail(session_factory, member) -> None:
    async with session_factory() as session:
        processor = TransactionProcessor(session, config=RewardsConfig(), pipeline=InMemoryRewardPipeline())
        await processor.process_purchase(member, Decimal("50.00"))
        assert await processor.redeem_points(member, 200) is True
        balance = await processor.balance(member)

    assert (balance.available, balance.total_earned, balance.total_redeemed) == (300, 500, 200)

    async with session_factory() as session:
        redemption = (
            await session.execute(
                select(RewardTransaction).where(RewardTransaction.transaction_type == TransactionType.REDEMPTION)
            )
        ).scalar_one()
        event = (await session.execute(select(RewardEvent))).scalar_one()

    assert redemption.points_earned == -200
    assert redemption.amount == Decimal("0")
    assert redemption.metadata_json["points_redeemed"] == 200
    assert event.event_type == RewardEventType.POINTS_REDEEMED


@pytest.mark.asyncio
async def test_redeem_more_than_balance_returns_false(session_factory, member, reset_rewards_store) -> None:
    async with session_factory() as session:
        processor = TransactionProcessor(session, config=RewardsConfig(), pipeline=InMemoryRewardPipeline())
        await processor.process_purchase(member, Decimal("10.00"))
        before = await processor.balance(member)
        assert await processor.redeem_points(member, before.available + 1) is False
        after = await processor.balance(member)

    assert after == before
    assert reset_rewards_store.snapshot().ledger["redemptions_declined"] == 1

    async with session_factory() as session:
        redemptions = (
            await session.execute(
                select(RewardTransaction).where(RewardTransaction.transaction_type == TransactionType.REDEMPTION)
            )
        ).scalars().all()
    assert redemptions == []


@pytest.mark.asyncio
async def test_redeem_requires_positive_points(session_factory, member) -> None:
    async with session_factory() as session:
        processor = TransactionProcessor(session, config=RewardsConfig())
        with pytest.raises(InvalidAmountError):
            await processor.redeem_points(member, 0)


@pytest.mark.asyncio
async def test_award_points_credits_without_purchase(session_factory, member) -> None:
    pipeline = InMemoryRewardPipeline()
    async with session_factory() as session:
        processor = TransactionProcessor(session, config=RewardsConfig(), pipeline=pipeline)
        balance = await processor.award_points(member, 150, reason="birthday bonus")

    assert balance.available == 150
    assert balance.total_earned == 150
    assert (await pipeline.stats())["depth"] == 0

    async with session_factory() as session:
        event = (await session.execute(select(RewardEvent))).scalar_one()
        purchases = (await session.execute(select(RewardTransaction))).scalars().all()

    assert event.event_type == RewardEventType.POINTS_AWARDED
    assert event.payload_json == {"points": 150, "reason": "birthday bonus"}
    assert purchases == []


@pytest.mark.asyncio
async def test_amount_is_floored_to_cents_before_points(session_factory, member) -> None:
    async with session_factory() as session:
        processor = TransactionProcessor(session, config=RewardsConfig(), pipeline=InMemoryRewardPipeline())
        transaction = await processor.process_purchase(member, "10.019")

    assert transaction.amount == Decimal("10.01")
    assert transaction.points_earned == 100

    async with session_factory() as session:
        stored = (await session.execute(select(RewardTransaction))).scalar_one()
    assert stored.amount == Decimal("10.01")


@pytest.mark.asyncio
async def test_concurrent_redemptions_never_spend_twice(file_session_factory, file_member) -> None:
    async with file_session_factory() as session:
        processor = TransactionProcessor(session, config=RewardsConfig(), pipeline=InMemoryRewardPipeline())
        await processor.process_purchase(file_member, Decimal("10.00"))

    async def redeem() -> bool:
        async with file_session_factory() as session:
            return await TransactionProcessor(session, config=RewardsConfig()).redeem_points(file_member, 100)

    results = await asyncio.gather(redeem(), redeem())

    assert sorted(results) == [False, True]
    async with file_session_factory() as session:
        balance = await TransactionProcessor(session, config=RewardsConfig()).balance(file_member)
        redemptions = (
            await session.execute(
                select(RewardTransaction).where(RewardTransaction.transaction_type == TransactionType.REDEMPTION)
            )
        ).scalars().all()

    assert (balance.available, balance.total_earned, balance.total_redeemed) == (0, 100, 100)
    assert len(redemptions) == 1
