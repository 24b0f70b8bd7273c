from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest
from sqlalchemy import select

from rewards_api.models.ledger import PointBalance
from rewards_api.services.rewards.errors import InsufficientBalanceError, InvalidAmountError
from rewards_api.services.rewards.ledger import LedgerService


@pytest.mark.asyncio
async def test_credit_creates_balance_lazily(session_factory, member) -> None:
    async with session_factory() as session:
        ledger = LedgerService(session)
        snapshot = await ledger.credit(member, 250)
        await session.commit()

    assert snapshot.available == 250
    assert snapshot.total_earned == 250
    assert snapshot.total_redeemed == 0

    async with session_factory() as session:
        rows = (await session.execute(select(PointBalance))).scalars().all()
        assert len(rows) == 1
        assert rows[0].user_id == member


@pytest.mark.asyncio
async def test_credit_accumulates_on_existing_row(session_factory, member) -> None:
    async with session_factory() as session:
        ledger = LedgerService(session)
        await ledger.credit(member, 100)
        await ledger.credit(member, 0)
        snapshot = await ledger.credit(member, 40)
        await session.commit()

    assert snapshot.available == 140
    assert snapshot.total_earned == 140


@pytest.mark.asyncio
async def test_negative_credit_is_rejected(session_factory, member) -> None:
    async with session_factory() as session:
        ledger = LedgerService(session)
        with pytest.raises(InvalidAmountError):
            await ledger.credit(member, -1)

        balance = await ledger.balance(member)
        assert balance.available == 0


@pytest.mark.asyncio
async def test_debit_keeps_available_consistent(session_factory, member) -> None:
    async with session_factory() as session:
        ledger = LedgerService(session)
        await ledger.credit(member, 500)
        snapshot = await ledger.debit(member, 120)
        await session.commit()

    assert snapshot.available == 380
    assert snapshot.total_redeemed == 120
    assert snapshot.available == snapshot.total_earned - snapshot.total_redeemed


@pytest.mark.asyncio
async def test_debit_beyond_balance_leaves_row_untouched(session_factory, member) -> None:
    async with session_factory() as session:
        ledger = LedgerService(session)
        await ledger.credit(member, 75)
        await session.commit()

        with pytest.raises(InsufficientBalanceError) as excinfo:
            await ledger.debit(member, 76)

        assert excinfo.value.requested == 76
        assert excinfo.value.available == 75

        balance = await ledger.balance(member)
        assert balance.available == 75
        assert balance.total_redeemed == 0


@pytest.mark.asyncio
async def test_debit_without_history_is_insufficient(session_factory, member) -> None:
    async with session_factory() as session:
        ledger = LedgerService(session)
        with pytest.raises(InsufficientBalanceError):
            await ledger.debit(member, 1)


@pytest.mark.asyncio
async def test_balance_for_unknown_user_is_zero(session_factory) -> None:
    stranger = uuid4()
    async with session_factory() as session:
        balance = await LedgerService(session).balance(stranger)

    assert balance.user_id == stranger
    assert (balance.available, balance.total_earned, balance.total_redeemed) == (0, 0, 0)


@pytest.mark.asyncio
async def test_concurrent_debits_cannot_overspend(file_session_factory, file_member) -> None:
    async with file_session_factory() as session:
        await LedgerService(session).credit(file_member, 100)
        await session.commit()

    async def debit_once() -> bool:
        async with file_session_factory() as session:
            try:
                await LedgerService(session).debit(file_member, 100)
            except InsufficientBalanceError:
                await session.rollback()
                return False
            await session.commit()
            return True

    results = await asyncio.gather(debit_once(), debit_once())

    assert sorted(results) == [False, True]
    async with file_session_factory() as session:
        balance = await LedgerService(session).balance(file_member)
    assert (balance.available, balance.total_earned, balance.total_redeemed) == (0, 100, 100)
