"""Points ledger: the only writer of ``PointBalance`` rows."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.models.ledger import PointBalance
from rewards_api.services.rewards.errors import (
    InsufficientBalanceError,
    InvalidAmountError,
    TransientStorageError,
)


@dataclass(frozen=True)
class BalanceSnapshot:
    """Read-only view of a user's balance."""

    user_id: UUID
    available: int
    total_earned: int
    total_redeemed: int

    @classmethod
    def zero(cls, user_id: UUID) -> "BalanceSnapshot":
        return cls(user_id=user_id, available=0, total_earned=0, total_redeemed=0)

    @classmethod
    def from_row(cls, row: PointBalance) -> "BalanceSnapshot":
        return cls(
            user_id=row.user_id,
            available=int(row.available or 0),
            total_earned=int(row.total_earned or 0),
            total_redeemed=int(row.total_redeemed or 0),
        )


class LedgerService:
    """Atomic credit/debit over per-user balances.

    The service flushes but never commits: the caller owns the transaction so
    a purchase row and its credit land in the same atomic unit. Every mutation
    is a single ``UPDATE`` whose arithmetic runs in the database, and a debit
    carries its sufficiency check in the ``WHERE`` clause, so concurrent
    writers for the same user serialize on the row.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def credit(self, user_id: UUID, points: int) -> BalanceSnapshot:
        if points < 0:
            raise InvalidAmountError(f"Cannot credit a negative amount of points ({points})")

        try:
            await self._insert_zero_balance(user_id)
            stmt = (
                update(PointBalance)
                .where(PointBalance.user_id == user_id)
                .values(
                    available=PointBalance.available + points,
                    total_earned=PointBalance.total_earned + points,
                )
                .execution_options(synchronize_session=False)
            )
            await self._db.execute(stmt)
            balance = await self._reload(user_id)
        except DBAPIError as exc:
            raise TransientStorageError(f"Ledger credit failed for user {user_id}") from exc

        if balance is None:
            raise TransientStorageError(f"Balance row for user {user_id} vanished during credit")

        logger.debug("Credited points", user_id=str(user_id), points=points, available=balance.available)
        return BalanceSnapshot.from_row(balance)

    async def debit(self, user_id: UUID, points: int) -> BalanceSnapshot:
        if points < 0:
            raise InvalidAmountError(f"Cannot debit a negative amount of points ({points})")

        stmt = (
            update(PointBalance)
            .where(PointBalance.user_id == user_id, PointBalance.available >= points)
            .values(
                available=PointBalance.available - points,
                total_redeemed=PointBalance.total_redeemed + points,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._db.execute(stmt)
            balance = await self._reload(user_id)
        except DBAPIError as exc:
            raise TransientStorageError(f"Ledger debit failed for user {user_id}") from exc

        if result.rowcount == 0 or balance is None:
            available = int(balance.available or 0) if balance is not None else 0
            raise InsufficientBalanceError(user_id, requested=points, available=available)

        logger.debug("Debited points", user_id=str(user_id), points=points, available=balance.available)
        return BalanceSnapshot.from_row(balance)

    async def balance(self, user_id: UUID) -> BalanceSnapshot:
        stmt = select(PointBalance).where(PointBalance.user_id == user_id)
        result = await self._db.execute(stmt)
        row = result.scalar_one_or_none()
        if row is None:
            return BalanceSnapshot.zero(user_id)
        return BalanceSnapshot.from_row(row)

    async def _reload(self, user_id: UUID) -> PointBalance | None:
        stmt = (
            select(PointBalance)
            .where(PointBalance.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _insert_zero_balance(self, user_id: UUID) -> None:
        """Create the balance row if absent without disturbing the open transaction."""

        dialect = self._db.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = (
            insert(PointBalance)
            .values(user_id=user_id, available=0, total_earned=0, total_redeemed=0)
            .on_conflict_do_nothing(index_elements=[PointBalance.user_id])
        )
        await self._db.execute(stmt)


__all__ = ["BalanceSnapshot", "LedgerService"]
