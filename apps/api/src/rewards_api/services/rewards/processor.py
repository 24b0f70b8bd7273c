"""Purchase recording, redemption and point awards."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.models.events import RewardEvent, RewardEventType
from rewards_api.models.transaction import RewardTransaction, TransactionStatus, TransactionType
from rewards_api.models.user import User
from rewards_api.observability.rewards import RewardsObservabilityStore, get_rewards_store
from rewards_api.observability.tracing import get_tracer
from rewards_api.services.rewards.config import RewardsConfig
from rewards_api.services.rewards.errors import (
    InsufficientBalanceError,
    InvalidAmountError,
    RewardsNotFoundError,
    TransientStorageError,
)
from rewards_api.services.rewards.ledger import BalanceSnapshot, LedgerService
from rewards_api.services.rewards.pipeline import RewardPipeline, RewardWorkItem


def compute_points(amount: Decimal, rate: Decimal) -> int:
    """Points for a purchase, floored so fractional points are never credited."""

    return int((amount * rate).to_integral_value(rounding=ROUND_FLOOR))


AMOUNT_QUANTUM = Decimal("0.01")


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    """Parse ``amount`` and floor it to the stored precision (cents)."""

    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmountError(f"Purchase amount {amount!r} is not a number") from exc
    if not value.is_finite():
        raise InvalidAmountError(f"Purchase amount must be positive, got {amount!r}")
    try:
        value = value.quantize(AMOUNT_QUANTUM, rounding=ROUND_FLOOR)
    except InvalidOperation as exc:
        raise InvalidAmountError(f"Purchase amount {amount!r} is out of range") from exc
    if value <= 0:
        raise InvalidAmountError(f"Purchase amount must be at least {AMOUNT_QUANTUM}, got {amount!r}")
    return value


class TransactionProcessor:
    """Records purchases and redemptions against the points ledger.

    Points are credited synchronously in the same transaction as the purchase
    row. Reward evaluation is queued after commit and may lag behind.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        config: RewardsConfig,
        pipeline: RewardPipeline | None = None,
        observability: RewardsObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._config = config
        self._pipeline = pipeline
        self._ledger = LedgerService(db_session)
        self._observability = observability or get_rewards_store()

    @property
    def ledger(self) -> LedgerService:
        return self._ledger

    async def process_purchase(
        self,
        user_id: UUID,
        amount: Decimal | int | float | str,
        external_ref: str | None = None,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> RewardTransaction:
        value = _coerce_amount(amount)

        with get_tracer().start_as_current_span("rewards.process_purchase") as span:
            span.set_attribute("rewards.user_id", str(user_id))
            await self._require_user(user_id)

            if external_ref:
                existing = await self._find_by_external_ref(user_id, external_ref)
                if existing is not None:
                    logger.info(
                        "Purchase already recorded for external reference",
                        user_id=str(user_id),
                        external_ref=external_ref,
                        transaction_id=str(existing.id),
                    )
                    return existing

            rate = self._config.points_per_currency_unit
            points = compute_points(value, rate)
            transaction = RewardTransaction(
                user_id=user_id,
                amount=value,
                points_earned=points,
                transaction_type=TransactionType.PURCHASE,
                external_ref=external_ref,
                status=TransactionStatus.COMPLETED,
                metadata_json={
                    **(metadata or {}),
                    "points_rate": str(rate),
                    "processed_at": datetime.now(timezone.utc).isoformat(),
                },
            )
            self._db.add(transaction)

            try:
                await self._db.flush()
                await self._ledger.credit(user_id, points)
                await self._db.commit()
            except IntegrityError:
                await self._db.rollback()
                if external_ref:
                    existing = await self._find_by_external_ref(user_id, external_ref)
                    if existing is not None:
                        logger.warning(
                            "Detected race on external reference; returning recorded purchase",
                            user_id=str(user_id),
                            external_ref=external_ref,
                        )
                        return existing
                raise
            except DBAPIError as exc:
                await self._db.rollback()
                raise TransientStorageError(f"Could not record purchase for user {user_id}") from exc
            except TransientStorageError:
                await self._db.rollback()
                raise

            span.set_attribute("rewards.points_earned", points)
            self._observability.record_purchase(points)
            logger.info(
                "Purchase recorded",
                user_id=str(user_id),
                transaction_id=str(transaction.id),
                amount=str(value),
                points_earned=points,
            )

        await self._schedule_evaluation(RewardWorkItem(user_id=user_id, transaction_id=transaction.id))
        return transaction

    async def redeem_points(self, user_id: UUID, points: int) -> bool:
        """Debit ``points``; ``False`` when the balance does not cover them."""

        if points <= 0:
            raise InvalidAmountError(f"Redemption must be a positive number of points, got {points}")

        with get_tracer().start_as_current_span("rewards.redeem_points") as span:
            span.set_attribute("rewards.user_id", str(user_id))
            try:
                balance = await self._ledger.debit(user_id, points)
            except InsufficientBalanceError as exc:
                await self._db.rollback()
                self._observability.record_redemption(succeeded=False, points=points)
                logger.info(
                    "Redemption declined",
                    user_id=str(user_id),
                    requested=exc.requested,
                    available=exc.available,
                )
                return False
            except TransientStorageError:
                await self._db.rollback()
                raise

            redeemed_at = datetime.now(timezone.utc).isoformat()
            transaction = RewardTransaction(
                user_id=user_id,
                amount=Decimal("0"),
                points_earned=-points,
                transaction_type=TransactionType.REDEMPTION,
                status=TransactionStatus.COMPLETED,
                metadata_json={"points_redeemed": points, "redeemed_at": redeemed_at},
            )
            self._db.add(transaction)
            self._db.add(
                RewardEvent(
                    user_id=user_id,
                    event_type=RewardEventType.POINTS_REDEEMED,
                    payload_json={"points": points, "available": balance.available},
                )
            )
            try:
                await self._db.commit()
            except DBAPIError as exc:
                await self._db.rollback()
                raise TransientStorageError(f"Could not record redemption for user {user_id}") from exc

        self._observability.record_redemption(succeeded=True, points=points)
        logger.info("Points redeemed", user_id=str(user_id), points=points, available=balance.available)
        return True

    async def award_points(self, user_id: UUID, points: int, *, reason: str) -> BalanceSnapshot:
        """Credit a bonus outside of a purchase (manual or promotional grant)."""

        if points <= 0:
            raise InvalidAmountError(f"Awards must be a positive number of points, got {points}")

        await self._require_user(user_id)
        try:
            balance = await self._ledger.credit(user_id, points)
            self._db.add(
                RewardEvent(
                    user_id=user_id,
                    event_type=RewardEventType.POINTS_AWARDED,
                    payload_json={"points": points, "reason": reason},
                )
            )
            await self._db.commit()
        except DBAPIError as exc:
            await self._db.rollback()
            raise TransientStorageError(f"Could not award points to user {user_id}") from exc
        except TransientStorageError:
            await self._db.rollback()
            raise

        logger.info("Points awarded", user_id=str(user_id), points=points, reason=reason)
        return balance

    async def balance(self, user_id: UUID) -> BalanceSnapshot:
        return await self._ledger.balance(user_id)

    async def _schedule_evaluation(self, item: RewardWorkItem) -> None:
        if self._pipeline is None:
            logger.warning("No reward pipeline configured; evaluation not scheduled", **item.to_payload())
            self._observability.record_pipeline("enqueue_skipped")
            return
        try:
            await self._pipeline.enqueue(item)
        except Exception as exc:
            # The purchase is committed; rewards catch up on the next evaluation.
            self._observability.record_pipeline("enqueue_failed")
            logger.exception(
                "Failed to enqueue reward evaluation",
                backend=self._pipeline.name,
                error=str(exc),
                **item.to_payload(),
            )
            return
        self._observability.record_pipeline("enqueued")
        logger.info("Reward evaluation enqueued", backend=self._pipeline.name, **item.to_payload())

    async def _require_user(self, user_id: UUID) -> None:
        try:
            user = await self._db.get(User, user_id)
        except DBAPIError as exc:
            raise TransientStorageError(f"Could not load user {user_id}") from exc
        if user is None:
            raise RewardsNotFoundError(f"User {user_id} not found")

    async def _find_by_external_ref(self, user_id: UUID, external_ref: str) -> RewardTransaction | None:
        stmt = select(RewardTransaction).where(
            RewardTransaction.user_id == user_id,
            RewardTransaction.external_ref == external_ref,
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()


__all__ = ["TransactionProcessor", "compute_points"]
