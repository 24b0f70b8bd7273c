"""Rule evaluation over a user's aggregate purchase activity."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.models.ledger import PointBalance
from rewards_api.models.rewards import (
    AchievementDefinition,
    BadgeDefinition,
    RewardKind,
    UserAchievement,
    UserBadge,
)
from rewards_api.models.transaction import RewardTransaction, TransactionStatus, TransactionType
from rewards_api.services.rewards.criteria import (
    ACHIEVEMENT_PROGRESS_ORDER,
    BADGE_PROGRESS_ORDER,
    ActivitySnapshot,
    criteria_progress,
    select_satisfied,
)
from rewards_api.services.rewards.errors import RewardsNotFoundError, TransientStorageError


class RuleEvaluator:
    """Decides which achievements and badges a user newly satisfies.

    Only reads: nothing here writes unlock records.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def load_activity(self, user_id: UUID) -> ActivitySnapshot:
        purchases = (
            select(
                func.count(RewardTransaction.id),
                func.coalesce(func.sum(RewardTransaction.amount), 0),
                func.coalesce(func.max(RewardTransaction.amount), 0),
            )
            .where(
                RewardTransaction.user_id == user_id,
                RewardTransaction.transaction_type == TransactionType.PURCHASE,
                RewardTransaction.status == TransactionStatus.COMPLETED,
            )
        )
        earned = select(PointBalance.total_earned).where(PointBalance.user_id == user_id)

        try:
            count, total_spend, max_single = (await self._db.execute(purchases)).one()
            total_earned = (await self._db.execute(earned)).scalar_one_or_none()
        except DBAPIError as exc:
            raise TransientStorageError(f"Could not load activity for user {user_id}") from exc

        return ActivitySnapshot(
            user_id=user_id,
            purchase_count=int(count or 0),
            total_spend=Decimal(str(total_spend or 0)),
            max_single_purchase=Decimal(str(max_single or 0)),
            total_earned_points=int(total_earned or 0),
        )

    async def evaluate_achievements(
        self,
        user_id: UUID,
        *,
        snapshot: ActivitySnapshot | None = None,
    ) -> list[AchievementDefinition]:
        """Active achievements not yet unlocked whose criteria all hold."""

        snapshot = snapshot or await self.load_activity(user_id)
        unlocked = select(UserAchievement.achievement_id).where(UserAchievement.user_id == user_id)
        stmt = (
            select(AchievementDefinition)
            .where(
                AchievementDefinition.is_active.is_(True),
                AchievementDefinition.id.not_in(unlocked),
            )
            .order_by(AchievementDefinition.created_at.asc(), AchievementDefinition.slug.asc())
        )
        candidates = await self._fetch(stmt, user_id)
        satisfied = select_satisfied(candidates, snapshot, rules=lambda item: item.criteria)
        logger.debug(
            "Evaluated achievements",
            user_id=str(user_id),
            candidates=len(candidates),
            satisfied=[str(item.id) for item in satisfied],
        )
        return satisfied

    async def evaluate_badges(
        self,
        user_id: UUID,
        *,
        snapshot: ActivitySnapshot | None = None,
    ) -> list[BadgeDefinition]:
        """Active badges not yet earned whose requirements hold, lowest tier first.

        Every satisfied tier is returned, not only the highest one.
        """

        snapshot = snapshot or await self.load_activity(user_id)
        unlocked = select(UserBadge.badge_id).where(UserBadge.user_id == user_id)
        stmt = (
            select(BadgeDefinition)
            .where(
                BadgeDefinition.is_active.is_(True),
                BadgeDefinition.id.not_in(unlocked),
            )
            .order_by(BadgeDefinition.tier.asc(), BadgeDefinition.slug.asc())
        )
        candidates = await self._fetch(stmt, user_id)
        satisfied = select_satisfied(candidates, snapshot, rules=lambda item: item.requirements)
        logger.debug(
            "Evaluated badges",
            user_id=str(user_id),
            candidates=len(candidates),
            satisfied=[str(item.id) for item in satisfied],
        )
        return satisfied

    async def achievement_progress(
        self,
        user_id: UUID,
        achievement: AchievementDefinition,
        *,
        snapshot: ActivitySnapshot | None = None,
    ) -> int:
        if await self._has_unlock(UserAchievement, UserAchievement.achievement_id, user_id, achievement.id):
            return 100
        snapshot = snapshot or await self.load_activity(user_id)
        return criteria_progress(achievement.criteria, snapshot, ACHIEVEMENT_PROGRESS_ORDER)

    async def badge_progress(
        self,
        user_id: UUID,
        badge: BadgeDefinition,
        *,
        snapshot: ActivitySnapshot | None = None,
    ) -> int:
        if await self._has_unlock(UserBadge, UserBadge.badge_id, user_id, badge.id):
            return 100
        snapshot = snapshot or await self.load_activity(user_id)
        return criteria_progress(badge.requirements, snapshot, BADGE_PROGRESS_ORDER)

    async def progress(self, user_id: UUID, definition_id: UUID, kind: RewardKind) -> int:
        """Progress bar value in ``[0, 100]`` for a single definition."""

        if kind == RewardKind.ACHIEVEMENT:
            achievement = await self._db.get(AchievementDefinition, definition_id)
            if achievement is None:
                raise RewardsNotFoundError(f"Achievement {definition_id} not found")
            return await self.achievement_progress(user_id, achievement)

        badge = await self._db.get(BadgeDefinition, definition_id)
        if badge is None:
            raise RewardsNotFoundError(f"Badge {definition_id} not found")
        return await self.badge_progress(user_id, badge)

    async def _fetch(self, stmt, user_id: UUID) -> list:
        try:
            result = await self._db.execute(stmt)
        except DBAPIError as exc:
            raise TransientStorageError(f"Could not load reward definitions for user {user_id}") from exc
        return list(result.scalars().all())

    async def _has_unlock(self, model, column, user_id: UUID, definition_id: UUID) -> bool:
        stmt = select(model.id).where(model.user_id == user_id, column == definition_id).limit(1)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none() is not None


__all__ = ["RuleEvaluator"]
