"""Read-side loyalty summary for a single user."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rewards_api.models.rewards import BadgeDefinition, UserAchievement, UserBadge
from rewards_api.models.user import User
from rewards_api.services.rewards.errors import RewardsNotFoundError
from rewards_api.services.rewards.ledger import LedgerService


def _isoformat(value) -> str | None:
    return value.isoformat() if value else None


class RewardsSummaryService:
    """Assemble balance, unlocks and current badge for profile views."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session
        self._ledger = LedgerService(db_session)

    async def get_summary(self, user_id: UUID) -> dict[str, Any]:
        user = await self._db.get(User, user_id)
        if user is None:
            raise RewardsNotFoundError(f"User {user_id} not found")

        balance = await self._ledger.balance(user_id)

        achievements_stmt = (
            select(UserAchievement)
            .options(selectinload(UserAchievement.achievement))
            .where(UserAchievement.user_id == user_id)
            .order_by(UserAchievement.unlocked_at.asc())
        )
        badges_stmt = (
            select(UserBadge)
            .join(BadgeDefinition, UserBadge.badge_id == BadgeDefinition.id)
            .options(selectinload(UserBadge.badge))
            .where(UserBadge.user_id == user_id)
            .order_by(BadgeDefinition.tier.asc(), UserBadge.unlocked_at.asc())
        )
        achievements = (await self._db.execute(achievements_stmt)).scalars().all()
        badges = (await self._db.execute(badges_stmt)).scalars().all()

        badge_payloads = [
            {
                "id": str(row.badge_id),
                "slug": row.badge.slug,
                "name": row.badge.name,
                "icon": row.badge.icon,
                "tier": int(row.badge.tier),
                "unlockedAt": _isoformat(row.unlocked_at),
            }
            for row in badges
        ]
        return {
            "userId": str(user_id),
            "points": {
                "available": balance.available,
                "totalEarned": balance.total_earned,
                "totalRedeemed": balance.total_redeemed,
            },
            "achievements": [
                {
                    "id": str(row.achievement_id),
                    "slug": row.achievement.slug,
                    "name": row.achievement.name,
                    "description": row.achievement.description,
                    "badgeIcon": row.achievement.badge_icon,
                    "unlockedAt": _isoformat(row.unlocked_at),
                }
                for row in achievements
            ],
            "badges": badge_payloads,
            "currentBadge": badge_payloads[-1] if badge_payloads else None,
        }


__all__ = ["RewardsSummaryService"]
