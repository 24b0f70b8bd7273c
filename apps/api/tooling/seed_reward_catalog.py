"""Seed the default achievement and badge catalog into the API database."""

from __future__ import annotations

import asyncio
from typing import Any, TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rewards_api.core.settings import settings
from rewards_api.models.rewards import AchievementDefinition, BadgeDefinition


class SeedAchievement(TypedDict):
    slug: str
    name: str
    description: str
    badge_icon: str
    criteria: dict[str, Any]


class SeedBadge(TypedDict):
    slug: str
    name: str
    description: str
    icon: str
    tier: int
    requirements: dict[str, Any]


DEFAULT_ACHIEVEMENTS: list[SeedAchievement] = [
    {
        "slug": "first-purchase",
        "name": "First Purchase",
        "description": "Make your first purchase",
        "badge_icon": "trophy",
        "criteria": {"transaction_count": 1},
    },
    {
        "slug": "loyal-customer",
        "name": "Loyal Customer",
        "description": "Earn 1000 loyalty points",
        "badge_icon": "star",
        "criteria": {"points_minimum": 1000},
    },
    {
        "slug": "big-spender",
        "name": "Big Spender",
        "description": "Spend over $500 in a single transaction",
        "badge_icon": "diamond",
        "criteria": {"single_transaction_amount": 500},
    },
    {
        "slug": "frequent-buyer",
        "name": "Frequent Buyer",
        "description": "Make 10 purchases",
        "badge_icon": "repeat",
        "criteria": {"transaction_count": 10},
    },
    {
        "slug": "point-master",
        "name": "Point Master",
        "description": "Earn 5000 loyalty points",
        "badge_icon": "crown",
        "criteria": {"points_minimum": 5000},
    },
]

DEFAULT_BADGES: list[SeedBadge] = [
    {
        "slug": "bronze-member",
        "name": "Bronze Member",
        "description": "Welcome to our loyalty program",
        "icon": "bronze-medal",
        "tier": 1,
        "requirements": {"points_minimum": 100},
    },
    {
        "slug": "silver-member",
        "name": "Silver Member",
        "description": "Reach 2500 points",
        "icon": "silver-medal",
        "tier": 2,
        "requirements": {"points_minimum": 2500},
    },
    {
        "slug": "gold-member",
        "name": "Gold Member",
        "description": "Reach 10000 points",
        "icon": "gold-medal",
        "tier": 3,
        "requirements": {"points_minimum": 10000},
    },
    {
        "slug": "platinum-member",
        "name": "Platinum Member",
        "description": "Reach 25000 points and make 50+ purchases",
        "icon": "platinum-medal",
        "tier": 4,
        "requirements": {"points_minimum": 25000, "purchases_minimum": 50},
    },
]


async def seed_achievements(session: AsyncSession) -> None:
    for entry in DEFAULT_ACHIEVEMENTS:
        with session.no_autoflush:
            existing = await session.execute(
                select(AchievementDefinition).where(AchievementDefinition.slug == entry["slug"])
            )
        record = existing.scalar_one_or_none()

        if record:
            record.name = entry["name"]
            record.description = entry["description"]
            record.badge_icon = entry["badge_icon"]
            record.criteria = entry["criteria"]
            record.is_active = True
        else:
            session.add(AchievementDefinition(**entry, is_active=True))


async def seed_badges(session: AsyncSession) -> None:
    for entry in DEFAULT_BADGES:
        with session.no_autoflush:
            existing = await session.execute(select(BadgeDefinition).where(BadgeDefinition.slug == entry["slug"]))
        record = existing.scalar_one_or_none()

        if record:
            record.name = entry["name"]
            record.description = entry["description"]
            record.icon = entry["icon"]
            record.tier = entry["tier"]
            record.requirements = entry["requirements"]
            record.is_active = True
        else:
            session.add(BadgeDefinition(**entry, is_active=True))


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            await seed_achievements(session)
            await seed_badges(session)
            await session.commit()
        print("Default reward catalog ready ✅")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
