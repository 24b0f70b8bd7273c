"""Unlock event payloads and the broadcaster collaborators that receive them."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, Union
from uuid import UUID

from loguru import logger
from redis.asyncio import Redis

from rewards_api.core.settings import Settings


@dataclass(frozen=True)
class AchievementUnlocked:
    """Flat snapshot of an achievement at unlock time."""

    user_id: UUID
    achievement_id: UUID
    name: str
    description: str | None
    badge_icon: str | None
    unlocked_at: datetime | None = None

    event_name = "achievement.unlocked"

    def as_payload(self) -> dict[str, Any]:
        return {
            "event": self.event_name,
            "userId": str(self.user_id),
            "achievementId": str(self.achievement_id),
            "name": self.name,
            "description": self.description,
            "badgeIcon": self.badge_icon,
            "unlockedAt": self.unlocked_at.isoformat() if self.unlocked_at else None,
        }


@dataclass(frozen=True)
class BadgeUnlocked:
    """Flat snapshot of a badge at unlock time."""

    user_id: UUID
    badge_id: UUID
    name: str
    tier: int
    icon: str | None
    unlocked_at: datetime | None = None

    event_name = "badge.unlocked"

    def as_payload(self) -> dict[str, Any]:
        return {
            "event": self.event_name,
            "userId": str(self.user_id),
            "badgeId": str(self.badge_id),
            "name": self.name,
            "tier": self.tier,
            "icon": self.icon,
            "unlockedAt": self.unlocked_at.isoformat() if self.unlocked_at else None,
        }


UnlockEvent = Union[AchievementUnlocked, BadgeUnlocked]


class Broadcaster(Protocol):
    """Real-time push collaborator. Called after the unlock commits."""

    async def publish(self, event: UnlockEvent) -> None:
        ...


class LoggingBroadcaster:
    """Default broadcaster that only records the push in the logs."""

    async def publish(self, event: UnlockEvent) -> None:
        logger.info("Unlock event broadcast", **event.as_payload())


@dataclass
class InMemoryBroadcaster:
    """Stores published events for inspection in tests."""

    published: list[UnlockEvent] = field(default_factory=list)

    async def publish(self, event: UnlockEvent) -> None:
        self.published.append(event)


class RedisBroadcaster:
    """Publishes unlock events on a per-user Redis pub/sub channel."""

    def __init__(self, redis_client: Redis | None = None, *, redis_url: str | None = None, channel_prefix: str = "user.") -> None:
        self._owns_client = redis_client is None
        self._redis = redis_client or Redis.from_url(
            redis_url or "redis://localhost:6379/0",
            encoding="utf-8",
            decode_responses=True,
        )
        self._channel_prefix = channel_prefix

    def channel_for(self, user_id: UUID) -> str:
        return f"{self._channel_prefix}{user_id}"

    async def publish(self, event: UnlockEvent) -> None:
        channel = self.channel_for(event.user_id)
        await self._redis.publish(channel, json.dumps(event.as_payload()))
        logger.debug("Published unlock event", channel=channel, event_name=event.event_name)

    async def aclose(self) -> None:
        """Close the connection pool when this broadcaster created the client."""

        if self._owns_client:
            await self._redis.aclose()


def build_broadcaster(settings: Settings) -> Broadcaster:
    if settings.reward_broadcaster == "redis":
        return RedisBroadcaster(
            redis_url=settings.redis_url,
            channel_prefix=settings.reward_broadcast_channel_prefix,
        )
    return LoggingBroadcaster()


__all__ = [
    "AchievementUnlocked",
    "BadgeUnlocked",
    "Broadcaster",
    "InMemoryBroadcaster",
    "LoggingBroadcaster",
    "RedisBroadcaster",
    "UnlockEvent",
    "build_broadcaster",
]
