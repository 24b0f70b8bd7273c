from __future__ import annotations

import json
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from rewards_api.core.settings import Settings
from rewards_api.services.rewards import broadcast as broadcast_module
from rewards_api.services.rewards.broadcast import (
    AchievementUnlocked,
    BadgeUnlocked,
    LoggingBroadcaster,
    RedisBroadcaster,
    build_broadcaster,
)


class FakeRedis:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []
        self.closed = 0

    async def publish(self, channel: str, message: str) -> int:
        self.messages.append((channel, message))
        return 1

    async def aclose(self) -> None:
        self.closed += 1


def test_achievement_payload_is_a_flat_snapshot():
    user_id, achievement_id = uuid4(), uuid4()
    unlocked_at = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    event = AchievementUnlocked(
        user_id=user_id,
        achievement_id=achievement_id,
        name="Big Spender",
        description="Spend over $500 in a single transaction",
        badge_icon="diamond",
        unlocked_at=unlocked_at,
    )

    payload = event.as_payload()

    assert payload["event"] == "achievement.unlocked"
    assert payload["userId"] == str(user_id)
    assert payload["achievementId"] == str(achievement_id)
    assert payload["badgeIcon"] == "diamond"
    assert payload["unlockedAt"] == unlocked_at.isoformat()


@pytest.mark.asyncio
async def test_redis_broadcaster_publishes_on_user_channel():
    redis = FakeRedis()
    broadcaster = RedisBroadcaster(redis, channel_prefix="user.")
    event = BadgeUnlocked(user_id=uuid4(), badge_id=uuid4(), name="Gold Member", tier=3, icon="gold-medal")

    await broadcaster.publish(event)

    channel, message = redis.messages[0]
    assert channel == f"user.{event.user_id}"
    decoded = json.loads(message)
    assert decoded["event"] == "badge.unlocked"
    assert decoded["tier"] == 3


def test_build_broadcaster_defaults_to_logging():
    assert isinstance(build_broadcaster(Settings(reward_broadcaster="log")), LoggingBroadcaster)
    assert isinstance(build_broadcaster(Settings(reward_broadcaster="redis")), RedisBroadcaster)


@pytest.mark.asyncio
async def test_redis_broadcaster_closes_only_its_own_client(monkeypatch):
    shared = FakeRedis()
    await RedisBroadcaster(shared).aclose()
    assert shared.closed == 0

    owned = FakeRedis()
    monkeypatch.setattr(broadcast_module.Redis, "from_url", classmethod(lambda cls, *args, **kwargs: owned))
    await RedisBroadcaster(redis_url="redis://cache:6379/0").aclose()
    assert owned.closed == 1
