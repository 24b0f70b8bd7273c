"""Turns satisfied definitions into persisted, idempotent unlocks."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.models.events import RewardEvent, RewardEventType
from rewards_api.models.rewards import (
    AchievementDefinition,
    BadgeDefinition,
    RewardKind,
    UserAchievement,
    UserBadge,
)
from rewards_api.observability.rewards import RewardsObservabilityStore, get_rewards_store
from rewards_api.observability.tracing import get_tracer
from rewards_api.services.rewards.broadcast import (
    AchievementUnlocked,
    BadgeUnlocked,
    Broadcaster,
    LoggingBroadcaster,
    UnlockEvent,
)
from rewards_api.services.rewards.errors import DuplicateUnlockError, TransientStorageError
from rewards_api.services.rewards.evaluator import RuleEvaluator

SessionFactory = Callable[[], AsyncSession]


class PartialUnlockError(TransientStorageError):
    """Some definitions could not be written; the rest were committed."""

    def __init__(self, unlocked: list[UnlockEvent], failed_definition_ids: list[UUID]) -> None:
        super().__init__(
            f"{len(failed_definition_ids)} unlock(s) failed; {len(unlocked)} committed"
        )
        self.unlocked = unlocked
        self.failed_definition_ids = failed_definition_ids


@dataclass(frozen=True)
class _UnlockCandidate:
    kind: RewardKind
    definition_id: UUID
    event: UnlockEvent


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UnlockCoordinator:
    """Evaluates a user and commits each newly satisfied unlock exactly once.

    Each definition gets its own session and transaction: re-check, insert
    the unlock row and its ``reward_events`` entry, commit. The unique
    constraint on (user, definition) backs up the re-check when two passes
    race. Broadcasting happens after commit and never undoes an unlock.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        broadcaster: Broadcaster | None = None,
        observability: RewardsObservabilityStore | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._broadcaster = broadcaster or LoggingBroadcaster()
        self._observability = observability or get_rewards_store()
        self._clock = clock

    async def unlock_all(self, user_id: UUID) -> list[UnlockEvent]:
        with get_tracer().start_as_current_span("rewards.unlock_all") as span:
            span.set_attribute("rewards.user_id", str(user_id))
            candidates = await self._collect_candidates(user_id)

            unlocked: list[UnlockEvent] = []
            failed: list[UUID] = []
            for candidate in candidates:
                try:
                    event = await self._unlock_one(user_id, candidate)
                except DuplicateUnlockError:
                    self._observability.record_duplicate_unlock(candidate.kind.value)
                    logger.info(
                        "Unlock already recorded by a concurrent pass",
                        user_id=str(user_id),
                        definition_id=str(candidate.definition_id),
                        kind=candidate.kind.value,
                    )
                    continue
                except SQLAlchemyError as exc:
                    failed.append(candidate.definition_id)
                    logger.exception(
                        "Unlock attempt failed",
                        user_id=str(user_id),
                        definition_id=str(candidate.definition_id),
                        kind=candidate.kind.value,
                        error=str(exc),
                    )
                    continue

                if event is None:
                    continue
                unlocked.append(event)
                self._observability.record_unlock(candidate.kind.value)
                await self._broadcast(event)

            span.set_attribute("rewards.unlocked", len(unlocked))
            logger.info(
                "Unlock pass completed",
                user_id=str(user_id),
                candidates=len(candidates),
                unlocked=len(unlocked),
                failed=len(failed),
            )
            if failed:
                raise PartialUnlockError(unlocked, failed)
            return unlocked

    async def _collect_candidates(self, user_id: UUID) -> list[_UnlockCandidate]:
        async with self._session_factory() as session:
            evaluator = RuleEvaluator(session)
            snapshot = await evaluator.load_activity(user_id)
            achievements = await evaluator.evaluate_achievements(user_id, snapshot=snapshot)
            badges = await evaluator.evaluate_badges(user_id, snapshot=snapshot)

        candidates = [_achievement_candidate(user_id, item) for item in achievements]
        candidates.extend(_badge_candidate(user_id, item) for item in badges)
        return candidates

    async def _unlock_one(self, user_id: UUID, candidate: _UnlockCandidate) -> UnlockEvent | None:
        async with self._session_factory() as session:
            if await _has_unlock(session, candidate.kind, user_id, candidate.definition_id):
                return None

            unlocked_at = self._clock()
            event = dataclasses.replace(candidate.event, unlocked_at=unlocked_at)
            session.add(_unlock_record(candidate.kind, user_id, candidate.definition_id, unlocked_at))
            session.add(
                RewardEvent(
                    user_id=user_id,
                    event_type=(
                        RewardEventType.ACHIEVEMENT_UNLOCKED
                        if candidate.kind == RewardKind.ACHIEVEMENT
                        else RewardEventType.BADGE_UNLOCKED
                    ),
                    payload_json=event.as_payload(),
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                if await _has_unlock(session, candidate.kind, user_id, candidate.definition_id):
                    raise DuplicateUnlockError(user_id, candidate.definition_id)
                raise
            except SQLAlchemyError:
                await session.rollback()
                raise

        logger.info(
            "Reward unlocked",
            user_id=str(user_id),
            definition_id=str(candidate.definition_id),
            kind=candidate.kind.value,
        )
        return event

    async def _broadcast(self, event: UnlockEvent) -> None:
        try:
            await self._broadcaster.publish(event)
        except Exception as exc:
            self._observability.record_broadcast(delivered=False)
            logger.warning(
                "Unlock broadcast failed; unlock stays committed",
                user_id=str(event.user_id),
                event_name=event.event_name,
                error=str(exc),
            )
            return
        self._observability.record_broadcast(delivered=True)


def _achievement_candidate(user_id: UUID, achievement: AchievementDefinition) -> _UnlockCandidate:
    return _UnlockCandidate(
        kind=RewardKind.ACHIEVEMENT,
        definition_id=achievement.id,
        event=AchievementUnlocked(
            user_id=user_id,
            achievement_id=achievement.id,
            name=achievement.name,
            description=achievement.description,
            badge_icon=achievement.badge_icon,
        ),
    )


def _badge_candidate(user_id: UUID, badge: BadgeDefinition) -> _UnlockCandidate:
    return _UnlockCandidate(
        kind=RewardKind.BADGE,
        definition_id=badge.id,
        event=BadgeUnlocked(
            user_id=user_id,
            badge_id=badge.id,
            name=badge.name,
            tier=int(badge.tier),
            icon=badge.icon,
        ),
    )


def _unlock_record(
    kind: RewardKind,
    user_id: UUID,
    definition_id: UUID,
    unlocked_at: datetime,
) -> UserAchievement | UserBadge:
    if kind == RewardKind.ACHIEVEMENT:
        return UserAchievement(user_id=user_id, achievement_id=definition_id, unlocked_at=unlocked_at)
    return UserBadge(user_id=user_id, badge_id=definition_id, unlocked_at=unlocked_at)


async def _has_unlock(session: AsyncSession, kind: RewardKind, user_id: UUID, definition_id: UUID) -> bool:
    if kind == RewardKind.ACHIEVEMENT:
        stmt = select(UserAchievement.id).where(
            UserAchievement.user_id == user_id,
            UserAchievement.achievement_id == definition_id,
        )
    else:
        stmt = select(UserBadge.id).where(
            UserBadge.user_id == user_id,
            UserBadge.badge_id == definition_id,
        )
    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none() is not None


__all__ = ["PartialUnlockError", "UnlockCoordinator"]
