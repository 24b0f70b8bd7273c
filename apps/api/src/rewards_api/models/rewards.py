"""Achievement and badge definitions with their per-user unlock records."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rewards_api.db.base import Base


class RewardKind(str, Enum):
    """Definition families evaluated by the rule engine."""

    ACHIEVEMENT = "achievement"
    BADGE = "badge"


class AchievementDefinition(Base):
    """Achievement unlocked once every criterion in ``criteria`` holds."""

    __tablename__ = "achievement_definitions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    slug = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    badge_icon = Column(String, nullable=True)
    criteria = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class BadgeDefinition(Base):
    """Tiered badge; ``tier`` orders evaluation, ``requirements`` gate it."""

    __tablename__ = "badge_definitions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    slug = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    icon = Column(String, nullable=True)
    tier = Column(Integer, nullable=False, index=True)
    requirements = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class UserAchievement(Base):
    """Append-only unlock record; one row per (user, achievement) ever."""

    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_user_achievements_user_achievement"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    achievement_id = Column(
        UUID(as_uuid=True),
        ForeignKey("achievement_definitions.id", ondelete="CASCADE"),
        nullable=False,
    )
    unlocked_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    achievement = relationship("AchievementDefinition")


class UserBadge(Base):
    """Append-only badge unlock record; one row per (user, badge) ever."""

    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="uq_user_badges_user_badge"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    badge_id = Column(
        UUID(as_uuid=True),
        ForeignKey("badge_definitions.id", ondelete="CASCADE"),
        nullable=False,
    )
    unlocked_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    badge = relationship("BadgeDefinition")
