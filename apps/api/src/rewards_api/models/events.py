"""Durable reward event log and worker failure records."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from rewards_api.db.base import Base


class RewardEventType(str, Enum):
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"
    BADGE_UNLOCKED = "badge_unlocked"
    POINTS_REDEEMED = "points_redeemed"
    POINTS_AWARDED = "points_awarded"


class RewardEvent(Base):
    """Authoritative domain event, written in the same transaction as its cause."""

    __tablename__ = "reward_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    event_type = Column(
        SqlEnum(
            RewardEventType,
            name="reward_event_type",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    payload_json = Column("payload", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class RewardEvaluationFailure(Base):
    """Reward evaluation that exhausted its retry budget."""

    __tablename__ = "reward_evaluation_failures"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    transaction_id = Column(UUID(as_uuid=True), nullable=True)
    attempts = Column(Integer, nullable=False, default=0, server_default="0")
    error_type = Column(String(128), nullable=True)
    error_message = Column(Text, nullable=True)
    backend = Column(String(32), nullable=True)
    failed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
