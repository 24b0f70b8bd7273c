"""Purchase and redemption records."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rewards_api.db.base import Base


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    REDEMPTION = "redemption"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"


class RewardTransaction(Base):
    """Immutable record of a purchase or a points redemption."""

    __tablename__ = "reward_transactions"
    __table_args__ = (
        UniqueConstraint("user_id", "external_ref", name="uq_reward_transactions_user_external_ref"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    points_earned = Column(Integer, nullable=False, default=0)
    transaction_type = Column(
        SqlEnum(
            TransactionType,
            name="reward_transaction_type",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    external_ref = Column(String(128), nullable=True)
    status = Column(
        SqlEnum(
            TransactionStatus,
            name="reward_transaction_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=TransactionStatus.COMPLETED,
        server_default=TransactionStatus.COMPLETED.value,
    )
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User")
