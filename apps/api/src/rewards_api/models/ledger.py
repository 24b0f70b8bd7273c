"""Per-user point balance table."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rewards_api.db.base import Base


class PointBalance(Base):
    """Running balance for a user. Mutated only through the ledger service."""

    __tablename__ = "point_balances"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_point_balances_user_id"),
        CheckConstraint("available >= 0", name="ck_point_balances_available_non_negative"),
        CheckConstraint(
            "available = total_earned - total_redeemed",
            name="ck_point_balances_available_consistent",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    available = Column(Integer, nullable=False, default=0, server_default="0")
    total_earned = Column(Integer, nullable=False, default=0, server_default="0")
    total_redeemed = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User")
