"""Create rewards engine tables: users, ledger, transactions, definitions, unlocks and events."""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261017_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TRANSACTION_TYPES = ("purchase", "redemption")
TRANSACTION_STATUSES = ("completed", "pending", "failed")
EVENT_TYPES = ("achievement_unlocked", "badge_unlocked", "points_redeemed", "points_awarded")


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "point_balances",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("available", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_redeemed", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", name="uq_point_balances_user_id"),
        sa.CheckConstraint("available >= 0", name="ck_point_balances_available_non_negative"),
        sa.CheckConstraint(
            "available = total_earned - total_redeemed",
            name="ck_point_balances_available_consistent",
        ),
    )

    op.create_table(
        "reward_transactions",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("transaction_type", sa.Enum(*TRANSACTION_TYPES, name="reward_transaction_type"), nullable=False),
        sa.Column("external_ref", sa.String(128), nullable=True),
        sa.Column(
            "status",
            sa.Enum(*TRANSACTION_STATUSES, name="reward_transaction_status"),
            nullable=False,
            server_default="completed",
        ),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "external_ref", name="uq_reward_transactions_user_external_ref"),
    )
    op.create_index("ix_reward_transactions_user_id", "reward_transactions", ["user_id"])

    op.create_table(
        "achievement_definitions",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("badge_icon", sa.String(), nullable=True),
        sa.Column("criteria", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_achievement_definitions_slug", "achievement_definitions", ["slug"], unique=True)

    op.create_table(
        "badge_definitions",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("icon", sa.String(), nullable=True),
        sa.Column("tier", sa.Integer(), nullable=False),
        sa.Column("requirements", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_badge_definitions_slug", "badge_definitions", ["slug"], unique=True)
    op.create_index("ix_badge_definitions_tier", "badge_definitions", ["tier"])

    op.create_table(
        "user_achievements",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "achievement_id",
            _uuid(),
            sa.ForeignKey("achievement_definitions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "achievement_id", name="uq_user_achievements_user_achievement"),
    )
    op.create_index("ix_user_achievements_user_id", "user_achievements", ["user_id"])

    op.create_table(
        "user_badges",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("badge_id", _uuid(), sa.ForeignKey("badge_definitions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "badge_id", name="uq_user_badges_user_badge"),
    )
    op.create_index("ix_user_badges_user_id", "user_badges", ["user_id"])

    op.create_table(
        "reward_events",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("event_type", sa.Enum(*EVENT_TYPES, name="reward_event_type"), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_reward_events_user_id", "reward_events", ["user_id"])

    op.create_table(
        "reward_evaluation_failures",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), nullable=False),
        sa.Column("transaction_id", _uuid(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_type", sa.String(128), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("backend", sa.String(32), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_reward_evaluation_failures_user_id", "reward_evaluation_failures", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_reward_evaluation_failures_user_id", table_name="reward_evaluation_failures")
    op.drop_table("reward_evaluation_failures")
    op.drop_index("ix_reward_events_user_id", table_name="reward_events")
    op.drop_table("reward_events")
    op.drop_index("ix_user_badges_user_id", table_name="user_badges")
    op.drop_table("user_badges")
    op.drop_index("ix_user_achievements_user_id", table_name="user_achievements")
    op.drop_table("user_achievements")
    op.drop_index("ix_badge_definitions_tier", table_name="badge_definitions")
    op.drop_index("ix_badge_definitions_slug", table_name="badge_definitions")
    op.drop_table("badge_definitions")
    op.drop_index("ix_achievement_definitions_slug", table_name="achievement_definitions")
    op.drop_table("achievement_definitions")
    op.drop_index("ix_reward_transactions_user_id", table_name="reward_transactions")
    op.drop_table("reward_transactions")
    op.drop_table("point_balances")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_name in ("reward_event_type", "reward_transaction_status", "reward_transaction_type"):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
