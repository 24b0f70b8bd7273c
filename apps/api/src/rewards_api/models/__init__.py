"""SQLAlchemy models package."""

from .events import RewardEvaluationFailure, RewardEvent, RewardEventType  # noqa: F401
from .ledger import PointBalance  # noqa: F401
from .rewards import (  # noqa: F401
    AchievementDefinition,
    BadgeDefinition,
    RewardKind,
    UserAchievement,
    UserBadge,
)
from .transaction import RewardTransaction, TransactionStatus, TransactionType  # noqa: F401
from .user import User  # noqa: F401
