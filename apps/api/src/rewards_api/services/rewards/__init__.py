"""Rewards engine: points ledger, rule evaluation, unlocks and the evaluation pipeline."""

from .broadcast import (
    AchievementUnlocked,
    BadgeUnlocked,
    Broadcaster,
    InMemoryBroadcaster,
    LoggingBroadcaster,
    RedisBroadcaster,
    UnlockEvent,
    build_broadcaster,
)
from .config import RewardsConfig
from .errors import (
    DuplicateUnlockError,
    InsufficientBalanceError,
    InvalidAmountError,
    RewardsError,
    RewardsNotFoundError,
    TransientStorageError,
)
from .evaluator import RuleEvaluator
from .ledger import BalanceSnapshot, LedgerService
from .pipeline import (
    CeleryRewardPipeline,
    InMemoryRewardPipeline,
    RedisRewardPipeline,
    RewardPipeline,
    RewardWorkItem,
    build_pipeline,
)
from .processor import TransactionProcessor, compute_points
from .summary import RewardsSummaryService
from .unlocks import PartialUnlockError, UnlockCoordinator

__all__ = [
    "AchievementUnlocked",
    "BadgeUnlocked",
    "BalanceSnapshot",
    "Broadcaster",
    "CeleryRewardPipeline",
    "DuplicateUnlockError",
    "InMemoryBroadcaster",
    "InMemoryRewardPipeline",
    "InsufficientBalanceError",
    "InvalidAmountError",
    "LedgerService",
    "LoggingBroadcaster",
    "PartialUnlockError",
    "RedisBroadcaster",
    "RedisRewardPipeline",
    "RewardPipeline",
    "RewardWorkItem",
    "RewardsConfig",
    "RewardsError",
    "RewardsNotFoundError",
    "RewardsSummaryService",
    "RuleEvaluator",
    "TransactionProcessor",
    "TransientStorageError",
    "UnlockCoordinator",
    "UnlockEvent",
    "build_broadcaster",
    "build_pipeline",
    "compute_points",
]
