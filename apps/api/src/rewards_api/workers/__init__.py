"""Background workers supporting async processing."""

from .reward_evaluation import RewardEvaluationWorker

__all__ = ["RewardEvaluationWorker"]
