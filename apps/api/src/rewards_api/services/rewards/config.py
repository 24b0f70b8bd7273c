"""Immutable configuration threaded through rewards engine components."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from rewards_api.core.settings import Settings


@dataclass(frozen=True, slots=True)
class RewardsConfig:
    points_per_currency_unit: Decimal = Decimal("10")
    max_attempts: int = 3
    backoff_seconds: float = 30.0
    timeout_seconds: float = 120.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RewardsConfig":
        return cls(
            points_per_currency_unit=Decimal(settings.points_per_currency_unit),
            max_attempts=settings.reward_evaluation_max_attempts,
            backoff_seconds=float(settings.reward_evaluation_backoff_seconds),
            timeout_seconds=float(settings.reward_evaluation_timeout_seconds),
        )


__all__ = ["RewardsConfig"]
