from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class RewardsSnapshot:
    ledger: Dict[str, int]
    unlocks: Dict[str, Dict[str, int]]
    pipeline: Dict[str, int]
    broadcasts: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "ledger": dict(self.ledger),
            "unlocks": {key: dict(value) for key, value in self.unlocks.items()},
            "pipeline": dict(self.pipeline),
            "broadcasts": dict(self.broadcasts),
        }


class RewardsObservabilityStore:
    """Collect rewards engine telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._ledger: Dict[str, int] = defaultdict(int)
        self._unlocks: Dict[str, int] = defaultdict(int)
        self._duplicates: Dict[str, int] = defaultdict(int)
        self._pipeline: Dict[str, int] = defaultdict(int)
        self._broadcasts: Dict[str, int] = defaultdict(int)

    def record_purchase(self, points: int) -> None:
        with self._lock:
            self._ledger["purchases"] += 1
            self._ledger["points_credited"] += points

    def record_redemption(self, *, succeeded: bool, points: int) -> None:
        with self._lock:
            if succeeded:
                self._ledger["redemptions"] += 1
                self._ledger["points_redeemed"] += points
            else:
                self._ledger["redemptions_declined"] += 1

    def record_unlock(self, kind: str) -> None:
        with self._lock:
            self._unlocks[kind] += 1

    def record_duplicate_unlock(self, kind: str) -> None:
        with self._lock:
            self._duplicates[kind] += 1

    def record_pipeline(self, outcome: str) -> None:
        with self._lock:
            self._pipeline[outcome or "unknown"] += 1

    def record_broadcast(self, *, delivered: bool) -> None:
        with self._lock:
            self._broadcasts["delivered" if delivered else "failed"] += 1

    def snapshot(self) -> RewardsSnapshot:
        with self._lock:
            return RewardsSnapshot(
                ledger=dict(self._ledger),
                unlocks={
                    "by_kind": dict(self._unlocks),
                    "duplicates": dict(self._duplicates),
                },
                pipeline=dict(self._pipeline),
                broadcasts=dict(self._broadcasts),
            )

    def reset(self) -> None:
        with self._lock:
            self._ledger.clear()
            self._unlocks.clear()
            self._duplicates.clear()
            self._pipeline.clear()
            self._broadcasts.clear()


_STORE = RewardsObservabilityStore()


def get_rewards_store() -> RewardsObservabilityStore:
    return _STORE


__all__ = ["get_rewards_store", "RewardsObservabilityStore", "RewardsSnapshot"]
