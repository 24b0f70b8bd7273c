"""Predicate kinds and pure evaluation helpers for reward definitions.

Definitions store their rules as ``{kind: threshold}`` mappings. Every kind
the engine understands is listed in :class:`CriterionKind`; anything else
makes the whole definition unsatisfiable.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Sequence, TypeVar
from uuid import UUID

CRITERIA_SCHEMA_VERSION = 1


class CriterionKind(str, Enum):
    TRANSACTION_COUNT = "transaction_count"
    PURCHASES_MINIMUM = "purchases_minimum"
    POINTS_MINIMUM = "points_minimum"
    SINGLE_TRANSACTION_AMOUNT = "single_transaction_amount"
    TOTAL_SPENDING = "total_spending"
    SPENDING_MINIMUM = "spending_minimum"


_ALIASES: dict[str, CriterionKind] = {
    "transactionCount": CriterionKind.TRANSACTION_COUNT,
    "purchasesMinimum": CriterionKind.PURCHASES_MINIMUM,
    "pointsMinimum": CriterionKind.POINTS_MINIMUM,
    "singleTransactionAmount": CriterionKind.SINGLE_TRANSACTION_AMOUNT,
    "totalSpending": CriterionKind.TOTAL_SPENDING,
    "spendingMinimum": CriterionKind.SPENDING_MINIMUM,
}

# Which predicate drives the progress bar when a definition has several.
ACHIEVEMENT_PROGRESS_ORDER: tuple[CriterionKind, ...] = (
    CriterionKind.TRANSACTION_COUNT,
    CriterionKind.POINTS_MINIMUM,
    CriterionKind.SINGLE_TRANSACTION_AMOUNT,
    CriterionKind.TOTAL_SPENDING,
    CriterionKind.PURCHASES_MINIMUM,
    CriterionKind.SPENDING_MINIMUM,
)
BADGE_PROGRESS_ORDER: tuple[CriterionKind, ...] = (
    CriterionKind.POINTS_MINIMUM,
    CriterionKind.PURCHASES_MINIMUM,
    CriterionKind.SPENDING_MINIMUM,
    CriterionKind.TRANSACTION_COUNT,
    CriterionKind.SINGLE_TRANSACTION_AMOUNT,
    CriterionKind.TOTAL_SPENDING,
)


@dataclass(frozen=True)
class ActivitySnapshot:
    """Aggregates of a user's completed purchases and earned points."""

    user_id: UUID
    purchase_count: int = 0
    total_spend: Decimal = Decimal("0")
    max_single_purchase: Decimal = Decimal("0")
    total_earned_points: int = 0


@dataclass(frozen=True)
class Criterion:
    kind: CriterionKind
    threshold: Decimal


_METRICS: dict[CriterionKind, Callable[[ActivitySnapshot], Decimal]] = {
    CriterionKind.TRANSACTION_COUNT: lambda snapshot: Decimal(snapshot.purchase_count),
    CriterionKind.PURCHASES_MINIMUM: lambda snapshot: Decimal(snapshot.purchase_count),
    CriterionKind.POINTS_MINIMUM: lambda snapshot: Decimal(snapshot.total_earned_points),
    CriterionKind.SINGLE_TRANSACTION_AMOUNT: lambda snapshot: Decimal(snapshot.max_single_purchase),
    CriterionKind.TOTAL_SPENDING: lambda snapshot: Decimal(snapshot.total_spend),
    CriterionKind.SPENDING_MINIMUM: lambda snapshot: Decimal(snapshot.total_spend),
}


def resolve_kind(key: str) -> CriterionKind | None:
    """Map a stored key (snake_case or camelCase) onto a known kind."""

    try:
        return CriterionKind(key)
    except ValueError:
        return _ALIASES.get(key)


def _parse_threshold(value: Any) -> Decimal | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        threshold = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not threshold.is_finite() or threshold < 0:
        return None
    return threshold


def parse_criteria(raw: Mapping[str, Any] | None) -> list[Criterion] | None:
    """Parse stored criteria; ``None`` means the definition can never be satisfied."""

    if not raw or not isinstance(raw, Mapping):
        return None

    parsed: list[Criterion] = []
    for key, value in raw.items():
        kind = resolve_kind(str(key))
        threshold = _parse_threshold(value)
        if kind is None or threshold is None:
            return None
        parsed.append(Criterion(kind=kind, threshold=threshold))
    return parsed


def metric_value(kind: CriterionKind, snapshot: ActivitySnapshot) -> Decimal:
    return _METRICS[kind](snapshot)


def criteria_satisfied(raw: Mapping[str, Any] | None, snapshot: ActivitySnapshot) -> bool:
    """True when every predicate holds (logical AND)."""

    criteria = parse_criteria(raw)
    if criteria is None:
        return False
    return all(metric_value(item.kind, snapshot) >= item.threshold for item in criteria)


def criteria_progress(
    raw: Mapping[str, Any] | None,
    snapshot: ActivitySnapshot,
    order: Sequence[CriterionKind],
) -> int:
    """Percentage towards the dominant predicate, clamped to ``[0, 100]``."""

    criteria = parse_criteria(raw)
    if criteria is None:
        return 0

    by_kind = {item.kind: item for item in criteria}
    dominant = next((by_kind[kind] for kind in order if kind in by_kind), None)
    if dominant is None:
        return 0
    if dominant.threshold == 0:
        return 100

    ratio = metric_value(dominant.kind, snapshot) / dominant.threshold * 100
    percent = int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(0, min(100, percent))


DefinitionT = TypeVar("DefinitionT")


def select_satisfied(
    definitions: Iterable[DefinitionT],
    snapshot: ActivitySnapshot,
    *,
    rules: Callable[[DefinitionT], Mapping[str, Any] | None],
) -> list[DefinitionT]:
    """Filter definitions whose rules hold, preserving input order."""

    return [definition for definition in definitions if criteria_satisfied(rules(definition), snapshot)]


__all__ = [
    "ACHIEVEMENT_PROGRESS_ORDER",
    "ActivitySnapshot",
    "BADGE_PROGRESS_ORDER",
    "CRITERIA_SCHEMA_VERSION",
    "Criterion",
    "CriterionKind",
    "criteria_progress",
    "criteria_satisfied",
    "metric_value",
    "parse_criteria",
    "resolve_kind",
    "select_satisfied",
]
