"""Exception taxonomy for the rewards engine."""

from __future__ import annotations

from uuid import UUID


class RewardsError(Exception):
    """Base class for rewards engine failures."""


class InvalidAmountError(RewardsError, ValueError):
    """Rejected input (non-positive purchase amount, negative points)."""


class InsufficientBalanceError(RewardsError):
    """Debit larger than the available balance.

    An expected business outcome; the transaction processor turns it into a
    ``False`` result rather than letting it reach callers.
    """

    def __init__(self, user_id: UUID, requested: int, available: int) -> None:
        super().__init__(
            f"User {user_id} requested {requested} points but only {available} are available"
        )
        self.user_id = user_id
        self.requested = requested
        self.available = available


class RewardsNotFoundError(RewardsError, LookupError):
    """Referenced user or transaction does not exist. Never retried."""


class TransientStorageError(RewardsError):
    """Database unavailable mid-operation. Retried by the evaluation worker."""


class DuplicateUnlockError(RewardsError):
    """Uniqueness backstop fired for an unlock that raced another writer."""

    def __init__(self, user_id: UUID, definition_id: UUID) -> None:
        super().__init__(f"Definition {definition_id} already unlocked for user {user_id}")
        self.user_id = user_id
        self.definition_id = definition_id


__all__ = [
    "RewardsError",
    "InvalidAmountError",
    "InsufficientBalanceError",
    "RewardsNotFoundError",
    "TransientStorageError",
    "DuplicateUnlockError",
]
