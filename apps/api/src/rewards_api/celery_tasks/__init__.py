"""Celery task modules for the rewards engine."""

# Import submodules so Celery autodiscovery registers tasks.
from . import rewards as _rewards  # noqa: F401

__all__ = ["_rewards"]
