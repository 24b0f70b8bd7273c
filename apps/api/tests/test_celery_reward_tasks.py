from __future__ import annotations

from uuid import uuid4

import pytest

from rewards_api.celery_tasks import rewards as tasks
from rewards_api.core.settings import settings
from rewards_api.services.rewards.errors import RewardsNotFoundError, TransientStorageError


def test_task_returns_evaluation_summary(monkeypatch, reset_rewards_store):
    captured = {}

    def fake_evaluate(user_id, transaction_id):
        captured["args"] = (user_id, transaction_id)
        return {"userId": user_id, "unlocked": 2}

    monkeypatch.setattr(tasks, "evaluate_purchase_rewards_sync", fake_evaluate)

    user_id, transaction_id = str(uuid4()), str(uuid4())
    result = tasks.evaluate_purchase_rewards_task(user_id, transaction_id)

    assert result == {"userId": user_id, "unlocked": 2}
    assert captured["args"] == (user_id, transaction_id)
    assert reset_rewards_store.snapshot().pipeline == {"processed": 1}


def test_task_drops_items_for_missing_rows(monkeypatch, reset_rewards_store):
    def fake_evaluate(user_id, transaction_id):
        raise RewardsNotFoundError("transaction gone")

    def fail_record(*args, **kwargs):  # pragma: no cover - must not be called
        raise AssertionError("dropped items are not recorded as failures")

    monkeypatch.setattr(tasks, "evaluate_purchase_rewards_sync", fake_evaluate)
    monkeypatch.setattr(tasks, "record_evaluation_failure_sync", fail_record)

    result = tasks.evaluate_purchase_rewards_task(str(uuid4()), str(uuid4()))

    assert result["dropped"] is True
    assert reset_rewards_store.snapshot().pipeline == {"dropped": 1}


def test_task_reraises_for_retry_while_attempts_remain(monkeypatch, reset_rewards_store):
    monkeypatch.setattr(settings, "reward_evaluation_max_attempts", 3)

    def fake_evaluate(user_id, transaction_id):
        raise TransientStorageError("database restarting")

    monkeypatch.setattr(tasks, "evaluate_purchase_rewards_sync", fake_evaluate)

    with pytest.raises(TransientStorageError):
        tasks.evaluate_purchase_rewards_task(str(uuid4()), str(uuid4()))
    assert reset_rewards_store.snapshot().pipeline == {"retried": 1}


def test_task_records_failure_on_last_attempt(monkeypatch, reset_rewards_store):
    monkeypatch.setattr(settings, "reward_evaluation_max_attempts", 1)
    recorded = {}

    def fake_evaluate(user_id, transaction_id):
        raise TransientStorageError("database unavailable")

    def fake_record(user_id, transaction_id, *, attempts, error, backend="celery"):
        recorded.update(user_id=user_id, attempts=attempts, error=error, backend=backend)

    monkeypatch.setattr(tasks, "evaluate_purchase_rewards_sync", fake_evaluate)
    monkeypatch.setattr(tasks, "record_evaluation_failure_sync", fake_record)

    user_id = str(uuid4())
    result = tasks.evaluate_purchase_rewards_task(user_id, str(uuid4()))

    assert result["failed"] is True
    assert result["attempts"] == 1
    assert recorded["user_id"] == user_id
    assert recorded["attempts"] == 1
    assert isinstance(recorded["error"], TransientStorageError)
    assert recorded["backend"] == "celery"
    assert reset_rewards_store.snapshot().pipeline == {"failed": 1}


def test_task_is_registered_under_stable_name():
    assert tasks.evaluate_purchase_rewards_task.name == "rewards.evaluate_purchase"
