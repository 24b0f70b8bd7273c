from __future__ import annotations

from loguru import logger

from rewards_api.celery_app import celery_app
from rewards_api.core.settings import settings
from rewards_api.observability.rewards import get_rewards_store
from rewards_api.services.rewards.errors import RewardsNotFoundError
from rewards_api.tasks.reward_evaluation import (
    evaluate_purchase_rewards_sync,
    record_evaluation_failure_sync,
)


@celery_app.task(
    bind=True,
    name="rewards.evaluate_purchase",
    queue=settings.reward_evaluation_task_queue,
    soft_time_limit=settings.reward_evaluation_timeout_seconds,
    time_limit=settings.reward_evaluation_timeout_seconds + 10,
)
def evaluate_purchase_rewards_task(self, user_id: str, transaction_id: str) -> dict[str, object]:
    """Celery entrypoint evaluating rewards for one committed purchase."""

    store = get_rewards_store()
    attempt = self.request.retries + 1
    try:
        result = evaluate_purchase_rewards_sync(user_id, transaction_id)
    except RewardsNotFoundError as exc:
        store.record_pipeline("dropped")
        logger.warning(
            "Dropping reward evaluation for missing rows",
            user_id=user_id,
            transaction_id=transaction_id,
            error=str(exc),
        )
        return {"userId": user_id, "transactionId": transaction_id, "dropped": True}
    except Exception as exc:
        max_attempts = settings.reward_evaluation_max_attempts
        if attempt >= max_attempts:
            store.record_pipeline("failed")
            logger.exception(
                "Reward evaluation failed",
                user_id=user_id,
                transaction_id=transaction_id,
                attempt=attempt,
            )
            record_evaluation_failure_sync(user_id, transaction_id, attempts=attempt, error=exc)
            return {"userId": user_id, "transactionId": transaction_id, "failed": True, "attempts": attempt}

        store.record_pipeline("retried")
        logger.warning(
            "Reward evaluation attempt failed; retrying",
            user_id=user_id,
            transaction_id=transaction_id,
            attempt=attempt,
            error=str(exc),
        )
        raise self.retry(
            exc=exc,
            countdown=settings.reward_evaluation_backoff_seconds,
            max_retries=max_attempts - 1,
        )

    store.record_pipeline("processed")
    return result
