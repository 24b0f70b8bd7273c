"""Celery application for reward evaluation."""

from __future__ import annotations

from celery import Celery
from celery.signals import worker_process_init

from rewards_api.core.logging import configure_logging
from rewards_api.core.settings import settings
from rewards_api.observability.tracing import configure_tracing

SERVICE_NAME = "rewards-worker"
SERVICE_VERSION = "0.1.0"


def _resolve_backend_url() -> str:
    return settings.celery_result_backend or settings.redis_url


def _resolve_broker_url() -> str:
    return settings.celery_broker_url or settings.redis_url


celery_app = Celery(
    "rewards_api",
    broker=_resolve_broker_url(),
    backend=_resolve_backend_url(),
)

celery_app.conf.update(
    task_default_queue=settings.celery_default_queue,
    task_routes={"rewards.evaluate_purchase": {"queue": settings.reward_evaluation_task_queue}},
    # Redeliver work items when a worker dies mid-evaluation.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,
    timezone="UTC",
    broker_connection_retry_on_startup=True,
)

celery_app.autodiscover_tasks(["rewards_api.celery_tasks"])


@worker_process_init.connect
def _configure_worker_process(**_: object) -> None:
    configure_logging(service_name=SERVICE_NAME, environment=settings.environment, version=SERVICE_VERSION)
    configure_tracing(service_name=SERVICE_NAME, service_version=SERVICE_VERSION, environment=settings.environment)


__all__ = ["celery_app"]
