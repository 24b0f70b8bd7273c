"""Operator CLI for the rewards engine (``python -m rewards_api``)."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
from typing import Any
from uuid import UUID

from loguru import logger

from rewards_api.core.logging import configure_logging
from rewards_api.core.settings import settings
from rewards_api.db.session import async_session
from rewards_api.observability.rewards import get_rewards_store
from rewards_api.observability.tracing import configure_tracing
from rewards_api.services.rewards.broadcast import build_broadcaster
from rewards_api.services.rewards.config import RewardsConfig
from rewards_api.services.rewards.pipeline import build_pipeline
from rewards_api.tasks.reward_evaluation import run_manual_unlock
from rewards_api.workers.reward_evaluation import RewardEvaluationWorker

SERVICE_NAME = "rewards-api"
SERVICE_VERSION = "0.1.0"


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rewards_api", description="Rewards engine operator utilities.")
    sub = parser.add_subparsers(dest="command", required=True)

    worker = sub.add_parser("worker", help="Run the reward evaluation worker against the configured pipeline.")
    worker.add_argument("--once", action="store_true", help="Drain a single batch and exit.")

    unlock = sub.add_parser("unlock", help="Run an unlock pass for one user immediately.")
    unlock.add_argument("--user-id", required=True, help="UUID of the user to evaluate.")

    sub.add_parser("pipeline-status", help="Show reward pipeline availability and depth.")
    sub.add_parser("telemetry", help="Print this process's rewards telemetry counters.")

    return parser


async def _run_worker(*, once: bool) -> None:
    pipeline = build_pipeline(settings)
    if pipeline.name == "celery":
        raise SystemExit(
            "The celery pipeline is consumed by Celery workers: "
            "run `celery -A rewards_api.celery_app worker` instead."
        )

    broadcaster = build_broadcaster(settings)
    worker = RewardEvaluationWorker(
        pipeline,
        session_factory=async_session,
        config=RewardsConfig.from_settings(settings),
        broadcaster=broadcaster,
        poll_timeout_seconds=settings.reward_worker_poll_timeout_seconds,
        batch_size=settings.reward_worker_batch_size,
    )
    try:
        if once:
            _emit(await worker.run_once())
            return

        stop_requested = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, stop_requested.set)

        worker.start()
        await stop_requested.wait()
        await worker.stop()
    finally:
        close = getattr(broadcaster, "aclose", None)
        if close is not None:
            await close()


async def _async_main(args: argparse.Namespace) -> None:
    if args.command == "worker":
        await _run_worker(once=args.once)
    elif args.command == "unlock":
        _emit(await run_manual_unlock(UUID(args.user_id)))
    elif args.command == "pipeline-status":
        pipeline = build_pipeline(settings)
        stats = await pipeline.stats()
        stats["available"] = await pipeline.is_available()
        _emit(stats)
    elif args.command == "telemetry":
        _emit(get_rewards_store().snapshot().as_dict())
    else:  # pragma: no cover - argparse guards this.
        raise ValueError(f"Unsupported command {args.command}")


def cli(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(service_name=SERVICE_NAME, environment=settings.environment, version=SERVICE_VERSION)
    configure_tracing(service_name=SERVICE_NAME, service_version=SERVICE_VERSION, environment=settings.environment)
    logger.debug("Rewards CLI invoked", command=args.command)
    asyncio.run(_async_main(args))


if __name__ == "__main__":
    cli()
