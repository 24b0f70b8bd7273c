from __future__ import annotations

import json

import pytest

from rewards_api import __main__ as rewards_cli
from rewards_api.core.settings import settings


def test_parser_requires_user_id_for_unlock():
    parser = rewards_cli._build_parser()
    with pytest.raises(SystemExit):
        parser.parse_args(["unlock"])
    args = parser.parse_args(["worker", "--once"])
    assert args.command == "worker"
    assert args.once is True


@pytest.mark.asyncio
async def test_telemetry_command_prints_store_snapshot(capsys, reset_rewards_store):
    reset_rewards_store.record_purchase(40)

    await rewards_cli._async_main(rewards_cli._build_parser().parse_args(["telemetry"]))

    output = json.loads(capsys.readouterr().out)
    assert output["ledger"] == {"points_credited": 40, "purchases": 1}


@pytest.mark.asyncio
async def test_pipeline_status_reports_configured_backend(monkeypatch, capsys):
    monkeypatch.setattr(settings, "reward_pipeline_backend", "memory")

    await rewards_cli._async_main(rewards_cli._build_parser().parse_args(["pipeline-status"]))

    output = json.loads(capsys.readouterr().out)
    assert output["backend"] == "memory"
    assert output["available"] is True
    assert output["depth"] == 0


@pytest.mark.asyncio
async def test_worker_command_refuses_celery_backend(monkeypatch):
    monkeypatch.setattr(settings, "reward_pipeline_backend", "celery")

    with pytest.raises(SystemExit):
        await rewards_cli._async_main(rewards_cli._build_parser().parse_args(["worker", "--once"]))
