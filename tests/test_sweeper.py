"""Tests for the generation sweeper worker, the sweep CLI and settings."""

import asyncio
from types import SimpleNamespace

import pytest

from vestis.cli.sweep_generations import parse_args
from vestis.core.config import Settings
from vestis.models.generation import GenerationStatus, GenerationType
from vestis.services.generation.factory import build_orchestrator
from vestis.services.providers.base import GenerationInput, PollResult
from vestis.workers.generation_sweeper import run_generation_sweeper


@pytest.mark.asyncio
async def test_sweeper_drives_abandoned_generations(orchestrator, adapters, uow_factory):
    generation_id = await orchestrator.create(
        GenerationType.TRY_ON,
        GenerationInput(first_image="a", second_image="b", prompt="A person in a coat"),
    )
    adapters[GenerationType.TRY_ON].poll_result = PollResult.from_provider(
        "succeeded", output="https://replicate.delivery/out.png"
    )
    settings = SimpleNamespace(sweeper_interval_seconds=0.01, sweeper_batch_size=5)

    task = asyncio.create_task(run_generation_sweeper(orchestrator, settings))
    status = None
    for _ in range(200):
        await asyncio.sleep(0.01)
        async with await uow_factory() as uow:
            status = (await uow.generations.get_by_id(generation_id)).status
        if status == GenerationStatus.COMPLETED:
            break
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert status == GenerationStatus.COMPLETED
    assert adapters[GenerationType.TRY_ON].poll_calls == 1


@pytest.mark.asyncio
async def test_sweeper_survives_errors(orchestrator, monkeypatch):
    calls = []

    async def flaky_sweep(limit):
        calls.append(limit)
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(orchestrator, "sweep", flaky_sweep)
    monkeypatch.setattr("vestis.workers.generation_sweeper.ERROR_BACKOFF_SECONDS", 0.01)
    settings = SimpleNamespace(sweeper_interval_seconds=0.01, sweeper_batch_size=3)

    task = asyncio.create_task(run_generation_sweeper(orchestrator, settings))
    for _ in range(100):
        await asyncio.sleep(0.01)
        if len(calls) >= 2:
            break
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert calls[:2] == [3, 3]


def test_cli_defaults():
    args = parse_args([])

    assert args.limit == 10
    assert args.dry_run is False
    assert args.verbose is False


def test_cli_options():
    args = parse_args(["--limit", "50", "--dry-run", "-v"])

    assert args.limit == 50
    assert args.dry_run is True
    assert args.verbose is True


def test_settings_fail_fast_outside_tests(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    for name in ("REPLICATE_API_TOKEN", "API_MARKET_KEY", "SUPABASE_URL", "SUPABASE_SERVICE_KEY"):
        monkeypatch.setenv(name, "")

    with pytest.raises(ValueError) as exc_info:
        Settings(_env_file=None)  # type: ignore[call-arg]

    message = str(exc_info.value)
    assert "REPLICATE_API_TOKEN" in message
    assert "SUPABASE_SERVICE_KEY" in message


def test_settings_defaults_in_test_env(monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")

    settings = Settings(_env_file=None)  # type: ignore[call-arg]

    assert settings.tryon_bucket == "try-on-images"
    assert settings.composite_bucket == "composite-images"
    assert settings.temp_bucket == "temp-bucket"
    assert settings.stale_generation_hours == 24
    assert settings.sweeper_enabled is False
    assert settings.image_combiner_timeout_seconds == 600
    assert settings.image_combiner_staging_hold_seconds == 5
    assert not {"host", "port"} & set(Settings.model_fields)


def test_build_orchestrator_bounds_staging_hold_separately(monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("IMAGE_COMBINER_STAGING_HOLD_SECONDS", "2.5")

    settings = Settings(_env_file=None)  # type: ignore[call-arg]
    orchestrator = build_orchestrator(settings, uow_factory=None)

    combiner = orchestrator._adapters[GenerationType.COMPOSITE]
    assert combiner.staging_hold_seconds == 2.5
    assert combiner.timeout_seconds == 600
