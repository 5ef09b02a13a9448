from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from jobpipe.core.config import Settings
from jobpipe.jobs.promotion import StageOrchestrator
from jobpipe.services.discovery import DiscoveryStore
from jobpipe.worker import WorkerSchedule, batch_request_from_settings, is_due, run_cycle


def _settings(**overrides) -> Settings:
    values = {
        "storage_backend": "memory",
        "otel_enabled": False,
        "reaper_interval_seconds": 300.0,
        "worker_batch_interval_seconds": 3600.0,
        "processing_stale_after_seconds": 600,
    }
    values.update(overrides)
    return Settings(**values)


def test_is_due() -> None:
    assert is_due(None, 60.0, now=5.0)
    assert not is_due(100.0, 60.0, now=150.0)
    assert is_due(100.0, 60.0, now=160.0)


def test_batch_request_follows_worker_settings() -> None:
    request = batch_request_from_settings(
        _settings(worker_batch_size=20, worker_batch_limit=5, worker_priority=False, worker_trigger_embedding=True)
    )

    assert request.batch_size == 20
    assert request.limit == 5
    assert request.priority is False
    assert request.trigger_embedding is True
    assert request.trigger_extraction is False


def test_run_cycle_reaps_then_runs_batch_only_when_due(
    store, detail_client, make_job, detail_record, no_sleep
) -> None:
    discovery = DiscoveryStore(store)
    stuck = asyncio.run(discovery.upsert(make_job("4100000001")))
    store.discovered_jobs[stuck["id"]].update(
        processing_status="processing",
        processing_started_at=datetime.now(timezone.utc) - timedelta(hours=1),
    )
    detail_client.responses[stuck["url"]] = detail_record(stuck["url"])

    settings = _settings()
    schedule = WorkerSchedule()
    orchestrator = StageOrchestrator(store, detail_client, sleep=no_sleep)

    first = asyncio.run(
        run_cycle(settings, repository=store, orchestrator=orchestrator, schedule=schedule, now=1000.0)
    )
    assert first is not None
    assert first.processed == 1
    row = store.discovered_jobs[stuck["id"]]
    assert row["processing_status"] == "completed"
    assert row["processing_attempts"] == 0
    assert schedule.last_reap_at == 1000.0
    assert schedule.last_batch_at == 1000.0

    second = asyncio.run(
        run_cycle(settings, repository=store, orchestrator=orchestrator, schedule=schedule, now=1010.0)
    )
    assert second is None
    assert schedule.last_reap_at == 1000.0
