from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any

from opentelemetry import trace

from jobpipe.core.config import Settings, get_settings
from jobpipe.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from jobpipe.jobs.batch import run_process_discovered_jobs
from jobpipe.jobs.enrichment import EnrichmentDispatcher
from jobpipe.jobs.promotion import StageOrchestrator
from jobpipe.schemas.pipeline import BatchRequest, BatchResult
from jobpipe.services.ai_client import AIClient
from jobpipe.services.detail_client import DetailFetchClient
from jobpipe.services.repository import get_repository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class WorkerSchedule:
    last_reap_at: float | None = None
    last_batch_at: float | None = None


def is_due(last_run_at: float | None, interval_seconds: float, now: float) -> bool:
    return last_run_at is None or now - last_run_at >= interval_seconds


def batch_request_from_settings(settings: Settings) -> BatchRequest:
    return BatchRequest(
        batch_size=settings.worker_batch_size,
        limit=settings.worker_batch_limit,
        priority=settings.worker_priority,
        trigger_extraction=settings.worker_trigger_extraction,
        trigger_embedding=settings.worker_trigger_embedding,
    )


async def run_cycle(
    settings: Settings,
    *,
    repository: Any,
    orchestrator: StageOrchestrator,
    schedule: WorkerSchedule,
    now: float,
) -> BatchResult | None:
    """One poll cycle: reap stale processing jobs, then run a batch when due."""
    if is_due(schedule.last_reap_at, settings.reaper_interval_seconds, now):
        requeued = await repository.reap_stale_processing(
            stale_after_seconds=settings.processing_stale_after_seconds,
            limit=settings.reaper_batch_size,
        )
        if requeued:
            logger.info("requeued stale processing jobs: %s", requeued)
        schedule.last_reap_at = now

    if not is_due(schedule.last_batch_at, settings.worker_batch_interval_seconds, now):
        return None

    result = await run_process_discovered_jobs(
        batch_request_from_settings(settings),
        repository=repository,
        orchestrator=orchestrator,
    )
    schedule.last_batch_at = now
    return result


async def run_worker() -> None:
    settings = get_settings()
    configure_logging()
    telemetry_runtime = setup_telemetry(settings, component="worker")
    repository = get_repository()
    schedule = WorkerSchedule()
    backoff = settings.poll_interval_seconds

    try:
        async with DetailFetchClient(
            settings.detail_fetch_base_url,
            timeout_seconds=settings.detail_fetch_timeout_seconds,
        ) as detail_client, AIClient(
            settings.ai_base_url,
            api_key=settings.ai_api_key,
            extraction_model=settings.extraction_model,
            embedding_model=settings.embedding_model,
            timeout_seconds=settings.ai_timeout_seconds,
        ) as ai_client:
            dispatcher = EnrichmentDispatcher(
                repository,
                ai_client,
                extraction_source=settings.extraction_source,
                embedding_dimensions=settings.embedding_dimensions,
            )
            orchestrator = StageOrchestrator(repository, detail_client, dispatcher=dispatcher)
            try:
                while True:
                    try:
                        with tracer.start_as_current_span("worker.poll_cycle"):
                            await run_cycle(
                                settings,
                                repository=repository,
                                orchestrator=orchestrator,
                                schedule=schedule,
                                now=time.monotonic(),
                            )
                        backoff = settings.poll_interval_seconds
                        await asyncio.sleep(settings.poll_interval_seconds)
                    except Exception as exc:  # pragma: no cover - loop robustness
                        jitter = random.uniform(0.0, 0.5)
                        sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
                        logger.exception("worker iteration failed: %s; retry in %.1fs", exc, sleep_for)
                        await asyncio.sleep(sleep_for)
                        backoff = sleep_for
            finally:
                await dispatcher.drain()
    finally:
        await repository.close()
        shutdown_telemetry(telemetry_runtime)


if __name__ == "__main__":
    asyncio.run(run_worker())
