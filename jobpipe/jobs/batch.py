from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any
from uuid import uuid4

from opentelemetry import trace

from jobpipe.core.policies import PROCESS_DISCOVERED_JOB, STAGE_POLICIES, StagePolicy, run_activity
from jobpipe.jobs.promotion import StageOrchestrator
from jobpipe.schemas.pipeline import BatchRequest, BatchResult

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def new_batch_id() -> str:
    return f"process-discovered-jobs-{uuid4().hex[:12]}"


async def run_process_discovered_jobs(
    request: BatchRequest,
    *,
    repository: Any,
    orchestrator: StageOrchestrator,
    policies: Mapping[str, StagePolicy] = STAGE_POLICIES,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> BatchResult:
    """Select eligible discovered jobs and promote them one at a time."""
    result = BatchResult(batch_id=new_batch_id())

    with tracer.start_as_current_span("pipeline.process_discovered_jobs") as span:
        span.set_attribute("batch.id", result.batch_id)
        fetch_limit = max(request.limit or 0, request.batch_size)
        order_by = "priority_score" if request.priority else "discovered_at"

        candidates, eligible = await run_activity(
            PROCESS_DISCOVERED_JOB,
            lambda: repository.find_unprocessed_discovered_jobs(limit=fetch_limit, order_by=order_by),
            policies=policies,
            sleep=sleep,
        )
        if request.limit is not None:
            candidates = candidates[: request.limit]
        span.set_attribute("batch.eligible", eligible)

        if not candidates:
            logger.info("batch %s: no unprocessed discovered jobs", result.batch_id)
            return result

        logger.info("batch %s: promoting %s of %s eligible jobs", result.batch_id, len(candidates), eligible)
        for candidate in candidates:
            outcome = await orchestrator.promote(
                candidate["id"],
                trigger_extraction=request.trigger_extraction,
                trigger_embedding=request.trigger_embedding,
            )
            result.total += 1
            if outcome.status == "processed":
                result.processed += 1
                result.processed_job_ids.append(outcome.discovered_job_id)
            elif outcome.status == "skipped":
                result.skipped += 1
            else:
                result.failed += 1
                result.failed_job_ids.append(outcome.discovered_job_id)

        span.set_attribute("batch.processed", result.processed)
        span.set_attribute("batch.failed", result.failed)
        logger.info(
            "batch %s finished processed=%s failed=%s skipped=%s total=%s",
            result.batch_id,
            result.processed,
            result.failed,
            result.skipped,
            result.total,
        )
    return result
