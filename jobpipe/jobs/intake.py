from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping

from jobpipe.core.policies import SAVE_DISCOVERED_JOBS, STAGE_POLICIES, StagePolicy, run_activity
from jobpipe.schemas.discovered_jobs import SaveDiscoveredJobsRequest, SaveDiscoveredJobsResult
from jobpipe.services.discovery import DiscoveryStore

logger = logging.getLogger(__name__)


async def save_discovered_jobs(
    request: SaveDiscoveredJobsRequest,
    *,
    store: DiscoveryStore,
    policies: Mapping[str, StagePolicy] = STAGE_POLICIES,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> SaveDiscoveredJobsResult:
    jobs = request.jobs
    if request.discovered_by:
        jobs = [job.model_copy(update={"discovered_by": request.discovered_by}) for job in jobs]

    outcome = await run_activity(
        SAVE_DISCOVERED_JOBS,
        lambda: store.bulk_upsert(jobs),
        policies=policies,
        sleep=sleep,
    )
    logger.info(
        "saved discovered jobs by=%s created=%s updated=%s",
        request.discovered_by or "-",
        outcome.created,
        outcome.updated,
    )
    return SaveDiscoveredJobsResult(created=outcome.created, updated=outcome.updated, total=outcome.total)
