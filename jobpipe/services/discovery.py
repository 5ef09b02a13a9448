from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from jobpipe.schemas.discovered_jobs import DiscoveredJobIn
from jobpipe.services.scoring import calculate_priority_score

logger = logging.getLogger(__name__)

DEFAULT_UPSERT_BATCH_SIZE = 50


@dataclass(slots=True)
class BulkUpsertResult:
    created: int = 0
    updated: int = 0

    @property
    def total(self) -> int:
        return self.created + self.updated


class DiscoveryStore:
    """Deduplicating writes of discovered jobs keyed by external id.

    Counts come from a snapshot taken before any write, so concurrent writers
    can make them disagree with what actually landed.
    """

    def __init__(self, repository: Any, *, batch_size: int = DEFAULT_UPSERT_BATCH_SIZE) -> None:
        self.repository = repository
        self.batch_size = max(1, batch_size)

    async def upsert(self, job: DiscoveredJobIn) -> dict[str, Any]:
        return await self.repository.upsert_discovered_job(job, priority_score=calculate_priority_score(job))

    async def find_by_external_id(self, external_id: str) -> dict[str, Any] | None:
        return await self.repository.find_discovered_job_by_external_id(external_id)

    async def bulk_upsert(self, jobs: Sequence[DiscoveredJobIn]) -> BulkUpsertResult:
        result = BulkUpsertResult()
        if not jobs:
            return result

        existing = await self.repository.existing_external_ids([job.external_id for job in jobs])

        for start in range(0, len(jobs), self.batch_size):
            batch = jobs[start : start + self.batch_size]
            outcomes = await asyncio.gather(*(self.upsert(job) for job in batch), return_exceptions=True)
            for job, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    logger.error("failed to upsert discovered job %s: %s", job.external_id, outcome)
                    continue
                if job.external_id in existing:
                    result.updated += 1
                else:
                    result.created += 1

        logger.info(
            "bulk upsert finished created=%s updated=%s input=%s",
            result.created,
            result.updated,
            len(jobs),
        )
        return result
