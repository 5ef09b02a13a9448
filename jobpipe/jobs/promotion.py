from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from opentelemetry import trace

from jobpipe.core.policies import PROCESS_DISCOVERED_JOB, STAGE_POLICIES, StagePolicy, describe_error, run_activity
from jobpipe.core.urls import url_hash
from jobpipe.jobs.enrichment import EnrichmentDispatcher
from jobpipe.jobs.posted_dates import parse_posted_date
from jobpipe.schemas.pipeline import PromotionOutcome
from jobpipe.services.detail_client import DetailFetchClient, DetailFetchError
from jobpipe.services.repository import ELIGIBLE_STATUSES, RepositoryError, RepositoryNotFoundError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class StageOrchestrator:
    """Promotes one discovered job into a canonical job.

    A failure is recorded once per call; retrying across passes is left to
    whoever selects the job again.
    """

    def __init__(
        self,
        repository: Any,
        detail_client: DetailFetchClient,
        *,
        dispatcher: EnrichmentDispatcher | None = None,
        policies: Mapping[str, StagePolicy] = STAGE_POLICIES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.repository = repository
        self.detail_client = detail_client
        self.dispatcher = dispatcher
        self.policies = policies
        self.sleep = sleep

    async def promote(
        self,
        discovered_job_id: str,
        *,
        trigger_extraction: bool = False,
        trigger_embedding: bool = False,
    ) -> PromotionOutcome:
        with tracer.start_as_current_span("pipeline.promote_discovered_job") as span:
            span.set_attribute("discovered_job.id", discovered_job_id)
            try:
                discovered = await self.repository.get_discovered_job(discovered_job_id)
            except RepositoryNotFoundError as exc:
                logger.warning("discovered job %s not found", discovered_job_id)
                return PromotionOutcome(status="failed", discovered_job_id=discovered_job_id, error=str(exc))

            external_id = discovered["external_id"]
            prior_status = discovered["processing_status"]
            span.set_attribute("discovered_job.external_id", external_id)
            if prior_status not in ELIGIBLE_STATUSES or discovered.get("processed_at") is not None:
                logger.info("skipping discovered job %s in status %s", discovered_job_id, prior_status)
                return PromotionOutcome(
                    status="skipped",
                    discovered_job_id=discovered_job_id,
                    job_id=discovered.get("processed_job_id"),
                    external_id=external_id,
                )

            try:
                await self.repository.mark_discovered_job_processing(discovered_job_id)
            except RepositoryNotFoundError as exc:
                logger.warning("discovered job %s disappeared before processing", discovered_job_id)
                return PromotionOutcome(
                    status="failed",
                    discovered_job_id=discovered_job_id,
                    external_id=external_id,
                    error=str(exc),
                )

            try:
                job_id = await self._promote(
                    discovered,
                    trigger_extraction=trigger_extraction,
                    trigger_embedding=trigger_embedding,
                )
            except Exception as exc:
                message = describe_error(exc)
                span.set_attribute("promotion.error", message)
                await self._record_failure(discovered_job_id, message, retry_status=prior_status)
                return PromotionOutcome(
                    status="failed",
                    discovered_job_id=discovered_job_id,
                    external_id=external_id,
                    error=message,
                )

            span.set_attribute("job.id", job_id)
            return PromotionOutcome(
                status="processed",
                discovered_job_id=discovered_job_id,
                job_id=job_id,
                external_id=external_id,
            )

    async def _promote(
        self,
        discovered: dict[str, Any],
        *,
        trigger_extraction: bool,
        trigger_embedding: bool,
    ) -> str:
        discovered_job_id = discovered["id"]
        external_id = discovered["external_id"]

        existing = await self.repository.find_job_by_external_id(external_id)
        if existing is not None:
            await self.repository.mark_discovered_job_completed(discovered_job_id, existing["id"])
            logger.info("linked discovered job %s to existing job %s", discovered_job_id, existing["id"])
            return str(existing["id"])

        details = await run_activity(
            PROCESS_DISCOVERED_JOB,
            lambda: self.detail_client.fetch_details(discovered["url"], external_id),
            policies=self.policies,
            sleep=self.sleep,
        )
        if details is None:
            raise DetailFetchError(f"no job details returned for {discovered['url']}")

        final_url = details.url or discovered["url"]
        job = await self.repository.create_or_update_job(
            external_id=external_id,
            url_hash=url_hash(final_url),
            url=final_url,
            title=details.title,
            company=details.company,
            description=details.description or "",
            location=details.location,
            salary=details.salary,
            employment_type=details.employment_type,
            posted_at=parse_posted_date(details.posted_date or discovered.get("posted_date")),
            scraped_by=discovered.get("discovered_by"),
            raw_data=details.raw_data,
        )
        await self.repository.mark_discovered_job_completed(discovered_job_id, job["id"])
        logger.info("promoted discovered job %s to job %s", discovered_job_id, job["id"])

        if trigger_extraction or trigger_embedding:
            if self.dispatcher is None:
                logger.warning("enrichment requested for job %s but no dispatcher is configured", job["id"])
            else:
                self.dispatcher.dispatch_for_job(job, extraction=trigger_extraction, embedding=trigger_embedding)
        return str(job["id"])

    async def _record_failure(self, discovered_job_id: str, message: str, *, retry_status: str) -> None:
        try:
            updated = await self.repository.record_discovered_job_failure(
                discovered_job_id,
                message,
                retry_status=retry_status,
            )
        except RepositoryError:
            logger.exception("could not record failure for discovered job %s", discovered_job_id)
            return
        logger.warning(
            "discovered job %s failed attempt %s (status=%s): %s",
            discovered_job_id,
            updated["processing_attempts"],
            updated["processing_status"],
            message,
        )
