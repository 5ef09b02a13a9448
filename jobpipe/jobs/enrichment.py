from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from opentelemetry import trace

from jobpipe.core.policies import (
    EXTRACT_JOB_DATA,
    GENERATE_JOB_EMBEDDING,
    STAGE_POLICIES,
    StagePolicy,
    describe_error,
    run_activity,
)
from jobpipe.services.ai_client import AIClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_EMBEDDING_DIMENSIONS = 768


class EnrichmentError(Exception):
    """Raised when an enrichment stage cannot produce a usable result."""


async def extract_job_data(
    job_id: str,
    job_text: str,
    *,
    repository: Any,
    ai_client: AIClient,
    job_title: str | None = None,
    company_name: str | None = None,
    extraction_source: str | None = None,
    embedding_dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS,
) -> str:
    """Extract structured fields for a canonical job and append an extraction row.

    The structured-text embedding is best effort: when it fails the row is
    still written without a vector.
    """
    if not job_title or not company_name:
        job = await repository.get_job(job_id)
        job_title = job_title or job.get("title")
        company_name = company_name or job.get("company")

    extraction = await ai_client.extract(job_text, title=job_title, company=company_name)

    structured_embedding: list[float] | None = None
    structured_cost: dict[str, Any] | None = None
    try:
        structured = await ai_client.embed_structured(extraction.result)
    except Exception as exc:
        logger.warning("structured embedding failed for job %s: %s", job_id, describe_error(exc))
    else:
        if structured is not None and len(structured.embedding) == embedding_dimensions:
            structured_embedding = structured.embedding
            structured_cost = structured.cost_metadata
        elif structured is not None:
            logger.warning(
                "structured embedding for job %s has %s dimensions, expected %s",
                job_id,
                len(structured.embedding),
                embedding_dimensions,
            )

    row = await repository.create_job_extraction(
        job_id=job_id,
        extraction=extraction.result,
        extraction_model=extraction.cost_metadata.get("model"),
        extraction_source=extraction_source,
        metadata={"extraction": extraction.cost_metadata, "embedding": structured_cost},
        structured_embedding=structured_embedding,
    )
    logger.info("stored extraction %s for job %s", row["id"], job_id)
    return str(row["id"])


async def generate_job_embedding(
    job_id: str,
    *,
    title: str,
    company: str,
    description: str,
    repository: Any,
    ai_client: AIClient,
    embedding_dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS,
) -> int:
    response = await ai_client.embed_job(title=title, company=company, description=description)
    if len(response.embedding) != embedding_dimensions:
        raise EnrichmentError(
            f"embedding for job {job_id} has {len(response.embedding)} dimensions, expected {embedding_dimensions}"
        )
    await repository.update_job_embedding(job_id, response.embedding, response.cost_metadata)
    logger.info("stored embedding for job %s", job_id)
    return len(response.embedding)


class EnrichmentDispatcher:
    """Runs optional enrichment stages as detached tasks.

    Stage errors are logged from a done-callback and never reach the caller
    that scheduled them.
    """

    def __init__(
        self,
        repository: Any,
        ai_client: AIClient,
        *,
        extraction_source: str | None = None,
        embedding_dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS,
        policies: Mapping[str, StagePolicy] = STAGE_POLICIES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.repository = repository
        self.ai_client = ai_client
        self.extraction_source = extraction_source
        self.embedding_dimensions = embedding_dimensions
        self.policies = policies
        self.sleep = sleep
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch_extraction(
        self,
        job_id: str,
        job_text: str,
        *,
        job_title: str | None = None,
        company_name: str | None = None,
    ) -> asyncio.Task[Any]:
        async def operation() -> str:
            return await extract_job_data(
                job_id,
                job_text,
                repository=self.repository,
                ai_client=self.ai_client,
                job_title=job_title,
                company_name=company_name,
                extraction_source=self.extraction_source,
                embedding_dimensions=self.embedding_dimensions,
            )

        return self._spawn(EXTRACT_JOB_DATA, job_id, operation)

    def dispatch_embedding(self, job_id: str, *, title: str, company: str, description: str) -> asyncio.Task[Any]:
        async def operation() -> int:
            return await generate_job_embedding(
                job_id,
                title=title,
                company=company,
                description=description,
                repository=self.repository,
                ai_client=self.ai_client,
                embedding_dimensions=self.embedding_dimensions,
            )

        return self._spawn(GENERATE_JOB_EMBEDDING, job_id, operation)

    def dispatch_for_job(
        self,
        job: Mapping[str, Any],
        *,
        extraction: bool,
        embedding: bool,
    ) -> list[asyncio.Task[Any]]:
        job_id = str(job["id"])
        description = job.get("description") or ""
        tasks: list[asyncio.Task[Any]] = []
        if extraction:
            if description.strip():
                tasks.append(
                    self.dispatch_extraction(
                        job_id,
                        description,
                        job_title=job.get("title"),
                        company_name=job.get("company"),
                    )
                )
            else:
                logger.warning("skipping extraction for job %s: no description", job_id)
        if embedding:
            tasks.append(
                self.dispatch_embedding(
                    job_id,
                    title=job.get("title") or "",
                    company=job.get("company") or "",
                    description=description,
                )
            )
        return tasks

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, stage: str, job_id: str, operation: Callable[[], Awaitable[Any]]) -> asyncio.Task[Any]:
        async def run() -> Any:
            with tracer.start_as_current_span(f"enrichment.{stage}") as span:
                span.set_attribute("job.id", job_id)
                return await run_activity(stage, operation, policies=self.policies, sleep=self.sleep)

        task = asyncio.create_task(run(), name=f"{stage}:{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("enrichment task %s cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("enrichment task %s failed: %s", task.get_name(), describe_error(exc))
