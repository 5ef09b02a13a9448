from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from jobpipe.schemas.discovered_jobs import DiscoveredJobIn
from jobpipe.schemas.extraction import JobExtractionResult
from jobpipe.services.repository import (
    ELIGIBLE_STATUSES,
    RepositoryNotFoundError,
    RepositoryValidationError,
)

_MUTABLE_DISCOVERY_FIELDS = (
    "url",
    "title",
    "company",
    "location",
    "employment_type",
    "work_type",
    "is_promoted",
    "is_easy_apply",
    "has_verified",
    "insight",
    "posted_date",
    "company_logo_url",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStore:
    """Process-local repository for local runs and tests.

    Mirrors the ``PostgresRepository`` surface and returns detached copies so
    callers never mutate stored rows.
    """

    def __init__(self, *, max_processing_attempts: int = 3) -> None:
        self.max_processing_attempts = max(1, max_processing_attempts)
        self.discovered_jobs: dict[str, dict[str, Any]] = {}
        self.jobs: dict[str, dict[str, Any]] = {}
        self.job_extractions: list[dict[str, Any]] = []

    async def close(self) -> None:
        return None

    async def existing_external_ids(self, external_ids: list[str]) -> set[str]:
        wanted = set(external_ids)
        return {row["external_id"] for row in self.discovered_jobs.values() if row["external_id"] in wanted}

    async def upsert_discovered_job(self, job: DiscoveredJobIn, *, priority_score: int) -> dict[str, Any]:
        if not 0 <= priority_score <= 100:
            raise RepositoryValidationError("priority_score must be between 0 and 100")
        now = _utcnow()
        existing = self._discovered_by_external_id(job.external_id)
        if existing is None:
            row: dict[str, Any] = {
                "id": str(uuid4()),
                "external_id": job.external_id,
                "discovered_by": job.discovered_by or None,
                "discovery_source": job.discovery_source,
                "discovery_url": job.discovery_url or None,
                "raw_data": copy.deepcopy(job.raw_data),
                "discovered_at": now,
                "processed_at": None,
                "processed_job_id": None,
                "processing_status": "pending",
                "processing_attempts": 0,
                "processing_started_at": None,
                "last_process_error": None,
            }
            self.discovered_jobs[row["id"]] = row
        else:
            row = existing
            if job.raw_data is not None:
                row["raw_data"] = copy.deepcopy(job.raw_data)

        for field in _MUTABLE_DISCOVERY_FIELDS:
            value = getattr(job, field)
            row[field] = value if value != "" else None
        row["priority_score"] = priority_score
        row["updated_at"] = now
        return copy.deepcopy(row)

    async def get_discovered_job(self, discovered_job_id: str) -> dict[str, Any]:
        return copy.deepcopy(self._require_discovered(discovered_job_id))

    async def find_discovered_job_by_external_id(self, external_id: str) -> dict[str, Any] | None:
        row = self._discovered_by_external_id(external_id)
        return copy.deepcopy(row) if row else None

    async def find_unprocessed_discovered_jobs(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        discovery_source: str | None = None,
        min_age_hours: float | None = None,
        order_by: str = "priority_score",
    ) -> tuple[list[dict[str, Any]], int]:
        cutoff = None
        if min_age_hours is not None and min_age_hours > 0:
            cutoff = _utcnow() - timedelta(hours=min_age_hours)

        matching = [
            row
            for row in self.discovered_jobs.values()
            if row["processed_at"] is None
            and row["processing_status"] in ELIGIBLE_STATUSES
            and (not discovery_source or row["discovery_source"] == discovery_source)
            and (cutoff is None or row["discovered_at"] <= cutoff)
        ]
        if order_by == "discovered_at":
            matching.sort(key=lambda row: (row["discovered_at"], row["id"]))
        else:
            matching.sort(key=lambda row: (-row["priority_score"], row["id"]))

        start = max(0, offset)
        page = matching[start : start + max(0, limit)]
        return [copy.deepcopy(row) for row in page], len(matching)

    async def mark_discovered_job_processing(self, discovered_job_id: str) -> dict[str, Any]:
        row = self._require_discovered(discovered_job_id)
        row["processing_status"] = "processing"
        row["processing_started_at"] = _utcnow()
        row["updated_at"] = row["processing_started_at"]
        return copy.deepcopy(row)

    async def mark_discovered_job_completed(self, discovered_job_id: str, job_id: str) -> dict[str, Any]:
        row = self._require_discovered(discovered_job_id)
        if job_id not in self.jobs:
            raise RepositoryNotFoundError(f"job not found: {job_id}")
        now = _utcnow()
        row.update(
            processed_at=now,
            processed_job_id=job_id,
            processing_status="completed",
            processing_started_at=None,
            updated_at=now,
        )
        return copy.deepcopy(row)

    async def record_discovered_job_failure(
        self,
        discovered_job_id: str,
        error_message: str,
        *,
        retry_status: str = "pending",
    ) -> dict[str, Any]:
        if retry_status not in ELIGIBLE_STATUSES:
            retry_status = "pending"
        row = self._require_discovered(discovered_job_id)
        attempts = row["processing_attempts"] + 1
        row.update(
            processing_attempts=attempts,
            last_process_error=error_message,
            processing_status="failed" if attempts >= self.max_processing_attempts else retry_status,
            processing_started_at=None,
            updated_at=_utcnow(),
        )
        return copy.deepcopy(row)

    async def reap_stale_processing(self, *, stale_after_seconds: int, limit: int) -> int:
        cutoff = _utcnow() - timedelta(seconds=max(0, stale_after_seconds))
        stale = sorted(
            (
                row
                for row in self.discovered_jobs.values()
                if row["processing_status"] == "processing"
                and row["processing_started_at"] is not None
                and row["processing_started_at"] <= cutoff
            ),
            key=lambda row: row["processing_started_at"],
        )[: max(1, min(limit, 1000))]
        for row in stale:
            row.update(processing_status="pending", processing_started_at=None, updated_at=_utcnow())
        return len(stale)

    async def find_job_by_external_id(self, external_id: str) -> dict[str, Any] | None:
        for row in self.jobs.values():
            if row["external_id"] == external_id:
                return copy.deepcopy(row)
        return None

    async def get_job(self, job_id: str) -> dict[str, Any]:
        row = self.jobs.get(job_id)
        if row is None:
            raise RepositoryNotFoundError(f"job not found: {job_id}")
        return copy.deepcopy(row)

    async def create_or_update_job(
        self,
        *,
        external_id: str,
        url_hash: str,
        url: str,
        title: str,
        company: str,
        description: str,
        location: str | None = None,
        salary: str | None = None,
        employment_type: str | None = None,
        posted_at: datetime | None = None,
        scraped_by: str | None = None,
        raw_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        now = _utcnow()
        row = next((item for item in self.jobs.values() if item["external_id"] == external_id), None)
        if row is None:
            row = {
                "id": str(uuid4()),
                "external_id": external_id,
                "scraped_by": None,
                "raw_data": None,
                "metadata": None,
                "embedding": None,
                "created_at": now,
            }
            self.jobs[row["id"]] = row
        row.update(
            url_hash=url_hash,
            url=url,
            title=title,
            company=company,
            description=description,
            location=location,
            salary=salary,
            employment_type=employment_type,
            posted_at=posted_at,
            updated_at=now,
        )
        if scraped_by is not None:
            row["scraped_by"] = scraped_by
        if raw_data is not None:
            row["raw_data"] = copy.deepcopy(raw_data)
        return copy.deepcopy(row)

    async def create_job_extraction(
        self,
        *,
        job_id: str,
        extraction: JobExtractionResult,
        extraction_model: str | None,
        extraction_source: str | None,
        metadata: dict[str, Any] | None,
        structured_embedding: list[float] | None = None,
    ) -> dict[str, Any]:
        if job_id not in self.jobs:
            raise RepositoryNotFoundError(f"job not found: {job_id}")
        row = {
            "id": str(uuid4()),
            "job_id": job_id,
            "extracted_data": extraction.model_dump(mode="json"),
            "extraction_model": extraction_model,
            "extraction_source": extraction_source,
            "metadata": copy.deepcopy(metadata),
            "structured_embedding": list(structured_embedding) if structured_embedding else None,
            "extracted_at": _utcnow(),
        }
        self.job_extractions.append(row)
        return {
            "id": row["id"],
            "job_id": job_id,
            "extracted_at": row["extracted_at"],
            "has_structured_embedding": bool(structured_embedding),
        }

    async def update_job_embedding(
        self,
        job_id: str,
        embedding: list[float],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        row = self.jobs.get(job_id)
        if row is None:
            raise RepositoryNotFoundError(f"job not found: {job_id}")
        row["embedding"] = [float(value) for value in embedding]
        if metadata is not None:
            row["metadata"] = {**(row.get("metadata") or {}), "embedding": copy.deepcopy(metadata)}
        row["updated_at"] = _utcnow()

    def _discovered_by_external_id(self, external_id: str) -> dict[str, Any] | None:
        for row in self.discovered_jobs.values():
            if row["external_id"] == external_id:
                return row
        return None

    def _require_discovered(self, discovered_job_id: str) -> dict[str, Any]:
        row = self.discovered_jobs.get(discovered_job_id)
        if row is None:
            raise RepositoryNotFoundError(f"discovered job not found: {discovered_job_id}")
        return row
