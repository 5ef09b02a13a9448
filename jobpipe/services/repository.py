from __future__ import annotations

import json
from datetime import datetime
from functools import lru_cache
from typing import TYPE_CHECKING, Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from jobpipe.core.config import get_settings
from jobpipe.schemas.discovered_jobs import DiscoveredJobIn
from jobpipe.schemas.extraction import JobExtractionResult

if TYPE_CHECKING:
    from jobpipe.services.store import InMemoryStore


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


ELIGIBLE_STATUSES = ("pending", "queued")
TERMINAL_STATUSES = ("completed", "failed")
UNPROCESSED_ORDERINGS = {
    "priority_score": "priority_score desc, id asc",
    "discovered_at": "discovered_at asc, id asc",
}

_DISCOVERED_JOB_COLUMNS = """
  id::text as id,
  external_id,
  url,
  title,
  company,
  location,
  employment_type,
  work_type,
  is_promoted,
  is_easy_apply,
  has_verified,
  insight,
  posted_date,
  company_logo_url,
  discovered_by,
  discovery_source,
  discovery_url,
  raw_data,
  priority_score,
  discovered_at,
  processed_at,
  processed_job_id::text as processed_job_id,
  processing_status::text as processing_status,
  processing_attempts,
  processing_started_at,
  last_process_error
"""

_JOB_COLUMNS = """
  id::text as id,
  external_id,
  url_hash,
  url,
  title,
  company,
  description,
  location,
  salary,
  employment_type,
  posted_at,
  scraped_by,
  raw_data,
  metadata,
  created_at,
  updated_at
"""


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        max_processing_attempts: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.max_processing_attempts = max(1, max_processing_attempts)
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def existing_external_ids(self, external_ids: list[str]) -> set[str]:
        if not external_ids:
            return set()
        pool = await self._get_pool()
        rows = await pool.fetch(
            "select external_id from discovered_jobs where external_id = any($1::text[])",
            list(dict.fromkeys(external_ids)),
        )
        return {row["external_id"] for row in rows}

    async def upsert_discovered_job(self, job: DiscoveredJobIn, *, priority_score: int) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            insert into discovered_jobs (
              external_id,
              url,
              title,
              company,
              location,
              employment_type,
              work_type,
              is_promoted,
              is_easy_apply,
              has_verified,
              insight,
              posted_date,
              company_logo_url,
              discovered_by,
              discovery_source,
              discovery_url,
              raw_data,
              priority_score
            )
            values ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17::json, $18)
            on conflict (external_id) do update
            set
              url = excluded.url,
              title = excluded.title,
              company = excluded.company,
              location = excluded.location,
              employment_type = excluded.employment_type,
              work_type = excluded.work_type,
              is_promoted = excluded.is_promoted,
              is_easy_apply = excluded.is_easy_apply,
              has_verified = excluded.has_verified,
              insight = excluded.insight,
              posted_date = excluded.posted_date,
              company_logo_url = excluded.company_logo_url,
              raw_data = coalesce(excluded.raw_data, discovered_jobs.raw_data),
              priority_score = excluded.priority_score,
              updated_at = now()
            returning {_DISCOVERED_JOB_COLUMNS}
            """,
            job.external_id,
            job.url,
            job.title,
            job.company,
            job.location or None,
            job.employment_type or None,
            job.work_type or None,
            job.is_promoted,
            job.is_easy_apply,
            job.has_verified,
            job.insight or None,
            job.posted_date or None,
            job.company_logo_url or None,
            job.discovered_by or None,
            job.discovery_source,
            job.discovery_url or None,
            json.dumps(job.raw_data) if job.raw_data is not None else None,
            priority_score,
        )
        return self._discovered_job_row_to_dict(row)

    async def get_discovered_job(self, discovered_job_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"select {_DISCOVERED_JOB_COLUMNS} from discovered_jobs where id = $1::uuid",
                discovered_job_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("discovered job not found") from exc
        if not row:
            raise RepositoryNotFoundError(f"discovered job not found: {discovered_job_id}")
        return self._discovered_job_row_to_dict(row)

    async def find_discovered_job_by_external_id(self, external_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"select {_DISCOVERED_JOB_COLUMNS} from discovered_jobs where external_id = $1",
            external_id,
        )
        return self._discovered_job_row_to_dict(row) if row else None

    async def find_unprocessed_discovered_jobs(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        discovery_source: str | None = None,
        min_age_hours: float | None = None,
        order_by: str = "priority_score",
    ) -> tuple[list[dict[str, Any]], int]:
        pool = await self._get_pool()
        conditions: list[str] = [
            "processed_at is null",
            "processing_status in ('pending', 'queued')",
        ]
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if discovery_source:
            conditions.append(f"discovery_source = {bind(discovery_source)}")
        if min_age_hours is not None and min_age_hours > 0:
            conditions.append(
                f"discovered_at <= now() - ({bind(float(min_age_hours))}::double precision * interval '1 hour')"
            )

        where_sql = " and ".join(conditions)
        order_by_sql = UNPROCESSED_ORDERINGS.get(order_by, UNPROCESSED_ORDERINGS["priority_score"])
        filter_params = list(params)
        limit_token = bind(max(0, limit))
        offset_token = bind(max(0, offset))

        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                select {_DISCOVERED_JOB_COLUMNS}
                from discovered_jobs
                where {where_sql}
                order by {order_by_sql}
                limit {limit_token}
                offset {offset_token}
                """,
                *params,
            )
            count = await conn.fetchval(
                f"select count(*) from discovered_jobs where {where_sql}",
                *filter_params,
            )
        return [self._discovered_job_row_to_dict(row) for row in rows], int(count or 0)

    async def mark_discovered_job_processing(self, discovered_job_id: str) -> dict[str, Any]:
        return await self._update_discovered_job(
            discovered_job_id,
            """
            processing_status = 'processing',
            processing_started_at = now(),
            updated_at = now()
            """,
        )

    async def mark_discovered_job_completed(self, discovered_job_id: str, job_id: str) -> dict[str, Any]:
        return await self._update_discovered_job(
            discovered_job_id,
            """
            processed_at = now(),
            processed_job_id = $2::uuid,
            processing_status = 'completed',
            processing_started_at = null,
            updated_at = now()
            """,
            job_id,
        )

    async def record_discovered_job_failure(
        self,
        discovered_job_id: str,
        error_message: str,
        *,
        retry_status: str = "pending",
    ) -> dict[str, Any]:
        if retry_status not in ELIGIBLE_STATUSES:
            retry_status = "pending"
        return await self._update_discovered_job(
            discovered_job_id,
            """
            processing_attempts = processing_attempts + 1,
            last_process_error = $2,
            processing_status = case
              when processing_attempts + 1 >= $3::int then 'failed'::discovered_job_status
              else $4::discovered_job_status
            end,
            processing_started_at = null,
            updated_at = now()
            """,
            error_message,
            self.max_processing_attempts,
            retry_status,
        )

    async def reap_stale_processing(self, *, stale_after_seconds: int, limit: int) -> int:
        pool = await self._get_pool()
        bounded_limit = max(1, min(limit, 1000))
        rows = await pool.fetch(
            """
            with stale as (
              select id
              from discovered_jobs
              where processing_status = 'processing'
                and processing_started_at is not null
                and processing_started_at <= now() - ($1::int * interval '1 second')
              order by processing_started_at asc
              limit $2
              for update skip locked
            )
            update discovered_jobs d
            set
              processing_status = 'pending',
              processing_started_at = null,
              updated_at = now()
            from stale s
            where d.id = s.id
            returning d.id::text as id
            """,
            max(0, stale_after_seconds),
            bounded_limit,
        )
        return len(rows)

    async def find_job_by_external_id(self, external_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(f"select {_JOB_COLUMNS} from jobs where external_id = $1", external_id)
        return self._job_row_to_dict(row) if row else None

    async def get_job(self, job_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(f"select {_JOB_COLUMNS} from jobs where id = $1::uuid", job_id)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc
        if not row:
            raise RepositoryNotFoundError(f"job not found: {job_id}")
        return self._job_row_to_dict(row)

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
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            insert into jobs (
              external_id,
              url_hash,
              url,
              title,
              company,
              description,
              location,
              salary,
              employment_type,
              posted_at,
              scraped_by,
              raw_data
            )
            values ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12::json)
            on conflict (external_id) do update
            set
              url_hash = excluded.url_hash,
              url = excluded.url,
              title = excluded.title,
              company = excluded.company,
              description = excluded.description,
              location = excluded.location,
              salary = excluded.salary,
              employment_type = excluded.employment_type,
              posted_at = excluded.posted_at,
              scraped_by = coalesce(excluded.scraped_by, jobs.scraped_by),
              raw_data = coalesce(excluded.raw_data, jobs.raw_data),
              updated_at = now()
            returning {_JOB_COLUMNS}
            """,
            external_id,
            url_hash,
            url,
            title,
            company,
            description,
            location,
            salary,
            employment_type,
            posted_at,
            scraped_by,
            json.dumps(raw_data) if raw_data is not None else None,
        )
        return self._job_row_to_dict(row)

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
        pool = await self._get_pool()
        payload = extraction.model_dump(mode="json")

        def as_json(value: Any) -> str | None:
            return json.dumps(value) if value is not None else None

        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        """
                        insert into job_extractions (
                          job_id,
                          requirements,
                          responsibilities,
                          benefits,
                          qualifications,
                          skills,
                          salary_min,
                          salary_max,
                          salary_currency,
                          salary_period,
                          experience_level,
                          education_level,
                          work_type,
                          work_schedule,
                          extracted_data,
                          extraction_model,
                          extraction_source,
                          metadata
                        )
                        values (
                          $1::uuid, $2::jsonb, $3::jsonb, $4::jsonb, $5::jsonb, $6::jsonb,
                          $7, $8, $9, $10, $11, $12, $13, $14, $15::jsonb, $16, $17, $18::jsonb
                        )
                        returning id::text as id, job_id::text as job_id, extracted_at
                        """,
                        job_id,
                        as_json(payload.get("requirements")),
                        as_json(payload.get("responsibilities")),
                        as_json(payload.get("benefits")),
                        as_json(payload.get("qualifications")),
                        as_json(payload.get("skills")),
                        extraction.salary_min,
                        extraction.salary_max,
                        extraction.salary_currency,
                        extraction.salary_period,
                        extraction.experience_level,
                        extraction.education_level,
                        extraction.work_type,
                        extraction.work_schedule,
                        json.dumps(payload),
                        extraction_model,
                        extraction_source,
                        as_json(metadata),
                    )
                    if structured_embedding:
                        # vector columns only accept raw literal writes
                        await conn.execute(
                            "update job_extractions set structured_embedding = $2::vector where id = $1::uuid",
                            row["id"],
                            self._vector_literal(structured_embedding),
                        )
        except (pg_exc.ForeignKeyViolationError, pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError(f"job not found: {job_id}") from exc

        return {
            "id": row["id"],
            "job_id": row["job_id"],
            "extracted_at": row["extracted_at"],
            "has_structured_embedding": bool(structured_embedding),
        }

    async def update_job_embedding(
        self,
        job_id: str,
        embedding: list[float],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        pool = await self._get_pool()
        try:
            updated = await pool.fetchval(
                """
                update jobs
                set
                  embedding = $2::vector,
                  metadata = case
                    when $3::jsonb is null then metadata
                    else coalesce(metadata, '{}'::jsonb) || jsonb_build_object('embedding', $3::jsonb)
                  end,
                  updated_at = now()
                where id = $1::uuid
                returning id::text
                """,
                job_id,
                self._vector_literal(embedding),
                json.dumps(metadata) if metadata is not None else None,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc
        if not updated:
            raise RepositoryNotFoundError(f"job not found: {job_id}")

    async def _update_discovered_job(self, discovered_job_id: str, set_sql: str, *args: Any) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                update discovered_jobs
                set {set_sql}
                where id = $1::uuid
                returning {_DISCOVERED_JOB_COLUMNS}
                """,
                discovered_job_id,
                *args,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("discovered job not found") from exc
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise RepositoryUnavailableError(f"discovered job update failed: {exc}") from exc
        if not row:
            raise RepositoryNotFoundError(f"discovered job not found: {discovered_job_id}")
        return self._discovered_job_row_to_dict(row)

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("JP_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _vector_literal(embedding: list[float]) -> str:
        return "[" + ",".join(str(float(value)) for value in embedding) + "]"

    @staticmethod
    def _coerce_json_dict(value: Any) -> dict[str, Any] | None:
        if value is None:
            return None
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return None
        if isinstance(value, dict):
            return value
        return None

    @classmethod
    def _discovered_job_row_to_dict(cls, row: asyncpg.Record) -> dict[str, Any]:
        record = dict(row)
        record["raw_data"] = cls._coerce_json_dict(record.get("raw_data"))
        record["processing_attempts"] = int(record.get("processing_attempts") or 0)
        return record

    @classmethod
    def _job_row_to_dict(cls, row: asyncpg.Record) -> dict[str, Any]:
        record = dict(row)
        record["raw_data"] = cls._coerce_json_dict(record.get("raw_data"))
        record["metadata"] = cls._coerce_json_dict(record.get("metadata"))
        return record


@lru_cache
def get_repository() -> PostgresRepository | InMemoryStore:
    settings = get_settings()
    if settings.storage_backend == "memory":
        from jobpipe.services.store import InMemoryStore

        return InMemoryStore(max_processing_attempts=settings.max_processing_attempts)
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        max_processing_attempts=settings.max_processing_attempts,
    )
