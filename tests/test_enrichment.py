from __future__ import annotations

import asyncio
import logging

import pytest

from jobpipe.jobs.enrichment import EnrichmentDispatcher, EnrichmentError, extract_job_data, generate_job_embedding
from jobpipe.schemas.extraction import JobExtractionResult, Skill
from jobpipe.services.ai_client import EmbeddingResponse, ExtractionResponse
from jobpipe.services.costs import calculate_cost
from jobpipe.services.repository import RepositoryNotFoundError


class FakeAIClient:
    def __init__(self, *, dimensions: int = 4, structured_error: Exception | None = None) -> None:
        self.dimensions = dimensions
        self.structured_error = structured_error
        self.extract_calls: list[tuple[str, str | None, str | None]] = []
        self.embed_calls: list[dict] = []

    async def extract(self, text: str, *, title: str | None = None, company: str | None = None):
        self.extract_calls.append((text, title, company))
        return ExtractionResponse(
            result=JobExtractionResult(skills=[Skill(name="Python")], experience_level="mid"),
            cost_metadata=calculate_cost("gemini-2.0-flash-exp", {"prompt_tokens": 100}, "job-extraction"),
        )

    async def embed_structured(self, extraction: JobExtractionResult):
        if self.structured_error is not None:
            raise self.structured_error
        return EmbeddingResponse(
            embedding=[0.1] * self.dimensions,
            cost_metadata=calculate_cost("text-embedding-004", {"prompt_tokens": 5}, "structured-embedding"),
        )

    async def embed_job(self, *, title: str, company: str, description: str):
        self.embed_calls.append({"title": title, "company": company, "description": description})
        return EmbeddingResponse(
            embedding=[0.2] * self.dimensions,
            cost_metadata=calculate_cost("text-embedding-004", {"prompt_tokens": 50}, "embedding"),
        )


def _create_job(store, external_id: str = "4100000001", description: str = "Write Python.") -> dict:
    return asyncio.run(
        store.create_or_update_job(
            external_id=external_id,
            url_hash="hash",
            url=f"https://www.linkedin.com/jobs/view/{external_id}",
            title="Backend Engineer",
            company="Acme",
            description=description,
        )
    )


def test_extract_job_data_fills_title_and_company_from_the_job(store) -> None:
    job = _create_job(store)
    ai_client = FakeAIClient()

    extraction_id = asyncio.run(
        extract_job_data(
            job["id"],
            "Write Python.",
            repository=store,
            ai_client=ai_client,
            extraction_source="gemini",
            embedding_dimensions=4,
        )
    )

    assert ai_client.extract_calls == [("Write Python.", "Backend Engineer", "Acme")]
    [row] = store.job_extractions
    assert row["id"] == extraction_id
    assert row["extraction_model"] == "gemini-2.0-flash-exp"
    assert row["extraction_source"] == "gemini"
    assert row["structured_embedding"] == [0.1] * 4
    assert row["metadata"]["extraction"]["operation"] == "job-extraction"
    assert row["metadata"]["embedding"]["operation"] == "structured-embedding"


def test_structured_embedding_failure_still_stores_extraction(store, caplog) -> None:
    job = _create_job(store)
    ai_client = FakeAIClient(structured_error=RuntimeError("quota exceeded"))

    with caplog.at_level(logging.WARNING):
        asyncio.run(
            extract_job_data(
                job["id"],
                "Write Python.",
                repository=store,
                ai_client=ai_client,
                job_title="Backend Engineer",
                company_name="Acme",
                embedding_dimensions=4,
            )
        )

    [row] = store.job_extractions
    assert row["structured_embedding"] is None
    assert row["metadata"]["embedding"] is None
    assert "quota exceeded" in caplog.text


def test_extract_job_data_for_unknown_job_raises(store) -> None:
    with pytest.raises(RepositoryNotFoundError):
        asyncio.run(extract_job_data("missing", "text", repository=store, ai_client=FakeAIClient()))


def test_generate_job_embedding_writes_vector_and_cost_metadata(store) -> None:
    job = _create_job(store)

    dimensions = asyncio.run(
        generate_job_embedding(
            job["id"],
            title=job["title"],
            company=job["company"],
            description=job["description"],
            repository=store,
            ai_client=FakeAIClient(),
            embedding_dimensions=4,
        )
    )

    assert dimensions == 4
    stored = store.jobs[job["id"]]
    assert stored["embedding"] == [0.2] * 4
    assert stored["metadata"]["embedding"]["operation"] == "embedding"


def test_generate_job_embedding_rejects_wrong_dimensions(store) -> None:
    job = _create_job(store)

    with pytest.raises(EnrichmentError, match="expected 768"):
        asyncio.run(
            generate_job_embedding(
                job["id"],
                title="t",
                company="c",
                description="d",
                repository=store,
                ai_client=FakeAIClient(dimensions=3),
            )
        )
    assert store.jobs[job["id"]]["embedding"] is None


def test_dispatcher_logs_stage_failures_without_raising(store, caplog, no_sleep) -> None:
    job = _create_job(store)
    dispatcher = EnrichmentDispatcher(store, FakeAIClient(dimensions=3), embedding_dimensions=4, sleep=no_sleep)

    async def run() -> None:
        tasks = dispatcher.dispatch_for_job(job, extraction=False, embedding=True)
        assert len(tasks) == 1
        await dispatcher.drain()

    with caplog.at_level(logging.ERROR):
        asyncio.run(run())

    assert dispatcher.pending == 0
    assert "generate_job_embedding" in caplog.text
    assert store.jobs[job["id"]]["embedding"] is None


def test_dispatcher_runs_both_stages(store, no_sleep) -> None:
    job = _create_job(store)
    ai_client = FakeAIClient()
    dispatcher = EnrichmentDispatcher(store, ai_client, embedding_dimensions=4, sleep=no_sleep)

    async def run() -> None:
        dispatcher.dispatch_for_job(job, extraction=True, embedding=True)
        await dispatcher.drain()

    asyncio.run(run())

    assert len(store.job_extractions) == 1
    assert store.jobs[job["id"]]["embedding"] == [0.2] * 4
    assert ai_client.embed_calls[0]["description"] == "Write Python."


def test_dispatcher_skips_extraction_without_description(store, no_sleep) -> None:
    job = _create_job(store, description="")
    dispatcher = EnrichmentDispatcher(store, FakeAIClient(), embedding_dimensions=4, sleep=no_sleep)

    async def run() -> int:
        tasks = dispatcher.dispatch_for_job(job, extraction=True, embedding=False)
        await dispatcher.drain()
        return len(tasks)

    assert asyncio.run(run()) == 0
    assert store.job_extractions == []
