from __future__ import annotations

import asyncio

from jobpipe.services.discovery import DiscoveryStore
from jobpipe.services.store import InMemoryStore


def test_bulk_upsert_counts_created_and_updated(store: InMemoryStore, make_job) -> None:
    discovery = DiscoveryStore(store)
    asyncio.run(discovery.bulk_upsert([make_job(str(4100000000 + i)) for i in range(3)]))

    incoming = [make_job(str(4100000000 + i)) for i in range(1, 5)]
    result = asyncio.run(discovery.bulk_upsert(incoming))

    assert (result.created, result.updated, result.total) == (2, 2, 4)
    assert len(store.discovered_jobs) == 5


def test_bulk_upsert_processes_more_than_one_batch(store: InMemoryStore, make_job) -> None:
    discovery = DiscoveryStore(store, batch_size=50)
    result = asyncio.run(discovery.bulk_upsert([make_job(str(4200000000 + i)) for i in range(120)]))

    assert result.created == 120
    assert result.updated == 0
    assert len(store.discovered_jobs) == 120


def test_failed_items_are_left_out_of_both_counts(store: InMemoryStore, make_job) -> None:
    original = store.upsert_discovered_job

    async def flaky_upsert(job, *, priority_score):
        if job.external_id == "4300000002":
            raise RuntimeError("constraint violated")
        return await original(job, priority_score=priority_score)

    store.upsert_discovered_job = flaky_upsert  # type: ignore[method-assign]
    result = asyncio.run(DiscoveryStore(store).bulk_upsert([make_job(f"430000000{i}") for i in range(1, 4)]))

    assert (result.created, result.updated) == (2, 0)
    assert asyncio.run(store.find_discovered_job_by_external_id("4300000002")) is None


def test_upsert_recomputes_score_and_keeps_discovery_provenance(store: InMemoryStore, make_job) -> None:
    discovery = DiscoveryStore(store)
    first = asyncio.run(
        discovery.upsert(
            make_job(
                "4400000001",
                discovered_by="user-1",
                discovery_url="https://www.linkedin.com/jobs/search/?keywords=python",
                raw_data={"b": 1, "a": 2},
            )
        )
    )
    assert first["priority_score"] == 50
    assert first["processing_status"] == "pending"
    assert first["processing_attempts"] == 0

    second = asyncio.run(
        discovery.upsert(
            make_job(
                "4400000001",
                title="Senior Backend Engineer",
                is_easy_apply=True,
                work_type="Remote",
                discovered_by="user-2",
                discovery_source="feed",
            )
        )
    )

    assert second["id"] == first["id"]
    assert second["title"] == "Senior Backend Engineer"
    assert second["priority_score"] == 80
    assert second["discovered_by"] == "user-1"
    assert second["discovery_source"] == "search"
    assert second["discovered_at"] == first["discovered_at"]
    assert list(second["raw_data"]) == ["b", "a"]


def test_find_by_external_id(store: InMemoryStore, make_job) -> None:
    discovery = DiscoveryStore(store)
    asyncio.run(discovery.upsert(make_job("4500000001")))

    found = asyncio.run(discovery.find_by_external_id("4500000001"))
    assert found is not None and found["company"] == "Acme"
    assert asyncio.run(discovery.find_by_external_id("missing")) is None


def test_duplicate_ids_in_one_input_follow_the_snapshot(store: InMemoryStore, make_job) -> None:
    result = asyncio.run(DiscoveryStore(store).bulk_upsert([make_job("4600000001"), make_job("4600000001")]))

    # Both copies are classified against the pre-write snapshot.
    assert result.created == 2
    assert len(store.discovered_jobs) == 1
