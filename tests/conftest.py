from __future__ import annotations

import os

os.environ.setdefault("JP_OTEL_ENABLED", "false")
os.environ.setdefault("JP_STORAGE_BACKEND", "memory")

from collections.abc import Callable
from typing import Any

import pytest

from jobpipe.schemas.discovered_jobs import DiscoveredJobIn
from jobpipe.schemas.jobs import FullJobRecord
from jobpipe.services.store import InMemoryStore


async def _no_sleep(_: float) -> None:
    return None


class FakeDetailClient:
    """Serves canned detail records keyed by posting URL."""

    def __init__(self) -> None:
        self.responses: dict[str, Any] = {}
        self.calls: list[tuple[str, str | None]] = []

    async def fetch_details(self, url: str, external_id: str | None = None) -> FullJobRecord | None:
        self.calls.append((url, external_id))
        response = self.responses.get(url)
        if isinstance(response, BaseException):
            raise response
        return response


@pytest.fixture
def no_sleep():
    return _no_sleep


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore(max_processing_attempts=3)


@pytest.fixture
def detail_client() -> FakeDetailClient:
    return FakeDetailClient()


@pytest.fixture
def make_job() -> Callable[..., DiscoveredJobIn]:
    def factory(external_id: str = "4100000001", **overrides: Any) -> DiscoveredJobIn:
        payload: dict[str, Any] = {
            "external_id": external_id,
            "url": f"https://www.linkedin.com/jobs/view/{external_id}",
            "title": "Backend Engineer",
            "company": "Acme",
            "discovery_source": "search",
        }
        payload.update(overrides)
        return DiscoveredJobIn(**payload)

    return factory


@pytest.fixture
def detail_record() -> Callable[..., FullJobRecord]:
    def factory(url: str, **overrides: Any) -> FullJobRecord:
        payload: dict[str, Any] = {
            "url": url,
            "title": "Backend Engineer",
            "company": "Acme",
            "description": "Build and operate Python services.",
            "location": "Remote",
            "posted_date": "2 days ago",
        }
        payload.update(overrides)
        return FullJobRecord(**payload)

    return factory
