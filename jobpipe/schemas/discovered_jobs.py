from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from jobpipe.core.urls import extract_external_job_id

ProcessingStatus = Literal["pending", "queued", "processing", "completed", "failed"]
UnprocessedOrderBy = Literal["priority_score", "discovered_at"]


class DiscoveredJobIn(BaseModel):
    external_id: str = Field(min_length=1)
    url: str = Field(min_length=1)
    title: str = Field(min_length=1)
    company: str = Field(min_length=1)
    location: str | None = None
    employment_type: str | None = None
    work_type: str | None = None
    is_promoted: bool = False
    is_easy_apply: bool = False
    has_verified: bool = False
    insight: str | None = None
    posted_date: str | None = None
    company_logo_url: str | None = None
    discovered_by: str | None = None
    discovery_source: str = Field(min_length=1)
    discovery_url: str | None = None
    raw_data: dict[str, Any] | None = None

    @model_validator(mode="before")
    @classmethod
    def _fill_external_id_from_url(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("external_id"):
            derived = extract_external_job_id(data.get("url"))
            if derived:
                return {**data, "external_id": derived}
        return data


class DiscoveredJobOut(BaseModel):
    id: str
    external_id: str
    url: str
    title: str
    company: str
    location: str | None = None
    employment_type: str | None = None
    work_type: str | None = None
    is_promoted: bool = False
    is_easy_apply: bool = False
    has_verified: bool = False
    insight: str | None = None
    posted_date: str | None = None
    company_logo_url: str | None = None
    discovered_by: str | None = None
    discovery_source: str
    discovery_url: str | None = None
    raw_data: dict[str, Any] | None = None
    priority_score: int
    discovered_at: datetime
    processed_at: datetime | None = None
    processed_job_id: str | None = None
    processing_status: ProcessingStatus
    processing_attempts: int = 0
    last_process_error: str | None = None


class SaveDiscoveredJobsRequest(BaseModel):
    jobs: list[DiscoveredJobIn]
    discovered_by: str | None = None


class SaveDiscoveredJobsResult(BaseModel):
    created: int
    updated: int
    total: int


class UnprocessedDiscoveredJobsOut(BaseModel):
    results: list[DiscoveredJobOut]
    count: int
