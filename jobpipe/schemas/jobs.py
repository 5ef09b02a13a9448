from typing import Any

from pydantic import BaseModel


class FullJobRecord(BaseModel):
    """Detail payload returned by the detail-fetch collaborator."""

    external_id: str | None = None
    url: str
    title: str
    company: str
    description: str | None = None
    location: str | None = None
    salary: str | None = None
    employment_type: str | None = None
    work_type: str | None = None
    posted_date: str | None = None
    raw_data: dict[str, Any] | None = None


class ExtractionTriggerRequest(BaseModel):
    job_text: str | None = None


class EnrichmentAccepted(BaseModel):
    job_id: str
    stage: str
    dispatched: bool = True

