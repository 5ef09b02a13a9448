from typing import Literal

from pydantic import BaseModel, Field

PromotionStatus = Literal["processed", "failed", "skipped"]


class BatchRequest(BaseModel):
    batch_size: int = Field(default=50, ge=1, le=1000)
    limit: int | None = Field(default=None, ge=1)
    priority: bool = True
    trigger_extraction: bool = False
    trigger_embedding: bool = False


class BatchResult(BaseModel):
    batch_id: str
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0
    processed_job_ids: list[str] = Field(default_factory=list)
    failed_job_ids: list[str] = Field(default_factory=list)


class PromoteRequest(BaseModel):
    trigger_extraction: bool = False
    trigger_embedding: bool = False


class PromotionOutcome(BaseModel):
    status: PromotionStatus
    discovered_job_id: str
    job_id: str | None = None
    external_id: str | None = None
    error: str | None = None


class ReapResult(BaseModel):
    requeued: int
