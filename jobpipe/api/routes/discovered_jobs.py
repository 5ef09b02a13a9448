from fastapi import APIRouter, Depends, HTTPException, Query, status

from jobpipe.api.deps import get_orchestrator
from jobpipe.core.config import get_settings
from jobpipe.jobs.intake import save_discovered_jobs
from jobpipe.jobs.promotion import StageOrchestrator
from jobpipe.schemas.discovered_jobs import (
    DiscoveredJobOut,
    SaveDiscoveredJobsRequest,
    SaveDiscoveredJobsResult,
    UnprocessedDiscoveredJobsOut,
    UnprocessedOrderBy,
)
from jobpipe.schemas.pipeline import PromoteRequest, PromotionOutcome
from jobpipe.services.discovery import DiscoveryStore
from jobpipe.services.repository import (
    RepositoryConflictError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()


@router.post("", response_model=SaveDiscoveredJobsResult)
async def save_jobs(
    payload: SaveDiscoveredJobsRequest,
    repository=Depends(get_repository),
) -> SaveDiscoveredJobsResult:
    store = DiscoveryStore(repository, batch_size=get_settings().upsert_batch_size)
    try:
        return await save_discovered_jobs(payload, store=store)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.get("/unprocessed", response_model=UnprocessedDiscoveredJobsOut)
async def list_unprocessed(
    limit: int = Query(default=50, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    discovery_source: str | None = Query(default=None),
    min_age_hours: float | None = Query(default=None),
    order_by: UnprocessedOrderBy = Query(default="priority_score"),
    repository=Depends(get_repository),
) -> UnprocessedDiscoveredJobsOut:
    try:
        rows, count = await repository.find_unprocessed_discovered_jobs(
            limit=limit,
            offset=offset,
            discovery_source=discovery_source,
            min_age_hours=min_age_hours,
            order_by=order_by,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return UnprocessedDiscoveredJobsOut(results=[DiscoveredJobOut(**row) for row in rows], count=count)


@router.get("/by-external-id/{external_id}", response_model=DiscoveredJobOut)
async def get_by_external_id(external_id: str, repository=Depends(get_repository)) -> DiscoveredJobOut:
    try:
        row = await DiscoveryStore(repository).find_by_external_id(external_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="discovered job not found")
    return DiscoveredJobOut(**row)


@router.post("/{discovered_job_id}/promote", response_model=PromotionOutcome)
async def promote_discovered_job(
    discovered_job_id: str,
    payload: PromoteRequest | None = None,
    orchestrator: StageOrchestrator = Depends(get_orchestrator),
) -> PromotionOutcome:
    options = payload or PromoteRequest()
    try:
        outcome = await orchestrator.promote(
            discovered_job_id,
            trigger_extraction=options.trigger_extraction,
            trigger_embedding=options.trigger_embedding,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc

    if outcome.status == "failed" and outcome.external_id is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=outcome.error or "discovered job not found")
    return outcome
