from fastapi import APIRouter, Depends, HTTPException, Query, status

from jobpipe.api.deps import get_orchestrator
from jobpipe.core.config import get_settings
from jobpipe.jobs.batch import run_process_discovered_jobs
from jobpipe.jobs.promotion import StageOrchestrator
from jobpipe.schemas.pipeline import BatchRequest, BatchResult, ReapResult
from jobpipe.services.repository import RepositoryUnavailableError, get_repository

router = APIRouter()


@router.post("/process-discovered-jobs", response_model=BatchResult)
async def process_discovered_jobs(
    payload: BatchRequest | None = None,
    repository=Depends(get_repository),
    orchestrator: StageOrchestrator = Depends(get_orchestrator),
) -> BatchResult:
    try:
        return await run_process_discovered_jobs(
            payload or BatchRequest(),
            repository=repository,
            orchestrator=orchestrator,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.post("/reap-stale", response_model=ReapResult)
async def reap_stale_processing(
    limit: int = Query(default=100, ge=1, le=1000),
    repository=Depends(get_repository),
) -> ReapResult:
    try:
        requeued = await repository.reap_stale_processing(
            stale_after_seconds=get_settings().processing_stale_after_seconds,
            limit=limit,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return ReapResult(requeued=requeued)
