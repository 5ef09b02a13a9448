from fastapi import APIRouter, Depends, HTTPException, status

from jobpipe.api.deps import get_dispatcher
from jobpipe.core.policies import EXTRACT_JOB_DATA, GENERATE_JOB_EMBEDDING
from jobpipe.jobs.enrichment import EnrichmentDispatcher
from jobpipe.schemas.jobs import EnrichmentAccepted, ExtractionTriggerRequest
from jobpipe.services.repository import RepositoryNotFoundError, RepositoryUnavailableError, get_repository

router = APIRouter()


async def _load_job(repository, job_id: str) -> dict:
    try:
        return await repository.get_job(job_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


def _require_dispatcher(dispatcher: EnrichmentDispatcher | None) -> EnrichmentDispatcher:
    if dispatcher is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="enrichment is not configured")
    return dispatcher


@router.post("/{job_id}/extraction", response_model=EnrichmentAccepted, status_code=status.HTTP_202_ACCEPTED)
async def trigger_extraction(
    job_id: str,
    payload: ExtractionTriggerRequest | None = None,
    repository=Depends(get_repository),
    dispatcher: EnrichmentDispatcher | None = Depends(get_dispatcher),
) -> EnrichmentAccepted:
    active_dispatcher = _require_dispatcher(dispatcher)
    job = await _load_job(repository, job_id)

    job_text = (payload.job_text if payload else None) or job.get("description") or ""
    if not job_text.strip():
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail="job has no description; provide job_text",
        )

    active_dispatcher.dispatch_extraction(
        job["id"],
        job_text,
        job_title=job.get("title"),
        company_name=job.get("company"),
    )
    return EnrichmentAccepted(job_id=job["id"], stage=EXTRACT_JOB_DATA)


@router.post("/{job_id}/embedding", response_model=EnrichmentAccepted, status_code=status.HTTP_202_ACCEPTED)
async def trigger_embedding(
    job_id: str,
    repository=Depends(get_repository),
    dispatcher: EnrichmentDispatcher | None = Depends(get_dispatcher),
) -> EnrichmentAccepted:
    active_dispatcher = _require_dispatcher(dispatcher)
    job = await _load_job(repository, job_id)
    active_dispatcher.dispatch_embedding(
        job["id"],
        title=job.get("title") or "",
        company=job.get("company") or "",
        description=job.get("description") or "",
    )
    return EnrichmentAccepted(job_id=job["id"], stage=GENERATE_JOB_EMBEDDING)
