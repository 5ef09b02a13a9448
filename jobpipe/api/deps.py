from fastapi import Depends, HTTPException, Request, status

from jobpipe.jobs.enrichment import EnrichmentDispatcher
from jobpipe.jobs.promotion import StageOrchestrator
from jobpipe.services.detail_client import DetailFetchClient
from jobpipe.services.repository import get_repository


def get_detail_client(request: Request) -> DetailFetchClient:
    client = getattr(request.app.state, "detail_client", None)
    if client is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="detail client not ready")
    return client


def get_dispatcher(request: Request) -> EnrichmentDispatcher | None:
    return getattr(request.app.state, "dispatcher", None)


def get_orchestrator(
    repository=Depends(get_repository),
    detail_client: DetailFetchClient = Depends(get_detail_client),
    dispatcher: EnrichmentDispatcher | None = Depends(get_dispatcher),
) -> StageOrchestrator:
    return StageOrchestrator(repository, detail_client, dispatcher=dispatcher)
