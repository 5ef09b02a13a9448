from fastapi import APIRouter

from jobpipe.api.routes import discovered_jobs, health, jobs, pipeline

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(discovered_jobs.router, prefix="/discovered-jobs", tags=["discovery"])
api_router.include_router(pipeline.router, prefix="/pipeline", tags=["pipeline"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["enrichment"])
