from contextlib import AsyncExitStack, asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from jobpipe.api.router import api_router
from jobpipe.core.config import get_settings
from jobpipe.core.telemetry import TelemetryRuntime, configure_logging, setup_telemetry, shutdown_telemetry
from jobpipe.jobs.enrichment import EnrichmentDispatcher
from jobpipe.services.ai_client import AIClient
from jobpipe.services.detail_client import DetailFetchClient
from jobpipe.services.repository import get_repository

settings = get_settings()
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with AsyncExitStack() as stack:
        app.state.detail_client = await stack.enter_async_context(
            DetailFetchClient(settings.detail_fetch_base_url, timeout_seconds=settings.detail_fetch_timeout_seconds)
        )
        app.state.ai_client = await stack.enter_async_context(
            AIClient(
                settings.ai_base_url,
                api_key=settings.ai_api_key,
                extraction_model=settings.extraction_model,
                embedding_model=settings.embedding_model,
                timeout_seconds=settings.ai_timeout_seconds,
            )
        )
        app.state.dispatcher = EnrichmentDispatcher(
            get_repository(),
            app.state.ai_client,
            extraction_source=settings.extraction_source,
            embedding_dimensions=settings.embedding_dimensions,
        )
        try:
            yield
        finally:
            await app.state.dispatcher.drain()
            if _telemetry_runtime is not None:
                shutdown_telemetry(_telemetry_runtime)
            await get_repository().close()
            get_repository.cache_clear()


configure_logging()
app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_telemetry(settings, component="api", app=app)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)
