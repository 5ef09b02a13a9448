from fastapi import APIRouter

from jobpipe.core.config import get_settings

router = APIRouter()


@router.get("/")
async def root() -> dict[str, str]:
    settings = get_settings()
    return {"service": settings.app_name, "status": "ok"}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok", "storage_backend": get_settings().storage_backend}
