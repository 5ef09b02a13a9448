from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "jobpipe-api"
    environment: str = "dev"
    storage_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    upsert_batch_size: int = 50
    max_processing_attempts: int = 3
    processing_stale_after_seconds: int = 3600
    detail_fetch_base_url: str = "http://localhost:8100"
    detail_fetch_timeout_seconds: float = 120.0
    ai_base_url: str = "http://localhost:8200"
    ai_api_key: str | None = None
    ai_timeout_seconds: float = 60.0
    extraction_model: str = "gemini-2.0-flash-exp"
    extraction_source: str = "gemini"
    embedding_model: str = "text-embedding-004"
    embedding_dimensions: int = 768
    worker_batch_interval_seconds: float = 3600.0
    worker_batch_size: int = 50
    worker_batch_limit: int | None = None
    worker_priority: bool = True
    worker_trigger_extraction: bool = False
    worker_trigger_embedding: bool = False
    reaper_interval_seconds: float = 300.0
    reaper_batch_size: int = 100
    poll_interval_seconds: float = 5.0
    max_backoff_seconds: float = 60.0
    otel_enabled: bool = True
    otel_service_name: str = "jobpipe"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="JP_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
