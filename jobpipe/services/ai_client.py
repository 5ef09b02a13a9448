from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError

from jobpipe.core.policies import NonRetryableActivityError
from jobpipe.schemas.extraction import JobExtractionResult
from jobpipe.services.costs import (
    OPERATION_EMBEDDING,
    OPERATION_JOB_EXTRACTION,
    OPERATION_STRUCTURED_EMBEDDING,
    calculate_cost,
    extract_embedding_usage,
    extract_usage,
)

MAX_EMBEDDING_TEXT_LENGTH = 30000
NON_RETRYABLE_STATUS_CODES = {400, 401, 403, 422}


class AIServiceError(Exception):
    """Raised when the AI gateway fails in a retryable way."""


class NonRetryableAIServiceError(AIServiceError, NonRetryableActivityError):
    """Raised for auth failures and rejected input."""


@dataclass(slots=True)
class ExtractionResponse:
    result: JobExtractionResult
    cost_metadata: dict[str, Any]


@dataclass(slots=True)
class EmbeddingResponse:
    embedding: list[float]
    cost_metadata: dict[str, Any]


def build_job_embedding_text(title: str, company: str, description: str) -> str:
    text = f"{title} at {company}\n\n{description}"
    if len(text) > MAX_EMBEDDING_TEXT_LENGTH:
        return text[:MAX_EMBEDDING_TEXT_LENGTH] + "..."
    return text


class AIClient:
    """Client for the AI gateway serving structured extraction and embeddings."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        extraction_model: str = "gemini-2.0-flash-exp",
        embedding_model: str = "text-embedding-004",
        timeout_seconds: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.extraction_model = extraction_model
        self.embedding_model = embedding_model
        self.timeout_seconds = timeout_seconds
        self.headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> AIClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
            self._owns_client = True
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def extract(
        self,
        text: str,
        *,
        title: str | None = None,
        company: str | None = None,
    ) -> ExtractionResponse:
        if not text or not text.strip():
            raise NonRetryableAIServiceError("job text cannot be empty")

        payload = await self._post(
            "/extract",
            {"text": text, "title": title, "company": company, "model": self.extraction_model},
        )
        try:
            result = JobExtractionResult.model_validate(payload.get("result") or {})
        except ValidationError as exc:
            raise AIServiceError(f"extraction returned an invalid result: {exc}") from exc

        model = str(payload.get("model") or self.extraction_model)
        return ExtractionResponse(
            result=result,
            cost_metadata=calculate_cost(model, extract_usage(payload.get("usage")), OPERATION_JOB_EXTRACTION),
        )

    async def embed_text(self, text: str, *, operation: str = OPERATION_EMBEDDING) -> EmbeddingResponse:
        if not text or not text.strip():
            raise NonRetryableAIServiceError("text cannot be empty")

        payload = await self._post("/embed", {"text": text, "model": self.embedding_model})
        embedding = payload.get("embedding")
        if not isinstance(embedding, list) or not embedding:
            raise AIServiceError("embedding response was empty or invalid")
        try:
            vector = [float(value) for value in embedding]
        except (TypeError, ValueError) as exc:
            raise AIServiceError("embedding response contained non-numeric values") from exc

        model = str(payload.get("model") or self.embedding_model)
        return EmbeddingResponse(
            embedding=vector,
            cost_metadata=calculate_cost(model, extract_embedding_usage(payload.get("usage")), operation),
        )

    async def embed_job(self, *, title: str, company: str, description: str) -> EmbeddingResponse:
        return await self.embed_text(build_job_embedding_text(title, company, description))

    async def embed_structured(self, extraction: JobExtractionResult) -> EmbeddingResponse | None:
        text = extraction.structured_text()
        if not text:
            return None
        return await self.embed_text(text, operation=OPERATION_STRUCTURED_EMBEDDING)

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        if self._client is None:
            raise RuntimeError("AIClient must be opened with 'async with' before use")

        try:
            response = await self._client.post(f"{self.base_url}{path}", json=body, headers=self.headers)
        except httpx.HTTPError as exc:
            raise AIServiceError(f"AI gateway request to {path} failed: {exc}") from exc

        if response.status_code in NON_RETRYABLE_STATUS_CODES:
            raise NonRetryableAIServiceError(f"AI gateway rejected {path} with status {response.status_code}")
        if response.status_code >= 400:
            raise AIServiceError(f"AI gateway {path} failed with status {response.status_code}")

        payload = response.json()
        if not isinstance(payload, dict):
            raise AIServiceError(f"AI gateway {path} returned a non-object payload")
        return payload
