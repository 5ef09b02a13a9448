from __future__ import annotations

from typing import Any

import httpx
from pydantic import ValidationError

from jobpipe.core.policies import NonRetryableActivityError
from jobpipe.schemas.jobs import FullJobRecord

NON_RETRYABLE_STATUS_CODES = {400, 401, 403, 422}


class DetailFetchError(Exception):
    """Raised when the detail-fetch collaborator fails in a retryable way."""


class NonRetryableDetailFetchError(DetailFetchError, NonRetryableActivityError):
    """Raised when the collaborator rejects the request outright."""


class DetailFetchClient:
    """Client for the scraper that turns a posting URL into a full job record.

    Use as an async context manager; an injected ``httpx.AsyncClient`` is
    borrowed and never closed here.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> DetailFetchClient:
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

    async def fetch_details(self, url: str, external_id: str | None = None) -> FullJobRecord | None:
        if self._client is None:
            raise RuntimeError("DetailFetchClient must be opened with 'async with' before use")

        try:
            response = await self._client.post(
                f"{self.base_url}/details",
                json={"url": url, "external_id": external_id},
            )
        except httpx.HTTPError as exc:
            raise DetailFetchError(f"detail fetch request failed: {exc}") from exc

        if response.status_code == 404:
            return None
        if response.status_code in NON_RETRYABLE_STATUS_CODES:
            raise NonRetryableDetailFetchError(
                f"detail fetch rejected with status {response.status_code}: {_error_detail(response)}"
            )
        if response.status_code >= 400:
            raise DetailFetchError(f"detail fetch failed with status {response.status_code}: {_error_detail(response)}")

        payload = response.json()
        if payload is None:
            return None
        try:
            return FullJobRecord.model_validate(payload)
        except ValidationError as exc:
            raise NonRetryableDetailFetchError(f"detail fetch returned an invalid record: {exc}") from exc


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict) and "detail" in payload:
        return str(payload["detail"])
    return str(payload)[:200]
