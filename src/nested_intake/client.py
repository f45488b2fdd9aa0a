"""Async HTTP client for submitting payloads to a running intake service."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional, Union

import httpx

from .logging_utils import get_logger
from .models import ApiConfig

logger = get_logger(__name__)

CONTENT_TYPES = {
    ".json": "application/json",
    ".xml": "application/xml",
}


class IntakeApiError(Exception):
    """Raised when the intake service rejects or cannot process a request."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = dict(error) if error else None


def content_type_for(path: Path) -> str:
    try:
        return CONTENT_TYPES[path.suffix.lower()]
    except KeyError:
        raise ValueError(f"Cannot infer content type for {path.name}") from None


class IntakeClient:
    def __init__(
        self,
        config: ApiConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._headers = {
            "Accept": "application/json",
            "User-Agent": "nested-intake-client/0.1",
        }

    async def __aenter__(self) -> IntakeClient:
        self._client = httpx.AsyncClient(
            timeout=self._config.timeout, transport=self._transport
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def health(self) -> Mapping[str, Any]:
        response = await self._request("GET", "health")
        return response.json()

    async def submit(
        self, collection: str, body: Union[bytes, str], content_type: str
    ) -> Mapping[str, Any]:
        response = await self._request(
            "POST",
            collection,
            content=body,
            headers={"Content-Type": content_type},
        )
        return response.json()

    async def submit_file(
        self, collection: str, path: Union[str, Path], content_type: Optional[str] = None
    ) -> Mapping[str, Any]:
        source = Path(path)
        return await self.submit(
            collection, source.read_bytes(), content_type or content_type_for(source)
        )

    async def _request(
        self,
        method: str,
        path: str,
        content: Union[bytes, str, None] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        if self._client is None:
            raise RuntimeError("HTTP client is not ready")

        url = f"{self._config.url.rstrip('/')}/{path.lstrip('/')}"
        request_headers = {**self._headers, **(headers or {})}
        max_attempts = max(1, self._config.max_retries + 1)
        base_backoff = max(self._config.backoff_factor, 0.0) or 1.0
        backoff_ceiling = (
            self._config.backoff_max if self._config.backoff_max > 0 else float("inf")
        )
        sleep_time = base_backoff

        for attempt in range(1, max_attempts + 1):
            logger.debug("%s %s (attempt %s/%s)", method, url, attempt, max_attempts)
            try:
                response = await self._client.request(
                    method, url, content=content, headers=request_headers
                )
            except httpx.RequestError as exc:
                if not self._should_retry(attempt, max_attempts, True):
                    raise IntakeApiError(f"Network error for {url}: {exc}") from exc
                reason = f"network error ({exc})"
            else:
                if response.is_success:
                    return response
                status_code = response.status_code
                retryable = status_code >= 500 or status_code in {408, 429}
                if not self._should_retry(attempt, max_attempts, retryable):
                    raise self._rejection(url, response)
                reason = f"HTTP {status_code}"

            wait_time = min(sleep_time, backoff_ceiling)
            logger.warning(
                "%s for %s (attempt %s/%s). Retrying in %.1fs",
                reason,
                url,
                attempt,
                max_attempts,
                wait_time,
            )
            await asyncio.sleep(wait_time)
            sleep_time = self._next_backoff(sleep_time, base_backoff, backoff_ceiling)

        raise IntakeApiError(f"Failed to reach {url} after {max_attempts} attempts")

    def _rejection(self, url: str, response: httpx.Response) -> IntakeApiError:
        error = self._error_body(response)
        message = f"HTTP {response.status_code} for {url}"
        if error:
            message += f": {error.get('code')} ({error.get('message')})"
        logger.error("%s", message)
        return IntakeApiError(message, response.status_code, error)

    @staticmethod
    def _should_retry(attempt: int, max_attempts: int, retryable: bool) -> bool:
        return retryable and attempt < max_attempts

    @staticmethod
    def _next_backoff(current: float, base: float, ceiling: float) -> float:
        next_value = max(current, base) * 2
        if ceiling > 0:
            next_value = min(next_value, ceiling)
        return max(next_value, base)

    @staticmethod
    def _error_body(response: httpx.Response) -> Optional[Mapping[str, Any]]:
        try:
            payload = response.json()
        except ValueError:
            return None
        if isinstance(payload, Mapping) and isinstance(payload.get("error"), Mapping):
            return payload["error"]
        return None
