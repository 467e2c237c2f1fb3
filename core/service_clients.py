# core/service_clients.py
"""
HTTP clients for the external generation and research services.

Each client shares one httpx.AsyncClient, bounds concurrent calls with a
semaphore, retries transient failures with exponential backoff and jitter,
and validates every response into a typed model before handing it back.
"""

from __future__ import annotations

import asyncio
import json
import random
from typing import Any

import httpx
import structlog
from config import settings
from pydantic import ValidationError

from core.errors import GenerationServiceFailure
from models.service_models import (
    GenerationRequest,
    GenerationResponse,
    ResearchRequest,
    ResearchResponse,
)

logger = structlog.get_logger(__name__)


class JsonServiceClient:
    """Shared POST-with-retry plumbing for JSON services."""

    service_name = "service"

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = settings.HTTPX_TIMEOUT,
        retry_attempts: int | None = None,
        retry_delay_seconds: float | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        # Use a single async client for all requests to reuse connections
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.retry_attempts = max(
            1, retry_attempts or settings.SERVICE_RETRY_ATTEMPTS
        )
        self.retry_delay_seconds = (
            settings.SERVICE_RETRY_DELAY_SECONDS
            if retry_delay_seconds is None
            else retry_delay_seconds
        )
        self._semaphore = asyncio.Semaphore(
            max_concurrency or settings.MAX_CONCURRENT_SERVICE_CALLS
        )
        self.request_count = 0

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _backoff_delay(self, attempt: int) -> None:
        """Sleep for an exponentially increasing delay with jitter."""
        delay = self.retry_delay_seconds * (2**attempt)
        jitter = random.uniform(0, delay / 2)
        await asyncio.sleep(delay + jitter)

    async def _post_json(
        self,
        path: str,
        payload: dict[str, Any],
        timeout_seconds: float | None = None,
    ) -> Any:
        """POST ``payload`` and return the decoded JSON body.

        Client-side (4xx) errors abort immediately; everything else is retried.
        The last error is re-raised once attempts run out.
        """
        url = f"{self.base_url}{path}"
        request_kwargs: dict[str, Any] = {"json": payload}
        if timeout_seconds is not None:
            request_kwargs["timeout"] = timeout_seconds

        last_exception: Exception | None = None
        async with self._semaphore:
            for attempt in range(self.retry_attempts):
                api_response: httpx.Response | None = None
                try:
                    self.request_count += 1
                    api_response = await self._client.post(url, **request_kwargs)
                    api_response.raise_for_status()
                    return api_response.json()
                except httpx.TimeoutException as e_timeout:
                    last_exception = e_timeout
                    logger.warning(
                        f"{self.service_name} request timed out",
                        attempt=attempt + 1,
                        max_attempts=self.retry_attempts,
                        url=url,
                    )
                except httpx.HTTPStatusError as e_status:
                    last_exception = e_status
                    status = e_status.response.status_code
                    logger.warning(
                        f"{self.service_name} returned HTTP {status}",
                        attempt=attempt + 1,
                        body=e_status.response.text[:200],
                    )
                    if 400 <= status < 500:
                        logger.error(
                            f"{self.service_name}: client-side error. Aborting retries.",
                            status=status,
                        )
                        break
                except httpx.RequestError as e_req:
                    last_exception = e_req
                    logger.warning(
                        f"{self.service_name} request error",
                        attempt=attempt + 1,
                        error=str(e_req),
                    )
                except json.JSONDecodeError as e_json:
                    last_exception = e_json
                    snippet = api_response.text[:200] if api_response else "N/A"
                    logger.warning(
                        f"{self.service_name} returned invalid JSON",
                        attempt=attempt + 1,
                        body=snippet,
                    )

                if attempt < self.retry_attempts - 1:
                    logger.info(
                        f"{self.service_name}: retrying",
                        attempt=attempt + 1,
                        reason=type(last_exception).__name__,
                    )
                    await self._backoff_delay(attempt)

        logger.error(
            f"{self.service_name}: all attempts failed",
            attempts=self.retry_attempts,
            error=str(last_exception),
        )
        assert last_exception is not None
        raise last_exception


def _status_code(exc: Exception) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


class GenerationClient(JsonServiceClient):
    """Client for the opaque text generation service."""

    service_name = "Generation service"

    def __init__(self, base_url: str | None = None, **kwargs: Any) -> None:
        super().__init__(base_url or settings.GENERATION_SERVICE_URL, **kwargs)
        self.endpoint = settings.GENERATION_ENDPOINT

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        timeout_seconds = (
            request.timeout_ms / 1000 if request.timeout_ms is not None else None
        )
        try:
            data = await self._post_json(
                self.endpoint, request.to_payload(), timeout_seconds
            )
        except (httpx.HTTPError, json.JSONDecodeError) as exc:
            raise GenerationServiceFailure(
                f"Generation request failed: {exc}", status_code=_status_code(exc)
            ) from exc
        return parse_generation_response(data)


def parse_generation_response(data: Any) -> GenerationResponse:
    """Validate a raw generation payload, rejecting malformed shapes."""
    if not isinstance(data, dict):
        raise GenerationServiceFailure(
            "Generation response is not a JSON object",
            context={"type": type(data).__name__},
        )
    try:
        response = GenerationResponse.model_validate(data)
    except ValidationError as exc:
        raise GenerationServiceFailure(
            f"Malformed generation response: {exc.error_count()} validation errors",
            context={"errors": exc.errors(include_url=False)},
        ) from exc
    if not response.content.strip():
        raise GenerationServiceFailure("Generation response has empty content")
    return response


class ResearchClient(JsonServiceClient):
    """Client for the research / fact-lookup service."""

    service_name = "Research service"

    def __init__(self, base_url: str | None = None, **kwargs: Any) -> None:
        super().__init__(base_url or settings.RESEARCH_SERVICE_URL, **kwargs)
        self.endpoint = settings.RESEARCH_ENDPOINT

    async def research(self, request: ResearchRequest) -> ResearchResponse:
        try:
            data = await self._post_json(self.endpoint, request.to_payload())
        except (httpx.HTTPError, json.JSONDecodeError) as exc:
            raise GenerationServiceFailure(
                f"Research request failed: {exc}", status_code=_status_code(exc)
            ) from exc
        if not isinstance(data, dict):
            raise GenerationServiceFailure("Research response is not a JSON object")
        try:
            return ResearchResponse.model_validate(data)
        except ValidationError as exc:
            raise GenerationServiceFailure(
                f"Malformed research response: {exc.error_count()} validation errors"
            ) from exc
