# core/document_store.py
"""Client for the document store (chunked storage plus retrieval)."""

from __future__ import annotations

import json
from typing import Any

import httpx
import structlog
from config import settings
from pydantic import ValidationError

from core.errors import StorageReadFailure, StorageWriteFailure
from core.service_clients import JsonServiceClient
from models.service_models import RetrievalStrategy, RetrievedDocument, StoredDocument

logger = structlog.get_logger(__name__)


class DocumentStore(JsonServiceClient):
    service_name = "Document store"

    def __init__(self, base_url: str | None = None, **kwargs: Any) -> None:
        super().__init__(base_url or settings.DOCUMENT_STORE_URL, **kwargs)

    async def store_document(
        self, content: str, title: str, metadata: dict[str, Any] | None = None
    ) -> StoredDocument:
        payload = {"content": content, "title": title, "metadata": metadata or {}}
        try:
            data = await self._post_json("/api/documents/store", payload)
            return StoredDocument.model_validate(data)
        except (httpx.HTTPError, json.JSONDecodeError, ValidationError) as exc:
            raise StorageWriteFailure(
                f"Document store write failed for {title!r}: {exc}",
                backends=["document"],
                operation="store_document",
            ) from exc

    async def retrieve(
        self,
        query: str,
        strategy: RetrievalStrategy = RetrievalStrategy.HYBRID,
        limit: int = 10,
        rerank: bool = True,
        filters: dict[str, Any] | None = None,
    ) -> list[RetrievedDocument]:
        payload: dict[str, Any] = {
            "query": query,
            "strategy": strategy.value,
            "limit": limit,
            "rerank": rerank,
        }
        if filters:
            payload["filters"] = filters
        try:
            data = await self._post_json("/api/retrieval/advanced", payload)
        except (httpx.HTTPError, json.JSONDecodeError) as exc:
            raise StorageReadFailure(
                f"Document retrieval failed: {exc}", backend="document"
            ) from exc

        raw_results = data.get("results", []) if isinstance(data, dict) else data
        if not isinstance(raw_results, list):
            raise StorageReadFailure(
                "Document retrieval returned an unexpected shape", backend="document"
            )
        results: list[RetrievedDocument] = []
        for item in raw_results:
            try:
                results.append(RetrievedDocument.model_validate(item))
            except ValidationError:
                logger.warning("Skipping malformed retrieval result", item=item)
        return results
