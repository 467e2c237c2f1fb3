import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
from core.document_store import DocumentStore
from core.errors import StorageReadFailure, StorageWriteFailure
from core.vector_store import VectorCollection, VectorStore, point_uuid
from models.service_models import RetrievalStrategy, VectorPoint


def _documents(handler) -> DocumentStore:
    return DocumentStore(
        base_url="http://documents.test",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        retry_attempts=1,
        retry_delay_seconds=0,
    )


@pytest.mark.asyncio
async def test_store_document_returns_typed_record():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/documents/store"
        body = json.loads(request.content)
        assert body["title"] == "Chapter 1 unit 2"
        return httpx.Response(200, json={"documentId": "doc-9", "chunks": 3})

    stored = await _documents(handler).store_document("text", "Chapter 1 unit 2", {"a": 1})

    assert stored.document_id == "doc-9"
    assert stored.chunks == 3


@pytest.mark.asyncio
async def test_store_document_failure_is_a_write_failure():
    store = _documents(lambda request: httpx.Response(500, text="down"))

    with pytest.raises(StorageWriteFailure) as excinfo:
        await store.store_document("text", "title")

    assert excinfo.value.backends == ["document"]


@pytest.mark.asyncio
async def test_retrieve_skips_malformed_results():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["strategy"] == "semantic"
        return httpx.Response(
            200,
            json={"results": [{"content": "a", "score": 0.9}, {"score": 0.2}]},
        )

    results = await _documents(handler).retrieve("tides", strategy=RetrievalStrategy.SEMANTIC)

    assert [r.content for r in results] == ["a"]


@pytest.mark.asyncio
async def test_retrieve_failure_is_a_read_failure():
    store = _documents(lambda request: httpx.Response(200, json={"results": "nope"}))

    with pytest.raises(StorageReadFailure):
        await store.retrieve("tides")


def _vector_store(client=None) -> VectorStore:
    store = VectorStore(client=client or AsyncMock())
    store.collections = {
        VectorCollection.CONTENT: ("content", 3),
        VectorCollection.VOICE: ("voice", 2),
        VectorCollection.METADATA: ("metadata", 2),
    }
    return store


@pytest.mark.asyncio
async def test_vector_upsert_uses_stable_point_ids():
    client = AsyncMock()
    store = _vector_store(client)

    await store.upsert(
        VectorCollection.CONTENT,
        VectorPoint(point_id="p1:1:2", vector=[0.1, 0.2, 0.3], payload={"tone": "dark"}),
    )

    kwargs = client.upsert.await_args.kwargs
    assert kwargs["collection_name"] == "content"
    point = kwargs["points"][0]
    assert point.id == point_uuid("p1:1:2")
    assert point.payload == {"tone": "dark", "point_key": "p1:1:2"}


@pytest.mark.asyncio
async def test_vector_upsert_failure_is_a_write_failure():
    client = AsyncMock()
    client.upsert.side_effect = RuntimeError("qdrant down")
    store = _vector_store(client)

    with pytest.raises(StorageWriteFailure):
        await store.upsert(
            VectorCollection.VOICE, VectorPoint(point_id="x", vector=[1.0, 0.0])
        )


def test_vector_dimension_mismatch_is_rejected():
    store = _vector_store()
    with pytest.raises(ValueError):
        store._resolve(VectorCollection.CONTENT, [1.0])


@pytest.mark.asyncio
async def test_vector_search_maps_points_and_filters():
    client = AsyncMock()
    client.query_points.return_value = SimpleNamespace(
        points=[
            SimpleNamespace(
                id="uuid-1", score=0.8, payload={"point_key": "p1:1:2", "excerpt": "Storm."}
            )
        ]
    )
    store = _vector_store(client)

    hits = await store.search(
        VectorCollection.CONTENT, [0.1, 0.2, 0.3], limit=4, filters={"project_id": "p1"}
    )

    assert hits[0].point_id == "p1:1:2"
    assert hits[0].payload == {"excerpt": "Storm."}
    query_filter = client.query_points.await_args.kwargs["query_filter"]
    assert query_filter.must[0].key == "project_id"


@pytest.mark.asyncio
async def test_ensure_collections_creates_missing_only():
    client = AsyncMock()
    client.collection_exists.side_effect = lambda name: name == "content"
    store = _vector_store(client)

    await store.ensure_collections()

    created = [c.kwargs["collection_name"] for c in client.create_collection.await_args_list]
    assert created == ["voice", "metadata"]
