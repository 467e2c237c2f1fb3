# memory/coordinator.py
"""Read-through cache and fan-out writer over the graph, vector and document stores."""

from __future__ import annotations

import asyncio
import hashlib
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, TypeVar

import structlog
from config import settings

from core.document_store import DocumentStore
from core.errors import StorageReadFailure, StorageWriteFailure
from core.vector_store import VectorCollection, VectorStore
from models.narrative_models import (
    EntityProfile,
    LifecycleState,
    LocationRecord,
    NarrativeUnit,
    PlotThread,
    ResearchBrief,
)
from models.service_models import (
    RetrievalStrategy,
    RetrievedDocument,
    VectorPoint,
    VectorSearchHit,
)

from .cache import CacheStats, TTLCache
from .graph_queries import GraphStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")
EXCERPT_CHARS = 1000
RESEARCH_KIND = "research_brief"
Embedder = Callable[[str], Awaitable[Sequence[float]]]
StoredRecord = NarrativeUnit | EntityProfile | PlotThread | LocationRecord | ResearchBrief


class MemoryCoordinator:
    """Typed get/put surface over the three stores.

    Reads go through the cache and fall back to an empty default when a backend
    errors. Writes fan out concurrently and raise ``StorageWriteFailure`` if any
    backend rejects them. Affected cache keys are dropped once the writes settle,
    whether or not every backend accepted them.
    """

    def __init__(
        self,
        graph: GraphStore,
        vector: VectorStore | None = None,
        documents: DocumentStore | None = None,
        cache: TTLCache | None = None,
        embedders: Mapping[VectorCollection, Embedder] | None = None,
        sweep_interval_seconds: float | None = None,
    ) -> None:
        self.graph = graph
        self.vector = vector
        self.documents = documents
        self.cache = cache or TTLCache(
            max_entries=settings.MEMORY_CACHE_MAX_ENTRIES,
            ttl_seconds=settings.MEMORY_CACHE_TTL_SECONDS,
            eviction=settings.MEMORY_CACHE_EVICTION,
        )
        self.embedders: dict[VectorCollection, Embedder] = dict(embedders or {})
        self.sweep_interval_seconds = (
            sweep_interval_seconds or settings.MEMORY_CACHE_SWEEP_INTERVAL_SECONDS
        )

    async def __aenter__(self) -> MemoryCoordinator:
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def start(self) -> None:
        self.cache.start_sweeper(self.sweep_interval_seconds)

    async def stop(self) -> None:
        await self.cache.stop_sweeper()

    async def get(self, key: str) -> Any | None:
        """Return the cached value for ``key`` or ``None`` on a miss."""
        return await self.cache.get(key)

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    async def _read_through(
        self,
        key: str,
        loader: Callable[[], Awaitable[T | None]],
        default: T,
        backend: str = "graph",
        strict: bool = False,
    ) -> T:
        cached = await self.cache.get(key)
        if cached is not None:
            return cached
        try:
            value = await loader()
        except Exception as exc:
            if strict:
                raise StorageReadFailure(
                    f"Read of {key} from {backend} failed: {exc}", backend=backend
                ) from exc
            logger.warning(
                "Memory read failed. Using empty default.",
                key=key,
                backend=backend,
                error=str(exc),
            )
            return default
        if value is None:
            return default
        await self.cache.set(key, value)
        return value

    # --- reads -----------------------------------------------------------

    async def get_recent_units(
        self,
        project_id: str,
        chapter_index: int,
        unit_index: int,
        limit: int | None = None,
        strict: bool = False,
    ) -> list[NarrativeUnit]:
        limit = limit or settings.CONTEXT_WINDOW_SIZE
        return await self._read_through(
            f"units:{project_id}:{chapter_index}:{unit_index}:{limit}",
            lambda: self.graph.get_recent_units(
                project_id, chapter_index, unit_index, limit
            ),
            [],
            strict=strict,
        )

    async def get_unit_pool(
        self, project_id: str, limit: int | None = None
    ) -> list[NarrativeUnit]:
        limit = limit or settings.CONTEXT_UNIT_POOL_SIZE
        return await self._read_through(
            f"pool:{project_id}:{limit}",
            lambda: self.graph.get_unit_pool(project_id, limit),
            [],
        )

    async def get_entity(self, project_id: str, name: str) -> EntityProfile | None:
        return await self._read_through(
            f"entity:{project_id}:{name}",
            lambda: self.graph.get_entity(project_id, name),
            None,
        )

    async def get_entities(
        self, project_id: str, names: Sequence[str]
    ) -> dict[str, EntityProfile]:
        ordered = sorted(set(names))
        profiles = await asyncio.gather(
            *(self.get_entity(project_id, name) for name in ordered)
        )
        return {
            name: profile
            for name, profile in zip(ordered, profiles, strict=True)
            if profile is not None
        }

    async def get_entity_roster(self, project_id: str) -> dict[str, LifecycleState]:
        return await self._read_through(
            f"roster:{project_id}",
            lambda: self.graph.get_entity_roster(project_id),
            {},
        )

    async def get_plot_threads(
        self, project_id: str, thread_ids: Sequence[str] | None = None
    ) -> list[PlotThread]:
        ids = sorted(set(thread_ids)) if thread_ids is not None else None
        key_suffix = ",".join(ids) if ids is not None else "*"
        return await self._read_through(
            f"threads:{project_id}:{key_suffix}",
            lambda: self.graph.get_plot_threads(project_id, ids),
            [],
        )

    async def get_location(self, project_id: str, name: str) -> LocationRecord | None:
        if not name:
            return None
        return await self._read_through(
            f"location:{project_id}:{name}",
            lambda: self.graph.get_location(project_id, name),
            None,
        )

    async def get_known_locations(self, project_id: str) -> list[str]:
        return await self._read_through(
            f"locations:{project_id}",
            lambda: self.graph.get_known_locations(project_id),
            [],
        )

    async def search_similar_units(
        self,
        project_id: str,
        vector: Sequence[float],
        limit: int,
        min_score: float | None = None,
    ) -> list[VectorSearchHit]:
        if self.vector is None:
            return []
        try:
            return await self.vector.search(
                VectorCollection.CONTENT,
                vector,
                limit=limit,
                score_threshold=min_score,
                filters={"project_id": project_id},
            )
        except StorageReadFailure as exc:
            logger.warning("Similar unit search failed", error=str(exc))
            return []

    async def retrieve_documents(
        self,
        query: str,
        strategy: RetrievalStrategy = RetrievalStrategy.HYBRID,
        limit: int = 10,
        filters: Mapping[str, Any] | None = None,
    ) -> list[RetrievedDocument]:
        if self.documents is None or not query.strip():
            return []
        key_source = f"{query}|{sorted((filters or {}).items())}"
        digest = hashlib.sha1(key_source.encode("utf-8")).hexdigest()[:16]
        documents = self.documents
        return await self._read_through(
            f"docs:{strategy.value}:{limit}:{digest}",
            lambda: documents.retrieve(
                query,
                strategy=strategy,
                limit=limit,
                filters=dict(filters) if filters else None,
            ),
            [],
            backend="document",
        )

    async def get_research_notes(
        self, project_id: str, query: str, limit: int | None = None
    ) -> list[str]:
        """Research brief text relevant to ``query``, each note clipped."""
        docs = await self.retrieve_documents(
            query,
            limit=limit or settings.RESEARCH_NOTES_LIMIT,
            filters={"project_id": project_id, "kind": RESEARCH_KIND},
        )
        max_chars = settings.RESEARCH_NOTE_MAX_CHARS
        return [
            doc.content[:max_chars].strip()
            for doc in docs
            if doc.metadata.get("kind", RESEARCH_KIND) == RESEARCH_KIND
            and doc.content.strip()
        ]

    # --- writes ----------------------------------------------------------

    async def put(self, record: StoredRecord) -> None:
        """Persist any story record, dispatching on its type."""
        if isinstance(record, NarrativeUnit):
            await self.put_unit(record)
        elif isinstance(record, EntityProfile):
            await self.put_entity(record)
        elif isinstance(record, PlotThread):
            await self.put_thread(record)
        elif isinstance(record, LocationRecord):
            await self.put_location(record)
        elif isinstance(record, ResearchBrief):
            await self.put_research_brief(record)
        else:
            raise TypeError(f"Unsupported record type: {type(record).__name__}")

    async def _fan_out(
        self,
        operation: str,
        writes: dict[str, Awaitable[Any]],
        invalidate: Sequence[str] = (),
    ) -> None:
        """Run every backend write, then drop the ``invalidate`` cache prefixes.

        Invalidation runs even when some writes fail.
        """
        names = list(writes)
        try:
            results = await asyncio.gather(*writes.values(), return_exceptions=True)
        finally:
            for prefix in invalidate:
                await self.cache.invalidate(prefix)
        failed = [
            (name, result)
            for name, result in zip(names, results, strict=True)
            if isinstance(result, BaseException)
        ]
        if not failed:
            return
        for name, error in failed:
            logger.error(
                "Memory write failed",
                operation=operation,
                backend=name,
                error=str(error),
            )
        raise StorageWriteFailure(
            f"{operation} failed on: {', '.join(name for name, _ in failed)}",
            backends=[name for name, _ in failed],
            operation=operation,
        ) from failed[0][1]

    def _vector_write(
        self,
        collection: VectorCollection,
        point_id: str,
        text: str,
        payload: dict[str, Any],
        embedding: Sequence[float] | None,
    ) -> Awaitable[None] | None:
        if self.vector is None:
            return None
        embedder = self.embedders.get(collection)
        if embedding is None and embedder is None:
            return None
        vector = self.vector

        async def write() -> None:
            values = embedding if embedding is not None else await embedder(text)
            await vector.upsert(
                collection,
                VectorPoint(point_id=point_id, vector=list(values), payload=payload),
            )

        return write()

    def _document_write(
        self, content: str, title: str, metadata: dict[str, Any]
    ) -> Awaitable[Any] | None:
        if self.documents is None:
            return None
        return self.documents.store_document(content, title, metadata)

    @staticmethod
    def _collect(**writes: Awaitable[Any] | None) -> dict[str, Awaitable[Any]]:
        return {name: write for name, write in writes.items() if write is not None}

    async def put_unit(
        self, unit: NarrativeUnit, embedding: Sequence[float] | None = None
    ) -> None:
        payload = unit.summary_payload()
        project = unit.project_id
        await self._fan_out(
            "put_unit",
            self._collect(
                graph=self.graph.save_unit(unit),
                vector=self._vector_write(
                    VectorCollection.CONTENT,
                    unit.unit_id,
                    unit.content,
                    {**payload, "excerpt": unit.content[:EXCERPT_CHARS]},
                    embedding,
                ),
                document=self._document_write(
                    unit.content,
                    f"Chapter {unit.chapter_index} unit {unit.unit_index}",
                    payload,
                ),
            ),
            invalidate=[
                f"units:{project}:",
                f"pool:{project}:",
                f"roster:{project}",
                *(f"entity:{project}:{name}" for name in sorted(unit.entities)),
            ],
        )
        await self.cache.set(f"unit:{unit.unit_id}", unit)
        logger.info(
            "Stored narrative unit",
            unit_id=unit.unit_id,
            word_count=unit.word_count,
        )

    async def put_entity(
        self, profile: EntityProfile, voice_embedding: Sequence[float] | None = None
    ) -> None:
        payload = {
            "project_id": profile.project_id,
            "name": profile.name,
            "role": profile.role,
            "lifecycle_state": profile.lifecycle_state.value,
            "vocabulary_level": profile.voice.vocabulary_level,
        }
        voice_text = " ".join(
            [profile.name, profile.description, *profile.voice.speech_patterns]
        )
        await self._fan_out(
            "put_entity",
            self._collect(
                graph=self.graph.save_entity(profile),
                vector=self._vector_write(
                    VectorCollection.VOICE,
                    f"{profile.project_id}:entity:{profile.name}",
                    voice_text,
                    payload,
                    voice_embedding,
                ),
                document=self._document_write(
                    profile.model_dump_json(), f"Entity profile: {profile.name}", payload
                ),
            ),
            invalidate=[
                f"entity:{profile.project_id}:{profile.name}",
                f"roster:{profile.project_id}",
            ],
        )
        await self.cache.set(f"entity:{profile.project_id}:{profile.name}", profile)

    async def put_thread(self, thread: PlotThread) -> None:
        """Store a thread, refusing backwards status moves and progress regressions."""
        try:
            existing = await self.graph.get_plot_threads(
                thread.project_id, [thread.thread_id]
            )
        except Exception as exc:
            raise StorageWriteFailure(
                f"Could not load thread {thread.thread_id} before update: {exc}",
                backends=["graph"],
                operation="put_thread",
            ) from exc
        if existing:
            current = existing[0]
            if not current.can_transition_to(thread.status):
                raise ValueError(
                    f"Thread {thread.thread_id} cannot move from "
                    f"{current.status.value} to {thread.status.value}"
                )
            if current.is_open and thread.progress < current.progress:
                raise ValueError(
                    f"Thread {thread.thread_id} progress cannot decrease "
                    f"({current.progress} -> {thread.progress})"
                )
        payload = {
            "project_id": thread.project_id,
            "thread_id": thread.thread_id,
            "status": thread.status.value,
            "tier": thread.tier.value,
        }
        await self._fan_out(
            "put_thread",
            self._collect(
                graph=self.graph.save_thread(thread),
                document=self._document_write(
                    f"{thread.name}\n\n{thread.description}",
                    f"Plot thread: {thread.name}",
                    payload,
                ),
            ),
            invalidate=[f"threads:{thread.project_id}:"],
        )

    async def put_location(self, location: LocationRecord) -> None:
        payload = {"project_id": location.project_id, "name": location.name}
        await self._fan_out(
            "put_location",
            self._collect(
                graph=self.graph.save_location(location),
                document=self._document_write(
                    location.description or location.name,
                    f"Location: {location.name}",
                    payload,
                ),
            ),
            invalidate=[
                f"location:{location.project_id}:{location.name}",
                f"locations:{location.project_id}",
            ],
        )
        await self.cache.set(
            f"location:{location.project_id}:{location.name}", location
        )

    async def put_research_brief(
        self, brief: ResearchBrief, embedding: Sequence[float] | None = None
    ) -> None:
        payload = {
            "project_id": brief.project_id,
            "topic": brief.topic,
            "job_id": brief.job_id,
            "kind": RESEARCH_KIND,
        }
        text = "\n".join([brief.topic, *brief.key_facts, *brief.insights, *brief.tips])
        await self._fan_out(
            "put_research_brief",
            self._collect(
                graph=self.graph.save_research_brief(brief),
                vector=self._vector_write(
                    VectorCollection.METADATA,
                    f"{brief.project_id}:research:{brief.topic}",
                    text,
                    payload,
                    embedding,
                ),
                document=self._document_write(
                    text, f"Research: {brief.topic}", payload
                ),
            ),
            invalidate=["docs:"],
        )
