# orchestration/bootstrap.py
"""Wire the stores, services and pipeline stages together from settings."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

import structlog
from config import settings

from context_assembly.assembler import ContextAssembler
from context_assembly.similarity import LexicalSimilarityFinder, VectorSimilarityFinder
from core.db_manager import Neo4jManager
from core.document_store import DocumentStore
from core.errors import ConfigurationFailure
from core.service_clients import GenerationClient, ResearchClient
from core.vector_store import VectorCollection, VectorStore
from memory.coordinator import Embedder, MemoryCoordinator
from memory.graph_queries import GraphStore
from models.narrative_models import ResearchBrief
from models.service_models import ResearchRequest
from processing.post_processing import PhraseCleanupPostProcessor
from quality.evaluator import QualityEvaluator

from .chapter_sequencer import ChapterSequencer
from .generation_orchestrator import GenerationOrchestrator
from .models import RetryPolicy

logger = structlog.get_logger(__name__)


@dataclass
class GenerationRuntime:
    """Everything a caller needs to generate and store narrative units."""

    orchestrator: GenerationOrchestrator
    sequencer: ChapterSequencer
    memory: MemoryCoordinator
    neo4j: Neo4jManager
    generator: GenerationClient
    vector_store: VectorStore | None = None
    documents: DocumentStore | None = None
    research_client: ResearchClient | None = None

    async def __aenter__(self) -> GenerationRuntime:
        try:
            await self.neo4j.connect()
            await self.neo4j.create_db_schema()
            if self.vector_store is not None:
                await self.vector_store.ensure_collections()
            self.memory.start()
        except BaseException:
            logger.error("Runtime startup failed, closing clients", exc_info=True)
            await self.aclose()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.memory.stop()
        await self.generator.aclose()
        if self.research_client is not None:
            await self.research_client.aclose()
        if self.documents is not None:
            await self.documents.aclose()
        if self.vector_store is not None:
            await self.vector_store.aclose()
        await self.neo4j.close()

    async def research(self, project_id: str, request: ResearchRequest) -> ResearchBrief:
        """Look a topic up via the research service and store the brief."""
        if self.research_client is None:
            raise ConfigurationFailure("RESEARCH_SERVICE_URL is not configured")
        response = await self.research_client.research(request)
        brief = ResearchBrief(
            project_id=project_id,
            topic=request.topic,
            job_id=response.job_id,
            key_facts=response.key_facts,
            references=response.references,
            insights=response.insights,
            tips=response.tips,
        )
        await self.memory.put_research_brief(brief)
        return brief


def create_runtime_from_settings(
    embedders: Mapping[VectorCollection, Embedder] | None = None,
    policy: RetryPolicy | None = None,
) -> GenerationRuntime:
    """Build a runtime from ``settings``.

    The vector, document and research backends are optional and skipped when
    their URL is blank. ``embedders`` turns on vector writes and vector
    similarity lookups; without a content embedder the lexical finder is used.
    """
    if not settings.GENERATION_SERVICE_URL:
        raise ConfigurationFailure("GENERATION_SERVICE_URL is not configured")
    if not settings.NEO4J_URI:
        raise ConfigurationFailure("NEO4J_URI is not configured")

    embedders = dict(embedders or {})
    neo4j = Neo4jManager()
    vector_store = VectorStore() if settings.QDRANT_URL else None
    documents = DocumentStore() if settings.DOCUMENT_STORE_URL else None
    research_client = ResearchClient() if settings.RESEARCH_SERVICE_URL else None
    memory = MemoryCoordinator(
        GraphStore(neo4j), vector_store, documents, embedders=embedders
    )

    content_embedder = embedders.get(VectorCollection.CONTENT)
    if vector_store is not None and content_embedder is not None:
        finder = VectorSimilarityFinder(memory, content_embedder)
    else:
        finder = LexicalSimilarityFinder(memory)

    generator = GenerationClient()
    orchestrator = GenerationOrchestrator(
        assembler=ContextAssembler(memory, similarity_finder=finder),
        generator=generator,
        evaluator=QualityEvaluator(),
        memory=memory,
        post_processor=PhraseCleanupPostProcessor(),
        policy=policy,
    )
    logger.info(
        "Generation runtime created",
        vector_store=vector_store is not None,
        document_store=documents is not None,
        research=research_client is not None,
        similarity=type(finder).__name__,
    )
    return GenerationRuntime(
        orchestrator=orchestrator,
        sequencer=ChapterSequencer(orchestrator),
        memory=memory,
        neo4j=neo4j,
        generator=generator,
        vector_store=vector_store,
        documents=documents,
        research_client=research_client,
    )
