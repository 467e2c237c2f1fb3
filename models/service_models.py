# models/service_models.py
"""Request and response shapes for the external services and stores."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ServiceModel(BaseModel):
    """Boundary model: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class GenerationRequest(ServiceModel):
    task: str
    context: dict[str, Any] = Field(default_factory=dict)
    max_agents: int | None = Field(None, alias="maxAgents")
    timeout_ms: int | None = Field(None, alias="timeout")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class GenerationResponse(ServiceModel):
    content: str
    agents_used: list[str] = Field(default_factory=list, alias="agentsUsed")
    confidence: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)


class ResearchDepth(str, Enum):
    OVERVIEW = "overview"
    STANDARD = "standard"
    EXPERT = "expert"


class ResearchRequest(ServiceModel):
    topic: str
    context: str = ""
    depth: ResearchDepth = ResearchDepth.STANDARD
    focus_areas: list[str] = Field(default_factory=list, alias="focusAreas")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ResearchResponse(ServiceModel):
    job_id: str = Field(alias="jobId")
    key_facts: list[str] = Field(default_factory=list, alias="keyFacts")
    references: list[str] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)
    tips: list[str] = Field(default_factory=list)


class VectorPoint(ServiceModel):
    point_id: str
    vector: list[float]
    payload: dict[str, Any] = Field(default_factory=dict)


class VectorSearchHit(ServiceModel):
    point_id: str
    score: float
    payload: dict[str, Any] = Field(default_factory=dict)


class StoredDocument(ServiceModel):
    document_id: str = Field(alias="documentId")
    chunks: int = 0


class RetrievalStrategy(str, Enum):
    SEMANTIC = "semantic"
    GRAPH = "graph"
    HYBRID = "hybrid"
    ADAPTIVE = "adaptive"


class RetrievedDocument(ServiceModel):
    content: str
    score: float = 0.0
    document_id: str | None = Field(None, alias="documentId")
    metadata: dict[str, Any] = Field(default_factory=dict)
