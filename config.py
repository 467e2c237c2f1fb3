# config.py
"""Configuration settings for the beatweaver generation core.
Uses Pydantic BaseSettings for automatic environment variable loading.
"""

from __future__ import annotations

from typing import Literal

import structlog
from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

logger = structlog.get_logger()


class BeatweaverSettings(BaseSettings):
    """Full configuration for the generation core."""

    # External services
    GENERATION_SERVICE_URL: str = "http://127.0.0.1:9080"
    GENERATION_ENDPOINT: str = "/api/orchestrate"
    GENERATION_TIMEOUT_MS: int = 60000
    GENERATION_MAX_AGENTS: int = 8
    RESEARCH_SERVICE_URL: str = "http://127.0.0.1:9080"
    RESEARCH_ENDPOINT: str = "/api/research"
    DOCUMENT_STORE_URL: str = "http://127.0.0.1:8090"

    # Neo4j Connection Settings
    NEO4J_URI: str = "bolt://localhost:7687"
    NEO4J_USER: str = "neo4j"
    NEO4J_PASSWORD: str = "beatweaver_password"
    NEO4J_DATABASE: str | None = "neo4j"

    # Qdrant Settings
    QDRANT_URL: str = "http://localhost:6333"
    QDRANT_API_KEY: str | None = None
    QDRANT_CONTENT_COLLECTION: str = "prose_content_embeddings"
    QDRANT_VOICE_COLLECTION: str = "prose_character_voices"
    QDRANT_METADATA_COLLECTION: str = "prose_metadata_embeddings"
    CONTENT_EMBEDDING_DIM: int = 1536
    VOICE_EMBEDDING_DIM: int = 1024
    METADATA_EMBEDDING_DIM: int = 768

    # HTTP call settings
    SERVICE_RETRY_ATTEMPTS: int = 3
    SERVICE_RETRY_DELAY_SECONDS: float = 1.0
    HTTPX_TIMEOUT: float = 90.0
    MAX_CONCURRENT_SERVICE_CALLS: int = 4

    # Context assembly
    CONTEXT_TOKEN_BUDGET: int = 8000
    CONTEXT_WINDOW_SIZE: int = 5
    CONTEXT_UNIT_POOL_SIZE: int = 50
    SIMILAR_UNITS_LIMIT: int = 5
    SIMILAR_UNITS_MIN_SCORE: float = 0.1
    RESEARCH_NOTES_LIMIT: int = 3
    RESEARCH_NOTE_MAX_CHARS: int = 600

    # Generation loop
    MAX_GENERATION_ATTEMPTS: int = 3
    RETRY_BASE_BACKOFF_MS: int = 1000
    RETRY_BACKOFF_MULTIPLIER: float = 2.0
    DETECTABILITY_THRESHOLD: float = 10.0
    DETECTABILITY_TARGET: float = 5.0
    MAX_CORRECTION_DIRECTIVES: int = 5

    # Memory cache
    MEMORY_CACHE_TTL_SECONDS: float = 300.0
    MEMORY_CACHE_MAX_ENTRIES: int = 1000
    MEMORY_CACHE_SWEEP_INTERVAL_SECONDS: float = 60.0
    MEMORY_CACHE_EVICTION: Literal["lru", "fifo"] = "lru"

    # Logging
    LOG_LEVEL_STR: str = Field("INFO", alias="AGENT_LOG_LEVEL")
    LOG_FORMAT: str = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_FILE: str | None = None
    BASE_OUTPUT_DIR: str = "beatweaver_output"
    ENABLE_RICH_CONSOLE: bool = True

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def check_limits(self) -> BeatweaverSettings:
        if self.CONTEXT_TOKEN_BUDGET <= 0:
            raise ValueError("CONTEXT_TOKEN_BUDGET must be positive")
        if self.MAX_GENERATION_ATTEMPTS < 1:
            raise ValueError("MAX_GENERATION_ATTEMPTS must be at least 1")
        if self.RETRY_BACKOFF_MULTIPLIER < 1:
            raise ValueError("RETRY_BACKOFF_MULTIPLIER must be >= 1")
        if self.MAX_CORRECTION_DIRECTIVES < 1:
            raise ValueError("MAX_CORRECTION_DIRECTIVES must be at least 1")
        for name in (
            "CONTENT_EMBEDDING_DIM",
            "VOICE_EMBEDDING_DIM",
            "METADATA_EMBEDDING_DIM",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.DETECTABILITY_TARGET > self.DETECTABILITY_THRESHOLD:
            logger.warning(
                "Detectability target is above the retry threshold",
                target=self.DETECTABILITY_TARGET,
                threshold=self.DETECTABILITY_THRESHOLD,
            )
        return self


settings = BeatweaverSettings()
