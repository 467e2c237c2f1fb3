# core/db_manager.py
"""Async Neo4j access for the graph side of the memory layer."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from config import settings
from neo4j import (  # type: ignore
    AsyncDriver,
    AsyncGraphDatabase,
    AsyncManagedTransaction,
    AsyncSession,
)
from neo4j.exceptions import ServiceUnavailable  # type: ignore

logger = structlog.get_logger(__name__)

Statement = tuple[str, dict[str, Any]]

SCHEMA_STATEMENTS = (
    "CREATE CONSTRAINT unit_id_unique IF NOT EXISTS "
    "FOR (u:NarrativeUnit) REQUIRE u.unit_id IS UNIQUE",
    "CREATE CONSTRAINT entity_key_unique IF NOT EXISTS "
    "FOR (e:Entity) REQUIRE (e.project_id, e.name) IS UNIQUE",
    "CREATE CONSTRAINT thread_key_unique IF NOT EXISTS "
    "FOR (t:PlotThread) REQUIRE (t.project_id, t.thread_id) IS UNIQUE",
    "CREATE CONSTRAINT location_key_unique IF NOT EXISTS "
    "FOR (l:Location) REQUIRE (l.project_id, l.name) IS UNIQUE",
    "CREATE INDEX unit_position_idx IF NOT EXISTS "
    "FOR (u:NarrativeUnit) ON (u.project_id, u.chapter_index, u.unit_index)",
    "CREATE INDEX brief_topic_idx IF NOT EXISTS "
    "FOR (b:ResearchBrief) ON (b.project_id, b.topic)",
)


class Neo4jManager:
    """Owns one async driver and runs parameterized Cypher against it.

    Queries connect lazily, so a manager can be handed around before
    ``connect`` has been awaited.
    """

    def __init__(
        self,
        uri: str | None = None,
        user: str | None = None,
        password: str | None = None,
        database: str | None = None,
    ) -> None:
        self.uri = uri or settings.NEO4J_URI
        self.user = user or settings.NEO4J_USER
        self.password = password or settings.NEO4J_PASSWORD
        self.database = database or settings.NEO4J_DATABASE
        self.driver: AsyncDriver | None = None

    async def __aenter__(self) -> Neo4jManager:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def connect(self) -> None:
        await self.close()
        driver = AsyncGraphDatabase.driver(self.uri, auth=(self.user, self.password))
        try:
            await driver.verify_connectivity()
        except ServiceUnavailable as e:
            logger.critical(
                "Neo4j is unreachable. Ensure the database is running.",
                uri=self.uri,
                error=str(e),
            )
            await driver.close()
            raise
        self.driver = driver
        logger.info("Connected to Neo4j", uri=self.uri, database=self.database)

    async def close(self) -> None:
        if self.driver is None:
            return
        driver, self.driver = self.driver, None
        try:
            await driver.close()
        except Exception:
            logger.warning("Error while closing Neo4j driver", exc_info=True)
        else:
            logger.info("Neo4j driver closed")

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        if self.driver is None:
            logger.info("No Neo4j driver yet, connecting")
            await self.connect()
        assert self.driver is not None
        async with self.driver.session(database=self.database) as session:
            yield session

    @staticmethod
    async def _fetch_all(
        tx: AsyncManagedTransaction, query: str, parameters: dict[str, Any] | None
    ) -> list[dict[str, Any]]:
        logger.debug("Running Cypher", query=query, parameters=parameters)
        cursor = await tx.run(query, parameters or {})
        return await cursor.data()

    async def execute_read_query(
        self, query: str, parameters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        async with self._session() as session:
            return await session.execute_read(self._fetch_all, query, parameters)

    async def execute_write_query(
        self, query: str, parameters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        async with self._session() as session:
            return await session.execute_write(self._fetch_all, query, parameters)

    async def execute_cypher_batch(self, statements: list[Statement]) -> None:
        """Run ``statements`` in one explicit transaction; all or nothing."""
        if not statements:
            return
        async with self._session() as session:
            tx = await session.begin_transaction()
            try:
                for query, params in statements:
                    await tx.run(query, params)
                await tx.commit()
            except Exception:
                logger.error(
                    "Cypher batch failed, rolling back",
                    statements=len(statements),
                    exc_info=True,
                )
                if not tx.closed():
                    await tx.rollback()
                raise
        logger.debug("Cypher batch committed", statements=len(statements))

    async def create_db_schema(self) -> None:
        """Create the constraints and indexes the graph queries rely on.

        The statements are idempotent. If the batch fails (some servers reject
        mixing schema statements in one transaction) each one is applied on its
        own and individual failures are only logged.
        """
        try:
            await self.execute_cypher_batch([(q, {}) for q in SCHEMA_STATEMENTS])
        except Exception:
            logger.warning("Schema batch failed, applying statements one by one")
            for query in SCHEMA_STATEMENTS:
                try:
                    await self.execute_write_query(query)
                except Exception as e:
                    logger.warning("Schema statement failed", query=query, error=str(e))
        logger.info("Neo4j schema verified", statements=len(SCHEMA_STATEMENTS))
