# src/graph_store/lifecycle.py - v1
"""Logical graph lifecycle, one implementation per storage mode.

Public create/drop take the critical section; the *_unlocked variants
exist for callers that already hold it (restore).
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod

from graphrag_store.core.models import DEFAULT_DATABASE, GraphStats
from graphrag_store.graph_store.driver import SYSTEM_DATABASE, Connection
from graphrag_store.graph_store.errors import (
    GraphAlreadyExistsError,
    GraphNotFoundError,
    PreconditionError,
    TransientError,
    is_conflict,
    is_not_found,
    is_transient,
)
from graphrag_store.graph_store.locks import CriticalSection
from graphrag_store.graph_store.mode import (
    DatabaseMode,
    escape_identifier,
    label_clause,
    validate_graph_name,
)

logger = logging.getLogger(__name__)

AVAILABILITY_QUERY = "RETURN 1"
TRANSIENT_RETRY_DELAY = 0.1
OTHER_RETRY_DELAY = 0.05
DROP_BATCH_SIZE = 10_000


def _count(records: list, key: str) -> int:
    if not records:
        return 0
    value = records[0][key]
    return int(value) if value is not None else 0


class GraphLifecycle(ABC):
    """Shared entry points; mode-specific work lives in subclasses."""

    def __init__(self, critical: CriticalSection) -> None:
        self._critical = critical

    async def create(self, conn: Connection, graph_name: str) -> None:
        validate_graph_name(graph_name)
        async with self._critical.hold("create_graph"):
            await self.create_unlocked(conn, graph_name)

    async def drop(self, conn: Connection, graph_name: str) -> None:
        validate_graph_name(graph_name)
        async with self._critical.hold("drop_graph"):
            await self.drop_unlocked(conn, graph_name)

    @abstractmethod
    async def create_unlocked(self, conn: Connection, graph_name: str) -> None:
        """Mode-specific body; caller holds the critical section."""

    @abstractmethod
    async def drop_unlocked(self, conn: Connection, graph_name: str) -> None:
        """Mode-specific body; caller holds the critical section."""

    @abstractmethod
    async def exists(self, conn: Connection, graph_name: str) -> bool:
        """Whether graph_name exists."""

    @abstractmethod
    async def list_graphs(self, conn: Connection) -> list[str]:
        """Names of all logical graphs."""

    @abstractmethod
    async def describe(self, conn: Connection, graph_name: str) -> GraphStats:
        """Node and relationship counts of graph_name."""

    async def wait_until_available(
        self, conn: Connection, graph_name: str, timeout: float | None = None
    ) -> None:
        """No-op unless the mode creates databases."""

    async def assert_exists(self, conn: Connection, graph_name: str) -> None:
        validate_graph_name(graph_name)
        if not await self.exists(conn, graph_name):
            raise GraphNotFoundError(graph_name)


class DatabaseGraphLifecycle(GraphLifecycle):
    """A logical graph is a Neo4j database with the same name."""

    async def create_unlocked(self, conn: Connection, graph_name: str) -> None:
        query = f"CREATE DATABASE {escape_identifier(graph_name)}"
        try:
            await conn.write(SYSTEM_DATABASE, query)
        except Exception as e:
            if is_conflict(e):
                raise GraphAlreadyExistsError(graph_name) from e
            raise
        logger.info("Created database for graph '%s'", graph_name)

    async def drop_unlocked(self, conn: Connection, graph_name: str) -> None:
        if graph_name == DEFAULT_DATABASE:
            raise PreconditionError(f"cannot drop default database '{DEFAULT_DATABASE}'")
        query = f"DROP DATABASE {escape_identifier(graph_name)}"
        try:
            await conn.write(SYSTEM_DATABASE, query)
        except Exception as e:
            if is_not_found(e):
                raise GraphNotFoundError(graph_name) from e
            raise
        logger.info("Dropped database for graph '%s'", graph_name)

    async def exists(self, conn: Connection, graph_name: str) -> bool:
        records = await conn.read(
            SYSTEM_DATABASE,
            "SHOW DATABASES YIELD name WHERE name = $name RETURN name",
            {"name": graph_name},
        )
        return len(records) > 0

    async def list_graphs(self, conn: Connection) -> list[str]:
        records = await conn.read(SYSTEM_DATABASE, "SHOW DATABASES YIELD name RETURN name")
        return [record["name"] for record in records]

    async def describe(self, conn: Connection, graph_name: str) -> GraphStats:
        await self.assert_exists(conn, graph_name)
        nodes = await conn.read(graph_name, "MATCH (n) RETURN count(n) AS nodeCount")
        rels = await conn.read(graph_name, "MATCH ()-[r]->() RETURN count(r) AS relCount")
        return GraphStats(
            graph_name=graph_name,
            total_nodes=_count(nodes, "nodeCount"),
            total_relationships=_count(rels, "relCount"),
            extra_stats=conn.mode.describe_extras(graph_name),
        )

    async def wait_until_available(
        self, conn: Connection, graph_name: str, timeout: float | None = None
    ) -> None:
        """Poll a trivial query until the new database accepts it."""
        limit = timeout if timeout and timeout > 0 else conn.config.availability_timeout or 5.0
        deadline = time.monotonic() + limit
        last_error: Exception | None = None
        while True:
            try:
                await conn.read(graph_name, AVAILABILITY_QUERY)
                return
            except Exception as e:
                last_error = e
                delay = TRANSIENT_RETRY_DELAY if is_transient(e) else OTHER_RETRY_DELAY
            if time.monotonic() + delay > deadline:
                break
            await asyncio.sleep(delay)
        raise TransientError(
            f"database {graph_name} did not become available within {limit:g}s, "
            f"last error: {last_error}"
        ) from last_error


class LabelGraphLifecycle(GraphLifecycle):
    """A logical graph is the set of nodes carrying its prefixed label."""

    def _constraint_name(self, conn: Connection, graph_name: str) -> str:
        return f"{conn.mode.namespace_property}_unique_{graph_name}".replace("-", "_")

    async def create_unlocked(self, conn: Connection, graph_name: str) -> None:
        label = conn.mode.graph_label(graph_name)
        query = (
            f"CREATE CONSTRAINT {escape_identifier(self._constraint_name(conn, graph_name))} "
            f"IF NOT EXISTS FOR (n{label_clause([label])}) "
            f"REQUIRE n.{escape_identifier(conn.mode.namespace_property)} IS UNIQUE"
        )
        try:
            await conn.write(DEFAULT_DATABASE, query)
        except Exception as e:
            logger.debug("Ignoring namespace constraint failure for '%s': %s", graph_name, e)
        logger.info("Prepared label-based graph '%s' (label %s)", graph_name, label)

    async def drop_unlocked(self, conn: Connection, graph_name: str) -> None:
        labels = label_clause([conn.mode.graph_label(graph_name)])
        await conn.write(DEFAULT_DATABASE, f"MATCH (n{labels})-[r]-() DELETE r")
        while True:
            records = await conn.write(
                DEFAULT_DATABASE,
                f"MATCH (n{labels}) WITH n LIMIT $batch DELETE n RETURN count(n) AS deleted",
                {"batch": DROP_BATCH_SIZE},
            )
            if _count(records, "deleted") == 0:
                break
        try:
            await conn.write(
                DEFAULT_DATABASE,
                f"DROP CONSTRAINT {escape_identifier(self._constraint_name(conn, graph_name))} IF EXISTS",
            )
        except Exception as e:
            logger.debug("Ignoring constraint drop failure for '%s': %s", graph_name, e)
        logger.info("Dropped label-based graph '%s'", graph_name)

    async def exists(self, conn: Connection, graph_name: str) -> bool:
        labels = label_clause([conn.mode.graph_label(graph_name)])
        records = await conn.read(
            DEFAULT_DATABASE,
            f"MATCH (n{labels}) RETURN count(n) > 0 AS exists LIMIT 1",
        )
        return bool(records and records[0]["exists"])

    async def list_graphs(self, conn: Connection) -> list[str]:
        prefix = conn.mode.label_prefix
        records = await conn.read(
            DEFAULT_DATABASE,
            "CALL db.labels() YIELD label WHERE label STARTS WITH $prefix RETURN label",
            {"prefix": prefix},
        )
        return [record["label"][len(prefix):] for record in records]

    async def describe(self, conn: Connection, graph_name: str) -> GraphStats:
        validate_graph_name(graph_name)
        labels = label_clause([conn.mode.graph_label(graph_name)])
        nodes = await conn.read(
            DEFAULT_DATABASE, f"MATCH (n{labels}) RETURN count(n) AS nodeCount"
        )
        rels = await conn.read(
            DEFAULT_DATABASE,
            f"MATCH (a{labels})-[r]->(b{labels}) RETURN count(r) AS relCount",
        )
        return GraphStats(
            graph_name=graph_name,
            total_nodes=_count(nodes, "nodeCount"),
            total_relationships=_count(rels, "relCount"),
            extra_stats=conn.mode.describe_extras(graph_name),
        )


def lifecycle_for(conn: Connection, critical: CriticalSection) -> GraphLifecycle:
    if isinstance(conn.mode, DatabaseMode):
        return DatabaseGraphLifecycle(critical)
    return LabelGraphLifecycle(critical)
