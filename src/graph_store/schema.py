# src/graph_store/schema.py - v1
"""Schema introspection and index management."""

from __future__ import annotations

import logging
import re
from typing import Any

from graphrag_store.core.models import (
    DynamicGraphSchema,
    GraphSchemaStats,
    PropertyInfo,
    SchemaConstraint,
    SchemaIndex,
)
from graphrag_store.core.options import CreateIndexOptions, DropIndexOptions
from graphrag_store.graph_store.driver import Connection
from graphrag_store.graph_store.errors import (
    GraphNotFoundError,
    GraphStoreError,
    IndexAlreadyExistsError,
    PreconditionError,
    ServerError,
    UnsupportedOperationError,
    is_conflict,
    is_not_found,
)
from graphrag_store.graph_store.lifecycle import lifecycle_for
from graphrag_store.graph_store.locks import CriticalSection
from graphrag_store.graph_store.mode import (
    StorageMode,
    escape_identifier,
    label_clause,
    validate_graph_name,
)

logger = logging.getLogger(__name__)

DEFAULT_VECTOR_DIMENSION = 1536
DEFAULT_VECTOR_SIMILARITY = "cosine"

_INDEX_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9_]")


# === INTROSPECTION ===


class SchemaIntrospector:
    """Reads labels, types, property descriptors, constraints and indexes."""

    def __init__(self, critical: CriticalSection) -> None:
        self._critical = critical

    async def get_schema(self, conn: Connection, graph_name: str) -> DynamicGraphSchema:
        graph = validate_graph_name(graph_name)
        await lifecycle_for(conn, self._critical).assert_exists(conn, graph)

        mode = conn.mode
        database = mode.database_name(graph)
        labels = await self._node_labels(conn, database, graph)
        rel_types = await self._relationship_types(conn, database, graph)

        schema = DynamicGraphSchema(node_labels=labels, relationship_types=rel_types)
        for label in labels:
            schema.node_properties[label] = await self._node_properties(
                conn, database, graph, label
            )
        for rel_type in rel_types:
            schema.relationship_properties[rel_type] = await self._relationship_properties(
                conn, database, graph, rel_type
            )
        schema.constraints = await self._constraints(conn, database)
        schema.indexes = await self._indexes(conn, database)
        schema.statistics = await self._statistics(conn, database, graph, labels, rel_types)
        return schema

    async def _node_labels(self, conn: Connection, database: str, graph: str) -> list[str]:
        mode = conn.mode
        if mode.separate_database:
            records = await conn.read(
                database, "CALL db.labels() YIELD label RETURN label ORDER BY label"
            )
        else:
            records = await conn.read(
                database,
                f"MATCH {mode.node_pattern('n', graph)} UNWIND labels(n) AS label "
                f"WITH DISTINCT label WHERE NOT label STARTS WITH $prefix "
                f"RETURN label ORDER BY label",
                {"prefix": mode.label_prefix},
            )
        return [r["label"] for r in records if not mode.is_graph_label(r["label"])]

    async def _relationship_types(
        self, conn: Connection, database: str, graph: str
    ) -> list[str]:
        mode = conn.mode
        if mode.separate_database:
            query = (
                "MATCH ()-[r]->() RETURN DISTINCT coalesce(r.type, type(r)) AS rel_type "
                "ORDER BY rel_type"
            )
        else:
            query = (
                f"MATCH {mode.node_pattern('a', graph)}-[r]->{mode.node_pattern('b', graph)} "
                f"RETURN DISTINCT coalesce(r.type, type(r)) AS rel_type ORDER BY rel_type"
            )
        records = await conn.read(database, query)
        return [r["rel_type"] for r in records if r["rel_type"]]

    async def _property_info(
        self, conn: Connection, database: str, match: str, var: str, params: dict[str, Any]
    ) -> list[PropertyInfo]:
        """Property descriptors, typed through APOC when it is installed."""
        apoc = (
            f"{match} UNWIND keys({var}) AS key "
            f"RETURN key, apoc.meta.cypher.type({var}[key]) AS type, count(*) AS count "
            f"ORDER BY key"
        )
        plain = (
            f"{match} UNWIND keys({var}) AS key "
            f"RETURN key, 'mixed' AS type, count(*) AS count ORDER BY key"
        )
        try:
            records = await conn.read(database, apoc, params)
        except GraphStoreError as e:
            logger.debug("APOC type inference unavailable, using 'mixed': %s", e)
            records = await conn.read(database, plain, params)

        hidden = conn.mode.namespace_property
        merged: dict[str, PropertyInfo] = {}
        for record in records:
            key = record["key"]
            if not key or key == hidden:
                continue
            info = merged.get(key)
            count = int(record["count"] or 0)
            if info is None:
                merged[key] = PropertyInfo(name=key, type=record["type"] or "mixed", count=count)
            else:
                # Same key seen with several value types.
                info.type = "mixed"
                info.count += count
        return list(merged.values())

    async def _node_properties(
        self, conn: Connection, database: str, graph: str, label: str
    ) -> list[PropertyInfo]:
        match = f"MATCH {conn.mode.node_pattern('n', graph, [label])}"
        return await self._property_info(conn, database, match, "n", {})

    async def _relationship_properties(
        self, conn: Connection, database: str, graph: str, rel_type: str
    ) -> list[PropertyInfo]:
        mode = conn.mode
        match = (
            f"MATCH {mode.node_pattern('a', graph)}-[r]->{mode.node_pattern('b', graph)} "
            f"WHERE coalesce(r.type, type(r)) = $rel_type"
        )
        return await self._property_info(conn, database, match, "r", {"rel_type": rel_type})

    def _touches_graph_labels(self, mode: StorageMode, labels: Any) -> bool:
        return any(isinstance(l, str) and mode.is_graph_label(l) for l in labels or [])

    async def _constraints(self, conn: Connection, database: str) -> list[SchemaConstraint]:
        records = await conn.read(
            database, "SHOW CONSTRAINTS YIELD name, type, entityType, labelsOrTypes, properties"
        )
        constraints = []
        for record in records:
            labels = record["labelsOrTypes"] or []
            if not conn.mode.separate_database and not self._touches_graph_labels(
                conn.mode, labels
            ):
                continue
            constraints.append(
                SchemaConstraint(
                    name=record["name"] or "",
                    type=record["type"] or "",
                    label=labels[0] if labels else "",
                    properties=[p for p in record["properties"] or [] if isinstance(p, str)],
                )
            )
        return constraints

    async def _indexes(self, conn: Connection, database: str) -> list[SchemaIndex]:
        records = await conn.read(
            database,
            "SHOW INDEXES YIELD name, type, entityType, labelsOrTypes, properties, state",
        )
        indexes = []
        for record in records:
            labels = record["labelsOrTypes"] or []
            if not conn.mode.separate_database and not self._touches_graph_labels(
                conn.mode, labels
            ):
                continue
            indexes.append(
                SchemaIndex(
                    name=record["name"] or "",
                    type=record["type"] or "",
                    label=labels[0] if labels else "",
                    properties=[p for p in record["properties"] or [] if isinstance(p, str)],
                    state=record["state"] or "",
                )
            )
        return indexes

    async def _statistics(
        self,
        conn: Connection,
        database: str,
        graph: str,
        labels: list[str],
        rel_types: list[str],
    ) -> GraphSchemaStats:
        mode = conn.mode
        nodes = await conn.read(
            database, f"MATCH {mode.node_pattern('n', graph)} RETURN count(n) AS total"
        )
        rels = await conn.read(
            database,
            f"MATCH {mode.node_pattern('a', graph)}-[r]->{mode.node_pattern('b', graph)} "
            f"RETURN coalesce(r.type, type(r)) AS rel_type, count(r) AS total",
        )
        stats = GraphSchemaStats(total_nodes=int(nodes[0]["total"]) if nodes else 0)
        for record in rels:
            stats.relationship_counts[record["rel_type"]] = int(record["total"])
            stats.total_relationships += int(record["total"])
        for label in labels:
            records = await conn.read(
                database,
                f"MATCH {mode.node_pattern('n', graph, [label])} RETURN count(n) AS total",
            )
            stats.node_counts[label] = int(records[0]["total"]) if records else 0
        return stats


# === INDEX MANAGEMENT ===


def generate_index_name(opts: CreateIndexOptions) -> str:
    parts = ["idx", opts.graph_name]
    if opts.labels:
        parts.extend(["node" if opts.target == "NODE" else "rel", opts.labels[0]])
    parts.append("_".join(opts.properties))
    if opts.index_type:
        parts.append(opts.index_type.lower())
    return _INDEX_NAME_UNSAFE.sub("_", "_".join(parts))


def build_create_index(mode: StorageMode, opts: CreateIndexOptions, name: str) -> str:
    """Compile the CREATE INDEX statement for opts."""
    index_type = (opts.index_type or "BTREE").upper()
    quoted = escape_identifier(name)
    suffix = " IF NOT EXISTS" if opts.if_not_exists else ""

    if opts.target == "NODE":
        if mode.separate_database:
            if not opts.labels:
                raise PreconditionError("labels are required for node indexes")
            anchor = label_clause(opts.labels[:1])
        else:
            anchor = mode.node_labels(opts.graph_name)
        props = [f"n.{escape_identifier(p)}" for p in opts.properties]
        if index_type in ("BTREE", "RANGE"):
            return f"CREATE INDEX {quoted}{suffix} FOR (n{anchor}) ON ({', '.join(props)})"
        if index_type == "FULLTEXT":
            return (
                f"CREATE FULLTEXT INDEX {quoted}{suffix} FOR (n{anchor}) "
                f"ON EACH [{', '.join(props)}]"
            )
        if index_type == "VECTOR":
            if len(opts.properties) != 1:
                raise PreconditionError("vector indexes require exactly one property")
            dimension = int(opts.config.get("dimension", DEFAULT_VECTOR_DIMENSION))
            similarity = str(opts.config.get("similarity", DEFAULT_VECTOR_SIMILARITY))
            return (
                f"CREATE VECTOR INDEX {quoted}{suffix} FOR (n{anchor}) ON ({props[0]}) "
                f"OPTIONS {{indexConfig: {{`vector.dimensions`: {dimension}, "
                f"`vector.similarity_function`: '{similarity}'}}}}"
            )
        raise UnsupportedOperationError(f"unsupported index type: {index_type}")

    if opts.target == "RELATIONSHIP":
        if not opts.labels:
            raise PreconditionError("relationship types are required for relationship indexes")
        rel_type = escape_identifier(mode.relationship_type(opts.labels[0]))
        props = [f"r.{escape_identifier(p)}" for p in opts.properties]
        if index_type in ("BTREE", "RANGE"):
            return f"CREATE INDEX {quoted}{suffix} FOR ()-[r:{rel_type}]-() ON ({', '.join(props)})"
        if index_type == "FULLTEXT":
            return (
                f"CREATE FULLTEXT INDEX {quoted}{suffix} FOR ()-[r:{rel_type}]-() "
                f"ON EACH [{', '.join(props)}]"
            )
        raise UnsupportedOperationError(f"unsupported relationship index type: {index_type}")

    raise PreconditionError(f"invalid target: {opts.target} (must be NODE or RELATIONSHIP)")


class IndexManager:
    def __init__(self, critical: CriticalSection) -> None:
        self._critical = critical

    async def create_index(self, conn: Connection, opts: CreateIndexOptions) -> None:
        graph = validate_graph_name(opts.graph_name)
        if not opts.properties:
            raise PreconditionError("properties cannot be empty")
        name = opts.name or generate_index_name(opts)
        query = build_create_index(conn.mode, opts, name)

        async with self._critical.hold("create_index"):
            try:
                await conn.write(conn.mode.database_name(graph), query)
            except GraphStoreError as e:
                if not is_conflict(e):
                    raise ServerError(f"failed to create index: {e}") from e
                if opts.if_not_exists:
                    logger.debug("Index '%s' already exists, skipping", name)
                    return
                raise IndexAlreadyExistsError(name) from e
        logger.info("Created index '%s' on graph '%s'", name, graph)

    async def drop_index(self, conn: Connection, opts: DropIndexOptions) -> None:
        graph = validate_graph_name(opts.graph_name)
        if not opts.name:
            raise PreconditionError("index name cannot be empty")

        async with self._critical.hold("drop_index"):
            if not await lifecycle_for(conn, self._critical).exists(conn, graph):
                if opts.if_exists:
                    return
                raise GraphNotFoundError(graph)
            query = f"DROP INDEX {escape_identifier(opts.name)}"
            if opts.if_exists:
                query += " IF EXISTS"
            try:
                await conn.write(conn.mode.database_name(graph), query)
            except GraphStoreError as e:
                if opts.if_exists and is_not_found(e):
                    return
                raise ServerError(f"failed to drop index '{opts.name}': {e}") from e
        logger.info("Dropped index '%s' on graph '%s'", opts.name, graph)
