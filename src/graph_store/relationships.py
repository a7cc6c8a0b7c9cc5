# src/graph_store/relationships.py - v1
"""Relationship store: batched add, filtered get, filtered delete."""

from __future__ import annotations

import logging
from typing import Any

from graphrag_store.core.models import GraphRelationship
from graphrag_store.core.options import (
    AddRelationshipsOptions,
    DeleteRelationshipsOptions,
    GetRelationshipsOptions,
)
from graphrag_store.graph_store.converters import relationship_from_neo4j
from graphrag_store.graph_store.driver import Connection, Statement
from graphrag_store.graph_store.errors import (
    DryRunResult,
    GraphNotFoundError,
    GraphStoreError,
    PreconditionError,
)
from graphrag_store.graph_store.lifecycle import lifecycle_for
from graphrag_store.graph_store.locks import CriticalSection
from graphrag_store.graph_store.mode import StorageMode, escape_identifier, validate_graph_name
from graphrag_store.graph_store.nodes import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_GET_LIMIT,
    batch_error,
    property_conditions,
    require_selector,
    where,
)
from graphrag_store.graph_store.properties import relationship_properties

logger = logging.getLogger(__name__)

_INCOMING = ("IN", "INCOMING")
_OUTGOING = ("OUT", "OUTGOING")


def relationship_id(rel: GraphRelationship) -> str:
    return rel.id or f"{rel.start_node}_{rel.type}_{rel.end_node}"


class RelationshipStore:
    def __init__(self, critical: CriticalSection) -> None:
        self._critical = critical

    # --- Add ---

    async def add(self, conn: Connection, opts: AddRelationshipsOptions) -> list[str]:
        """Persist relationships; returns processed IDs in input order.

        Rows whose endpoints cannot be matched (and create_nodes is off)
        are skipped by the server and left out of the result.
        """
        graph = validate_graph_name(opts.graph_name)
        if not opts.relationships:
            return []
        rels: list[GraphRelationship] = []
        for i, rel in enumerate(opts.relationships):
            if not rel.start_node or not rel.end_node:
                raise PreconditionError(
                    f"start node and end node cannot be empty for relationship at index {i}"
                )
            if not rel.type:
                raise PreconditionError(f"relationship type cannot be empty at index {i}")
            rels.append(rel.model_copy(update={"id": relationship_id(rel)}))

        lifecycle = lifecycle_for(conn, self._critical)
        if not await lifecycle.exists(conn, graph):
            if conn.mode.separate_database or not opts.create_nodes:
                raise GraphNotFoundError(graph)
            await lifecycle.create(conn, graph)

        batch_size = opts.batch_size or conn.config.batch_size or DEFAULT_BATCH_SIZE
        database = conn.mode.database_name(graph)
        processed: list[str] = []
        for start in range(0, len(rels), batch_size):
            batch = rels[start:start + batch_size]
            end = start + len(batch) - 1
            statements = self.batch_statements(
                conn.mode, graph, batch, opts.upsert, opts.create_nodes
            )
            try:
                results = await conn.write_many(database, statements)
            except GraphStoreError as e:
                raise batch_error(e, f"failed to add relationships batch {start}-{end}") from e
            written = {record["id"] for records in results for record in records}
            skipped = [rel.id for rel in batch if rel.id not in written]
            if skipped:
                logger.warning(
                    "Skipped %d relationships with missing endpoints in graph '%s'",
                    len(skipped), graph,
                )
            processed.extend(rel.id for rel in batch if rel.id in written)
        return processed

    @staticmethod
    def batch_statements(
        mode: StorageMode,
        graph: str,
        rels: list[GraphRelationship],
        upsert: bool,
        create_nodes: bool,
    ) -> list[Statement]:
        """One UNWIND statement per stored relationship type."""
        groups: dict[str, list[dict[str, Any]]] = {}
        for rel in rels:
            row = {
                "id": rel.id,
                "type": rel.type,
                "start_node": rel.start_node,
                "end_node": rel.end_node,
                "properties": relationship_properties(rel),
            }
            groups.setdefault(mode.relationship_type(rel.type), []).append(row)

        endpoint = "MERGE" if create_nodes else "MATCH"
        verb = "MERGE" if upsert else "CREATE"
        labels = mode.node_labels(graph)
        statements: list[Statement] = []
        for stored_type, rows in groups.items():
            query = (
                f"UNWIND $batch AS row "
                f"{endpoint} (start{labels} {{id: row.start_node}}) "
                f"{endpoint} (end{labels} {{id: row.end_node}}) "
                f"{verb} (start)-[r:{escape_identifier(stored_type)} {{id: row.id}}]->(end) "
                f"SET r = row.properties, r.type = row.type "
                f"RETURN r.id AS id"
            )
            statements.append((query, {"batch": rows}))
        return statements

    # --- Get ---

    async def get(
        self, conn: Connection, opts: GetRelationshipsOptions
    ) -> list[GraphRelationship]:
        graph = validate_graph_name(opts.graph_name)
        lifecycle = lifecycle_for(conn, self._critical)
        if not await lifecycle.exists(conn, graph):
            return []
        query, params = self.build_get_query(conn.mode, opts)
        records = await conn.read(conn.mode.database_name(graph), query, params)
        return [
            relationship_from_neo4j(
                record["r"],
                start_id=record["start_id"],
                end_id=record["end_id"],
                include_properties=opts.include_properties,
                include_metadata=opts.include_metadata,
                fields=opts.fields,
            )
            for record in records
        ]

    @staticmethod
    def build_get_query(
        mode: StorageMode, opts: GetRelationshipsOptions
    ) -> tuple[str, dict[str, Any]]:
        graph = opts.graph_name
        params: dict[str, Any] = {"limit": opts.limit or DEFAULT_GET_LIMIT}
        conditions: list[str] = []
        if opts.ids:
            conditions.append("r.id IN $ids")
            params["ids"] = list(opts.ids)
        if opts.types:
            conditions.append("coalesce(r.type, type(r)) IN $types")
            params["types"] = list(opts.types)
        if opts.node_ids:
            params["node_ids"] = list(opts.node_ids)
            direction = (opts.direction or "BOTH").upper()
            if direction in _INCOMING:
                conditions.append("end.id IN $node_ids")
            elif direction in _OUTGOING:
                conditions.append("start.id IN $node_ids")
            else:
                conditions.append("(start.id IN $node_ids OR end.id IN $node_ids)")
        conditions.extend(property_conditions("r", opts.filter, params))

        pattern = f"{mode.node_pattern('start', graph)}-[r]->{mode.node_pattern('end', graph)}"
        query = (
            f"MATCH {pattern}{where(conditions)} "
            f"RETURN r, start.id AS start_id, end.id AS end_id LIMIT $limit"
        )
        return query, params

    # --- Delete ---

    @staticmethod
    def validate_delete(opts: DeleteRelationshipsOptions) -> None:
        validate_graph_name(opts.graph_name)
        require_selector(opts.ids, opts.filter, "relationships")

    async def delete(self, conn: Connection, opts: DeleteRelationshipsOptions) -> int:
        """Delete matching relationships; endpoints are left untouched."""
        self.validate_delete(opts)
        graph = opts.graph_name
        lifecycle = lifecycle_for(conn, self._critical)
        if not await lifecycle.exists(conn, graph):
            return 0

        database = conn.mode.database_name(graph)
        pattern = f"{conn.mode.node_pattern('a', graph)}-[r]->{conn.mode.node_pattern('b', graph)}"

        if opts.dry_run:
            params: dict[str, Any] = {}
            conditions = property_conditions("r", opts.filter, params)
            if opts.ids:
                conditions.insert(0, "r.id IN $ids")
                params["ids"] = list(opts.ids)
            records = await conn.read(
                database, f"MATCH {pattern}{where(conditions)} RETURN count(r) AS count", params
            )
            count = int(records[0]["count"]) if records else 0
            raise DryRunResult(count, "relationships")

        deleted = 0
        if opts.ids:
            batch_size = opts.batch_size or conn.config.batch_size or DEFAULT_BATCH_SIZE
            for start in range(0, len(opts.ids), batch_size):
                params = {"ids": opts.ids[start:start + batch_size]}
                conditions = ["r.id IN $ids", *property_conditions("r", opts.filter, params)]
                records = await conn.write(
                    database,
                    f"MATCH {pattern}{where(conditions)} DELETE r RETURN count(*) AS deleted",
                    params,
                )
                deleted += int(records[0]["deleted"]) if records else 0
        else:
            params = {}
            conditions = property_conditions("r", opts.filter, params)
            records = await conn.write(
                database,
                f"MATCH {pattern}{where(conditions)} DELETE r RETURN count(*) AS deleted",
                params,
            )
            deleted = int(records[0]["deleted"]) if records else 0

        logger.info("Deleted %d relationships from graph '%s'", deleted, graph)
        return deleted
