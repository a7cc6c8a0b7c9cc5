# src/graph_store/nodes.py - v1
"""Node store: batched add (create/upsert), filtered get, filtered delete."""

from __future__ import annotations

import logging
from typing import Any

from graphrag_store.core.models import GraphNode
from graphrag_store.core.options import AddNodesOptions, DeleteNodesOptions, GetNodesOptions
from graphrag_store.graph_store.converters import node_from_neo4j
from graphrag_store.graph_store.driver import Connection, Statement
from graphrag_store.graph_store.errors import (
    DryRunResult,
    GraphNotFoundError,
    GraphStoreError,
    PreconditionError,
    SafetyError,
    ServerError,
    TransientError,
)
from graphrag_store.graph_store.lifecycle import lifecycle_for
from graphrag_store.graph_store.locks import CriticalSection
from graphrag_store.graph_store.mode import StorageMode, escape_identifier, validate_graph_name
from graphrag_store.graph_store.properties import node_properties

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100
DEFAULT_GET_LIMIT = 1000


def property_conditions(
    var: str, filters: dict[str, Any], params: dict[str, Any], prefix: str = "filter"
) -> list[str]:
    """Equality conditions `var.key = $prefix_i`, registering parameters."""
    conditions = []
    for i, (key, value) in enumerate(filters.items()):
        name = f"{prefix}_{i}"
        conditions.append(f"{var}.{escape_identifier(key)} = ${name}")
        params[name] = value
    return conditions


def where(conditions: list[str]) -> str:
    conditions = [c for c in conditions if c]
    return f" WHERE {' AND '.join(conditions)}" if conditions else ""


def batch_error(error: Exception, message: str) -> GraphStoreError:
    """Re-raise a failed batch with its range, keeping transient errors retryable."""
    cls = TransientError if isinstance(error, TransientError) else ServerError
    return cls(f"{message}: {error}")


def require_selector(ids: list[str], filters: dict[str, Any], target: str) -> None:
    """Refuse a delete that would select every entity of the graph."""
    if not ids and not filters:
        raise SafetyError(
            f"either IDs or Filter must be specified to prevent accidental "
            f"deletion of all {target}"
        )


class NodeStore:
    def __init__(self, critical: CriticalSection) -> None:
        self._critical = critical

    # --- Add ---

    async def add(self, conn: Connection, opts: AddNodesOptions) -> list[str]:
        """Persist nodes in batches; returns business IDs in input order."""
        graph = validate_graph_name(opts.graph_name)
        if not opts.nodes:
            return []
        for i, node in enumerate(opts.nodes):
            if not node.id:
                raise PreconditionError(f"node ID cannot be empty at index {i}")

        lifecycle = lifecycle_for(conn, self._critical)
        if not await lifecycle.exists(conn, graph):
            if conn.mode.separate_database:
                raise GraphNotFoundError(graph)
            await lifecycle.create(conn, graph)

        batch_size = opts.batch_size or conn.config.batch_size or DEFAULT_BATCH_SIZE
        database = conn.mode.database_name(graph)
        processed: list[str] = []
        for start in range(0, len(opts.nodes), batch_size):
            batch = opts.nodes[start:start + batch_size]
            end = start + len(batch) - 1
            statements = self.batch_statements(conn.mode, graph, batch, opts.upsert)
            try:
                await conn.write_many(database, statements)
            except GraphStoreError as e:
                raise batch_error(e, f"failed to add nodes batch {start}-{end}") from e
            processed.extend(node.id for node in batch)
            logger.debug("Added nodes %d-%d to graph '%s'", start, end, graph)
        return processed

    @staticmethod
    def batch_statements(
        mode: StorageMode, graph: str, nodes: list[GraphNode], upsert: bool
    ) -> list[Statement]:
        """One UNWIND statement per distinct label combination."""
        groups: dict[tuple[str, ...], list[dict[str, Any]]] = {}
        for node in nodes:
            props = node_properties(node)
            row: dict[str, Any] = {"id": node.id, "properties": props}
            if upsert:
                row["created_at"] = props["created_at"]
                if node.created_at is None:
                    del props["created_at"]
            groups.setdefault(tuple(node.labels), []).append(row)

        statements: list[Statement] = []
        for labels, rows in groups.items():
            if upsert:
                own = mode.node_labels(graph, [])
                extra = "".join(f":{escape_identifier(label)}" for label in labels if label)
                set_labels = f" SET n{extra}" if extra else ""
                query = (
                    f"UNWIND $batch AS row "
                    f"MERGE (n{own} {{id: row.id}}) "
                    f"ON CREATE SET n.created_at = row.created_at "
                    f"SET n += row.properties{set_labels} "
                    f"RETURN n.id AS id"
                )
            else:
                query = (
                    f"UNWIND $batch AS row "
                    f"CREATE (n{mode.node_labels(graph, labels)}) "
                    f"SET n = row.properties "
                    f"RETURN n.id AS id"
                )
            statements.append((query, {"batch": rows}))
        return statements

    # --- Get ---

    async def get(self, conn: Connection, opts: GetNodesOptions) -> list[GraphNode]:
        graph = validate_graph_name(opts.graph_name)
        lifecycle = lifecycle_for(conn, self._critical)
        if not await lifecycle.exists(conn, graph):
            return []

        query, params = self.build_get_query(conn.mode, opts)
        records = await conn.read(conn.mode.database_name(graph), query, params)
        hidden = {conn.mode.namespace_property}
        return [
            node_from_neo4j(
                record["n"],
                hide_label=conn.mode.is_graph_label,
                include_properties=opts.include_properties,
                include_metadata=opts.include_metadata,
                fields=opts.fields,
                hidden_properties=hidden,
            )
            for record in records
        ]

    @staticmethod
    def build_get_query(mode: StorageMode, opts: GetNodesOptions) -> tuple[str, dict[str, Any]]:
        params: dict[str, Any] = {"limit": opts.limit or DEFAULT_GET_LIMIT}
        conditions: list[str] = []
        if opts.ids:
            conditions.append("n.id IN $ids")
            params["ids"] = list(opts.ids)
        conditions.extend(property_conditions("n", opts.filter, params))
        pattern = mode.node_pattern("n", opts.graph_name, opts.labels)
        query = f"MATCH {pattern}{where(conditions)} RETURN n LIMIT $limit"
        return query, params

    # --- Delete ---

    @staticmethod
    def validate_delete(opts: DeleteNodesOptions) -> None:
        validate_graph_name(opts.graph_name)
        require_selector(opts.ids, opts.filter, "nodes")

    async def delete(self, conn: Connection, opts: DeleteNodesOptions) -> int:
        """Delete matching nodes; returns how many were removed.

        Raises:
            SafetyError: Neither ids nor filter given.
            DryRunResult: dry_run is set; carries the match count.
        """
        self.validate_delete(opts)
        graph = opts.graph_name
        lifecycle = lifecycle_for(conn, self._critical)
        if not await lifecycle.exists(conn, graph):
            return 0

        database = conn.mode.database_name(graph)
        pattern = conn.mode.node_pattern("n", graph)

        if opts.dry_run:
            params: dict[str, Any] = {}
            conditions = property_conditions("n", opts.filter, params)
            if opts.ids:
                conditions.insert(0, "n.id IN $ids")
                params["ids"] = list(opts.ids)
            records = await conn.read(
                database, f"MATCH {pattern}{where(conditions)} RETURN count(n) AS count", params
            )
            count = int(records[0]["count"]) if records else 0
            raise DryRunResult(count, "nodes")

        verb = "DETACH DELETE" if opts.delete_relationships else "DELETE"
        deleted = 0
        if opts.ids:
            batch_size = opts.batch_size or conn.config.batch_size or DEFAULT_BATCH_SIZE
            for start in range(0, len(opts.ids), batch_size):
                params = {"ids": opts.ids[start:start + batch_size]}
                conditions = ["n.id IN $ids", *property_conditions("n", opts.filter, params)]
                records = await conn.write(
                    database,
                    f"MATCH {pattern}{where(conditions)} {verb} n RETURN count(*) AS deleted",
                    params,
                )
                deleted += int(records[0]["deleted"]) if records else 0
        else:
            params = {}
            conditions = property_conditions("n", opts.filter, params)
            records = await conn.write(
                database,
                f"MATCH {pattern}{where(conditions)} {verb} n RETURN count(*) AS deleted",
                params,
            )
            deleted = int(records[0]["deleted"]) if records else 0

        logger.info("Deleted %d nodes from graph '%s'", deleted, graph)
        return deleted
