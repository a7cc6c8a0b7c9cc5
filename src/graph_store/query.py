# src/graph_store/query.py - v1
"""Query engine: caller Cypher, traversal, shortest path and analytics.

Each query type compiles to (cypher, params, read_only); execution goes
through a managed transaction so results are consumed before it ends.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from neo4j.graph import Node, Path, Relationship

from graphrag_store.core.models import GraphResult
from graphrag_store.core.options import (
    GraphAnalyticsOptions,
    GraphQueryOptions,
    GraphTraversalOptions,
)
from graphrag_store.graph_store.converters import (
    node_from_neo4j,
    path_from_neo4j,
    record_to_dict,
    relationship_from_neo4j,
)
from graphrag_store.graph_store.driver import Connection
from graphrag_store.graph_store.errors import PreconditionError, UnsupportedOperationError
from graphrag_store.graph_store.lifecycle import lifecycle_for
from graphrag_store.graph_store.locks import CriticalSection
from graphrag_store.graph_store.mode import StorageMode, escape_identifier, validate_graph_name
from graphrag_store.graph_store.nodes import property_conditions, where

logger = logging.getLogger(__name__)

CompiledQuery = tuple[str, dict[str, Any], bool]

_READ_PREFIXES = ("MATCH", "RETURN", "WITH", "UNWIND", "CALL", "OPTIONAL MATCH")
_WRITE_KEYWORDS = re.compile(r"\b(CREATE|MERGE|DELETE|SET|REMOVE)\b", re.IGNORECASE)


def is_read_only(query: str) -> bool:
    """Heuristic routing for queries that do not say read_only explicitly."""
    text = query.strip().upper()
    if not text.startswith(_READ_PREFIXES):
        return False
    return _WRITE_KEYWORDS.search(text) is None


def _pagination(limit: int, skip: int) -> str:
    clause = ""
    if skip > 0:
        clause += f" SKIP {int(skip)}"
    if limit > 0:
        clause += f" LIMIT {int(limit)}"
    return clause


# === COMPILERS ===


def compile_cypher(mode: StorageMode, opts: GraphQueryOptions) -> CompiledQuery:
    if not opts.query.strip():
        kind = "cypher" if opts.query_type == "cypher" else "custom"
        raise PreconditionError(f"{kind} query cannot be empty")
    params = {**mode.query_parameters(opts.graph_name), **opts.parameters}
    read_only = opts.read_only if opts.read_only is not None else is_read_only(opts.query)
    return opts.query, params, read_only


def traversal_options_from(params: dict[str, Any]) -> GraphTraversalOptions:
    """Build traversal options from a flat parameter map."""
    known = set(GraphTraversalOptions.model_fields)
    values = {k: v for k, v in params.items() if k in known and v is not None}
    if isinstance(values.get("direction"), str):
        values["direction"] = values["direction"].upper()
    return GraphTraversalOptions(**values)


def _arrows(direction: str) -> tuple[str, str]:
    if direction == "INCOMING":
        return "<-", "-"
    if direction == "OUTGOING":
        return "-", "->"
    return "-", "-"


def compile_traversal(mode: StorageMode, opts: GraphQueryOptions) -> CompiledQuery:
    graph = opts.graph_name
    trav = opts.traversal_options or traversal_options_from(opts.parameters)
    left, right = _arrows(trav.direction)
    params: dict[str, Any] = {}
    conditions: list[str] = []

    if trav.start_node:
        conditions.append("start.id = $start_node")
        params["start_node"] = trav.start_node
    start = mode.node_pattern("start", graph)
    end = mode.node_pattern("end", graph)

    if trav.return_paths:
        min_depth = max(trav.min_depth, 0)
        max_depth = max(trav.max_depth or 10, min_depth)
        pattern = f"p = {start}{left}[*{min_depth}..{max_depth}]{right}{end}"
        if trav.relationship_types:
            conditions.append(
                "all(x IN relationships(p) WHERE coalesce(x.type, type(x)) IN $rel_types)"
            )
            params["rel_types"] = list(trav.relationship_types)
        for i, (key, value) in enumerate(trav.rel_filter.items()):
            conditions.append(
                f"all(x IN relationships(p) WHERE x.{escape_identifier(key)} = $rel_{i})"
            )
            params[f"rel_{i}"] = value
        for i, (key, value) in enumerate(trav.node_filter.items()):
            prop = escape_identifier(key)
            conditions.append(f"(start.{prop} = $node_{i} OR end.{prop} = $node_{i})")
            params[f"node_{i}"] = value
        distinct = "DISTINCT " if trav.unique_paths else ""
        returns = f"RETURN {distinct}p"
    else:
        pattern = f"{start}{left}[r]{right}{end}"
        if trav.relationship_types:
            conditions.append("coalesce(r.type, type(r)) IN $rel_types")
            params["rel_types"] = list(trav.relationship_types)
        conditions.extend(property_conditions("r", trav.rel_filter, params, prefix="rel"))
        for i, (key, value) in enumerate(trav.node_filter.items()):
            prop = escape_identifier(key)
            conditions.append(f"(start.{prop} = $node_{i} OR end.{prop} = $node_{i})")
            params[f"node_{i}"] = value
        distinct = "DISTINCT " if trav.unique_paths else ""
        returns = f"RETURN {distinct}start, r, end"

    limit = opts.limit or trav.limit
    query = f"MATCH {pattern}{where(conditions)} {returns}{_pagination(limit, opts.skip)}"
    return query, params, True


def compile_path(mode: StorageMode, opts: GraphQueryOptions) -> CompiledQuery:
    start_node = opts.parameters.get("start_node")
    end_node = opts.parameters.get("end_node")
    if not start_node or not end_node:
        raise PreconditionError("path query requires 'start_node' and 'end_node' parameters")
    graph = opts.graph_name
    query = (
        f"MATCH {mode.node_pattern('start', graph)}, {mode.node_pattern('end', graph)} "
        f"WHERE start.id = $start_node AND end.id = $end_node "
        f"MATCH p = shortestPath((start)-[*]-(end)) "
        f"RETURN p{_pagination(opts.limit, opts.skip)}"
    )
    return query, {"start_node": start_node, "end_node": end_node}, True


def compile_analytics(mode: StorageMode, opts: GraphQueryOptions) -> CompiledQuery:
    """Degree-based approximations; unknown algorithms yield degree statistics."""
    analytics = opts.analytics_options or GraphAnalyticsOptions(
        algorithm=str(opts.parameters.get("algorithm", ""))
    )
    algorithm = analytics.algorithm.lower()
    n = mode.node_pattern("n", opts.graph_name)
    m = mode.node_pattern("m", opts.graph_name)
    limit = opts.limit or 100
    params: dict[str, Any] = {"limit": limit}

    if algorithm == "pagerank":
        params["damping"] = analytics.damping_factor
        query = (
            f"MATCH {n} OPTIONAL MATCH (n)<-[]-{m} "
            f"WITH n, count(m) AS in_degree "
            f"RETURN n.id AS node_id, (1 - $damping) + $damping * in_degree AS score "
            f"ORDER BY score DESC LIMIT $limit"
        )
    elif algorithm in ("betweenness", "closeness"):
        query = (
            f"MATCH {n} RETURN n.id AS node_id, 0.0 AS score LIMIT $limit"
        )
    elif algorithm == "degree":
        query = (
            f"MATCH {n} OPTIONAL MATCH (n)-[]-{m} "
            f"WITH n, count(m) AS degree "
            f"RETURN n.id AS node_id, degree AS score ORDER BY score DESC LIMIT $limit"
        )
    else:
        query = (
            f"MATCH {n} OPTIONAL MATCH (n)-[]-{m} "
            f"WITH n, count(m) AS degree "
            f"RETURN count(n) AS node_count, avg(degree) AS avg_degree, "
            f"max(degree) AS max_degree, min(degree) AS min_degree"
        )
    return query, params, True


_COMPILERS = {
    "cypher": compile_cypher,
    "custom": compile_cypher,
    "": compile_cypher,
    "traversal": compile_traversal,
    "path": compile_path,
    "analytics": compile_analytics,
}


def compile_query(mode: StorageMode, opts: GraphQueryOptions) -> CompiledQuery:
    compiler = _COMPILERS.get(opts.query_type.lower())
    if compiler is None:
        raise UnsupportedOperationError(f"unsupported query type: {opts.query_type}")
    return compiler(mode, opts)


# === RESULT PARSING ===


class ResultParser:
    """Collects graph values of every record into a GraphResult.

    Relationship endpoints resolve to business IDs through any node with
    an `id` property returned anywhere in the result. Endpoints the query
    did not return keep their element IDs.
    """

    def __init__(self, mode: StorageMode, return_type: str = "") -> None:
        self._mode = mode
        self._return_type = return_type or "all"
        self._seen_nodes: set[str] = set()
        self._seen_rels: set[str] = set()
        self._business_ids: dict[str, str] = {}

    def parse(self, records: list) -> GraphResult:
        result = GraphResult()
        for record in records:
            for value in record.values():
                self._index_nodes(value)
        for record in records:
            for value in record.values():
                self._collect(value, result)
            result.records.append(record_to_dict(record))
        return result

    def _index_nodes(self, value: Any) -> None:
        if isinstance(value, Node):
            business_id = value.get("id")
            if business_id not in (None, ""):
                self._business_ids[value.element_id] = str(business_id)
        elif isinstance(value, Path):
            for node in value.nodes:
                self._index_nodes(node)
        elif isinstance(value, (list, tuple)):
            for item in value:
                self._index_nodes(item)

    def _endpoint_id(self, node: Node | None) -> str | None:
        if node is None:
            return None
        business_id = node.get("id")
        if business_id not in (None, ""):
            return str(business_id)
        return self._business_ids.get(node.element_id, node.element_id)

    def _wants(self, kind: str) -> bool:
        return self._return_type in ("all", kind)

    def _collect(self, value: Any, result: GraphResult) -> None:
        if isinstance(value, Node):
            if self._wants("nodes") and value.element_id not in self._seen_nodes:
                self._seen_nodes.add(value.element_id)
                result.nodes.append(
                    node_from_neo4j(
                        value,
                        hide_label=self._mode.is_graph_label,
                        hidden_properties={self._mode.namespace_property},
                    )
                )
        elif isinstance(value, Relationship):
            if self._wants("relationships") and value.element_id not in self._seen_rels:
                self._seen_rels.add(value.element_id)
                result.relationships.append(
                    relationship_from_neo4j(
                        value,
                        start_id=self._endpoint_id(value.start_node),
                        end_id=self._endpoint_id(value.end_node),
                    )
                )
        elif isinstance(value, Path):
            if self._wants("paths"):
                result.paths.append(path_from_neo4j(value, hide_label=self._mode.is_graph_label))
        elif isinstance(value, (list, tuple)):
            for item in value:
                self._collect(item, result)


class QueryEngine:
    def __init__(self, critical: CriticalSection) -> None:
        self._critical = critical

    async def query(self, conn: Connection, opts: GraphQueryOptions) -> GraphResult:
        graph = validate_graph_name(opts.graph_name)
        await lifecycle_for(conn, self._critical).assert_exists(conn, graph)

        query, params, read_only = compile_query(conn.mode, opts)
        logger.debug(
            "Running %s query on graph '%s' (read_only=%s)", opts.query_type, graph, read_only
        )
        records = await conn.run(conn.mode.database_name(graph), query, params, read_only=read_only)
        return ResultParser(conn.mode, opts.return_type).parse(records)
