# src/graph_store/backup.py - v1
"""Graph backup (JSON or Cypher script, optionally gzipped) and restore.

Backups are portable across graph names and storage modes: restore
rewrites graph labels from the recorded source graph to the target.
"""

from __future__ import annotations

import gzip
import json
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, BinaryIO

from pydantic import ValidationError

from graphrag_store.core.models import (
    BackupEnvelope,
    BackupNodeRecord,
    BackupRelationshipRecord,
)
from graphrag_store.core.options import GraphBackupOptions, GraphRestoreOptions
from graphrag_store.graph_store.converters import entity_properties, portable_value
from graphrag_store.graph_store.driver import Connection
from graphrag_store.graph_store.errors import (
    GraphAlreadyExistsError,
    GraphNotFoundError,
    GraphStoreError,
    InvalidBackupError,
    ServerError,
    UnsupportedOperationError,
)
from graphrag_store.graph_store.lifecycle import GraphLifecycle, lifecycle_for
from graphrag_store.graph_store.locks import CriticalSection
from graphrag_store.graph_store.mode import (
    StorageMode,
    escape_identifier,
    label_clause,
    validate_graph_name,
)
from graphrag_store.graph_store.nodes import DEFAULT_BATCH_SIZE
from graphrag_store.graph_store.properties import sanitize_properties

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
FORMATS = ("json", "cypher")
GENERATOR = "graphrag_store"

_HEADER_GRAPH = re.compile(r"^//\s*Neo4j Graph Backup - (\S+)\s*$")
_HEADER_STORAGE = re.compile(r"^//\s*Storage Type:\s*(\S+)\s*$")
_LABELS = r"((?::`(?:[^`]|``)+`)*)"
_NODE_VAR = re.compile(r"\((n|a|b)" + _LABELS + r"(?=[ )])")


def export_timestamp() -> str:
    """Current UTC time as RFC 3339."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _backup_format(value: str, default: str) -> str:
    fmt = (value or default).lower()
    if fmt not in FORMATS:
        raise UnsupportedOperationError(f"unsupported backup format: {fmt}")
    return fmt


# === CYPHER LITERALS ===


def cypher_literal(value: Any) -> str:
    """Render a property value as a Cypher literal."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return "null"
        return repr(value)
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, (list, tuple)) and all(
        v is None or isinstance(v, (bool, int, float, str)) for v in value
    ):
        return "[" + ", ".join(cypher_literal(v) for v in value) + "]"
    return json.dumps(json.dumps(value, default=str))


def cypher_map(props: dict[str, Any]) -> str:
    if not props:
        return ""
    body = ", ".join(
        f"{escape_identifier(k)}: {cypher_literal(v)}" for k, v in props.items()
    )
    return " {" + body + "}"


# === BACKUP ===


class BackupManager:
    def __init__(self, critical: CriticalSection) -> None:
        self._critical = critical

    async def backup(self, conn: Connection, writer: BinaryIO, opts: GraphBackupOptions) -> None:
        graph = validate_graph_name(opts.graph_name)
        fmt = _backup_format(opts.format, "json")
        await lifecycle_for(conn, self._critical).assert_exists(conn, graph)

        async with self._critical.hold("backup"):
            nodes, relationships = await self._collect(conn, graph, opts.filter)

        metadata: dict[str, Any] = {
            **conn.mode.describe_extras(graph),
            "node_count": len(nodes),
            "relationship_count": len(relationships),
            "export_timestamp": export_timestamp(),
            **opts.extra_params,
        }
        if fmt == "json":
            envelope = BackupEnvelope(
                graph_name=graph,
                metadata=metadata,
                nodes=nodes,
                relationships=relationships,
            )
            payload = envelope.model_dump_json(indent=2).encode("utf-8")
        else:
            payload = self.render_cypher(conn.mode, graph, metadata, nodes, relationships)

        if opts.compress:
            with gzip.GzipFile(fileobj=writer, mode="wb") as gz:
                gz.write(payload)
        else:
            writer.write(payload)
        logger.info(
            "Backed up graph '%s' (%s, %d nodes, %d relationships)",
            graph, fmt, len(nodes), len(relationships),
        )

    async def _collect(
        self, conn: Connection, graph: str, filters: dict[str, str]
    ) -> tuple[list[BackupNodeRecord], list[BackupRelationshipRecord]]:
        mode = conn.mode
        database = mode.database_name(graph)

        node_where = f" WHERE {filters['nodes']}" if filters.get("nodes") else ""
        node_records = await conn.read(
            database, f"MATCH {mode.node_pattern('n', graph)}{node_where} RETURN n"
        )
        nodes = []
        for record in node_records:
            node = record["n"]
            props = {k: portable_value(v) for k, v in entity_properties(node).items()}
            nodes.append(
                BackupNodeRecord(
                    id=props.get("id") or node.element_id,
                    element_id=node.element_id,
                    labels=sorted(node.labels),
                    properties=props,
                )
            )

        rel_where = (
            f" WHERE {filters['relationships']}" if filters.get("relationships") else ""
        )
        rel_records = await conn.read(
            database,
            f"MATCH {mode.node_pattern('a', graph)}-[r]->{mode.node_pattern('b', graph)}"
            f"{rel_where} "
            f"RETURN r, a.id AS start_id, b.id AS end_id, "
            f"elementId(a) AS start_element_id, elementId(b) AS end_element_id",
        )
        relationships = []
        for record in rel_records:
            rel = record["r"]
            props = {k: portable_value(v) for k, v in entity_properties(rel).items()}
            relationships.append(
                BackupRelationshipRecord(
                    id=props.get("id") or rel.element_id,
                    element_id=rel.element_id,
                    type=rel.type,
                    properties=props,
                    start_node=record["start_element_id"],
                    end_node=record["end_element_id"],
                    start_business_id=str(record["start_id"] or ""),
                    end_business_id=str(record["end_id"] or ""),
                )
            )
        return nodes, relationships

    @staticmethod
    def render_cypher(
        mode: StorageMode,
        graph: str,
        metadata: dict[str, Any],
        nodes: list[BackupNodeRecord],
        relationships: list[BackupRelationshipRecord],
    ) -> bytes:
        """One statement per line after a header naming the source graph."""
        lines = [
            f"// Neo4j Graph Backup - {graph}",
            f"// Storage Type: {mode.storage_type}",
            f"// Generated by {GENERATOR}",
            f"// Export Timestamp: {metadata['export_timestamp']}",
            f"// Nodes: {len(nodes)}, Relationships: {len(relationships)}",
            "",
        ]
        for node in nodes:
            labels = mode.node_labels(graph, node.labels)
            lines.append(f"CREATE (n{labels}{cypher_map(node.properties)})")

        scope = mode.node_labels(graph)
        for rel in relationships:
            if rel.start_business_id and rel.end_business_id:
                condition = (
                    f"a.id = {cypher_literal(rel.start_business_id)} "
                    f"AND b.id = {cypher_literal(rel.end_business_id)}"
                )
            else:
                condition = (
                    f"elementId(a) = {cypher_literal(rel.start_node)} "
                    f"AND elementId(b) = {cypher_literal(rel.end_node)}"
                )
            lines.append(
                f"MATCH (a{scope}), (b{scope}) WHERE {condition} "
                f"CREATE (a)-[:{escape_identifier(rel.type)}{cypher_map(rel.properties)}]->(b)"
            )
        return ("\n".join(lines) + "\n").encode("utf-8")

    # === RESTORE ===

    async def restore(self, conn: Connection, reader: BinaryIO, opts: GraphRestoreOptions) -> None:
        graph = validate_graph_name(opts.graph_name)
        text = read_backup(reader)
        fmt = _backup_format(opts.format, detect_format(text))
        envelope = parse_envelope(text) if fmt == "json" else None

        lifecycle = lifecycle_for(conn, self._critical)
        async with self._critical.hold("restore"):
            await self._prepare_target(conn, lifecycle, graph, opts)
            if envelope is not None:
                await self.restore_json(conn, graph, envelope)
            else:
                await self.restore_cypher(conn, graph, text)
        logger.info("Restored graph '%s' from %s backup", graph, fmt)

    async def _prepare_target(
        self, conn: Connection, lifecycle: GraphLifecycle, graph: str, opts: GraphRestoreOptions
    ) -> None:
        if await lifecycle.exists(conn, graph):
            if not opts.force:
                raise GraphAlreadyExistsError(
                    graph, f"graph {graph} already exists, use force=True to overwrite"
                )
            await lifecycle.drop_unlocked(conn, graph)
        elif not opts.create_graph and conn.mode.separate_database:
            raise GraphNotFoundError(graph)
        await lifecycle.create_unlocked(conn, graph)
        await lifecycle.wait_until_available(conn, graph)

    async def restore_json(self, conn: Connection, graph: str, envelope: BackupEnvelope) -> None:
        mode = conn.mode
        database = mode.database_name(graph)
        batch_size = conn.config.batch_size or DEFAULT_BATCH_SIZE

        groups: dict[tuple[str, ...], list[dict[str, Any]]] = {}
        for node in envelope.nodes:
            labels = tuple(label for label in node.labels if not mode.is_graph_label(label))
            groups.setdefault(labels, []).append(
                {"element_id": node.element_id, "properties": sanitize_properties(node.properties)}
            )

        element_ids: dict[str, str] = {}
        for labels, rows in groups.items():
            query = (
                f"UNWIND $batch AS row CREATE (n{mode.node_labels(graph, labels)}) "
                f"SET n = row.properties "
                f"RETURN row.element_id AS old_id, elementId(n) AS new_id"
            )
            for start in range(0, len(rows), batch_size):
                records = await conn.write(database, query, {"batch": rows[start:start + batch_size]})
                element_ids.update({r["old_id"]: r["new_id"] for r in records})

        scope = mode.node_labels(graph)
        by_business: dict[str, list[dict[str, Any]]] = {}
        by_element: dict[str, list[dict[str, Any]]] = {}
        for rel in envelope.relationships:
            props = sanitize_properties(rel.properties)
            stored_type = mode.relationship_type(str(props.get("type") or rel.type))
            if rel.start_business_id and rel.end_business_id:
                by_business.setdefault(stored_type, []).append({
                    "start": rel.start_business_id,
                    "end": rel.end_business_id,
                    "properties": props,
                })
            elif rel.start_node in element_ids and rel.end_node in element_ids:
                by_element.setdefault(stored_type, []).append({
                    "start": element_ids[rel.start_node],
                    "end": element_ids[rel.end_node],
                    "properties": props,
                })
            else:
                logger.warning("Skipping relationship %s with unknown endpoints", rel.id)

        statements = []
        for stored_type, rows in by_business.items():
            statements.append((
                f"UNWIND $batch AS row "
                f"MATCH (a{scope} {{id: row.start}}), (b{scope} {{id: row.end}}) "
                f"CREATE (a)-[r:{escape_identifier(stored_type)}]->(b) SET r = row.properties",
                rows,
            ))
        for stored_type, rows in by_element.items():
            statements.append((
                f"UNWIND $batch AS row "
                f"MATCH (a), (b) WHERE elementId(a) = row.start AND elementId(b) = row.end "
                f"CREATE (a)-[r:{escape_identifier(stored_type)}]->(b) SET r = row.properties",
                rows,
            ))
        for query, rows in statements:
            for start in range(0, len(rows), batch_size):
                await conn.write(database, query, {"batch": rows[start:start + batch_size]})

        logger.debug(
            "Restored %d nodes and %d relationships into '%s'",
            len(envelope.nodes), len(envelope.relationships), graph,
        )

    async def restore_cypher(self, conn: Connection, graph: str, script: str) -> None:
        database = conn.mode.database_name(graph)
        for statement in rewrite_cypher_script(conn.mode, graph, script):
            try:
                await conn.write(database, statement)
            except GraphStoreError as e:
                raise ServerError(f"failed to execute Cypher statement '{statement}': {e}") from e


# === PARSING ===


def read_backup(reader: BinaryIO) -> str:
    """Read a possibly gzipped backup stream into text."""
    head = reader.read(2)
    if not head:
        raise InvalidBackupError("invalid backup data: empty data")
    data = head + reader.read()
    if data[:2] == GZIP_MAGIC:
        try:
            data = gzip.decompress(data)
        except (OSError, EOFError) as e:
            raise InvalidBackupError(f"invalid backup data: {e}") from e
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidBackupError(f"invalid backup data: {e}") from e
    if not text.strip():
        raise InvalidBackupError("invalid backup data: empty data")
    return text


def detect_format(text: str) -> str:
    return "json" if text.lstrip().startswith("{") else "cypher"


def parse_envelope(text: str) -> BackupEnvelope:
    try:
        return BackupEnvelope.model_validate_json(text)
    except ValidationError as e:
        raise InvalidBackupError(f"invalid backup data: {e}") from e


def _inject_label(statement: str, label: str) -> str:
    count = 1 if statement.startswith("CREATE") else 2
    return _NODE_VAR.sub(
        lambda m: f"({m.group(1)}{m.group(2)}{label_clause([label])}", statement, count=count
    )


def rewrite_cypher_script(mode: StorageMode, graph: str, script: str) -> list[str]:
    """Statements of a Cypher backup, relabelled for the target graph."""
    source_graph = None
    source_storage = None
    for line in script.splitlines():
        line = line.strip()
        if not line.startswith("//"):
            continue
        graph_match = _HEADER_GRAPH.match(line)
        storage_match = _HEADER_STORAGE.match(line)
        if graph_match and source_graph is None:
            source_graph = graph_match.group(1)
        elif storage_match and source_storage is None:
            source_storage = storage_match.group(1)

    target_label = mode.graph_label(graph)
    if source_graph and source_graph != graph:
        source_label = re.escape(mode.graph_label(source_graph))
        script = re.sub(
            rf"(?<![A-Za-z0-9_-]){source_label}(?![A-Za-z0-9_-])", target_label, script
        )

    prefixed = re.compile(r":`" + re.escape(mode.label_prefix) + r"(?:[^`]|``)*`")
    statements = []
    for line in script.splitlines():
        line = line.strip()
        if not line or line.startswith("//"):
            continue
        statement = line.rstrip(";").strip()
        if mode.separate_database:
            statement = prefixed.sub("", statement)
        elif source_storage == "separate_database":
            statement = _inject_label(statement, target_label)
        statements.append(statement)
    return statements
