# src/graph_store/converters.py - v1
"""Conversion of driver graph values into adapter models."""

from __future__ import annotations

from typing import Any, Iterable

from neo4j.graph import Node, Path, Relationship

from graphrag_store.core.models import GraphNode, GraphPath, GraphRelationship
from graphrag_store.graph_store.properties import (
    NODE_FIELD_KEYS,
    RELATIONSHIP_FIELD_KEYS,
    from_unix,
    split_embeddings,
)


def entity_properties(entity: Node | Relationship) -> dict[str, Any]:
    return dict(entity.items())


def portable_value(value: Any) -> Any:
    """Plain JSON-friendly rendering of any driver value."""
    if isinstance(value, Node):
        return {
            "element_id": value.element_id,
            "labels": sorted(value.labels),
            "properties": {k: portable_value(v) for k, v in entity_properties(value).items()},
        }
    if isinstance(value, Relationship):
        return {
            "element_id": value.element_id,
            "type": value.type,
            "properties": {k: portable_value(v) for k, v in entity_properties(value).items()},
        }
    if isinstance(value, Path):
        return {
            "nodes": [portable_value(n) for n in value.nodes],
            "relationships": [portable_value(r) for r in value.relationships],
        }
    if isinstance(value, (list, tuple)):
        return [portable_value(v) for v in value]
    if isinstance(value, dict):
        return {k: portable_value(v) for k, v in value.items()}
    if isinstance(value, (bytes, bytearray)):
        return list(value)
    if hasattr(value, "iso_format"):
        return value.iso_format()
    return value


def record_to_dict(record: Any) -> dict[str, Any]:
    return {key: portable_value(value) for key, value in record.items()}


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _ordered_labels(labels: Iterable[str], entity_type: str | None, hidden) -> list[str]:
    visible = sorted(label for label in labels if not hidden(label))
    if entity_type and entity_type in visible:
        visible.remove(entity_type)
        visible.insert(0, entity_type)
    return visible


def node_from_neo4j(
    node: Node,
    hide_label=lambda label: False,
    include_properties: bool = True,
    include_metadata: bool = True,
    fields: Iterable[str] = (),
    hidden_properties: Iterable[str] = (),
) -> GraphNode:
    """Build a GraphNode from a driver Node.

    Labels matching hide_label (graph labels) are removed; the entity
    type label, when present, is listed first.
    """
    props = entity_properties(node)
    raw_id = props.get("id")
    node_id = str(raw_id) if raw_id not in (None, "") else f"node_{node.element_id}"
    entity_type = props.get("entity_type")
    entity_type = str(entity_type) if entity_type else None

    confidence = _number(props.get("confidence"))
    if confidence is not None and not 0.0 <= confidence <= 1.0:
        confidence = None
    embedding = props.get("embedding")
    version = props.get("version")

    rest, embeddings = split_embeddings(
        {k: v for k, v in props.items() if k not in NODE_FIELD_KEYS}
    )
    hidden = set(hidden_properties)
    wanted = set(fields)
    free: dict[str, Any] = {}
    if include_properties:
        free = {
            k: v for k, v in rest.items()
            if k not in hidden and (not wanted or k in wanted)
        }

    return GraphNode(
        id=node_id,
        labels=_ordered_labels(node.labels, entity_type, hide_label),
        properties=free,
        embedding=[float(x) for x in embedding] if isinstance(embedding, list) else None,
        embeddings=embeddings or None,
        entity_type=entity_type,
        description=props.get("description") or None,
        confidence=confidence,
        importance=_number(props.get("importance")),
        weight=_number(props.get("weight")),
        created_at=from_unix(props.get("created_at")) if include_metadata else None,
        updated_at=from_unix(props.get("updated_at")) if include_metadata else None,
        version=int(version) if include_metadata and isinstance(version, int) else None,
    )


def relationship_from_neo4j(
    rel: Relationship,
    start_id: str | None = None,
    end_id: str | None = None,
    include_properties: bool = True,
    include_metadata: bool = True,
    fields: Iterable[str] = (),
) -> GraphRelationship:
    """Build a GraphRelationship carrying business endpoint IDs when known."""
    props = entity_properties(rel)
    raw_id = props.get("id")
    rel_id = str(raw_id) if raw_id not in (None, "") else f"rel_{rel.element_id}"
    rel_type = props.get("type") or rel.type

    if start_id is None and rel.start_node is not None:
        start_id = rel.start_node.get("id") or rel.start_node.element_id
    if end_id is None and rel.end_node is not None:
        end_id = rel.end_node.get("id") or rel.end_node.element_id

    rest, embeddings = split_embeddings(
        {k: v for k, v in props.items() if k not in RELATIONSHIP_FIELD_KEYS}
    )
    wanted = set(fields)
    free: dict[str, Any] = {}
    if include_properties:
        free = {k: v for k, v in rest.items() if not wanted or k in wanted}

    embedding = props.get("embedding")
    version = props.get("version")
    return GraphRelationship(
        id=rel_id,
        type=str(rel_type),
        start_node=str(start_id or ""),
        end_node=str(end_id or ""),
        properties=free,
        embedding=[float(x) for x in embedding] if isinstance(embedding, list) else None,
        embeddings=embeddings or None,
        description=props.get("description") or None,
        confidence=_number(props.get("confidence")),
        weight=_number(props.get("weight")),
        created_at=from_unix(props.get("created_at")) if include_metadata else None,
        updated_at=from_unix(props.get("updated_at")) if include_metadata else None,
        version=int(version) if include_metadata and isinstance(version, int) else None,
    )


def path_from_neo4j(path: Path, hide_label=lambda label: False) -> GraphPath:
    nodes = [node_from_neo4j(n, hide_label=hide_label) for n in path.nodes]
    rels = [relationship_from_neo4j(r) for r in path.relationships]
    return GraphPath(nodes=nodes, relationships=rels, length=len(rels))
