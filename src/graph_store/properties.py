# src/graph_store/properties.py - v1
"""Property-kind gate and property-map builders.

The driver accepts booleans, integers, floats, strings, byte arrays and
homogeneous lists of those. classify_value() maps any Python value onto
a PropertyKind; coerce_value() applies the matching coercion so call
sites never inspect types themselves.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from graphrag_store.core.models import GraphNode, GraphRelationship

logger = logging.getLogger(__name__)

EMBEDDING_PREFIX = "embedding_"

# Keys mapped onto dedicated model fields rather than free properties.
NODE_FIELD_KEYS = frozenset({
    "id", "entity_type", "description", "confidence", "importance", "weight",
    "embedding", "created_at", "updated_at", "version",
})
RELATIONSHIP_FIELD_KEYS = frozenset({
    "id", "type", "description", "confidence", "weight",
    "embedding", "created_at", "updated_at", "version",
})

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class PropertyKind(str, Enum):
    BOOLEAN = "boolean"
    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    BYTES = "bytes"
    LIST = "list"
    ENCODED = "encoded"
    DROPPED = "dropped"


def _primitive_kind(value: Any) -> PropertyKind | None:
    if isinstance(value, bool):
        return PropertyKind.BOOLEAN
    if isinstance(value, int):
        if _INT64_MIN <= value <= _INT64_MAX:
            return PropertyKind.INTEGER
        return None
    if isinstance(value, float):
        return PropertyKind.FLOAT
    if isinstance(value, str):
        return PropertyKind.STRING
    return None


def _list_is_storable(values: list | tuple) -> bool:
    kinds = set()
    for item in values:
        kind = _primitive_kind(item)
        if kind is None:
            return False
        kinds.add(kind)
    if len(kinds) <= 1:
        return True
    return kinds == {PropertyKind.INTEGER, PropertyKind.FLOAT}


def classify_value(value: Any, encode_maps: bool = True) -> PropertyKind:
    """Decide how a value is persisted.

    Nested mappings are JSON-encoded when encode_maps is set and dropped
    otherwise. None is never persisted.
    """
    if value is None:
        return PropertyKind.DROPPED
    kind = _primitive_kind(value)
    if kind is not None:
        return kind
    if isinstance(value, int):
        return PropertyKind.ENCODED
    if isinstance(value, (bytes, bytearray)):
        return PropertyKind.BYTES
    if isinstance(value, (list, tuple)):
        return PropertyKind.LIST if _list_is_storable(value) else PropertyKind.ENCODED
    if isinstance(value, dict):
        return PropertyKind.ENCODED if encode_maps else PropertyKind.DROPPED
    if isinstance(value, datetime):
        return PropertyKind.ENCODED
    return PropertyKind.ENCODED


def _encode(value: Any) -> str | None:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        try:
            return json.dumps(value, separators=(",", ":"), default=str)
        except (TypeError, ValueError):
            return None
    return str(value)


def coerce_value(value: Any, encode_maps: bool = True) -> tuple[bool, Any]:
    """Return (keep, stored_value) for one property value."""
    kind = classify_value(value, encode_maps=encode_maps)
    if kind is PropertyKind.DROPPED:
        return False, None
    if kind is PropertyKind.LIST:
        items = list(value)
        if any(isinstance(i, float) for i in items):
            items = [float(i) for i in items]
        return True, items
    if kind is PropertyKind.BYTES:
        return True, bytes(value)
    if kind is PropertyKind.ENCODED:
        encoded = _encode(value)
        return encoded is not None, encoded
    return True, value


def sanitize_properties(
    properties: dict[str, Any] | None, encode_maps: bool = True
) -> dict[str, Any]:
    """Filter a property map down to driver-supported kinds."""
    out: dict[str, Any] = {}
    for key, value in (properties or {}).items():
        if not key:
            continue
        keep, stored = coerce_value(value, encode_maps=encode_maps)
        if keep:
            out[key] = stored
        elif value is not None:
            logger.debug("Skipping unsupported property %r (%s)", key, type(value).__name__)
    return out


# === TIMESTAMPS ===


def to_unix(ts: datetime | None) -> int:
    if ts is None:
        return int(datetime.now(timezone.utc).timestamp())
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(ts.timestamp())


def from_unix(value: Any) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


# === BUILDERS ===


def _common_properties(entity: GraphNode | GraphRelationship) -> dict[str, Any]:
    props: dict[str, Any] = {}
    if entity.description:
        props["description"] = entity.description
    if entity.confidence is not None and entity.confidence > 0:
        props["confidence"] = float(entity.confidence)
    if entity.weight is not None and entity.weight > 0:
        props["weight"] = float(entity.weight)
    if entity.embedding:
        props["embedding"] = [float(x) for x in entity.embedding]
    for name, vector in (entity.embeddings or {}).items():
        if name and vector:
            props[f"{EMBEDDING_PREFIX}{name}"] = [float(x) for x in vector]
    props["created_at"] = to_unix(entity.created_at)
    props["updated_at"] = to_unix(None)
    props["version"] = max(entity.version or 1, 1)
    return props


def node_properties(node: GraphNode) -> dict[str, Any]:
    """Full stored property map of a node."""
    props = sanitize_properties(node.properties, encode_maps=False)
    if node.entity_type:
        props["entity_type"] = node.entity_type
    if node.importance is not None and node.importance > 0:
        props["importance"] = float(node.importance)
    props.update(_common_properties(node))
    props["id"] = node.id
    return props


def relationship_properties(rel: GraphRelationship) -> dict[str, Any]:
    """Full stored property map of a relationship (type carried as property)."""
    props = sanitize_properties(rel.properties, encode_maps=False)
    props.update(_common_properties(rel))
    props["id"] = rel.id
    props["type"] = rel.type
    return props


def split_embeddings(props: dict[str, Any]) -> tuple[dict[str, Any], dict[str, list[float]]]:
    """Separate flat embedding_<name> properties from the rest."""
    rest: dict[str, Any] = {}
    embeddings: dict[str, list[float]] = {}
    for key, value in props.items():
        if key.startswith(EMBEDDING_PREFIX) and isinstance(value, list):
            embeddings[key[len(EMBEDDING_PREFIX):]] = [float(x) for x in value]
        else:
            rest[key] = value
    return rest, embeddings


def merge_string_lists(first: list[str], second: list[str]) -> list[str]:
    """Union preserving first-occurrence order, dropping empty strings."""
    merged: list[str] = []
    seen: set[str] = set()
    for item in [*first, *second]:
        if item and item not in seen:
            seen.add(item)
            merged.append(item)
    return merged


def string_list(value: Any) -> list[str]:
    """Read a stored string-array property."""
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None and v != ""]
    return []
