# src/core/options.py - v1
"""Option models accepted by the graph store operations.

Every option carrying `timeout` interprets it in seconds; 0 or None
disables the per-operation deadline.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from graphrag_store.core.models import GraphNode, GraphRelationship

Direction = Literal["IN", "INCOMING", "OUT", "OUTGOING", "BOTH", ""]


# === NODES ===


class AddNodesOptions(BaseModel):
    graph_name: str
    nodes: list[GraphNode] = Field(default_factory=list)
    upsert: bool = False
    batch_size: int = 0
    timeout: float | None = None


class GetNodesOptions(BaseModel):
    graph_name: str
    ids: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    filter: dict[str, Any] = Field(default_factory=dict)
    include_properties: bool = True
    include_metadata: bool = True
    fields: list[str] = Field(default_factory=list)
    limit: int = 0
    timeout: float | None = None


class DeleteNodesOptions(BaseModel):
    graph_name: str
    ids: list[str] = Field(default_factory=list)
    filter: dict[str, Any] = Field(default_factory=dict)
    delete_relationships: bool = True
    dry_run: bool = False
    batch_size: int = 0
    timeout: float | None = None


# === RELATIONSHIPS ===


class AddRelationshipsOptions(BaseModel):
    graph_name: str
    relationships: list[GraphRelationship] = Field(default_factory=list)
    upsert: bool = False
    create_nodes: bool = False
    batch_size: int = 0
    timeout: float | None = None


class GetRelationshipsOptions(BaseModel):
    graph_name: str
    ids: list[str] = Field(default_factory=list)
    types: list[str] = Field(default_factory=list)
    node_ids: list[str] = Field(default_factory=list)
    direction: Direction = "BOTH"
    filter: dict[str, Any] = Field(default_factory=dict)
    include_properties: bool = True
    include_metadata: bool = True
    fields: list[str] = Field(default_factory=list)
    limit: int = 0
    timeout: float | None = None


class DeleteRelationshipsOptions(BaseModel):
    graph_name: str
    ids: list[str] = Field(default_factory=list)
    filter: dict[str, Any] = Field(default_factory=dict)
    dry_run: bool = False
    batch_size: int = 0
    timeout: float | None = None


# === QUERY ===


class GraphTraversalOptions(BaseModel):
    start_node: str | None = None
    direction: Literal["INCOMING", "OUTGOING", "BOTH"] = "BOTH"
    min_depth: int = 1
    max_depth: int = 10
    relationship_types: list[str] = Field(default_factory=list)
    node_filter: dict[str, Any] = Field(default_factory=dict)
    rel_filter: dict[str, Any] = Field(default_factory=dict)
    return_paths: bool = True
    unique_paths: bool = False
    limit: int = 0


class GraphAnalyticsOptions(BaseModel):
    algorithm: str = ""
    iterations: int = 20
    damping_factor: float = 0.85
    parameters: dict[str, Any] = Field(default_factory=dict)


class GraphQueryOptions(BaseModel):
    graph_name: str
    query_type: str = "custom"
    query: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)
    traversal_options: GraphTraversalOptions | None = None
    analytics_options: GraphAnalyticsOptions | None = None
    return_type: Literal["nodes", "relationships", "paths", "all", ""] = ""
    read_only: bool | None = None
    limit: int = 0
    skip: int = 0
    timeout: float | None = None


class CommunityDetectionOptions(BaseModel):
    graph_name: str
    algorithm: str = "leiden"
    max_levels: int = 10
    resolution: float = 1.0
    randomness: float = 0.0
    parameters: dict[str, Any] = Field(default_factory=dict)
    timeout: float | None = None


# === SCHEMA ===


class CreateIndexOptions(BaseModel):
    graph_name: str
    target: Literal["NODE", "RELATIONSHIP"] = "NODE"
    labels: list[str] = Field(default_factory=list)
    properties: list[str] = Field(default_factory=list)
    index_type: str = "BTREE"
    name: str = ""
    if_not_exists: bool = False
    config: dict[str, Any] = Field(default_factory=dict)
    timeout: float | None = None


class DropIndexOptions(BaseModel):
    graph_name: str
    name: str = ""
    if_exists: bool = False
    timeout: float | None = None


# === BACKUP / RESTORE ===


class GraphBackupOptions(BaseModel):
    graph_name: str
    format: str = "json"
    compress: bool = False
    filter: dict[str, str] = Field(default_factory=dict)
    extra_params: dict[str, Any] = Field(default_factory=dict)
    timeout: float | None = None


class GraphRestoreOptions(BaseModel):
    graph_name: str
    format: str = ""
    force: bool = False
    create_graph: bool = False
    extra_params: dict[str, Any] = Field(default_factory=dict)
    timeout: float | None = None
