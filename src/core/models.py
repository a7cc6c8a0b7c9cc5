# src/core/models.py - v1
"""Shared Pydantic domain models used across modules.

Graph entities, query results, schema descriptors, extraction-save
payloads and the backup envelope. Operation options live in
core.options.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from urllib.parse import unquote, urlsplit, urlunsplit

from pydantic import BaseModel, Field, field_validator

DEFAULT_DATABASE = "neo4j"
DEFAULT_GRAPH_LABEL_PREFIX = "__Graph_"
DEFAULT_NAMESPACE_PROPERTY = "__graph_namespace"
DATABASE_RELATIONSHIP_TYPE = "GRAPH_RELATIONSHIP"

# Keys of driver_config consumed by the adapter itself; everything else
# is forwarded to the neo4j driver.
ADAPTER_DRIVER_KEYS = frozenset({
    "username",
    "password",
    "use_separate_database",
    "graph_label_prefix",
    "graph_namespace_property",
})


# === CONFIGURATION ===


class GraphStoreConfig(BaseModel):
    """Connection configuration accepted by Connect."""

    store_type: str = "neo4j"
    database_url: str = ""
    batch_size: int = 100
    query_timeout: float = 0.0
    availability_timeout: float = 5.0
    default_graph_name: str = "default"
    driver_config: dict[str, Any] = Field(default_factory=dict)

    def _url_parts(self) -> tuple[str, str | None, str | None]:
        parts = urlsplit(self.database_url)
        if parts.username is None and parts.password is None:
            return self.database_url, None, None
        host = parts.hostname or ""
        if parts.port:
            host = f"{host}:{parts.port}"
        clean = urlunsplit((parts.scheme, host, parts.path, parts.query, parts.fragment))
        user = unquote(parts.username) if parts.username else None
        password = unquote(parts.password) if parts.password else None
        return clean, user, password

    @property
    def uri(self) -> str:
        """Database URL with any embedded credentials removed."""
        return self._url_parts()[0]

    @property
    def username(self) -> str:
        configured = self.driver_config.get("username")
        if configured:
            return str(configured)
        return self._url_parts()[1] or "neo4j"

    @property
    def password(self) -> str:
        configured = self.driver_config.get("password")
        if configured:
            return str(configured)
        return self._url_parts()[2] or ""

    @property
    def use_separate_database(self) -> bool:
        value = self.driver_config.get("use_separate_database", False)
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    @property
    def graph_label_prefix(self) -> str:
        return self.driver_config.get("graph_label_prefix") or DEFAULT_GRAPH_LABEL_PREFIX

    @property
    def graph_namespace_property(self) -> str:
        return self.driver_config.get("graph_namespace_property") or DEFAULT_NAMESPACE_PROPERTY

    def driver_kwargs(self) -> dict[str, Any]:
        """Freeform pool/timeout settings forwarded to the driver."""
        return {
            k: v for k, v in self.driver_config.items()
            if k not in ADAPTER_DRIVER_KEYS and v is not None
        }


# === GRAPH ENTITIES ===


class GraphNode(BaseModel):
    """Entity stored in a logical graph. First label is the entity type."""

    id: str
    labels: list[str] = Field(default_factory=list)
    properties: dict[str, Any] = Field(default_factory=dict)
    embedding: list[float] | None = None
    embeddings: dict[str, list[float]] | None = None
    entity_type: str | None = None
    description: str | None = None
    confidence: float | None = None
    importance: float | None = None
    weight: float | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int | None = None

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, v: float | None) -> float | None:
        if v is not None and not 0.0 <= v <= 1.0:
            raise ValueError("confidence must be within [0, 1]")
        return v


class GraphRelationship(BaseModel):
    """Directed relationship between two business IDs."""

    id: str = ""
    type: str
    start_node: str
    end_node: str
    properties: dict[str, Any] = Field(default_factory=dict)
    embedding: list[float] | None = None
    embeddings: dict[str, list[float]] | None = None
    description: str | None = None
    confidence: float | None = None
    weight: float | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int | None = None


class GraphPath(BaseModel):
    """Path returned by traversal and shortest-path queries."""

    nodes: list[GraphNode] = Field(default_factory=list)
    relationships: list[GraphRelationship] = Field(default_factory=list)
    length: int = 0


class GraphResult(BaseModel):
    """Typed result of Query."""

    nodes: list[GraphNode] = Field(default_factory=list)
    relationships: list[GraphRelationship] = Field(default_factory=list)
    paths: list[GraphPath] = Field(default_factory=list)
    records: list[dict[str, Any]] = Field(default_factory=list)


class GraphStats(BaseModel):
    """DescribeGraph output."""

    graph_name: str
    total_nodes: int = 0
    total_relationships: int = 0
    extra_stats: dict[str, Any] = Field(default_factory=dict)


class Community(BaseModel):
    """Community detection record."""

    id: str
    level: int = 0
    parent_id: str | None = None
    members: list[str] = Field(default_factory=list)
    size: int = 0
    title: str = ""
    summary: str = ""
    properties: dict[str, Any] = Field(default_factory=dict)


# === SCHEMA ===


class PropertyInfo(BaseModel):
    """Property descriptor; type is 'mixed' when the server exposes none."""

    name: str
    type: str = "mixed"
    nullable: bool = True
    count: int = 0


class SchemaConstraint(BaseModel):
    name: str = ""
    type: str = ""
    label: str = ""
    properties: list[str] = Field(default_factory=list)


class SchemaIndex(BaseModel):
    name: str = ""
    type: str = ""
    label: str = ""
    properties: list[str] = Field(default_factory=list)
    state: str = ""


class GraphSchemaStats(BaseModel):
    total_nodes: int = 0
    total_relationships: int = 0
    node_counts: dict[str, int] = Field(default_factory=dict)
    relationship_counts: dict[str, int] = Field(default_factory=dict)


class DynamicGraphSchema(BaseModel):
    """GetSchema output."""

    node_labels: list[str] = Field(default_factory=list)
    relationship_types: list[str] = Field(default_factory=list)
    node_properties: dict[str, list[PropertyInfo]] = Field(default_factory=dict)
    relationship_properties: dict[str, list[PropertyInfo]] = Field(default_factory=dict)
    constraints: list[SchemaConstraint] = Field(default_factory=list)
    indexes: list[SchemaIndex] = Field(default_factory=list)
    statistics: GraphSchemaStats = Field(default_factory=GraphSchemaStats)


# === EXTRACTION RESULTS (save input) ===


class CandidateNode(BaseModel):
    """Entity candidate produced by the upstream extraction stage."""

    id: str
    name: str = ""
    type: str = ""
    labels: list[str] = Field(default_factory=list)
    properties: dict[str, Any] = Field(default_factory=dict)
    description: str | None = None
    confidence: float | None = None
    embedding_vector: list[float] | None = None
    source_documents: list[str] = Field(default_factory=list)
    source_chunks: list[str] = Field(default_factory=list)
    extraction_method: str | None = None
    status: str | None = None


class CandidateRelationship(BaseModel):
    """Relationship candidate produced by the upstream extraction stage."""

    id: str = ""
    type: str
    start_node: str
    end_node: str
    properties: dict[str, Any] = Field(default_factory=dict)
    description: str | None = None
    confidence: float | None = None
    weight: float | None = None
    embedding_vector: list[float] | None = None
    source_documents: list[str] = Field(default_factory=list)
    source_chunks: list[str] = Field(default_factory=list)
    extraction_method: str | None = None


class ExtractionUsage(BaseModel):
    total_tokens: int = 0
    prompt_tokens: int = 0
    total_texts: int = 0


class ExtractionResult(BaseModel):
    """Bundle of candidates from one extraction call."""

    usage: ExtractionUsage = Field(default_factory=ExtractionUsage)
    model: str = ""
    nodes: list[CandidateNode] = Field(default_factory=list)
    relationships: list[CandidateRelationship] = Field(default_factory=list)


class SaveExtractionResultsResponse(BaseModel):
    saved_entities: list[GraphNode] = Field(default_factory=list)
    saved_relationships: list[GraphRelationship] = Field(default_factory=list)
    entities_count: int = 0
    relationships_count: int = 0
    processed_count: int = 0
    errors: list[str] = Field(default_factory=list)


# === BACKUP ENVELOPE ===


class BackupNodeRecord(BaseModel):
    id: int | str
    element_id: str
    labels: list[str] = Field(default_factory=list)
    properties: dict[str, Any] = Field(default_factory=dict)


class BackupRelationshipRecord(BaseModel):
    id: int | str
    element_id: str
    type: str
    properties: dict[str, Any] = Field(default_factory=dict)
    start_node: str
    end_node: str
    start_business_id: str = ""
    end_business_id: str = ""


class BackupEnvelope(BaseModel):
    """Backup JSON format (v1)."""

    format: Literal["json"] = "json"
    graph_name: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    nodes: list[BackupNodeRecord] = Field(default_factory=list)
    relationships: list[BackupRelationshipRecord] = Field(default_factory=list)
