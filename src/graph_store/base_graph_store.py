# src/graph_store/base_graph_store.py - v1
"""Abstract graph store interface.

A graph store hosts any number of named logical graphs. Every operation
is a coroutine; failures surface as GraphStoreError subclasses.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import BinaryIO

from graphrag_store.core.models import (
    Community,
    DynamicGraphSchema,
    ExtractionResult,
    GraphNode,
    GraphRelationship,
    GraphResult,
    GraphStats,
    GraphStoreConfig,
    SaveExtractionResultsResponse,
)
from graphrag_store.core.options import (
    AddNodesOptions,
    AddRelationshipsOptions,
    CommunityDetectionOptions,
    CreateIndexOptions,
    DeleteNodesOptions,
    DeleteRelationshipsOptions,
    DropIndexOptions,
    GetNodesOptions,
    GetRelationshipsOptions,
    GraphBackupOptions,
    GraphQueryOptions,
    GraphRestoreOptions,
)


class BaseGraphStore(ABC):
    """Unified interface for graph store backends."""

    # --- Connection ---

    @abstractmethod
    async def connect(self, config: GraphStoreConfig | None = None) -> None:
        """Open the connection pool. Idempotent."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection pool. Safe when not connected."""

    @abstractmethod
    def is_connected(self) -> bool:
        ...

    async def close(self) -> None:
        await self.disconnect()

    # --- Graph lifecycle ---

    @abstractmethod
    async def create_graph(self, graph_name: str) -> None:
        """Create a logical graph."""

    @abstractmethod
    async def drop_graph(self, graph_name: str) -> None:
        """Drop a logical graph and everything in it."""

    @abstractmethod
    async def graph_exists(self, graph_name: str) -> bool:
        ...

    @abstractmethod
    async def list_graphs(self) -> list[str]:
        ...

    @abstractmethod
    async def describe_graph(self, graph_name: str) -> GraphStats:
        """Node and relationship counts plus storage details."""

    # --- Nodes ---

    @abstractmethod
    async def add_nodes(self, opts: AddNodesOptions) -> list[str]:
        """Insert or upsert nodes. Returns IDs in input order."""

    @abstractmethod
    async def get_nodes(self, opts: GetNodesOptions) -> list[GraphNode]:
        ...

    @abstractmethod
    async def delete_nodes(self, opts: DeleteNodesOptions) -> int:
        """Delete nodes by IDs and/or filter. Returns count deleted."""

    # --- Relationships ---

    @abstractmethod
    async def add_relationships(self, opts: AddRelationshipsOptions) -> list[str]:
        ...

    @abstractmethod
    async def get_relationships(self, opts: GetRelationshipsOptions) -> list[GraphRelationship]:
        ...

    @abstractmethod
    async def delete_relationships(self, opts: DeleteRelationshipsOptions) -> int:
        ...

    # --- Query ---

    @abstractmethod
    async def query(self, opts: GraphQueryOptions) -> GraphResult:
        """Run a cypher, traversal, path or analytics query."""

    @abstractmethod
    async def communities(self, opts: CommunityDetectionOptions) -> list[Community]:
        ...

    # --- Schema ---

    @abstractmethod
    async def get_schema(self, graph_name: str) -> DynamicGraphSchema:
        ...

    @abstractmethod
    async def create_index(self, opts: CreateIndexOptions) -> None:
        ...

    @abstractmethod
    async def drop_index(self, opts: DropIndexOptions) -> None:
        ...

    # --- Backup ---

    @abstractmethod
    async def backup(self, writer: BinaryIO, opts: GraphBackupOptions) -> None:
        """Write a JSON or Cypher backup of one graph to writer."""

    @abstractmethod
    async def restore(self, reader: BinaryIO, opts: GraphRestoreOptions) -> None:
        """Load a backup produced by backup(), gzipped or plain."""

    # --- Extraction ---

    @abstractmethod
    async def save_extraction_results(
        self, graph_name: str, results: list[ExtractionResult]
    ) -> SaveExtractionResultsResponse:
        """Persist extraction output, merging entities already stored."""

    # --- Extension points ---

    async def get_stats(self, graph_name: str) -> GraphStats:
        raise NotImplementedError

    async def optimize(self, graph_name: str) -> None:
        raise NotImplementedError

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (neo4j)."""
