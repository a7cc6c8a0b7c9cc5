# src/graph_store/neo4j_store.py - v1
"""Neo4j graph store adapter.

Hosts many logical graphs on one Neo4j server, either one database per
graph (Enterprise) or one prefixed label per graph in the default
database. Each public call validates its input, snapshots the driver
handle, then delegates to a storage component under the operation
timeout.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, BinaryIO, Callable, TypeVar

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
from graphrag_store.graph_store.backup import BackupManager
from graphrag_store.graph_store.base_graph_store import BaseGraphStore
from graphrag_store.graph_store.communities import (
    BaseCommunityDetector,
    default_detectors,
    resolve_detector,
)
from graphrag_store.graph_store.driver import Connection, DriverHandle, with_timeout
from graphrag_store.graph_store.errors import (
    GraphConfigurationError,
    NotImplementedInStoreError,
)
from graphrag_store.graph_store.lifecycle import GraphLifecycle, lifecycle_for
from graphrag_store.graph_store.locks import CriticalSection
from graphrag_store.graph_store.mode import StorageMode, resolve_mode, validate_graph_name
from graphrag_store.graph_store.nodes import NodeStore
from graphrag_store.graph_store.query import QueryEngine
from graphrag_store.graph_store.relationships import RelationshipStore
from graphrag_store.graph_store.save import SaveCoordinator
from graphrag_store.graph_store.schema import IndexManager, SchemaIntrospector
from graphrag_store.logging.context import operation_context

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Neo4jGraphStore(BaseGraphStore):
    """Graph store backed by Neo4j."""

    def __init__(self, config: GraphStoreConfig | None = None) -> None:
        self._config = config
        self._handle = DriverHandle()
        self._critical = CriticalSection()
        self._nodes = NodeStore(self._critical)
        self._relationships = RelationshipStore(self._critical)
        self._query = QueryEngine(self._critical)
        self._schema = SchemaIntrospector(self._critical)
        self._indexes = IndexManager(self._critical)
        self._backup = BackupManager(self._critical)
        self._save = SaveCoordinator(self._nodes, self._relationships)
        self._detectors: dict[str, BaseCommunityDetector] = default_detectors()

    async def __aenter__(self) -> Neo4jGraphStore:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    @property
    def provider_name(self) -> str:
        return "neo4j"

    # --- Internals ---

    async def _run(
        self,
        operation: str,
        graph_name: str | None,
        body: Callable[[Connection], Awaitable[T]],
        timeout: float | None = None,
    ) -> T:
        conn = await self._handle.snapshot()
        effective = timeout if timeout is not None else conn.config.query_timeout
        with operation_context(operation, graph_name, conn.mode.storage_type):
            return await with_timeout(body(conn), effective, operation)

    def _lifecycle(self, conn: Connection) -> GraphLifecycle:
        return lifecycle_for(conn, self._critical)

    def _mode(self) -> StorageMode:
        config = self._handle.config or self._config
        if config is None:
            raise GraphConfigurationError("graph store is not configured")
        return resolve_mode(
            config.use_separate_database,
            config.graph_label_prefix,
            config.graph_namespace_property,
        )

    # --- Connection ---

    async def connect(self, config: GraphStoreConfig | None = None) -> None:
        config = config or self._config
        if config is None:
            raise GraphConfigurationError("graph store configuration is required")
        with operation_context("connect"):
            await self._handle.connect(config)
        self._config = config

    async def disconnect(self) -> None:
        with operation_context("disconnect"):
            await self._handle.disconnect()

    def is_connected(self) -> bool:
        return self._handle.is_connected

    @property
    def is_enterprise_edition(self) -> bool:
        return self._handle.is_enterprise

    @property
    def use_separate_database(self) -> bool:
        return self._handle.use_separate_database

    def graph_label(self, graph_name: str) -> str:
        """Label carried by every node of graph_name in label mode."""
        return self._mode().graph_label(graph_name)

    def database_name(self, graph_name: str) -> str:
        """Database holding graph_name under the configured mode."""
        return self._mode().database_name(graph_name)

    # --- Graph lifecycle ---

    async def create_graph(self, graph_name: str) -> None:
        validate_graph_name(graph_name)

        async def body(conn: Connection) -> None:
            lifecycle = self._lifecycle(conn)
            await lifecycle.create(conn, graph_name)
            await lifecycle.wait_until_available(conn, graph_name)

        await self._run("create_graph", graph_name, body)

    async def drop_graph(self, graph_name: str) -> None:
        validate_graph_name(graph_name)
        await self._run(
            "drop_graph", graph_name, lambda conn: self._lifecycle(conn).drop(conn, graph_name)
        )

    async def graph_exists(self, graph_name: str) -> bool:
        validate_graph_name(graph_name)
        return await self._run(
            "graph_exists", graph_name, lambda conn: self._lifecycle(conn).exists(conn, graph_name)
        )

    async def list_graphs(self) -> list[str]:
        return await self._run(
            "list_graphs", None, lambda conn: self._lifecycle(conn).list_graphs(conn)
        )

    async def describe_graph(self, graph_name: str) -> GraphStats:
        validate_graph_name(graph_name)
        return await self._run(
            "describe_graph",
            graph_name,
            lambda conn: self._lifecycle(conn).describe(conn, graph_name),
        )

    # --- Nodes ---

    async def add_nodes(self, opts: AddNodesOptions) -> list[str]:
        validate_graph_name(opts.graph_name)
        return await self._run(
            "add_nodes", opts.graph_name, lambda conn: self._nodes.add(conn, opts), opts.timeout
        )

    async def get_nodes(self, opts: GetNodesOptions) -> list[GraphNode]:
        validate_graph_name(opts.graph_name)
        return await self._run(
            "get_nodes", opts.graph_name, lambda conn: self._nodes.get(conn, opts), opts.timeout
        )

    async def delete_nodes(self, opts: DeleteNodesOptions) -> int:
        NodeStore.validate_delete(opts)
        return await self._run(
            "delete_nodes",
            opts.graph_name,
            lambda conn: self._nodes.delete(conn, opts),
            opts.timeout,
        )

    # --- Relationships ---

    async def add_relationships(self, opts: AddRelationshipsOptions) -> list[str]:
        validate_graph_name(opts.graph_name)
        return await self._run(
            "add_relationships",
            opts.graph_name,
            lambda conn: self._relationships.add(conn, opts),
            opts.timeout,
        )

    async def get_relationships(self, opts: GetRelationshipsOptions) -> list[GraphRelationship]:
        validate_graph_name(opts.graph_name)
        return await self._run(
            "get_relationships",
            opts.graph_name,
            lambda conn: self._relationships.get(conn, opts),
            opts.timeout,
        )

    async def delete_relationships(self, opts: DeleteRelationshipsOptions) -> int:
        RelationshipStore.validate_delete(opts)
        return await self._run(
            "delete_relationships",
            opts.graph_name,
            lambda conn: self._relationships.delete(conn, opts),
            opts.timeout,
        )

    # --- Query ---

    async def query(self, opts: GraphQueryOptions) -> GraphResult:
        validate_graph_name(opts.graph_name)
        return await self._run(
            "query", opts.graph_name, lambda conn: self._query.query(conn, opts), opts.timeout
        )

    def register_community_detector(self, algorithm: str, detector: BaseCommunityDetector) -> None:
        """Install or replace the detector used for algorithm."""
        self._detectors[algorithm.lower()] = detector

    async def communities(self, opts: CommunityDetectionOptions) -> list[Community]:
        validate_graph_name(opts.graph_name)
        detector = resolve_detector(self._detectors, opts.algorithm)

        async def body(conn: Connection) -> list[Community]:
            if conn.mode.separate_database:
                await self._lifecycle(conn).assert_exists(conn, opts.graph_name)
            return await detector.detect(conn, opts)

        return await self._run("communities", opts.graph_name, body, opts.timeout)

    # --- Schema ---

    async def get_schema(self, graph_name: str) -> DynamicGraphSchema:
        validate_graph_name(graph_name)
        return await self._run(
            "get_schema", graph_name, lambda conn: self._schema.get_schema(conn, graph_name)
        )

    async def create_index(self, opts: CreateIndexOptions) -> None:
        validate_graph_name(opts.graph_name)
        await self._run(
            "create_index",
            opts.graph_name,
            lambda conn: self._indexes.create_index(conn, opts),
            opts.timeout,
        )

    async def drop_index(self, opts: DropIndexOptions) -> None:
        validate_graph_name(opts.graph_name)
        await self._run(
            "drop_index",
            opts.graph_name,
            lambda conn: self._indexes.drop_index(conn, opts),
            opts.timeout,
        )

    # --- Backup ---

    async def backup(self, writer: BinaryIO, opts: GraphBackupOptions) -> None:
        validate_graph_name(opts.graph_name)
        await self._run(
            "backup",
            opts.graph_name,
            lambda conn: self._backup.backup(conn, writer, opts),
            opts.timeout,
        )

    async def restore(self, reader: BinaryIO, opts: GraphRestoreOptions) -> None:
        validate_graph_name(opts.graph_name)
        await self._run(
            "restore",
            opts.graph_name,
            lambda conn: self._backup.restore(conn, reader, opts),
            opts.timeout,
        )

    # --- Extraction ---

    async def save_extraction_results(
        self, graph_name: str, results: list[ExtractionResult]
    ) -> SaveExtractionResultsResponse:
        if graph_name:
            validate_graph_name(graph_name)
        return await self._run(
            "save_extraction_results",
            graph_name or None,
            lambda conn: self._save.save(conn, graph_name, results),
        )

    # --- Extension points ---

    async def get_stats(self, graph_name: str) -> GraphStats:
        raise NotImplementedInStoreError("get_stats is not implemented for neo4j")

    async def optimize(self, graph_name: str) -> None:
        raise NotImplementedInStoreError("optimize is not implemented for neo4j")
