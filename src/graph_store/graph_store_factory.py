# src/graph_store/graph_store_factory.py - v1
"""Factory: instantiate the graph store from configuration."""

from __future__ import annotations

import logging

from graphrag_store.config.settings import Settings
from graphrag_store.core.models import GraphStoreConfig
from graphrag_store.graph_store.base_graph_store import BaseGraphStore

logger = logging.getLogger(__name__)

SUPPORTED_STORE_TYPES = ("neo4j",)


class UnsupportedGraphStoreError(ValueError):
    """Raised when a graph store type is not supported."""


def create_graph_store(settings: Settings | GraphStoreConfig) -> BaseGraphStore:
    """Instantiate the configured graph store (not yet connected).

    Args:
        settings: Application settings, or an adapter-level config mapping.

    Returns:
        Configured BaseGraphStore instance.

    Raises:
        UnsupportedGraphStoreError: If the store type is not supported.
    """
    config = settings.graph_store_config() if isinstance(settings, Settings) else settings
    store_type = (config.store_type or "").lower()

    if store_type == "neo4j":
        from graphrag_store.graph_store.neo4j_store import Neo4jGraphStore

        logger.debug("Creating neo4j graph store for %s", config.uri)
        return Neo4jGraphStore(config)

    raise UnsupportedGraphStoreError(
        f"Unsupported graph store type: {config.store_type!r}. "
        f"Available: {', '.join(SUPPORTED_STORE_TYPES)}"
    )
