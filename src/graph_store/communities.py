# src/graph_store/communities.py - v1
"""Community detection behind a pluggable detector interface.

The shipped CypherCommunityDetector approximates communities by degree
buckets. A GDS-backed detector only has to subclass
BaseCommunityDetector and be registered under its algorithm name.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from graphrag_store.core.models import Community
from graphrag_store.core.options import CommunityDetectionOptions
from graphrag_store.graph_store.driver import Connection
from graphrag_store.graph_store.errors import UnsupportedOperationError
from graphrag_store.graph_store.mode import StorageMode

logger = logging.getLogger(__name__)

DEGREE_BUCKETS = 10
NODES_PER_LEVEL = 100


class BaseCommunityDetector(ABC):
    """Detects communities of one logical graph."""

    algorithm: str = ""

    @abstractmethod
    async def detect(
        self, conn: Connection, opts: CommunityDetectionOptions
    ) -> list[Community]:
        ...


class CypherCommunityDetector(BaseCommunityDetector):
    """Groups nodes into communities by degree bucket."""

    def __init__(self, algorithm: str) -> None:
        self.algorithm = algorithm

    @staticmethod
    def build_query(mode: StorageMode, opts: CommunityDetectionOptions) -> tuple[str, dict]:
        graph = opts.graph_name
        query = (
            f"MATCH {mode.node_pattern('n', graph)} "
            f"OPTIONAL MATCH (n)-[]-{mode.node_pattern('m', graph)} "
            f"WITH n, collect(DISTINCT m.id) AS neighbors "
            f"RETURN n.id AS node_id, neighbors, size(neighbors) AS degree "
            f"ORDER BY degree DESC LIMIT $limit"
        )
        limit = max(opts.max_levels, 1) * NODES_PER_LEVEL
        return query, {"limit": limit}

    def parse(self, records: list) -> list[Community]:
        buckets: dict[int, list[str]] = {}
        for record in records:
            node_id = record["node_id"]
            if node_id is None:
                continue
            bucket = int(record["degree"] or 0) % DEGREE_BUCKETS
            buckets.setdefault(bucket, []).append(str(node_id))

        communities = []
        for i, bucket in enumerate(sorted(buckets)):
            members = buckets[bucket]
            communities.append(
                Community(
                    id=f"{self.algorithm}_{i}",
                    level=0,
                    members=members,
                    size=len(members),
                    title=f"Community {i}",
                    summary=f"Community detected using {self.algorithm} algorithm",
                    properties={"degree_bucket": bucket},
                )
            )
        return communities

    async def detect(
        self, conn: Connection, opts: CommunityDetectionOptions
    ) -> list[Community]:
        query, params = self.build_query(conn.mode, opts)
        records = await conn.read(conn.mode.database_name(opts.graph_name), query, params)
        communities = self.parse(records)
        logger.info(
            "Detected %d communities in graph '%s' using %s",
            len(communities), opts.graph_name, self.algorithm,
        )
        return communities


DEFAULT_ALGORITHMS = ("leiden", "louvain", "label_propagation")


def default_detectors() -> dict[str, BaseCommunityDetector]:
    return {name: CypherCommunityDetector(name) for name in DEFAULT_ALGORITHMS}


def resolve_detector(
    detectors: dict[str, BaseCommunityDetector], algorithm: str
) -> BaseCommunityDetector:
    detector = detectors.get((algorithm or "").lower())
    if detector is None:
        raise UnsupportedOperationError(
            f"unsupported community detection algorithm: {algorithm}"
        )
    return detector
