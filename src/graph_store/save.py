# src/graph_store/save.py - v1
"""Persistence of extraction results with entity deduplication.

Candidates are matched against stored entities by (name, entity_type).
A match keeps the stored ID, unions the source lists and bumps the
version; everything else is created in one batch per result.
Relationships are then rewritten onto the resolved IDs.
"""

from __future__ import annotations

import logging
from typing import Any

from graphrag_store.core.models import (
    CandidateNode,
    CandidateRelationship,
    ExtractionResult,
    GraphNode,
    GraphRelationship,
    SaveExtractionResultsResponse,
)
from graphrag_store.core.options import (
    AddNodesOptions,
    AddRelationshipsOptions,
    GetNodesOptions,
    GetRelationshipsOptions,
)
from graphrag_store.graph_store.driver import Connection
from graphrag_store.graph_store.errors import SaveExtractionError
from graphrag_store.graph_store.mode import validate_graph_name
from graphrag_store.graph_store.nodes import NodeStore
from graphrag_store.graph_store.properties import merge_string_lists, string_list, utc_now
from graphrag_store.graph_store.relationships import RelationshipStore, relationship_id

logger = logging.getLogger(__name__)

RELATIONSHIP_BATCH_SIZE = 100


def candidate_to_node(candidate: CandidateNode) -> GraphNode:
    props: dict[str, Any] = dict(candidate.properties)
    if candidate.name:
        props["name"] = candidate.name
    props["source_documents"] = merge_string_lists(candidate.source_documents, [])
    props["source_chunks"] = merge_string_lists(candidate.source_chunks, [])
    if candidate.extraction_method:
        props["extraction_method"] = candidate.extraction_method
    if candidate.status:
        props["status"] = candidate.status
    labels = list(candidate.labels) or ([candidate.type] if candidate.type else [])
    return GraphNode(
        id=candidate.id,
        labels=labels,
        properties=props,
        embedding=candidate.embedding_vector,
        entity_type=candidate.type or None,
        description=candidate.description,
        confidence=candidate.confidence,
    )


def candidate_to_relationship(
    candidate: CandidateRelationship, id_mapping: dict[str, str]
) -> GraphRelationship:
    props: dict[str, Any] = dict(candidate.properties)
    props["source_documents"] = merge_string_lists(candidate.source_documents, [])
    props["source_chunks"] = merge_string_lists(candidate.source_chunks, [])
    if candidate.extraction_method:
        props["extraction_method"] = candidate.extraction_method
    rel = GraphRelationship(
        id=candidate.id,
        type=candidate.type,
        start_node=id_mapping.get(candidate.start_node, candidate.start_node),
        end_node=id_mapping.get(candidate.end_node, candidate.end_node),
        properties=props,
        embedding=candidate.embedding_vector,
        description=candidate.description,
        confidence=candidate.confidence,
        weight=candidate.weight,
    )
    return rel.model_copy(update={"id": relationship_id(rel)})


def merge_into_existing(existing: GraphNode, candidate: GraphNode) -> GraphNode:
    """Union source lists into the stored entity and bump its version."""
    props = dict(existing.properties)
    for key in ("source_documents", "source_chunks"):
        props[key] = merge_string_lists(
            string_list(existing.properties.get(key)),
            string_list(candidate.properties.get(key)),
        )
    return existing.model_copy(
        update={
            "properties": props,
            "updated_at": utc_now(),
            "version": (existing.version or 1) + 1,
        }
    )


def collapse_duplicates(
    candidates: list[CandidateNode],
) -> list[tuple[GraphNode, list[str]]]:
    """Fold candidates sharing (name, type) into their first occurrence.

    Returns each surviving node with every candidate ID it stands for.
    """
    out: list[tuple[GraphNode, list[str]]] = []
    by_key: dict[tuple[str, str], int] = {}
    for candidate in candidates:
        node = candidate_to_node(candidate)
        key = (candidate.name, candidate.type)
        if candidate.name and key in by_key:
            first, aliases = out[by_key[key]]
            for prop in ("source_documents", "source_chunks"):
                first.properties[prop] = merge_string_lists(
                    first.properties[prop], node.properties[prop]
                )
            aliases.append(candidate.id)
            continue
        if candidate.name:
            by_key[key] = len(out)
        out.append((node, [candidate.id]))
    return out


class SaveCoordinator:
    def __init__(self, nodes: NodeStore, relationships: RelationshipStore) -> None:
        self._nodes = nodes
        self._relationships = relationships

    async def save(
        self, conn: Connection, graph_name: str, results: list[ExtractionResult]
    ) -> SaveExtractionResultsResponse:
        graph = validate_graph_name(graph_name or conn.config.default_graph_name)
        response = SaveExtractionResultsResponse()
        if not results:
            return response

        errors: list[str] = []
        for i, result in enumerate(results):
            try:
                entities, relationships = await self._save_result(conn, graph, result)
            except Exception as e:
                logger.warning("Failed to save extraction result %d: %s", i, e)
                errors.append(f"failed to save extraction result {i}: {e}")
                continue
            response.saved_entities.extend(entities)
            response.saved_relationships.extend(relationships)
            response.processed_count += 1

        response.entities_count = len(response.saved_entities)
        response.relationships_count = len(response.saved_relationships)
        response.errors = errors
        if errors:
            raise SaveExtractionError(errors, response)
        logger.info(
            "Saved %d entities and %d relationships to graph '%s'",
            response.entities_count, response.relationships_count, graph,
        )
        return response

    async def _find_existing(
        self, conn: Connection, graph: str, node: GraphNode
    ) -> GraphNode | None:
        name = node.properties.get("name")
        if not name or not node.entity_type:
            return None
        found = await self._nodes.get(
            conn,
            GetNodesOptions(
                graph_name=graph,
                filter={"name": name, "entity_type": node.entity_type},
                limit=1,
            ),
        )
        return found[0] if found else None

    async def _save_result(
        self, conn: Connection, graph: str, result: ExtractionResult
    ) -> tuple[list[GraphNode], list[GraphRelationship]]:
        id_mapping: dict[str, str] = {}
        kept_ids: list[str] = []
        to_create: list[GraphNode] = []

        for node, aliases in collapse_duplicates(result.nodes):
            existing = await self._find_existing(conn, graph, node)
            if existing is not None:
                merged = merge_into_existing(existing, node)
                await self._nodes.add(
                    conn,
                    AddNodesOptions(graph_name=graph, nodes=[merged], upsert=True, batch_size=1),
                )
                resolved = existing.id
            else:
                to_create.append(node)
                resolved = node.id
            for alias in aliases:
                id_mapping[alias] = resolved
            if resolved not in kept_ids:
                kept_ids.append(resolved)

        if to_create:
            await self._nodes.add(
                conn, AddNodesOptions(graph_name=graph, nodes=to_create, upsert=False)
            )

        entities: list[GraphNode] = []
        if kept_ids:
            entities = await self._nodes.get(
                conn, GetNodesOptions(graph_name=graph, ids=kept_ids, limit=len(kept_ids))
            )

        relationships: list[GraphRelationship] = []
        rels = [candidate_to_relationship(r, id_mapping) for r in result.relationships]
        if rels:
            saved_ids = await self._relationships.add(
                conn,
                AddRelationshipsOptions(
                    graph_name=graph,
                    relationships=rels,
                    upsert=True,
                    create_nodes=False,
                    batch_size=RELATIONSHIP_BATCH_SIZE,
                ),
            )
            if saved_ids:
                relationships = await self._relationships.get(
                    conn,
                    GetRelationshipsOptions(
                        graph_name=graph, ids=saved_ids, limit=len(saved_ids)
                    ),
                )
        return entities, relationships
