# tests/unit/graph_store/test_unit_converters.py - v1
"""Tests for graph_store/converters.py - driver values to models."""

from __future__ import annotations

from graphrag_store.graph_store.converters import (
    node_from_neo4j,
    path_from_neo4j,
    portable_value,
    record_to_dict,
    relationship_from_neo4j,
)
from graphrag_store.graph_store.mode import LabelMode

from tests.conftest import make_node, make_path, make_relationship


class TestNodeFromNeo4j:
    def test_hides_graph_label_and_orders_entity_type_first(self):
        node = make_node("4:x:1", ["Z", "City", "__Graph_A"], {
            "id": "n1", "entity_type": "City", "name": "Paris", "confidence": 0.8,
            "version": 2, "created_at": 1_700_000_000,
        })
        result = node_from_neo4j(node, hide_label=LabelMode().is_graph_label)
        assert result.id == "n1"
        assert result.labels == ["City", "Z"]
        assert result.properties == {"name": "Paris"}
        assert result.confidence == 0.8
        assert result.version == 2
        assert result.created_at is not None

    def test_fallback_id_and_invalid_confidence(self):
        node = make_node("4:x:9", [], {"confidence": 7})
        result = node_from_neo4j(node)
        assert result.id == "node_4:x:9"
        assert result.confidence is None

    def test_projection_and_metadata(self):
        node = make_node("e", ["T"], {"id": "n", "a": 1, "b": 2, "version": 3, "__ns": "x"})
        result = node_from_neo4j(
            node, fields=["a", "__ns"], include_metadata=False, hidden_properties={"__ns"}
        )
        assert result.properties == {"a": 1}
        assert result.version is None

    def test_embeddings_reassembled(self):
        node = make_node("e", [], {"id": "n", "embedding_text": [1, 2]})
        assert node_from_neo4j(node).embeddings == {"text": [1.0, 2.0]}


class TestRelationshipFromNeo4j:
    def test_business_endpoints_from_nodes(self):
        a = make_node("e1", [], {"id": "n1"})
        b = make_node("e2", [], {})
        rel = make_relationship("r1", "GRAPH_RELATIONSHIP", {"id": "r", "type": "R"}, a, b)
        result = relationship_from_neo4j(rel)
        assert result.type == "R"
        assert result.start_node == "n1"
        assert result.end_node == "e2"

    def test_explicit_endpoints_win(self):
        rel = make_relationship("r1", "KNOWS", {"w": 1})
        result = relationship_from_neo4j(rel, start_id="a", end_id="b")
        assert (result.id, result.type, result.start_node, result.end_node) == (
            "rel_r1", "KNOWS", "a", "b"
        )
        assert result.properties == {"w": 1}


class TestPortable:
    def test_path_and_values(self):
        a = make_node("e1", ["T"], {"id": "a"})
        b = make_node("e2", ["T"], {"id": "b"})
        rel = make_relationship("r1", "R", {"id": "r"}, a, b)
        path = make_path([a, b], [rel])
        assert path_from_neo4j(path).length == 1
        rendered = portable_value(path)
        assert rendered["nodes"][0]["properties"] == {"id": "a"}
        assert portable_value(b"\x01\x02") == [1, 2]

    def test_record_to_dict(self):
        record = {"n": make_node("e", ["T"], {"id": "x"}), "count": 2}
        out = record_to_dict(record)
        assert out["count"] == 2
        assert out["n"]["labels"] == ["T"]
