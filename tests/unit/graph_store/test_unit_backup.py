# tests/unit/graph_store/test_unit_backup.py - v1
"""Tests for graph_store/backup.py - JSON/Cypher backup and restore."""

from __future__ import annotations

import gzip
import io
import json

import pytest

from graphrag_store.core.models import (
    BackupEnvelope,
    BackupNodeRecord,
    BackupRelationshipRecord,
)
from graphrag_store.core.options import GraphBackupOptions, GraphRestoreOptions
from graphrag_store.graph_store.backup import (
    BackupManager,
    cypher_literal,
    cypher_map,
    detect_format,
    read_backup,
    rewrite_cypher_script,
)
from graphrag_store.graph_store.errors import (
    GraphAlreadyExistsError,
    GraphNotFoundError,
    InvalidBackupError,
    ServerError,
    UnsupportedOperationError,
)
from tests.conftest import make_node, make_relationship


def stored_graph(conn):
    """Two nodes joined by one relationship, as the label-mode server returns them."""
    a = make_node("4:x:1", ["Person", "__Graph_kg"], {"id": "a", "name": "Ada", "__graph_namespace": "kg"})
    b = make_node("4:x:2", ["Person", "__Graph_kg"], {"id": "b", "name": "Bob"})
    r = make_relationship("5:x:1", "KNOWS", {"id": "r1", "type": "KNOWS", "since": 2020})
    conn.on("AS exists", [{"exists": True}])
    conn.on("AS start_id", [{
        "r": r, "start_id": "a", "end_id": "b",
        "start_element_id": "4:x:1", "end_element_id": "4:x:2",
    }])
    conn.on("RETURN n", [{"n": a}, {"n": b}])
    return conn


# === LITERALS ===


class TestCypherLiteral:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (None, "null"),
            (True, "true"),
            (3, "3"),
            (1.5, "1.5"),
            (float("nan"), "null"),
            ('say "hi"', '"say \\"hi\\""'),
            ([1, "a", None], '[1, "a", null]'),
        ],
    )
    def test_literals(self, value, expected):
        assert cypher_literal(value) == expected

    def test_nested_values_become_json_strings(self):
        assert cypher_literal({"k": 1}) == '"{\\"k\\": 1}"'

    def test_map(self):
        assert cypher_map({}) == ""
        assert cypher_map({"id": "a", "n": 1}) == ' {`id`: "a", `n`: 1}'


# === BACKUP ===


class TestBackup:
    @pytest.mark.asyncio
    async def test_unsupported_format(self, label_conn, critical):
        with pytest.raises(UnsupportedOperationError, match="unsupported backup format: xml"):
            await BackupManager(critical).backup(
                label_conn, io.BytesIO(), GraphBackupOptions(graph_name="kg", format="xml")
            )
        assert label_conn.calls == []

    @pytest.mark.asyncio
    async def test_missing_graph(self, label_conn, critical):
        with pytest.raises(GraphNotFoundError):
            await BackupManager(critical).backup(
                label_conn, io.BytesIO(), GraphBackupOptions(graph_name="kg")
            )

    @pytest.mark.asyncio
    async def test_json(self, label_conn, critical):
        stored_graph(label_conn)
        out = io.BytesIO()
        opts = GraphBackupOptions(graph_name="kg", extra_params={"reason": "nightly"})
        await BackupManager(critical).backup(label_conn, out, opts)

        data = json.loads(out.getvalue())
        assert data["format"] == "json"
        assert data["graph_name"] == "kg"
        metadata = data["metadata"]
        assert metadata["storage_type"] == "label_based"
        assert metadata["graph_label"] == "__Graph_kg"
        assert (metadata["node_count"], metadata["relationship_count"]) == (2, 1)
        assert metadata["reason"] == "nightly"
        assert metadata["export_timestamp"].endswith("Z")
        assert data["nodes"][0]["labels"] == ["Person", "__Graph_kg"]
        assert data["nodes"][0]["id"] == "a"
        rel = data["relationships"][0]
        assert (rel["start_node"], rel["end_node"]) == ("4:x:1", "4:x:2")
        assert (rel["start_business_id"], rel["end_business_id"]) == ("a", "b")

    @pytest.mark.asyncio
    async def test_filters_and_compression(self, label_conn, critical):
        stored_graph(label_conn)
        out = io.BytesIO()
        opts = GraphBackupOptions(
            graph_name="kg", compress=True, filter={"nodes": "n.name = 'Ada'"}
        )
        await BackupManager(critical).backup(label_conn, out, opts)

        assert out.getvalue()[:2] == b"\x1f\x8b"
        assert json.loads(gzip.decompress(out.getvalue()))["graph_name"] == "kg"
        assert "MATCH (n:`__Graph_kg`) WHERE n.name = 'Ada' RETURN n" in label_conn.queries()

    @pytest.mark.asyncio
    async def test_cypher(self, label_conn, critical):
        stored_graph(label_conn)
        out = io.BytesIO()
        await BackupManager(critical).backup(
            label_conn, out, GraphBackupOptions(graph_name="kg", format="cypher")
        )
        lines = out.getvalue().decode("utf-8").splitlines()
        assert lines[0] == "// Neo4j Graph Backup - kg"
        assert lines[1] == "// Storage Type: label_based"
        assert lines[4] == "// Nodes: 2, Relationships: 1"
        assert lines[5] == ""
        assert lines[6].startswith("CREATE (n:`Person`:`__Graph_kg` {`id`: \"a\"")
        assert lines[8] == (
            'MATCH (a:`__Graph_kg`), (b:`__Graph_kg`) WHERE a.id = "a" AND b.id = "b" '
            'CREATE (a)-[:`KNOWS` {`id`: "r1", `type`: "KNOWS", `since`: 2020}]->(b)'
        )


class TestRenderCypher:
    def test_element_id_fallback(self, database_mode):
        rel = BackupRelationshipRecord(
            id="r", element_id="5:1", type="GRAPH_RELATIONSHIP", start_node="4:1", end_node="4:2"
        )
        script = BackupManager.render_cypher(
            database_mode, "kg", {"export_timestamp": "t"}, [], [rel]
        ).decode("utf-8")
        assert (
            'MATCH (a), (b) WHERE elementId(a) = "4:1" AND elementId(b) = "4:2" '
            "CREATE (a)-[:`GRAPH_RELATIONSHIP`]->(b)"
        ) in script


# === RESTORE PARSING ===


class TestReadBackup:
    def test_empty(self):
        with pytest.raises(InvalidBackupError, match="empty data"):
            read_backup(io.BytesIO(b""))

    def test_gzip(self):
        assert read_backup(io.BytesIO(gzip.compress(b'{"a": 1}'))) == '{"a": 1}'

    def test_corrupt_gzip(self):
        with pytest.raises(InvalidBackupError):
            read_backup(io.BytesIO(b"\x1f\x8bnot really gzip"))

    def test_detect_format(self):
        assert detect_format('  {"graph_name": "x"}') == "json"
        assert detect_format("// Neo4j Graph Backup - x") == "cypher"


class TestRewriteCypherScript:
    LABEL_SCRIPT = (
        "// Neo4j Graph Backup - src\n"
        "// Storage Type: label_based\n"
        "\n"
        'CREATE (n:`Person`:`__Graph_src` {`id`: "a"})\n'
        'MATCH (a:`__Graph_src`), (b:`__Graph_src`) WHERE a.id = "a" AND b.id = "b" '
        "CREATE (a)-[:`KNOWS`]->(b)\n"
    )
    DATABASE_SCRIPT = (
        "// Neo4j Graph Backup - src\n"
        "// Storage Type: separate_database\n"
        'CREATE (n:`Person` {`id`: "a"})\n'
        'MATCH (a), (b) WHERE a.id = "a" AND b.id = "b" '
        'CREATE (a)-[:`GRAPH_RELATIONSHIP` {`type`: "KNOWS"}]->(b)\n'
    )

    def test_label_to_label_renames_graph(self, label_mode):
        statements = rewrite_cypher_script(label_mode, "dst", self.LABEL_SCRIPT)
        assert statements == [
            'CREATE (n:`Person`:`__Graph_dst` {`id`: "a"})',
            'MATCH (a:`__Graph_dst`), (b:`__Graph_dst`) WHERE a.id = "a" AND b.id = "b" '
            "CREATE (a)-[:`KNOWS`]->(b)",
        ]

    def test_similar_label_untouched(self, label_mode):
        script = self.LABEL_SCRIPT.replace(
            'CREATE (n:`Person`:`__Graph_src`', 'CREATE (n:`Person`:`__Graph_src-2`'
        )
        statements = rewrite_cypher_script(label_mode, "dst", script)
        assert "`__Graph_src-2`" in statements[0]

    def test_label_to_database_strips_graph_labels(self, database_mode):
        statements = rewrite_cypher_script(database_mode, "dst", self.LABEL_SCRIPT)
        assert statements[0] == 'CREATE (n:`Person` {`id`: "a"})'
        assert statements[1].startswith("MATCH (a), (b) WHERE")

    def test_database_to_label_injects_graph_label(self, label_mode):
        statements = rewrite_cypher_script(label_mode, "dst", self.DATABASE_SCRIPT)
        assert statements == [
            'CREATE (n:`Person`:`__Graph_dst` {`id`: "a"})',
            'MATCH (a:`__Graph_dst`), (b:`__Graph_dst`) WHERE a.id = "a" AND b.id = "b" '
            'CREATE (a)-[:`GRAPH_RELATIONSHIP` {`type`: "KNOWS"}]->(b)',
        ]


# === RESTORE ===


def envelope_bytes() -> io.BytesIO:
    envelope = BackupEnvelope(
        graph_name="src",
        nodes=[
            BackupNodeRecord(id="a", element_id="4:1", labels=["Person", "__Graph_src"],
                             properties={"id": "a", "name": "Ada"}),
            BackupNodeRecord(id="4:2", element_id="4:2", labels=["__Graph_src"],
                             properties={"note": "no business id"}),
        ],
        relationships=[
            BackupRelationshipRecord(id="r1", element_id="5:1", type="GRAPH_RELATIONSHIP",
                                     properties={"id": "r1", "type": "KNOWS"},
                                     start_node="4:1", end_node="4:2",
                                     start_business_id="a", end_business_id="a"),
            BackupRelationshipRecord(id="r2", element_id="5:2", type="LINKS",
                                     start_node="4:1", end_node="4:2"),
            BackupRelationshipRecord(id="r3", element_id="5:3", type="LOST",
                                     start_node="4:9", end_node="4:2"),
        ],
    )
    return io.BytesIO(envelope.model_dump_json().encode("utf-8"))


def remap_element_ids(query, params):
    return [{"old_id": row["element_id"], "new_id": f"new-{row['element_id']}"}
            for row in params["batch"]]


class TestRestore:
    @pytest.mark.asyncio
    async def test_invalid_json(self, label_conn, critical):
        with pytest.raises(InvalidBackupError):
            await BackupManager(critical).restore(
                label_conn, io.BytesIO(b'{"nodes": 3}'), GraphRestoreOptions(graph_name="kg")
            )

    @pytest.mark.asyncio
    async def test_existing_graph_needs_force(self, label_conn, critical):
        label_conn.on("AS exists", [{"exists": True}])
        with pytest.raises(GraphAlreadyExistsError, match="use force=True to overwrite"):
            await BackupManager(critical).restore(
                label_conn, envelope_bytes(), GraphRestoreOptions(graph_name="kg")
            )

    @pytest.mark.asyncio
    async def test_force_drops_first(self, label_conn, critical):
        label_conn.on("AS exists", [{"exists": True}])
        await BackupManager(critical).restore(
            label_conn, envelope_bytes(), GraphRestoreOptions(graph_name="kg", force=True)
        )
        writes = label_conn.queries("write")
        assert writes[0] == "MATCH (n:`__Graph_kg`)-[r]-() DELETE r"
        assert any(q.startswith("CREATE CONSTRAINT") for q in writes)

    @pytest.mark.asyncio
    async def test_database_mode_requires_create_graph(self, database_conn, critical):
        with pytest.raises(GraphNotFoundError):
            await BackupManager(critical).restore(
                database_conn, envelope_bytes(), GraphRestoreOptions(graph_name="kg")
            )

    @pytest.mark.asyncio
    async def test_database_mode_creates_graph(self, database_conn, critical):
        database_conn.on("RETURN row.element_id", remap_element_ids)
        await BackupManager(critical).restore(
            database_conn, envelope_bytes(), GraphRestoreOptions(graph_name="kg", create_graph=True)
        )
        assert database_conn.find("CREATE DATABASE").database == "system"
        node_query = database_conn.find("RETURN row.element_id")
        assert node_query.database == "kg"
        assert "__Graph_" not in node_query.query
        rel_query = database_conn.find("CREATE (a)-[r:").query
        assert "`GRAPH_RELATIONSHIP`" in rel_query

    @pytest.mark.asyncio
    async def test_json_into_label_mode(self, label_conn, critical):
        label_conn.on("RETURN row.element_id", remap_element_ids)
        await BackupManager(critical).restore(
            label_conn, envelope_bytes(), GraphRestoreOptions(graph_name="kg")
        )

        node_calls = [c for c in label_conn.calls if "RETURN row.element_id" in c.query]
        assert {c.query.split(" SET")[0] for c in node_calls} == {
            "UNWIND $batch AS row CREATE (n:`Person`:`__Graph_kg`)",
            "UNWIND $batch AS row CREATE (n:`__Graph_kg`)",
        }
        rel_calls = [c for c in label_conn.calls if "CREATE (a)-[r:" in c.query]
        assert len(rel_calls) == 2
        by_business, by_element = rel_calls
        assert "MATCH (a:`__Graph_kg` {id: row.start})" in by_business.query
        assert "[r:`KNOWS`]" in by_business.query
        assert "elementId(a) = row.start" in by_element.query
        assert by_element.params["batch"][0]["start"] == "new-4:1"

    @pytest.mark.asyncio
    async def test_cypher_failure_names_statement(self, label_conn, critical):
        label_conn.on("CREATE (n:", ServerError("syntax"))
        script = b"// Neo4j Graph Backup - kg\nCREATE (n:`X` {`id`: \"a\"})\n"
        with pytest.raises(ServerError, match="failed to execute Cypher statement"):
            await BackupManager(critical).restore(
                label_conn, io.BytesIO(script), GraphRestoreOptions(graph_name="kg")
            )
