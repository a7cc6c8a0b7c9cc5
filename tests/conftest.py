# tests/conftest.py - v1
"""Shared test fixtures for all unit and integration tests.

Provides a recording fake Connection, driver graph value doubles and
sample entities. No external dependencies: all I/O is mocked.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest
from neo4j.graph import Node, Path, Relationship

from graphrag_store.core.models import (
    CandidateNode,
    CandidateRelationship,
    ExtractionResult,
    GraphNode,
    GraphRelationship,
    GraphStoreConfig,
)
from graphrag_store.graph_store.locks import CriticalSection
from graphrag_store.graph_store.mode import DatabaseMode, LabelMode


# === FAKE CONNECTION ===


@dataclass
class Call:
    kind: str
    database: str
    query: str
    params: dict[str, Any] = field(default_factory=dict)


class FakeConnection:
    """Stands in for driver.Connection; answers queries from substring rules.

    Rules are checked in registration order; the first fragment found in
    the query decides the answer: a list of records, an exception to
    raise, or a callable(query, params) returning records.
    """

    def __init__(self, mode, config: GraphStoreConfig | None = None, enterprise: bool = False):
        self.mode = mode
        self.config = config or GraphStoreConfig(
            database_url="bolt://localhost:7687", driver_config={"password": "secret"}
        )
        self.enterprise = enterprise
        self.driver = MagicMock()
        self.calls: list[Call] = []
        self._rules: list[tuple[str, Any]] = []

    def on(self, fragment: str, result: Any) -> FakeConnection:
        self._rules.append((fragment, result))
        return self

    def _answer(self, kind: str, database: str, query: str, params: dict | None) -> list:
        params = dict(params or {})
        self.calls.append(Call(kind, database, query, params))
        for fragment, result in self._rules:
            if fragment in query:
                if isinstance(result, BaseException):
                    raise result
                if callable(result):
                    return list(result(query, params))
                return list(result)
        return []

    async def read(self, database: str, query: str, params: dict | None = None) -> list:
        return self._answer("read", database, query, params)

    async def write(self, database: str, query: str, params: dict | None = None) -> list:
        return self._answer("write", database, query, params)

    async def run(
        self, database: str, query: str, params: dict | None = None, read_only: bool = False
    ) -> list:
        return self._answer("read" if read_only else "write", database, query, params)

    async def write_many(self, database: str, statements) -> list[list]:
        return [self._answer("write", database, q, p) for q, p in statements]

    def queries(self, kind: str | None = None) -> list[str]:
        return [c.query for c in self.calls if kind is None or c.kind == kind]

    def find(self, fragment: str) -> Call:
        for call in self.calls:
            if fragment in call.query:
                return call
        raise AssertionError(f"no query containing {fragment!r}: {self.queries()}")


def echo_ids(query: str, params: dict) -> list[dict]:
    """Answer an UNWIND batch by returning every row id."""
    return [{"id": row["id"]} for row in params.get("batch", [])]


# === DRIVER VALUE DOUBLES ===


def make_node(element_id: str, labels: list[str], props: dict[str, Any]) -> MagicMock:
    node = MagicMock(spec=Node)
    node.element_id = element_id
    node.labels = frozenset(labels)
    node.items.return_value = list(props.items())
    node.get.side_effect = lambda key, default=None: props.get(key, default)
    return node


def make_relationship(
    element_id: str,
    rel_type: str,
    props: dict[str, Any],
    start: MagicMock | None = None,
    end: MagicMock | None = None,
) -> MagicMock:
    rel = MagicMock(spec=Relationship)
    rel.element_id = element_id
    rel.type = rel_type
    rel.items.return_value = list(props.items())
    rel.get.side_effect = lambda key, default=None: props.get(key, default)
    rel.start_node = start
    rel.end_node = end
    return rel


def make_path(nodes: list[MagicMock], relationships: list[MagicMock]) -> MagicMock:
    path = MagicMock(spec=Path)
    path.nodes = tuple(nodes)
    path.relationships = tuple(relationships)
    return path


# === FIXTURES ===


@pytest.fixture
def label_mode() -> LabelMode:
    return LabelMode()


@pytest.fixture
def database_mode() -> DatabaseMode:
    return DatabaseMode()


@pytest.fixture
def label_conn(label_mode) -> FakeConnection:
    return FakeConnection(label_mode)


@pytest.fixture
def database_conn(database_mode) -> FakeConnection:
    return FakeConnection(database_mode, enterprise=True)


@pytest.fixture
def critical() -> CriticalSection:
    return CriticalSection()


@pytest.fixture
def exists_in_label_mode() -> Callable[[FakeConnection, bool], FakeConnection]:
    def _register(conn: FakeConnection, exists: bool = True) -> FakeConnection:
        return conn.on("AS exists", [{"exists": exists}])
    return _register


@pytest.fixture
def sample_nodes() -> list[GraphNode]:
    return [
        GraphNode(id="n1", labels=["T"], properties={"name": "x"}),
        GraphNode(id="n2", labels=["T"], properties={"name": "y"}),
    ]


@pytest.fixture
def sample_relationship() -> GraphRelationship:
    return GraphRelationship(id="r", type="R", start_node="n1", end_node="n2")


@pytest.fixture
def sample_extraction() -> ExtractionResult:
    return ExtractionResult(
        model="mock-model",
        nodes=[
            CandidateNode(
                id="c1", name="Paris", type="City",
                source_documents=["d1", "d2"], source_chunks=["k1"],
            ),
            CandidateNode(id="c2", name="France", type="Country", source_documents=["d1"]),
        ],
        relationships=[
            CandidateRelationship(id="cr1", type="CAPITAL_OF", start_node="c1", end_node="c2"),
        ],
    )
