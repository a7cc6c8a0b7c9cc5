# src/graph_store/mode.py - v1
"""Storage mode policy: database-per-graph vs label-per-graph.

Every storage component receives a resolved StorageMode and asks it
for database names, node patterns and scope predicates instead of
branching on a flag.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Iterable

from graphrag_store.core.models import (
    DATABASE_RELATIONSHIP_TYPE,
    DEFAULT_DATABASE,
    DEFAULT_GRAPH_LABEL_PREFIX,
    DEFAULT_NAMESPACE_PROPERTY,
)
from graphrag_store.graph_store.errors import InvalidGraphNameError

GRAPH_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def validate_graph_name(graph_name: str) -> str:
    """Return graph_name or raise InvalidGraphNameError."""
    if not graph_name or not GRAPH_NAME_PATTERN.match(graph_name):
        raise InvalidGraphNameError(graph_name)
    return graph_name


def escape_identifier(name: str) -> str:
    """Backtick-quote a label, relationship type or property key."""
    return "`" + name.replace("`", "``") + "`"


def label_clause(labels: Iterable[str]) -> str:
    """Render ':`A`:`B`' for a label sequence, skipping empties and repeats."""
    seen: list[str] = []
    for label in labels:
        if label and label not in seen:
            seen.append(label)
    return "".join(f":{escape_identifier(label)}" for label in seen)


@dataclass(frozen=True)
class StorageMode(ABC):
    """Resolved tenancy strategy for one connection."""

    label_prefix: str = DEFAULT_GRAPH_LABEL_PREFIX
    namespace_property: str = DEFAULT_NAMESPACE_PROPERTY

    storage_type: ClassVar[str]
    separate_database: ClassVar[bool]
    requires_availability_wait: ClassVar[bool]

    def graph_label(self, graph_name: str) -> str:
        return f"{self.label_prefix or DEFAULT_GRAPH_LABEL_PREFIX}{graph_name}"

    def is_graph_label(self, label: str) -> bool:
        """True for any label carrying the configured graph prefix."""
        return label.startswith(self.label_prefix or DEFAULT_GRAPH_LABEL_PREFIX)

    @abstractmethod
    def database_name(self, graph_name: str) -> str:
        """Database that holds graph_name."""

    @abstractmethod
    def scope_labels(self, graph_name: str) -> list[str]:
        """Labels every node of graph_name carries in addition to its own."""

    @abstractmethod
    def relationship_type(self, rel_type: str) -> str:
        """Native relationship type stored for a caller-given type."""

    def node_labels(self, graph_name: str, labels: Iterable[str] = ()) -> str:
        """Label clause for a node pattern scoped to graph_name."""
        return label_clause([*labels, *self.scope_labels(graph_name)])

    def node_pattern(
        self, var: str, graph_name: str, labels: Iterable[str] = ()
    ) -> str:
        return f"({var}{self.node_labels(graph_name, labels)})"

    def scope_predicate(self, var: str, graph_name: str) -> str:
        """WHERE fragment restricting var to graph_name, or ''."""
        return " AND ".join(
            f"{var}:{escape_identifier(label)}" for label in self.scope_labels(graph_name)
        )

    def query_parameters(self, graph_name: str) -> dict[str, Any]:
        """Parameters pre-populated for caller-supplied Cypher."""
        return {}

    def describe_extras(self, graph_name: str) -> dict[str, Any]:
        return {
            "storage_type": self.storage_type,
            "database_name": self.database_name(graph_name),
        }


@dataclass(frozen=True)
class DatabaseMode(StorageMode):
    """One Neo4j database per logical graph (Enterprise only)."""

    storage_type: ClassVar[str] = "separate_database"
    separate_database: ClassVar[bool] = True
    requires_availability_wait: ClassVar[bool] = True

    def database_name(self, graph_name: str) -> str:
        return graph_name

    def scope_labels(self, graph_name: str) -> list[str]:
        return []

    def relationship_type(self, rel_type: str) -> str:
        return DATABASE_RELATIONSHIP_TYPE


@dataclass(frozen=True)
class LabelMode(StorageMode):
    """Logical graphs as prefixed labels inside the default database."""

    storage_type: ClassVar[str] = "label_based"
    separate_database: ClassVar[bool] = False
    requires_availability_wait: ClassVar[bool] = False

    def database_name(self, graph_name: str) -> str:
        return DEFAULT_DATABASE

    def scope_labels(self, graph_name: str) -> list[str]:
        return [self.graph_label(graph_name)]

    def relationship_type(self, rel_type: str) -> str:
        return rel_type

    def query_parameters(self, graph_name: str) -> dict[str, Any]:
        return {
            "__graph_label": self.graph_label(graph_name),
            "__graph_namespace": graph_name,
        }

    def describe_extras(self, graph_name: str) -> dict[str, Any]:
        extras = super().describe_extras(graph_name)
        extras["graph_label"] = self.graph_label(graph_name)
        extras["namespace"] = graph_name
        return extras


def resolve_mode(
    use_separate_database: bool,
    label_prefix: str = DEFAULT_GRAPH_LABEL_PREFIX,
    namespace_property: str = DEFAULT_NAMESPACE_PROPERTY,
) -> StorageMode:
    """Pick the mode variant for a connection."""
    cls = DatabaseMode if use_separate_database else LabelMode
    return cls(
        label_prefix=label_prefix or DEFAULT_GRAPH_LABEL_PREFIX,
        namespace_property=namespace_property or DEFAULT_NAMESPACE_PROPERTY,
    )
