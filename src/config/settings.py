# src/config/settings.py - v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for deployment-specific settings of the graph
store adapter. `Settings.graph_store_config()` bridges to the
adapter-level `GraphStoreConfig` mapping.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from graphrag_store.core.models import (
    DEFAULT_GRAPH_LABEL_PREFIX,
    DEFAULT_NAMESPACE_PROPERTY,
    GraphStoreConfig,
)


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === GRAPH DATABASE ===
    graph_db_type: Literal["neo4j"] = "neo4j"
    graph_db_uri: str = "bolt://localhost:7687"
    graph_db_user: str = "neo4j"
    graph_db_password: str = ""
    graph_db_use_separate_database: bool = False
    graph_db_default_graph: str = "default"

    # Label-per-graph tenancy
    graph_label_prefix: str = DEFAULT_GRAPH_LABEL_PREFIX
    graph_namespace_property: str = DEFAULT_NAMESPACE_PROPERTY

    # Driver pool / timeouts (forwarded to the neo4j driver)
    graph_db_max_connection_pool_size: int = 50
    graph_db_connection_timeout: float = 30.0

    # Adapter behaviour
    graph_db_batch_size: int = 100
    graph_db_query_timeout: float = 0.0
    graph_db_availability_timeout: float = 5.0

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("graph_db_batch_size", "graph_db_max_connection_pool_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("value must be > 0")
        return v

    @field_validator(
        "graph_db_query_timeout",
        "graph_db_availability_timeout",
        "graph_db_connection_timeout",
    )
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("timeout must be >= 0")
        return v

    @field_validator("graph_label_prefix")
    @classmethod
    def normalize_label_prefix(cls, v: str) -> str:
        """An empty override falls back to the default prefix."""
        return v or DEFAULT_GRAPH_LABEL_PREFIX

    @field_validator("graph_namespace_property")
    @classmethod
    def normalize_namespace_property(cls, v: str) -> str:
        return v or DEFAULT_NAMESPACE_PROPERTY

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if not self.graph_db_uri:
            errors.append("GRAPH_DB_URI is required")

        if "`" in self.graph_label_prefix:
            errors.append("GRAPH_LABEL_PREFIX must not contain backticks")

        if self.graph_db_use_separate_database and self.graph_db_default_graph == "neo4j":
            errors.append(
                "GRAPH_DB_DEFAULT_GRAPH cannot be the default database "
                "when GRAPH_DB_USE_SEPARATE_DATABASE is set"
            )

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    def graph_store_config(self) -> GraphStoreConfig:
        """Build the adapter configuration mapping from these settings."""
        return GraphStoreConfig(
            store_type=self.graph_db_type,
            database_url=self.graph_db_uri,
            batch_size=self.graph_db_batch_size,
            query_timeout=self.graph_db_query_timeout,
            availability_timeout=self.graph_db_availability_timeout,
            default_graph_name=self.graph_db_default_graph,
            driver_config={
                "username": self.graph_db_user,
                "password": self.graph_db_password,
                "use_separate_database": self.graph_db_use_separate_database,
                "graph_label_prefix": self.graph_label_prefix,
                "graph_namespace_property": self.graph_namespace_property,
                "max_connection_pool_size": self.graph_db_max_connection_pool_size,
                "connection_timeout": self.graph_db_connection_timeout,
            },
        )


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-deployment config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
