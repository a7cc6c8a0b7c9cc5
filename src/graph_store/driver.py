# src/graph_store/driver.py - v1
"""Driver handle: connection pool ownership, edition detection, lifecycle.

The handle state (driver, flags, config) is guarded by a reader/writer
lock. Operations take a Connection snapshot under the read lock and do
their long-running work without it. Every result is materialised
inside the managed transaction that produced it.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Sequence, TypeVar

from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncManagedTransaction, AsyncSession
from neo4j import basic_auth

from graphrag_store.core.models import GraphStoreConfig
from graphrag_store.graph_store.errors import (
    COMMUNITY_EDITION,
    GraphConfigurationError,
    NotConnectedError,
    OperationTimeoutError,
    ServerError,
    classify_error,
    wrap_error,
)
from graphrag_store.graph_store.locks import ReadWriteLock
from graphrag_store.graph_store.mode import StorageMode, resolve_mode

logger = logging.getLogger(__name__)

SYSTEM_DATABASE = "system"
# SHOW DATABASES also succeeds on Community 5.x, so the edition is read directly.
EDITION_QUERY = "CALL dbms.components() YIELD edition RETURN edition"

T = TypeVar("T")

Statement = tuple[str, dict[str, Any]]


async def _collect(tx: AsyncManagedTransaction, query: str, params: dict[str, Any]) -> list:
    result = await tx.run(query, params)
    return [record async for record in result]


async def _collect_many(tx: AsyncManagedTransaction, statements: Sequence[Statement]) -> list[list]:
    out = []
    for query, params in statements:
        result = await tx.run(query, params)
        out.append([record async for record in result])
    return out


async def with_timeout(awaitable: Awaitable[T], timeout: float | None, operation: str) -> T:
    """Await with an optional per-operation deadline (seconds, 0 disables)."""
    if not timeout or timeout <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise OperationTimeoutError(operation, timeout) from None


@dataclass(frozen=True)
class Connection:
    """Immutable snapshot of a connected handle, valid for one call."""

    driver: AsyncDriver
    mode: StorageMode
    config: GraphStoreConfig
    enterprise: bool

    @asynccontextmanager
    async def session(self, database: str) -> AsyncIterator[AsyncSession]:
        async with self.driver.session(database=database) as session:
            yield session

    async def read(self, database: str, query: str, params: dict[str, Any] | None = None) -> list:
        """Run query in a managed read transaction and return its records."""
        try:
            async with self.session(database) as session:
                return await session.execute_read(_collect, query, params or {})
        except Exception as e:
            raise wrap_error(e, f"read on '{database}' failed") from e

    async def write(self, database: str, query: str, params: dict[str, Any] | None = None) -> list:
        """Run query in a managed write transaction and return its records."""
        try:
            async with self.session(database) as session:
                return await session.execute_write(_collect, query, params or {})
        except Exception as e:
            raise wrap_error(e, f"write on '{database}' failed") from e

    async def run(
        self,
        database: str,
        query: str,
        params: dict[str, Any] | None = None,
        read_only: bool = False,
    ) -> list:
        if read_only:
            return await self.read(database, query, params)
        return await self.write(database, query, params)

    async def write_many(self, database: str, statements: Sequence[Statement]) -> list[list]:
        """Run several statements inside one managed write transaction."""
        try:
            async with self.session(database) as session:
                return await session.execute_write(_collect_many, statements)
        except Exception as e:
            raise wrap_error(e, f"write on '{database}' failed") from e


class DriverHandle:
    """Owns the neo4j driver and the connection flags of one adapter."""

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._driver: AsyncDriver | None = None
        self._config: GraphStoreConfig | None = None
        self._mode: StorageMode | None = None
        self._enterprise = False
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_enterprise(self) -> bool:
        return self._enterprise

    @property
    def use_separate_database(self) -> bool:
        return self._mode is not None and self._mode.separate_database

    @property
    def config(self) -> GraphStoreConfig | None:
        return self._config

    async def connect(self, config: GraphStoreConfig) -> None:
        """Create the driver, verify it and detect the server edition.

        Idempotent: returns immediately when already connected.
        """
        async with self._lock.read():
            if self._connected:
                return

        if not config.database_url:
            raise GraphConfigurationError("database URL is required")
        password = config.password
        if not password:
            raise GraphConfigurationError("password is required")

        use_separate_database = config.use_separate_database
        try:
            driver = AsyncGraphDatabase.driver(
                config.uri,
                auth=basic_auth(config.username, password),
                **config.driver_kwargs(),
            )
        except (TypeError, ValueError) as e:
            raise GraphConfigurationError(f"failed to create Neo4j driver: {e}") from e

        try:
            try:
                await driver.verify_connectivity()
            except Exception as e:
                raise wrap_error(e, "failed to verify Neo4j connectivity") from e

            enterprise = await self._detect_enterprise_edition(driver)
            if use_separate_database and not enterprise:
                raise GraphConfigurationError(
                    "separate database storage requires Neo4j Enterprise Edition, "
                    "but connected to Community Edition. Please use Neo4j Enterprise "
                    "Edition or set use_separate_database to false"
                )
        except BaseException:
            await driver.close()
            raise

        mode = resolve_mode(
            use_separate_database,
            config.graph_label_prefix,
            config.graph_namespace_property,
        )
        async with self._lock.write():
            if self._connected:
                # Lost a race with a concurrent connect.
                await driver.close()
                return
            self._driver = driver
            self._config = config
            self._mode = mode
            self._enterprise = enterprise
            self._connected = True

        logger.info(
            "Connected to Neo4j at %s (edition=%s, storage=%s)",
            config.uri,
            "enterprise" if enterprise else "community",
            mode.storage_type,
        )

    async def _detect_enterprise_edition(self, driver: AsyncDriver) -> bool:
        try:
            async with driver.session(database=SYSTEM_DATABASE) as session:
                records = await session.execute_read(_collect, EDITION_QUERY, {})
        except Exception as e:
            if classify_error(e) == COMMUNITY_EDITION:
                return False
            raise ServerError(f"failed to detect edition: {e}") from e
        editions = {str(record["edition"]).lower() for record in records}
        return "enterprise" in editions

    async def disconnect(self) -> None:
        """Close the driver and clear all state. Safe when not connected."""
        async with self._lock.write():
            driver = self._driver
            self._driver = None
            self._config = None
            self._mode = None
            self._enterprise = False
            self._connected = False
            if driver is not None:
                await driver.close()
                logger.info("Disconnected from Neo4j")

    async def snapshot(self) -> Connection:
        """Snapshot driver and flags; raises NotConnectedError when idle."""
        async with self._lock.read():
            if not self._connected or self._driver is None:
                raise NotConnectedError()
            return Connection(
                driver=self._driver,
                mode=self._mode,  # type: ignore[arg-type]
                config=self._config,  # type: ignore[arg-type]
                enterprise=self._enterprise,
            )
