# tests/unit/graph_store/test_unit_driver.py - v1
"""Tests for graph_store/driver.py - driver handle and managed transactions."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from graphrag_store.core.models import GraphStoreConfig
from graphrag_store.graph_store.driver import (
    EDITION_QUERY,
    SYSTEM_DATABASE,
    Connection,
    DriverHandle,
    with_timeout,
)
from graphrag_store.graph_store.errors import (
    GraphConfigurationError,
    NotConnectedError,
    OperationTimeoutError,
    ServerError,
    TransientError,
)
from graphrag_store.graph_store.mode import DatabaseMode, LabelMode

DRIVER_FACTORY = "graphrag_store.graph_store.driver.AsyncGraphDatabase.driver"


def fake_driver(records=None, error: Exception | None = None) -> MagicMock:
    """Driver whose sessions answer every managed transaction with records."""
    session = MagicMock()

    async def execute(fn, *args):
        if error is not None:
            raise error
        return records if records is not None else []

    session.execute_read = AsyncMock(side_effect=execute)
    session.execute_write = AsyncMock(side_effect=execute)
    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=session)
    cm.__aexit__ = AsyncMock(return_value=False)

    driver = MagicMock()
    driver.session.return_value = cm
    driver.verify_connectivity = AsyncMock()
    driver.close = AsyncMock()
    return driver


def make_config(**driver_config) -> GraphStoreConfig:
    return GraphStoreConfig(
        database_url="bolt://localhost:7687",
        driver_config={"password": "secret", **driver_config},
    )


class TestConnect:
    @pytest.mark.asyncio
    async def test_requires_url(self):
        with pytest.raises(GraphConfigurationError, match="database URL is required"):
            await DriverHandle().connect(GraphStoreConfig(driver_config={"password": "x"}))

    @pytest.mark.asyncio
    async def test_requires_password(self):
        config = GraphStoreConfig(database_url="bolt://localhost:7687")
        with pytest.raises(GraphConfigurationError, match="password is required"):
            await DriverHandle().connect(config)

    @pytest.mark.asyncio
    async def test_label_mode_on_community(self):
        driver = fake_driver(records=[{"edition": "community"}])
        handle = DriverHandle()
        with patch(DRIVER_FACTORY, return_value=driver) as factory:
            await handle.connect(make_config(max_connection_pool_size=10))
        assert handle.is_connected
        assert not handle.is_enterprise
        assert not handle.use_separate_database
        assert factory.call_args.kwargs["max_connection_pool_size"] == 10
        conn = await handle.snapshot()
        assert isinstance(conn.mode, LabelMode)

    @pytest.mark.asyncio
    async def test_separate_database_requires_enterprise(self):
        driver = fake_driver(records=[{"edition": "community"}])
        with patch(DRIVER_FACTORY, return_value=driver):
            with pytest.raises(GraphConfigurationError, match="requires Neo4j Enterprise Edition"):
                await DriverHandle().connect(make_config(use_separate_database=True))
        driver.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_database_mode_on_enterprise(self):
        driver = fake_driver(records=[{"edition": "enterprise"}])
        handle = DriverHandle()
        with patch(DRIVER_FACTORY, return_value=driver):
            await handle.connect(make_config(use_separate_database="true"))
        conn = await handle.snapshot()
        assert isinstance(conn.mode, DatabaseMode)
        assert conn.enterprise

    @pytest.mark.asyncio
    async def test_edition_read_from_components_on_system(self):
        driver = fake_driver(records=[{"edition": "enterprise"}])
        with patch(DRIVER_FACTORY, return_value=driver):
            await DriverHandle().connect(make_config())
        driver.session.assert_called_with(database=SYSTEM_DATABASE)
        session = driver.session.return_value.__aenter__.return_value
        args = session.execute_read.await_args.args
        assert args[1] == EDITION_QUERY
        assert "dbms.components()" in EDITION_QUERY
        assert "SHOW DATABASES" not in EDITION_QUERY

    @pytest.mark.asyncio
    async def test_idempotent(self):
        driver = fake_driver(records=[{"edition": "community"}])
        handle = DriverHandle()
        with patch(DRIVER_FACTORY, return_value=driver) as factory:
            await handle.connect(make_config())
            await handle.connect(make_config())
        assert factory.call_count == 1

    @pytest.mark.asyncio
    async def test_connectivity_failure_closes_driver(self):
        driver = fake_driver()
        driver.verify_connectivity.side_effect = OSError("refused")
        with patch(DRIVER_FACTORY, return_value=driver):
            with pytest.raises(ServerError, match="failed to verify Neo4j connectivity"):
                await DriverHandle().connect(make_config())
        driver.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_edition_query_refused_means_community(self):
        driver = fake_driver(error=Exception("Unsupported administration command"))
        handle = DriverHandle()
        with patch(DRIVER_FACTORY, return_value=driver):
            await handle.connect(make_config())
        assert not handle.is_enterprise

    @pytest.mark.asyncio
    async def test_credentials_from_url(self):
        driver = fake_driver(records=[{"edition": "community"}])
        config = GraphStoreConfig(database_url="bolt://alice:pw@db:7687")
        with patch(DRIVER_FACTORY, return_value=driver) as factory:
            await DriverHandle().connect(config)
        assert factory.call_args.args[0] == "bolt://db:7687"


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_closes_and_clears(self):
        driver = fake_driver(records=[{"edition": "community"}])
        handle = DriverHandle()
        with patch(DRIVER_FACTORY, return_value=driver):
            await handle.connect(make_config())
        await handle.disconnect()
        driver.close.assert_awaited_once()
        assert not handle.is_connected
        with pytest.raises(NotConnectedError, match="not connected to Neo4j"):
            await handle.snapshot()

    @pytest.mark.asyncio
    async def test_safe_when_idle(self):
        await DriverHandle().disconnect()


class TestConnection:
    @pytest.mark.asyncio
    async def test_read_returns_records(self):
        driver = fake_driver(records=[{"x": 1}])
        conn = Connection(driver=driver, mode=LabelMode(), config=make_config(), enterprise=False)
        assert await conn.read("neo4j", "RETURN 1 AS x") == [{"x": 1}]
        driver.session.assert_called_with(database="neo4j")

    @pytest.mark.asyncio
    async def test_errors_are_wrapped(self):
        driver = fake_driver(error=ValueError("boom"))
        conn = Connection(driver=driver, mode=LabelMode(), config=make_config(), enterprise=False)
        with pytest.raises(ServerError, match="write on 'neo4j' failed: boom"):
            await conn.write("neo4j", "CREATE (n)")

    @pytest.mark.asyncio
    async def test_transient_errors_stay_transient(self):
        driver = fake_driver(error=Exception("Database is unavailable"))
        conn = Connection(driver=driver, mode=LabelMode(), config=make_config(), enterprise=False)
        with pytest.raises(TransientError):
            await conn.run("A", "MATCH (n) RETURN n", read_only=True)


class TestWithTimeout:
    @pytest.mark.asyncio
    async def test_disabled(self):
        async def work():
            return 1
        assert await with_timeout(work(), 0, "op") == 1

    @pytest.mark.asyncio
    async def test_expires(self):
        with pytest.raises(OperationTimeoutError, match="op timed out"):
            await with_timeout(asyncio.sleep(1), 0.01, "op")
