# tests/integration/conftest.py - v1
"""Shared fixtures for integration tests using testcontainers.

Container lifecycle:
- session scope: the Neo4j container starts once per pytest session
- function scope: a fresh logical graph per test for isolation

Custom container wrapper:
- Uses DockerContainer directly with bridge network IP + internal port
- Required for devcontainer with docker-outside-of-docker (socket mount)
- Built-in testcontainers library returns localhost:mapped_port which is
  unreachable from inside a devcontainer
"""

from __future__ import annotations

import logging
import time
import uuid

import pytest
import pytest_asyncio

from graphrag_store.core.models import GraphStoreConfig
from graphrag_store.graph_store.neo4j_store import Neo4jGraphStore

logger = logging.getLogger(__name__)


# ── Pytest markers ──────────────────────────────────────────────

def pytest_configure(config):
    config.addinivalue_line("markers", "slow: marks tests with long container waits")
    config.addinivalue_line("markers", "neo4j: marks tests requiring Neo4j container")


# =====================================================================
#  DEVCONTAINER NETWORKING HELPERS
# =====================================================================

def _get_container_bridge_ip(container, max_attempts: int = 10) -> str:
    """Get container bridge network IP with retries.

    In docker-outside-of-docker setups, containers are on the host Docker
    daemon. The devcontainer must access them via bridge IP, not localhost.
    """
    for attempt in range(max_attempts):
        try:
            wrapped = container.get_wrapped_container()
            wrapped.reload()
            networks = wrapped.attrs.get("NetworkSettings", {}).get("Networks", {})
            for net_name, net_info in networks.items():
                ip = net_info.get("IPAddress", "")
                if ip:
                    logger.info(
                        "Container %s IP: %s (network: %s, attempt %d)",
                        wrapped.short_id, ip, net_name, attempt + 1,
                    )
                    return ip
            logger.debug("Container IP empty, attempt %d/%d", attempt + 1, max_attempts)
        except Exception as e:
            logger.debug("Error getting IP (attempt %d): %s", attempt + 1, e)
        time.sleep(0.5)

    raise RuntimeError(
        f"Could not obtain container bridge IP after {max_attempts} attempts"
    )


def _docker_available() -> bool:
    """Check if Docker daemon is reachable."""
    try:
        import docker
        client = docker.from_env()
        client.ping()
        return True
    except Exception:
        return False


skip_no_docker = pytest.mark.skipif(
    not _docker_available(),
    reason="Docker daemon not available",
)


# =====================================================================
#  NEO4J CONTAINER - session scope (bridge IP)
#
#  Neo4j 5 logs "Started." once bolt is accepting connections.
# =====================================================================

NEO4J_IMAGE = "neo4j:5"
NEO4J_BOLT_PORT = 7687
NEO4J_PASSWORD = "testpassword"


@pytest.fixture(scope="session")
def neo4j_container():
    if not _docker_available():
        pytest.skip("Docker not available")

    from testcontainers.core.container import DockerContainer
    from testcontainers.core.waiting_utils import wait_for_logs

    container = (
        DockerContainer(NEO4J_IMAGE)
        .with_exposed_ports(NEO4J_BOLT_PORT)
        .with_env("NEO4J_AUTH", f"neo4j/{NEO4J_PASSWORD}")
    )
    container.start()
    wait_for_logs(container, predicate=r"Started\.", timeout=120)
    time.sleep(2)

    ip = _get_container_bridge_ip(container)
    logger.info("Neo4j ready at %s:%d", ip, NEO4J_BOLT_PORT)
    yield {"host": ip, "port": NEO4J_BOLT_PORT, "password": NEO4J_PASSWORD}
    container.stop()


@pytest.fixture(scope="session")
def neo4j_url(neo4j_container) -> str:
    c = neo4j_container
    return f"bolt://{c['host']}:{c['port']}"


@pytest.fixture
def neo4j_config(neo4j_url) -> GraphStoreConfig:
    return GraphStoreConfig(
        database_url=neo4j_url,
        availability_timeout=10.0,
        driver_config={"username": "neo4j", "password": NEO4J_PASSWORD},
    )


@pytest.fixture
def graph_name() -> str:
    return f"it_{uuid.uuid4().hex[:8]}"


@pytest_asyncio.fixture
async def neo4j_store(neo4j_config, graph_name):
    """Connected label-mode store with graph_name already created."""
    store = Neo4jGraphStore(neo4j_config)
    await store.connect()
    await store.create_graph(graph_name)
    yield store
    try:
        if await store.graph_exists(graph_name):
            await store.drop_graph(graph_name)
    finally:
        await store.close()
