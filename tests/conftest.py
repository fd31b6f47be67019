"""
Pytest configuration and shared fixtures.
"""

from collections.abc import AsyncGenerator, Generator

import pytest
import pytest_asyncio

from disque_client.client import Client
from disque_client.config import Settings, get_settings
from tests.mock_server import TEST_CYCLE, MockCluster, MockNode


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None]:
    """Make every test read settings from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        nodes="127.0.0.1:7711,127.0.0.1:7712,127.0.0.1:7713",
        cycle=TEST_CYCLE,
        connect_timeout_seconds=1.0,
        log_level="DEBUG",
        log_format="console",
    )


@pytest_asyncio.fixture
async def mock_node() -> AsyncGenerator[MockNode]:
    """Start a single mock node."""
    node = await MockNode().start()
    yield node
    await node.stop()


@pytest_asyncio.fixture
async def mock_cluster() -> AsyncGenerator[MockCluster]:
    """Start a three-node mock cluster sharing one job store."""
    cluster = await MockCluster(size=3).start()
    yield cluster
    await cluster.stop()


@pytest_asyncio.fixture
async def client(mock_cluster: MockCluster) -> AsyncGenerator[Client]:
    """Create a client connected to every node of the mock cluster."""
    client = Client(mock_cluster.addresses, cycle=TEST_CYCLE, connect_timeout=1.0)
    await client.connect()
    yield client
    await client.quit()


@pytest.fixture
def unused_address() -> str:
    """An address nothing listens on."""
    return "127.0.0.1:1"
