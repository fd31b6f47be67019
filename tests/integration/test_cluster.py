"""
Integration tests against a running three-node Disque cluster.

Start nodes on 127.0.0.1:7711-7713 and join them into one cluster; the tests
are skipped when the first node is not reachable.
"""

import socket
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from disque_client import Client, ReplyError

NODES = ["127.0.0.1:7711", "127.0.0.1:7712", "127.0.0.1:7713"]
CYCLE = 5


def _cluster_available() -> bool:
    try:
        with socket.create_connection(("127.0.0.1", 7711), timeout=0.5):
            return True
    except OSError:
        return False


pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not _cluster_available(), reason="no Disque node on 127.0.0.1:7711"),
]


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[Client]:
    """Flush every node, then connect a client to all of them."""
    for node in NODES:
        async with Client([node]) as single:
            await single.call("DEBUG", "FLUSHALL")

    async with Client(NODES, cycle=CYCLE) as client:
        yield client


class TestCommands:
    """Tests for plain commands."""

    async def test_ping(self, client: Client):
        """Test PING."""
        assert await client.call("PING") == "PONG"

    async def test_info(self, client: Client):
        """Test INFO fields."""
        assert (await client.info())["loading"] == "0"

    async def test_unknown_command(self, client: Client):
        """Test error replies reach the caller."""
        with pytest.raises(ReplyError, match=r"^ERR unknown command"):
            await client.call("FOOBAR")

    async def test_comma_separated_nodes(self, client: Client):
        """Test a comma-separated node list discovers the cluster."""
        async with Client(",".join(NODES)) as other:
            assert len(await other.hello()) > len(NODES)


class TestJobs:
    """Tests for the job lifecycle."""

    async def test_addjob(self, client: Client):
        """Test a job is registered."""
        job_id = await client.addjob("q1", "j1", 0)

        assert len(job_id) > 0
        assert (await client.info())["registered_jobs"] == "1"

    async def test_addjob_with_options(self, client: Client):
        """Test MAXLEN rejects a job once the queue is long enough."""
        await client.addjob("q1", "j1", 0)
        await client.addjob("q1", "j2", 0)

        with pytest.raises(ReplyError):
            await client.addjob("q1", "j3", 0, {"maxlen": 1})

    async def test_getjob(self, client: Client):
        """Test a job is delivered."""
        await client.addjob("q3", "j3", 0)

        jobs = await client.getjob(["q3"])

        assert len(jobs) == 1
        assert jobs[0].queue == "q3"
        assert len(jobs[0].id) > 0
        assert jobs[0].body == "j3"

    async def test_getjob_with_options(self, client: Client):
        """Test COUNT delivers the oldest job only."""
        await client.addjob("q4", "j4", 0)
        await client.addjob("q4", "j5", 0)

        jobs = await client.getjob(["q4"], {"count": 1})

        assert len(jobs) == 1
        assert jobs[0].queue == "q4"
        assert jobs[0].body == "j4"

    async def test_ackjob(self, client: Client):
        """Test an acknowledged job is forgotten."""
        job_id = await client.addjob("q6", "j1", 0)

        assert await client.ackjob(job_id) == 1
        assert await client.call("SHOW", job_id) is None

    async def test_ackjob_multiple(self, client: Client):
        """Test several ids acknowledged at once."""
        first = await client.addjob("q7", "j1", 0)
        second = await client.addjob("q7", "j2", 0)

        assert await client.ackjob([first, second]) == 2
        assert await client.call("SHOW", first) is None


class TestRouting:
    """Tests for locality-aware routing."""

    async def test_connect_to_best_node(self, client: Client):
        """Test the consumer moves to the producing node."""
        async with Client([NODES[1]], cycle=CYCLE) as producer:
            await client.call("PING")

            assert len(client.prefix) == 8
            assert client.prefix != producer.prefix

            for _ in range(CYCLE):
                await producer.addjob("q5", "j1", 0)
                await client.getjob(["q5"], {"count": 1})

            await client.call("PING")
            assert client.prefix == producer.prefix

    async def test_restricted_discovery(self, client: Client):
        """Test the consumer never moves to a node it was not given."""
        async with (
            Client([NODES[2]], cycle=CYCLE) as producer,
            Client(NODES[:2], cycle=CYCLE) as consumer,
        ):
            assert consumer.prefix != producer.prefix

            for _ in range(CYCLE):
                await producer.addjob("q5", "j1", 0)
                await consumer.getjob(["q5"], {"count": 1})

            await consumer.call("PING")
            assert consumer.prefix != producer.prefix
            assert NODES[2] not in consumer.router.connections
