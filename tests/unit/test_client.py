"""
Unit tests for the client facade, against an in-process mock cluster.
"""

import asyncio

import pytest

from disque_client import Client, connect, parse_info
from disque_client.errors import (
    AuthenticationError,
    ClientClosedError,
    CommandCancelledError,
    NodeConnectionError,
    ReplyError,
)

from tests.mock_server import TEST_CYCLE, MockCluster, MockNode, Status


class TestParseInfo:
    """Tests for parse_info."""

    def test_parse_fields(self):
        """Test sections and blank lines are skipped."""
        info = parse_info(b"# Server\r\nrun_id:abc\r\n\r\n# Jobs\r\nregistered_jobs:3\r\nnoise\r\n")

        assert info == {"run_id": "abc", "registered_jobs": "3"}

    def test_value_with_colon(self):
        """Test values keep everything after the first colon."""
        assert parse_info("executable:/usr/bin:disque")["executable"] == "/usr/bin:disque"


class TestClientCommands:
    """Tests for plain commands."""

    async def test_ping(self, client: Client):
        """Test PING."""
        assert await client.ping() == "PONG"

    async def test_info(self, client: Client):
        """Test INFO is parsed into fields."""
        info = await client.info()

        assert info["loading"] == "0"

    async def test_unknown_command(self, client: Client):
        """Test an error reply is raised to the caller."""
        with pytest.raises(ReplyError, match=r"^ERR unknown command") as exc_info:
            await client.call("FOOBAR")

        assert exc_info.value.code == "ERR"
        assert await client.ping() == "PONG"

    async def test_comma_separated_nodes(self, mock_cluster: MockCluster):
        """Test nodes given as one string behave like a list."""
        async with Client(",".join(mock_cluster.addresses)) as client:
            hello = await client.hello()

            assert client.nodes == mock_cluster.addresses
            assert len(hello) > 3
            assert hello[1] == mock_cluster.nodes[0].id

    async def test_connect_helper(self, mock_cluster: MockCluster):
        """Test the module-level connect coroutine."""
        client = await connect(mock_cluster.addresses, cycle=TEST_CYCLE)

        try:
            assert client.prefix == mock_cluster.nodes[0].prefix
            assert client.router.cycle == TEST_CYCLE
        finally:
            await client.quit()

    async def test_raw_mode(self, client: Client, mock_cluster: MockCluster):
        """Test bulk replies stay bytes when requested."""
        async with Client(mock_cluster.addresses, raw=True) as raw:
            await client.addjob("q1", "j1")
            jobs = await raw.getjob("q1")

            assert jobs[0].body == b"j1"
            assert jobs[0].queue == "q1"


class TestClientJobs:
    """Tests for job commands."""

    async def test_addjob(self, client: Client):
        """Test a job is registered."""
        job_id = await client.addjob("q1", "j1", 0)

        assert job_id.startswith("D-")
        assert (await client.info())["registered_jobs"] == "1"
        assert await client.qlen("q1") == 1

    async def test_addjob_maxlen(self, client: Client):
        """Test MAXLEN rejects a job when the queue is full."""
        await client.addjob("q1", "j1", 0)

        with pytest.raises(ReplyError) as exc_info:
            await client.addjob("q1", "j2", 0, {"maxlen": 1})

        assert exc_info.value.code == "MAXLEN"

    async def test_getjob(self, client: Client):
        """Test a job is delivered with its queue and body."""
        job_id = await client.addjob("q3", "j3", 0)

        jobs = await client.getjob(["q3"])

        assert len(jobs) == 1
        assert jobs[0].queue == "q3"
        assert jobs[0].id == job_id
        assert jobs[0].body == "j3"

    async def test_getjob_count(self, client: Client):
        """Test the COUNT option limits delivery."""
        await client.addjob("q4", "j4", 0)
        await client.addjob("q4", "j5", 0)

        jobs = await client.getjob(["q4"], {"count": 1})

        assert len(jobs) == 1
        assert await client.qlen("q4") == 1

    async def test_getjob_nohang(self, client: Client):
        """Test an empty queue returns no jobs with NOHANG."""
        assert await client.getjob("empty", nohang=True) == []

    async def test_getjob_requires_queue(self, client: Client):
        """Test an empty queue list is rejected."""
        with pytest.raises(ValueError):
            await client.getjob([])

    async def test_ackjob(self, client: Client):
        """Test an acknowledged job is forgotten."""
        job_id = await client.addjob("q5", "j5", 0)
        await client.getjob("q5")

        assert await client.ackjob(job_id) == 1
        assert await client.show(job_id) is None

    async def test_ackjob_multiple(self, client: Client):
        """Test several jobs acknowledged at once."""
        first = await client.addjob("q6", "j6", 0)
        second = await client.addjob("q6", "j7", 0)
        await client.getjob("q6", count=2)

        assert await client.ackjob([first, second]) == 2
        assert await client.show(first) is None
        assert await client.show(second) is None

    async def test_show(self, client: Client):
        """Test SHOW is returned as a field mapping."""
        job_id = await client.addjob("q7", "j7", 0)

        job = await client.show(job_id)

        assert job["id"] == job_id
        assert job["queue"] == "q7"
        assert job["state"] == "queued"

    async def test_nack_and_working(self, client: Client):
        """Test a delivered job can be postponed and requeued."""
        job_id = await client.addjob("q8", "j8", 0)
        await client.getjob("q8")

        assert await client.working(job_id) > 0
        assert await client.nack(job_id) == 1
        assert await client.qlen("q8") == 1

    async def test_qpeek_fastack_deljob(self, client: Client):
        """Test peeking and removing jobs without consuming them."""
        first = await client.addjob("q9", "j9", 0)
        second = await client.addjob("q9", "j10", 0)

        peeked = await client.qpeek("q9", 2)

        assert [job.id for job in peeked] == [first, second]
        assert await client.fastack(first) == 1
        assert await client.deljob([second]) == 1
        assert await client.qlen("q9") == 0


class TestClientRouting:
    """Tests for locality-aware routing through the client."""

    async def test_switches_to_best_node(self, mock_cluster: MockCluster):
        """Test the consumer converges on the producer's node."""
        producer = Client(mock_cluster.nodes[1].address)
        consumer = Client(mock_cluster.addresses, cycle=TEST_CYCLE)

        try:
            for i in range(TEST_CYCLE):
                await producer.addjob("q10", f"j{i}", 0)
            for _ in range(TEST_CYCLE):
                await consumer.getjob("q10")

            assert consumer.prefix == producer.prefix
        finally:
            await producer.quit()
            await consumer.quit()

    async def test_restricted_discovery(self, mock_cluster: MockCluster):
        """Test the consumer never connects to a node it was not given."""
        outside = mock_cluster.nodes[2]
        producer = Client(outside.address)
        consumer = Client(mock_cluster.addresses[:2], cycle=TEST_CYCLE)

        try:
            for i in range(TEST_CYCLE):
                await producer.addjob("q11", f"j{i}", 0)
            accepted = outside.accepted

            for _ in range(TEST_CYCLE):
                await consumer.getjob("q11")

            assert outside.accepted == accepted
            assert consumer.prefix != producer.prefix
        finally:
            await producer.quit()
            await consumer.quit()

    async def test_reset_routing(self, client: Client):
        """Test routing hints can be dropped."""
        await client.addjob("q12", "j12", 0)

        client.reset_routing()

        assert client.router.hint_for("q12") is None


class TestClientLifecycle:
    """Tests for connecting, authenticating and quitting."""

    async def test_auth(self):
        """Test the configured secret reaches a server that lacks HELLO."""
        passwords: list[str] = []

        def record_auth(node: MockNode, args: list[str]) -> Status:
            passwords.append(args[0])
            return Status("OK")

        node = await MockNode(
            handlers={
                "AUTH": record_auth,
                "HELLO": lambda n, args: Status("OK"),
            }
        ).start()

        try:
            async with Client(node.address, auth="foobar") as client:
                assert await client.ping() == "PONG"

            assert passwords == ["foobar"]
        finally:
            await node.stop()

    async def test_auth_rejected(self):
        """Test a wrong secret surfaces as an authentication error."""
        node = await MockNode(password="foobar").start()
        client = Client(node.address, auth="wrong", connect_timeout=1.0)

        try:
            with pytest.raises(AuthenticationError):
                await client.ping()
        finally:
            await client.quit()
            await node.stop()

    async def test_quit_is_idempotent(self, mock_cluster: MockCluster):
        """Test commands after quit raise ClientClosedError."""
        client = await Client(mock_cluster.addresses).connect()

        await client.quit()
        await client.quit()

        assert client.is_closed
        with pytest.raises(ClientClosedError):
            await client.ping()
        with pytest.raises(ClientClosedError):
            await client.addjob("q", "j")
        with pytest.raises(ClientClosedError):
            await client.connect()

    async def test_quit_cancels_blocked_getjob(self, mock_cluster: MockCluster):
        """Test a command still waiting at quit fails instead of hanging."""
        client = await Client(mock_cluster.addresses, connect_timeout=0.2).connect()
        blocked = asyncio.create_task(client.getjob("never"))
        await asyncio.sleep(0.05)

        await client.quit()

        with pytest.raises(CommandCancelledError):
            await blocked

    async def test_settings_fallback(self, mock_cluster: MockCluster, monkeypatch):
        """Test unset arguments are read from the environment."""
        monkeypatch.setenv("DISQUE_NODES", ",".join(mock_cluster.addresses))
        monkeypatch.setenv("DISQUE_CYCLE", "7")

        async with Client() as client:
            assert client.nodes == mock_cluster.addresses
            assert client.router.cycle == 7
            assert await client.ping() == "PONG"

    async def test_quit_during_connect(self, mock_cluster: MockCluster):
        """Test a command waiting for the first connection fails and nothing reconnects."""
        client = Client(mock_cluster.addresses, connect_timeout=1.0)
        pending = asyncio.create_task(client.ping())
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        await client.quit()

        with pytest.raises(CommandCancelledError):
            await pending
        assert client.router.connections == {}
        assert [node.accepted for node in mock_cluster.nodes[1:]] == [0, 0]

    async def test_quit_during_getjob_at_cycle_end(self, mock_cluster: MockCluster):
        """Test a fetch finishing during quit does not open a new primary."""
        client = await Client(mock_cluster.addresses, cycle=1, connect_timeout=1.0).connect()
        accepted = [node.accepted for node in mock_cluster.nodes]
        blocked = asyncio.create_task(client.getjob("q", timeout=200))
        await asyncio.sleep(0.05)

        await client.quit()

        assert await blocked == []
        assert client.router.connections == {}
        assert [node.accepted for node in mock_cluster.nodes] == accepted

    async def test_unresponsive_node(self):
        """Test connect fails in time when a node never answers AUTH."""

        async def never_answer(node: MockNode, args: list[str]) -> None:
            await asyncio.sleep(3600)

        node = await MockNode(handlers={"AUTH": never_answer}).start()
        client = Client(node.address, auth="foobar", connect_timeout=0.2)

        try:
            with pytest.raises(NodeConnectionError, match="No reachable node"):
                await asyncio.wait_for(client.connect(), 2.0)
        finally:
            await client.quit()
            await node.stop()

    async def test_explicit_values_override_settings(self, monkeypatch):
        """Test zero is passed through instead of falling back to settings."""
        monkeypatch.setenv("DISQUE_CYCLE", "7")
        monkeypatch.setenv("DISQUE_REQUEST_TIMEOUT_SECONDS", "3")

        with pytest.raises(ValueError, match="cycle"):
            Client("127.0.0.1:7711", cycle=0)

        client = Client("127.0.0.1:7711", connect_timeout=0, request_timeout=0)
        assert client.router.connect_timeout == 0
        assert client.router.request_timeout == 0
