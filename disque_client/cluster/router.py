"""
Routing core.

Decides which node connection serves each command. Commands without a
locality concern go to the primary connection. Consumption is tried first on
the node believed to hold the queue's jobs, and every ``cycle`` consumption
round-trips the primary moves to the node that produced most of the jobs
seen since the last evaluation.
"""

import asyncio
import logging
from collections import Counter
from typing import Sequence

from disque_client.cluster.connection import NodeConnection
from disque_client.cluster.topology import TopologyTable
from disque_client.constants import DEFAULT_CYCLE, Command
from disque_client.errors import (
    AuthenticationError,
    CommandCancelledError,
    DisqueError,
    NodeConnectionError,
)
from disque_client.observability.metrics import get_metrics
from disque_client.protocol.codec import Argument, Reply
from disque_client.types.job import Job, job_node_prefix
from disque_client.types.node import split_nodes
from disque_client.types.options import GetJobOptions

logger = logging.getLogger(__name__)


class Router:
    """
    Owns every node connection of a client plus the routing state.

    Routing state (queue hints, per-node job counts, the preferred prefix and
    the topology table) is only mutated from the event loop that drives the
    client, through ``observe_jobs``/``record_hint`` and ``rebalance``.
    """

    def __init__(
        self,
        seeds: Sequence[str],
        auth: str | None = None,
        cycle: int = DEFAULT_CYCLE,
        restrict_to_seeds: bool = True,
        connect_timeout: float = 5.0,
        request_timeout: float | None = None,
        encoding: str | None = "utf-8",
    ):
        """
        Initialize the router. No connection is opened until ``start()``.

        Args:
            seeds: Configured node addresses, in order of preference.
            auth: Optional secret sent on every connection.
            cycle: Consumption round-trips between routing evaluations.
            restrict_to_seeds: Never connect to nodes outside ``seeds``.
            connect_timeout: Seconds allowed for connecting, AUTH and the first
                HELLO of each node.
            request_timeout: Optional seconds to wait for each reply.
            encoding: Encoding for bulk replies, or None to keep bytes.
        """
        self.seeds = split_nodes(list(seeds))
        if not self.seeds:
            raise ValueError("At least one node address is required")
        if cycle < 1:
            raise ValueError("cycle must be a positive number of round-trips")

        self.auth = auth
        self.cycle = cycle
        self.restrict_to_seeds = restrict_to_seeds
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout
        self.encoding = encoding

        self.topology = TopologyTable()
        self.preferred_prefix: str | None = None

        self._connections: dict[str, NodeConnection] = {}
        self._primary: NodeConnection | None = None
        self._hints: dict[str, str] = {}
        self._job_counts: Counter[str] = Counter()
        self._fetches = 0
        self._primary_lock = asyncio.Lock()
        self._closed = False
        self._metrics = get_metrics()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def primary(self) -> NodeConnection | None:
        return self._primary

    @property
    def prefix(self) -> str | None:
        """Prefix of the node currently serving as primary."""
        if self._primary is None:
            return None
        return self._primary.prefix

    @property
    def connections(self) -> dict[str, NodeConnection]:
        """Open connections keyed by address."""
        return {
            address: conn
            for address, conn in self._connections.items()
            if not conn.is_closed
        }

    def hint_for(self, queue: str) -> str | None:
        return self._hints.get(queue)

    def is_allowed(self, address: str) -> bool:
        """Whether the client may open a connection to ``address``."""
        return not self.restrict_to_seeds or address in self.seeds

    async def start(self) -> NodeConnection:
        """
        Connect to the first reachable seed and load the topology.

        Returns:
            The primary connection.

        Raises:
            NodeConnectionError: If no seed could be reached.
        """
        return await self._ensure_primary()

    async def execute(self, command: str, *args: Argument) -> Reply:
        """Send a command without locality concerns to the primary node."""
        conn = await self._ensure_primary()
        return await conn.send(command, *args)

    async def add_job(
        self,
        queue: str,
        job: Argument,
        timeout: int,
        args: Sequence[Argument] = (),
    ) -> str:
        """
        Submit a job through the primary and remember its producer as the
        queue's hint.

        Returns:
            The job identifier.
        """
        reply = await self.execute(Command.ADDJOB, queue, job, timeout, *args)
        job_id = reply.to_python("utf-8")
        self.record_hint(queue, job_node_prefix(job_id))
        return job_id

    async def get_job(self, queues: Sequence[str], options: GetJobOptions) -> list[Job]:
        """
        Fetch jobs, preferring the node hinted for the queues.

        The hinted node is asked with NOHANG; when it has nothing, is not
        allowed, or fails, the request goes to the primary with the caller's
        options unchanged.

        Args:
            queues: Queue names to consume from.
            options: GETJOB options.

        Returns:
            The delivered jobs, possibly empty.
        """
        jobs = await self._get_job_hinted(queues, options)
        if not jobs:
            conn = await self._ensure_primary()
            reply = await conn.send(Command.GETJOB, *options.to_args(), "FROM", *queues)
            jobs = self._parse_jobs(reply)

        self.observe_jobs(jobs)

        self._fetches += 1
        # An evaluation after close() would reconnect
        if self._fetches >= self.cycle and not self._closed:
            self._fetches = 0
            try:
                await self.rebalance()
            except DisqueError as e:
                logger.warning("Routing evaluation failed", extra={"error": str(e)})

        return jobs

    def record_hint(self, queue: str, prefix: str) -> None:
        """Remember ``prefix`` as the node that holds work for ``queue``."""
        if prefix:
            self._hints[queue] = prefix

    def observe_jobs(self, jobs: Sequence[Job]) -> None:
        """Count delivered jobs per producing node and update queue hints."""
        for job in jobs:
            prefix = job.node_prefix
            self._job_counts[prefix] += 1
            self.record_hint(job.queue, prefix)

    async def rebalance(self) -> bool:
        """
        Refresh the topology and move the primary to the node that produced
        most of the jobs consumed since the last evaluation.

        Equal counts go to the node observed first. Nodes outside the seed
        list are never connected to while discovery is restricted.

        Returns:
            True if the primary changed.

        Raises:
            CommandCancelledError: If the router has been closed.
        """
        self._check_open()
        counts, self._job_counts = self._job_counts, Counter()

        primary = await self._ensure_primary()
        try:
            await self.topology.refresh(primary)
        except DisqueError as e:
            logger.warning(
                "Topology refresh failed",
                extra={"address": primary.address, "error": str(e)},
            )

        if not counts:
            return False

        best_prefix, jobs_seen = counts.most_common(1)[0]
        if best_prefix == primary.prefix:
            return False

        node = self.topology.lookup(best_prefix)
        if node is None:
            logger.debug("Busiest node is not in the topology", extra={"prefix": best_prefix})
            return False
        if not self.is_allowed(node.address):
            logger.debug(
                "Busiest node is outside the configured nodes",
                extra={"prefix": best_prefix, "address": node.address},
            )
            return False

        conn = self._connection(node.address, node_id=node.id)
        try:
            await self.topology.refresh(conn)
        except DisqueError as e:
            if conn.is_closed:
                logger.warning(
                    "Busiest node is unreachable, keeping primary",
                    extra={"address": node.address, "error": str(e)},
                )
                return False

        previous = primary.address
        self._primary = conn
        self.preferred_prefix = best_prefix
        self._metrics.record_routing_switch()
        logger.info(
            "Switched primary node",
            extra={
                "from": previous,
                "to": conn.address,
                "prefix": best_prefix,
                "jobs_seen": jobs_seen,
            },
        )
        return True

    def reset(self) -> None:
        """Forget hints, job counts and the preferred node."""
        self._hints.clear()
        self._job_counts.clear()
        self._fetches = 0
        self.preferred_prefix = None

    async def close(self) -> None:
        """
        Close every connection owned by the router. Idempotent.

        Commands still waiting for a connection fail with
        CommandCancelledError, and no connection is opened afterwards.
        """
        self._closed = True
        connections = list(self._connections.values())
        self._connections.clear()
        self._primary = None
        await asyncio.gather(*(conn.close() for conn in connections))

    def _check_open(self) -> None:
        if self._closed:
            raise CommandCancelledError("Router is closed")

    def _connection(self, address: str, node_id: str | None = None) -> NodeConnection:
        self._check_open()
        conn = self._connections.get(address)
        if conn is None or conn.is_closed:
            conn = NodeConnection(
                address,
                auth=self.auth,
                connect_timeout=self.connect_timeout,
                request_timeout=self.request_timeout,
            )
            conn.node_id = node_id
            conn.open()
            self._connections[address] = conn
        return conn

    async def _ensure_primary(self) -> NodeConnection:
        self._check_open()
        if self._primary is not None and not self._primary.is_closed:
            return self._primary

        async with self._primary_lock:
            self._check_open()
            if self._primary is not None and not self._primary.is_closed:
                return self._primary

            # A lost primary is retried first, then the seeds in order
            candidates = list(self.seeds)
            if self._primary is not None:
                if self._primary.address in candidates:
                    candidates.remove(self._primary.address)
                candidates.insert(0, self._primary.address)

            last_error: DisqueError | None = None
            for address in candidates:
                conn = self._connection(address)
                try:
                    await asyncio.wait_for(self.topology.refresh(conn), self.connect_timeout)
                except TimeoutError:
                    last_error = NodeConnectionError(
                        f"No HELLO reply from {address} within {self.connect_timeout}s",
                        address,
                    )
                    logger.warning("Node unresponsive", extra={"address": address})
                    await conn.close()
                    continue
                except AuthenticationError:
                    # Every node shares the secret
                    raise
                except DisqueError as e:
                    if self._closed:
                        raise
                    if conn.is_closed:
                        last_error = e
                        logger.warning(
                            "Node unreachable",
                            extra={"address": address, "error": str(e)},
                        )
                        continue
                    # Reachable but discovery is unsupported; still usable
                    logger.warning(
                        "Topology discovery failed",
                        extra={"address": address, "error": str(e)},
                    )

                self._check_open()
                self._primary = conn
                logger.info(
                    "Primary node selected",
                    extra={"address": address, "prefix": conn.prefix},
                )
                return conn

            raise NodeConnectionError(
                f"No reachable node among {', '.join(candidates)}"
            ) from last_error

    async def _get_job_hinted(self, queues: Sequence[str], options: GetJobOptions) -> list[Job]:
        hint = self._hinted_connection(queues)
        if hint is None:
            return []
        prefix, conn = hint

        hinted = options.model_copy(update={"nohang": True, "timeout": None})
        try:
            reply = await conn.send(Command.GETJOB, *hinted.to_args(), "FROM", *queues)
        except DisqueError as e:
            self._metrics.record_hinted_fetch("failed")
            logger.debug(
                "Hinted node failed, falling back to primary",
                extra={"address": conn.address, "error": str(e)},
            )
            if isinstance(e, NodeConnectionError):
                self._forget_hints(prefix)
            return []

        jobs = self._parse_jobs(reply)
        self._metrics.record_hinted_fetch("hit" if jobs else "miss")
        return jobs

    def _hinted_connection(self, queues: Sequence[str]) -> tuple[str, NodeConnection] | None:
        primary_prefix = self.prefix
        for queue in queues:
            prefix = self._hints.get(queue)
            if prefix is None or prefix == primary_prefix:
                continue
            node = self.topology.lookup(prefix)
            if node is None or not self.is_allowed(node.address):
                continue
            return prefix, self._connection(node.address, node_id=node.id)
        return None

    def _forget_hints(self, prefix: str) -> None:
        # Unreachable nodes are not retried until one of their jobs shows up again
        for queue in [queue for queue, hint in self._hints.items() if hint == prefix]:
            del self._hints[queue]

    def _parse_jobs(self, reply: Reply) -> list[Job]:
        items = reply.to_python(self.encoding)
        if items is None:
            return []
        return [Job.from_reply(item) for item in items]
