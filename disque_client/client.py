"""
Client facade.

Composes the routing core and node connections into the public job-queue
operations.
"""

import logging
from collections.abc import Iterable
from typing import Any

from disque_client.cluster.router import Router
from disque_client.config import get_settings
from disque_client.constants import SPAN_ACK_JOB, SPAN_ADD_JOB, SPAN_GET_JOB, Command
from disque_client.errors import ClientClosedError
from disque_client.observability.tracing import command_span
from disque_client.protocol.codec import Argument
from disque_client.types.job import Job
from disque_client.types.node import split_nodes
from disque_client.types.options import AddJobOptions, GetJobOptions

logger = logging.getLogger(__name__)


def parse_info(text: str | bytes) -> dict[str, str]:
    """
    Parse an INFO reply into a field -> value mapping.

    Blank lines, ``# Section`` headers and lines without a ``field:value``
    shape are skipped.

    Args:
        text: The INFO bulk string.

    Returns:
        Mapping of field names to string values.
    """
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")

    info: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        field, sep, value = line.partition(":")
        if not sep or not field:
            continue
        info[field] = value
    return info


def _id_list(ids: str | Iterable[str]) -> list[str]:
    if isinstance(ids, str):
        return [ids]
    return list(ids)


def _pairs_to_dict(items: list[Any]) -> dict[str, Any]:
    return {items[i]: items[i + 1] for i in range(0, len(items) - 1, 2)}


class Client:
    """
    Cluster-aware Disque client.

    Usage:
        async with Client("127.0.0.1:7711,127.0.0.1:7712") as client:
            job_id = await client.addjob("emails", "payload")
            jobs = await client.getjob(["emails"], count=1)
            await client.ackjob([job.id for job in jobs])
    """

    def __init__(
        self,
        nodes: str | list[str] | None = None,
        auth: str | None = None,
        cycle: int | None = None,
        restrict_to_seeds: bool | None = None,
        connect_timeout: float | None = None,
        request_timeout: float | None = None,
        raw: bool = False,
    ):
        """
        Initialize the client. Unset arguments fall back to settings.

        Args:
            nodes: Seed addresses, as a list or a comma-separated string.
            auth: Secret sent with AUTH on every connection.
            cycle: Consumption round-trips between routing evaluations.
            restrict_to_seeds: Never connect to nodes outside ``nodes``.
            connect_timeout: Seconds allowed for connecting, AUTH and the first
                HELLO of each node.
            request_timeout: Optional seconds to wait for each reply.
            raw: Return bulk replies as bytes instead of decoded text.

        Raises:
            ValueError: If a node address is malformed or ``cycle`` is not
                positive.
        """
        settings = get_settings()

        self.nodes = split_nodes(nodes if nodes is not None else settings.nodes)
        self.encoding = None if raw else settings.encoding

        self._router = Router(
            self.nodes,
            auth=auth if auth is not None else settings.auth,
            cycle=settings.cycle if cycle is None else cycle,
            restrict_to_seeds=(
                settings.restrict_to_seeds if restrict_to_seeds is None else restrict_to_seeds
            ),
            connect_timeout=(
                settings.connect_timeout_seconds if connect_timeout is None else connect_timeout
            ),
            request_timeout=(
                settings.request_timeout_seconds if request_timeout is None else request_timeout
            ),
            encoding=self.encoding,
        )
        self._connected = False
        self._closed = False

    async def __aenter__(self) -> "Client":
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.quit()

    @property
    def router(self) -> Router:
        return self._router

    @property
    def prefix(self) -> str | None:
        """Prefix of the node currently serving most commands."""
        return self._router.prefix

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise ClientClosedError("Client has already quit")

    async def connect(self) -> "Client":
        """
        Connect to the first reachable node and discover the cluster.

        Returns:
            The client itself.

        Raises:
            NodeConnectionError: If none of the nodes can be reached.
        """
        self._check_open()
        if not self._connected:
            primary = await self._router.start()
            self._connected = True
            logger.info(
                "Connected to cluster",
                extra={
                    "nodes": ",".join(self.nodes),
                    "address": primary.address,
                    "prefix": primary.prefix,
                    "known_nodes": len(self._router.topology),
                },
            )
        return self

    async def quit(self) -> None:
        """
        Close every connection. Idempotent.

        Commands still waiting for a reply fail with CommandCancelledError.
        """
        if self._closed:
            return
        self._closed = True
        await self._router.close()
        logger.info("Client closed", extra={"nodes": ",".join(self.nodes)})

    async def call(self, command: str, *args: Argument) -> Any:
        """
        Send an arbitrary command to the primary node.

        Returns:
            The reply as plain Python values.

        Raises:
            ReplyError: If the server answered with an error.
        """
        self._check_open()
        reply = await self._router.execute(command, *args)
        return reply.to_python(self.encoding)

    async def ping(self) -> str:
        return await self.call(Command.PING)

    async def hello(self) -> list[Any]:
        """Raw HELLO reply: version, node id, then one entry per node."""
        return await self.call(Command.HELLO)

    async def info(self, section: str | None = None) -> dict[str, str]:
        """
        Get server status fields.

        Args:
            section: Optional INFO section name.

        Returns:
            Mapping of field names to values, e.g. ``{"loading": "0"}``.
        """
        args = [section] if section else []
        return parse_info(await self.call(Command.INFO, *args))

    async def addjob(
        self,
        queue: str,
        job: Argument,
        timeout: int = 0,
        options: AddJobOptions | dict[str, Any] | None = None,
        **opts: Any,
    ) -> str:
        """
        Submit a job.

        Args:
            queue: Queue name.
            job: Job payload.
            timeout: Milliseconds the server may take to replicate the job
                before replying; 0 uses the server default.
            options: ADDJOB options, e.g. ``{"maxlen": 10}``.
            **opts: Individual options, merged over ``options``.

        Returns:
            The job identifier.

        Raises:
            ReplyError: If the server rejected the job, e.g. the queue is
                already at MAXLEN.
        """
        self._check_open()
        args = AddJobOptions.build(options, **opts).to_args()

        with command_span(SPAN_ADD_JOB, queue=queue) as span:
            job_id = await self._router.add_job(queue, job, timeout, args)
            span.set_attribute("disque.job_id", job_id)

        return job_id

    async def getjob(
        self,
        queues: str | Iterable[str],
        options: GetJobOptions | dict[str, Any] | None = None,
        **opts: Any,
    ) -> list[Job]:
        """
        Fetch jobs from one or more queues.

        Without ``nohang`` or ``timeout`` the server blocks until a job is
        available.

        Args:
            queues: Queue name or names.
            options: GETJOB options, e.g. ``{"count": 1}``.
            **opts: Individual options, merged over ``options``.

        Returns:
            The delivered jobs.
        """
        self._check_open()
        queue_list = [queues] if isinstance(queues, str) else list(queues)
        if not queue_list:
            raise ValueError("At least one queue is required")
        get_options = GetJobOptions.build(options, **opts)

        with command_span(SPAN_GET_JOB, queues=queue_list, count=get_options.count) as span:
            jobs = await self._router.get_job(queue_list, get_options)
            span.set_attribute("disque.jobs", len(jobs))

        return jobs

    async def ackjob(self, ids: str | Iterable[str]) -> int:
        """
        Acknowledge processed jobs.

        Args:
            ids: A job id or an iterable of job ids.

        Returns:
            Number of jobs acknowledged.
        """
        self._check_open()
        id_list = _id_list(ids)

        with command_span(SPAN_ACK_JOB, jobs=len(id_list)):
            return await self.call(Command.ACKJOB, *id_list)

    async def fastack(self, ids: str | Iterable[str]) -> int:
        """Acknowledge jobs without waiting for the cluster to agree."""
        return await self.call(Command.FASTACK, *_id_list(ids))

    async def nack(self, ids: str | Iterable[str]) -> int:
        """Put jobs back in their queue for immediate redelivery."""
        return await self.call(Command.NACK, *_id_list(ids))

    async def working(self, job_id: str) -> int:
        """Postpone redelivery of a job; returns seconds until the next retry."""
        return await self.call(Command.WORKING, job_id)

    async def deljob(self, ids: str | Iterable[str]) -> int:
        return await self.call(Command.DELJOB, *_id_list(ids))

    async def show(self, job_id: str) -> dict[str, Any] | None:
        """
        Get the state of a job.

        Returns:
            Mapping of job fields, or None if the node does not know the job.
        """
        items = await self.call(Command.SHOW, job_id)
        if items is None:
            return None
        return _pairs_to_dict(items)

    async def qlen(self, queue: str) -> int:
        return await self.call(Command.QLEN, queue)

    async def qpeek(self, queue: str, count: int = 1) -> list[Job]:
        """Look at jobs in a queue without consuming them."""
        items = await self.call(Command.QPEEK, queue, count)
        return [Job.from_reply(item) for item in items or []]

    def reset_routing(self) -> None:
        """Forget routing hints and the preferred node."""
        self._router.reset()


async def connect(nodes: str | list[str] | None = None, **options: Any) -> Client:
    """
    Create a client and connect it.

    Args:
        nodes: Seed addresses, as a list or a comma-separated string.
        **options: Any ``Client`` keyword argument.

    Returns:
        The connected client.
    """
    client = Client(nodes, **options)
    return await client.connect()
