"""
A single pipelined connection to one Disque node.

Replies carry no correlation id, so they are matched to callers strictly in
the order the commands were written. Anything that breaks that ordering
(undecodable bytes, a reply nobody asked for) ends the connection.
"""

import asyncio
import logging
import time
from collections import deque

from disque_client.constants import NODE_PREFIX_LENGTH, Command, ConnectionState
from disque_client.errors import (
    AuthenticationError,
    CommandCancelledError,
    DisqueError,
    NodeConnectionError,
    ProtocolError,
    ReplyError,
)
from disque_client.observability.metrics import get_metrics
from disque_client.protocol.codec import Argument, Reply, ReplyParser, encode_command
from disque_client.types.node import normalize_address, parse_address

logger = logging.getLogger(__name__)

_READ_SIZE = 64 * 1024


def _discard_result(future: asyncio.Future) -> None:
    # Marks the exception as retrieved for futures whose caller gave up
    if not future.cancelled():
        future.exception()


class NodeConnection:
    """
    One TCP session to one node.

    Features:
    - Commands issued while connecting are buffered and flushed in order
    - Optional AUTH handshake before any buffered command is written
    - Pipelining with strict FIFO reply matching
    - Every caller is resolved: with a reply, a ReplyError, or a
      connection-level error
    """

    def __init__(
        self,
        address: str,
        auth: str | None = None,
        connect_timeout: float = 5.0,
        request_timeout: float | None = None,
    ):
        """
        Initialize the connection. No socket is opened until ``open()``
        or the first command.

        Args:
            address: Node address as ``host:port``.
            auth: Optional shared secret sent with AUTH after connecting.
            connect_timeout: Seconds to wait for the TCP connection.
            request_timeout: Optional seconds to wait for each reply.
        """
        self.address = normalize_address(address)
        self.host, self.port = parse_address(self.address)
        self.auth = auth
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout

        # Filled in by topology discovery (HELLO)
        self.node_id: str | None = None

        self.state = ConnectionState.CONNECTING
        self._closing = False
        self._parser = ReplyParser()
        self._buffered: deque[tuple[bytes, asyncio.Future[Reply]]] = deque()
        self._pending: deque[asyncio.Future[Reply]] = deque()
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._connect_task: asyncio.Task | None = None
        self._read_task: asyncio.Task | None = None
        self._metrics = get_metrics()

    def __repr__(self) -> str:
        return f"<NodeConnection {self.address} {self.state} id={self.prefix}>"

    @property
    def prefix(self) -> str | None:
        """Short node identifier, once discovery has run on this connection."""
        if self.node_id is None:
            return None
        return self.node_id[:NODE_PREFIX_LENGTH]

    @property
    def is_closed(self) -> bool:
        return self.state is ConnectionState.CLOSED or self._closing

    @property
    def pending_count(self) -> int:
        """Commands written or buffered that still await a reply."""
        return len(self._pending) + len(self._buffered)

    def open(self) -> None:
        """Start connecting in the background. Safe to call repeatedly."""
        if self._connect_task is None and self.state is ConnectionState.CONNECTING:
            self._connect_task = asyncio.create_task(self._connect())

    async def send(self, command: str, *args: Argument) -> Reply:
        """
        Send a command and wait for its reply.

        Args:
            command: Command name.
            *args: Command arguments.

        Returns:
            The non-error reply, with its kind preserved.

        Raises:
            ReplyError: If the server answered with an error reply.
            NodeConnectionError: If the connection failed, was closed, or the
                request timed out.
            ProtocolError: If the connection saw a protocol violation.
        """
        name = command.upper()
        future = self._submit(encode_command(command, *args))
        start = time.perf_counter()

        try:
            if self.request_timeout is None:
                reply = await future
            else:
                reply = await asyncio.wait_for(asyncio.shield(future), self.request_timeout)
        except TimeoutError:
            future.add_done_callback(_discard_result)
            self._metrics.record_command(name, "timeout", time.perf_counter() - start)
            raise NodeConnectionError(
                f"{name} to {self.address} timed out after {self.request_timeout}s",
                self.address,
            ) from None
        except DisqueError:
            self._metrics.record_command(name, "failed", time.perf_counter() - start)
            raise

        duration = time.perf_counter() - start
        if reply.is_error:
            self._metrics.record_command(name, "error", duration)
            raise ReplyError(reply.value)

        self._metrics.record_command(name, "ok", duration)
        return reply

    async def close(self) -> None:
        """
        Close the connection. Idempotent.

        Commands not yet written fail with CommandCancelledError. Commands
        already written still get their replies, since QUIT is queued behind
        them; anything left after that fails with CommandCancelledError.
        """
        if self.is_closed:
            return
        self._closing = True

        self._fail_buffered(
            CommandCancelledError(
                f"Connection to {self.address} closed before the command was sent",
                self.address,
            )
        )

        if self.state is ConnectionState.READY:
            quit_future = asyncio.get_running_loop().create_future()
            self._write(encode_command(Command.QUIT), quit_future)
            try:
                await asyncio.wait_for(asyncio.shield(quit_future), self.connect_timeout)
            except (DisqueError, TimeoutError) as e:
                quit_future.add_done_callback(_discard_result)
                logger.debug(
                    "QUIT did not complete cleanly",
                    extra={"address": self.address, "error": str(e)},
                )

        writer = self._writer
        self._teardown(
            CommandCancelledError(f"Connection to {self.address} was closed", self.address),
            reason="closed",
        )

        if writer is not None:
            try:
                await writer.wait_closed()
            except OSError:
                pass

    def _submit(self, payload: bytes) -> asyncio.Future[Reply]:
        if self.is_closed:
            raise NodeConnectionError(f"Connection to {self.address} is closed", self.address)

        future: asyncio.Future[Reply] = asyncio.get_running_loop().create_future()
        if self.state is ConnectionState.READY:
            self._write(payload, future)
        else:
            self._buffered.append((payload, future))
            self.open()
        return future

    def _write(self, payload: bytes, future: asyncio.Future[Reply]) -> None:
        self._pending.append(future)
        self._writer.write(payload)

    async def _connect(self) -> None:
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                self.connect_timeout,
            )
        except TimeoutError:
            self._teardown(
                NodeConnectionError(
                    f"Timed out connecting to {self.address} after {self.connect_timeout}s",
                    self.address,
                ),
                reason="connect_timeout",
            )
            return
        except OSError as e:
            self._teardown(
                NodeConnectionError(f"Could not connect to {self.address}: {e}", self.address),
                reason="connect_failed",
            )
            return

        self._metrics.record_connection_opened(self.address)
        logger.debug("Connected to node", extra={"address": self.address})
        self._read_task = asyncio.create_task(self._read_loop())

        if self.auth is not None:
            auth_future = asyncio.get_running_loop().create_future()
            self._write(encode_command(Command.AUTH, self.auth), auth_future)
            try:
                reply = await asyncio.wait_for(asyncio.shield(auth_future), self.connect_timeout)
            except TimeoutError:
                auth_future.add_done_callback(_discard_result)
                self._teardown(
                    NodeConnectionError(
                        f"AUTH to {self.address} timed out after {self.connect_timeout}s",
                        self.address,
                    ),
                    reason="auth_timeout",
                )
                return
            except DisqueError:
                # The read loop already tore the connection down
                return

            if reply.is_error:
                logger.error(
                    "Authentication rejected",
                    extra={"address": self.address, "error": reply.value},
                )
                self._teardown(AuthenticationError(reply.value), reason="auth_failed")
                return

        if self.state is ConnectionState.CLOSED:
            return

        self.state = ConnectionState.READY
        while self._buffered:
            payload, future = self._buffered.popleft()
            if not future.cancelled():
                self._write(payload, future)

    async def _read_loop(self) -> None:
        try:
            while True:
                data = await self._reader.read(_READ_SIZE)
                if not data:
                    if self._closing:
                        error: DisqueError = CommandCancelledError(
                            f"Connection to {self.address} was closed", self.address
                        )
                        reason = "closed"
                    else:
                        error = NodeConnectionError(
                            f"Connection to {self.address} closed by the server", self.address
                        )
                        reason = "eof"
                    break

                self._parser.feed(data)
                for reply in self._parser:
                    if not self._pending:
                        raise ProtocolError(
                            f"Reply from {self.address} with no command pending"
                        )
                    future = self._pending.popleft()
                    if not future.done():
                        future.set_result(reply)
        except ProtocolError as e:
            logger.error(
                "Protocol error, dropping connection",
                extra={"address": self.address, "error": str(e)},
            )
            error, reason = e, "protocol_error"
        except OSError as e:
            error = NodeConnectionError(f"Connection to {self.address} lost: {e}", self.address)
            reason = "reset"

        self._teardown(error, reason)

    def _fail_buffered(self, error: DisqueError) -> None:
        while self._buffered:
            _, future = self._buffered.popleft()
            if not future.done():
                future.set_exception(error)

    def _fail_pending(self, error: DisqueError) -> None:
        while self._pending:
            future = self._pending.popleft()
            if not future.done():
                future.set_exception(error)

    def _teardown(self, error: DisqueError, reason: str) -> None:
        if self.state is ConnectionState.CLOSED:
            return

        was_open = self._writer is not None
        self.state = ConnectionState.CLOSED
        self._fail_buffered(error)
        self._fail_pending(error)

        if self._writer is not None:
            self._writer.close()

        current = asyncio.current_task()
        for task in (self._read_task, self._connect_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

        if was_open:
            self._metrics.record_connection_closed(self.address, reason)

        if reason == "closed":
            logger.debug("Connection closed", extra={"address": self.address})
        else:
            logger.warning(
                "Connection lost",
                extra={"address": self.address, "reason": reason, "error": str(error)},
            )
