"""
Cluster topology table.

Maps node prefixes to addresses, as reported by HELLO. The table is only an
aid to locality; nothing fails when it is empty or stale.
"""

import logging

from disque_client.cluster.connection import NodeConnection
from disque_client.constants import Command
from disque_client.errors import ProtocolError
from disque_client.protocol.codec import Reply, ReplyKind
from disque_client.types.node import NodeDescriptor

logger = logging.getLogger(__name__)


def parse_hello(reply: Reply, default_host: str) -> tuple[str, list[NodeDescriptor]]:
    """
    Parse a HELLO reply.

    The reply is ``[version, my_id, [id, host, port, priority, ...], ...]``.
    Extra trailing fields are ignored and malformed node entries skipped. A
    node that does not know its own address yet advertises an empty host;
    ``default_host`` fills it in.

    Args:
        reply: The HELLO reply.
        default_host: Host used for entries with an empty host.

    Returns:
        Tuple of (id of the answering node, advertised nodes in reply order).

    Raises:
        ProtocolError: If the reply is not a HELLO-shaped array.
    """
    if reply.kind is not ReplyKind.ARRAY or reply.value is None or len(reply.value) < 2:
        raise ProtocolError(f"Unexpected HELLO reply: {reply!r}")

    items = reply.to_python("utf-8")
    my_id = items[1]
    if not isinstance(my_id, str) or not my_id:
        raise ProtocolError(f"HELLO reply carries no node id: {my_id!r}")

    nodes: list[NodeDescriptor] = []
    for entry in items[2:]:
        if not isinstance(entry, list) or len(entry) < 4:
            logger.debug("Skipping malformed HELLO entry", extra={"entry": repr(entry)})
            continue
        try:
            node = NodeDescriptor(
                id=str(entry[0]),
                host=str(entry[1]) or default_host,
                port=int(entry[2]),
                priority=int(entry[3]),
            )
        except (TypeError, ValueError):
            logger.debug("Skipping malformed HELLO entry", extra={"entry": repr(entry)})
            continue
        nodes.append(node)

    return my_id, nodes


class TopologyTable:
    """
    Known cluster nodes, ordered by priority.

    Refreshes replace the whole table with a single assignment, so readers
    never see a half-updated topology. Nodes with equal priority keep the
    order in which HELLO listed them: first discovered wins.
    """

    def __init__(self) -> None:
        self._nodes: tuple[NodeDescriptor, ...] = ()

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self):
        return iter(self._nodes)

    @property
    def nodes(self) -> tuple[NodeDescriptor, ...]:
        return self._nodes

    async def refresh(self, via: NodeConnection) -> list[NodeDescriptor]:
        """
        Query a node for the cluster topology and replace the table.

        Also records the answering node's id on the connection.

        Args:
            via: Connection to ask.

        Returns:
            The new table contents.
        """
        reply = await via.send(Command.HELLO)
        my_id, nodes = parse_hello(reply, default_host=via.host)

        via.node_id = my_id
        # sorted() is stable, so equal priorities keep discovery order
        self._nodes = tuple(sorted(nodes, key=lambda node: node.priority))

        logger.debug(
            "Topology refreshed",
            extra={"via": via.address, "node_id": my_id, "nodes": len(self._nodes)},
        )
        return list(self._nodes)

    def lookup(self, prefix: str) -> NodeDescriptor | None:
        """
        Find the node whose id starts with ``prefix``.

        Args:
            prefix: Node prefix, usually taken from a job id.

        Returns:
            The first matching node, or None.
        """
        if not prefix:
            return None
        for node in self._nodes:
            if node.id.startswith(prefix):
                return node
        return None

    def find_by_address(self, address: str) -> NodeDescriptor | None:
        """Find the node advertised at a normalized ``host:port`` address."""
        for node in self._nodes:
            if node.address == address:
                return node
        return None
