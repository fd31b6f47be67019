"""
Node-related type definitions.
"""

from dataclasses import dataclass

from disque_client.constants import DEFAULT_PORT, LOOPBACK_ALIASES, NODE_PREFIX_LENGTH


@dataclass(frozen=True)
class NodeDescriptor:
    """
    One cluster node as advertised by discovery.

    Instances are immutable; a topology refresh replaces them wholesale.
    """

    id: str
    host: str
    port: int
    priority: int

    @property
    def address(self) -> str:
        """Normalized ``host:port`` address."""
        return format_address(self.host, self.port)

    @property
    def prefix(self) -> str:
        """Short identifier used to match nodes against job ids."""
        return self.id[:NODE_PREFIX_LENGTH]


def parse_address(address: str) -> tuple[str, int]:
    """
    Split a ``host:port`` string.

    Args:
        address: The address, optionally with ``[...]`` around IPv6 hosts.
            A missing port defaults to 7711.

    Returns:
        Tuple of (host, port).

    Raises:
        ValueError: If the address is empty or the port is not a number.
    """
    address = address.strip()
    if not address:
        raise ValueError("Empty node address")

    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        port = rest.lstrip(":") or str(DEFAULT_PORT)
    elif address.count(":") == 1:
        host, port = address.split(":")
    else:
        host, port = address, str(DEFAULT_PORT)

    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"Invalid port in node address: {address!r}") from None


def format_address(host: str, port: int) -> str:
    """Build the normalized ``host:port`` key used to compare addresses."""
    host = LOOPBACK_ALIASES.get(host.lower(), host)
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def normalize_address(address: str) -> str:
    return format_address(*parse_address(address))


def split_nodes(nodes: str | list[str] | tuple[str, ...]) -> list[str]:
    """
    Turn a comma-separated string or a list of addresses into normalized
    addresses, keeping order and dropping duplicates.
    """
    if isinstance(nodes, str):
        nodes = nodes.split(",")

    result: list[str] = []
    for entry in nodes:
        if not entry.strip():
            continue
        address = normalize_address(entry)
        if address not in result:
            result.append(address)
    return result
