"""
Cluster module.
Contains node connections, the topology table, and the routing core.
"""

from disque_client.cluster.connection import NodeConnection
from disque_client.cluster.router import Router
from disque_client.cluster.topology import TopologyTable, parse_hello

__all__ = [
    "NodeConnection",
    "TopologyTable",
    "parse_hello",
    "Router",
]
