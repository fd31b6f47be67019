"""
Cluster-aware Disque client

An asyncio client for the Disque job queue that keeps pipelined connections
to a configurable set of nodes, discovers the cluster topology, and moves
consumption to the node that holds the work.
"""

__version__ = "1.0.0"

from disque_client.client import Client, connect, parse_info
from disque_client.errors import (
    AuthenticationError,
    ClientClosedError,
    CommandCancelledError,
    DisqueError,
    NodeConnectionError,
    ProtocolError,
    ReplyError,
)
from disque_client.types import (
    AddJobOptions,
    GetJobOptions,
    Job,
    NodeDescriptor,
)

__all__ = [
    "__version__",
    "Client",
    "connect",
    "parse_info",
    # Errors
    "DisqueError",
    "ReplyError",
    "AuthenticationError",
    "ProtocolError",
    "NodeConnectionError",
    "CommandCancelledError",
    "ClientClosedError",
    # Types
    "Job",
    "NodeDescriptor",
    "AddJobOptions",
    "GetJobOptions",
]
