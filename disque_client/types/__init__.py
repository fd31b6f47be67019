"""
Type definitions for the client.
Contains node, job and command option types.
"""

from disque_client.types.job import Job, job_node_prefix
from disque_client.types.node import (
    NodeDescriptor,
    format_address,
    normalize_address,
    parse_address,
    split_nodes,
)
from disque_client.types.options import (
    AddJobOptions,
    CommandOptions,
    GetJobOptions,
)

__all__ = [
    # Node types
    "NodeDescriptor",
    "parse_address",
    "format_address",
    "normalize_address",
    "split_nodes",
    # Job types
    "Job",
    "job_node_prefix",
    # Option types
    "CommandOptions",
    "AddJobOptions",
    "GetJobOptions",
]
