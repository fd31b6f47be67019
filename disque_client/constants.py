"""
Client constants.
Centralized location for all constant values used across the client.
"""

from enum import StrEnum


class ConnectionState(StrEnum):
    """
    Node connection lifecycle states.

    State transitions:
    - CONNECTING -> READY (socket open, handshake done)
    - CONNECTING -> CLOSED (connect failed, timed out, or auth rejected)
    - READY -> CLOSED (close(), EOF, reset, or protocol violation)
    """

    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


class Command(StrEnum):
    """Commands the client issues on its own behalf."""

    AUTH = "AUTH"
    HELLO = "HELLO"
    PING = "PING"
    INFO = "INFO"
    QUIT = "QUIT"
    ADDJOB = "ADDJOB"
    GETJOB = "GETJOB"
    ACKJOB = "ACKJOB"
    FASTACK = "FASTACK"
    NACK = "NACK"
    WORKING = "WORKING"
    SHOW = "SHOW"
    QLEN = "QLEN"
    QPEEK = "QPEEK"
    DELJOB = "DELJOB"


# Identity and routing
NODE_PREFIX_LENGTH = 8
JOB_ID_MARKERS = ("D-", "DI")
DEFAULT_CYCLE = 1000
DEFAULT_PORT = 7711
DEFAULT_NODE = f"127.0.0.1:{DEFAULT_PORT}"
LOOPBACK_ALIASES = {"localhost": "127.0.0.1"}

# Metrics names
METRIC_COMMANDS = "disque_commands_total"
METRIC_COMMAND_LATENCY = "disque_command_latency_seconds"
METRIC_CONNECTIONS_OPENED = "disque_connections_opened_total"
METRIC_CONNECTIONS_CLOSED = "disque_connections_closed_total"
METRIC_ROUTING_SWITCHES = "disque_routing_switches_total"
METRIC_HINTED_FETCHES = "disque_hinted_fetches_total"

# Trace span names
SPAN_ADD_JOB = "disque.addjob"
SPAN_GET_JOB = "disque.getjob"
SPAN_ACK_JOB = "disque.ackjob"
