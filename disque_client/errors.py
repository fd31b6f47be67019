"""
Client error taxonomy.

Every failure is delivered to the caller that issued the command; only
misuse of a closed client is raised synchronously.
"""


class DisqueError(Exception):
    """Base class for all client errors."""


class ReplyError(DisqueError):
    """
    Error reply sent by a server for a single command.

    Does not affect the health of the connection it arrived on.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def code(self) -> str:
        """Leading error class word, e.g. ``ERR`` or ``NOAUTH``."""
        return self.message.split(" ", 1)[0] if self.message else ""


class AuthenticationError(ReplyError):
    """The server rejected the configured secret."""


class ProtocolError(DisqueError):
    """Malformed or unexpected bytes on a connection."""


class NodeConnectionError(DisqueError, ConnectionError):
    """Socket refused, reset, timed out, or otherwise unusable."""

    def __init__(self, message: str, address: str | None = None):
        super().__init__(message)
        self.address = address


class CommandCancelledError(NodeConnectionError):
    """A command was still pending when its connection was closed."""


class ClientClosedError(DisqueError):
    """An operation was attempted on a client that has already quit."""
