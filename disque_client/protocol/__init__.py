"""
Wire protocol module.
Contains the RESP command encoder and incremental reply decoder.
"""

from disque_client.protocol.codec import (
    Reply,
    ReplyKind,
    ReplyParser,
    encode_command,
)

__all__ = [
    "Reply",
    "ReplyKind",
    "ReplyParser",
    "encode_command",
]
