"""
RESP wire codec.

Commands go out as an array of bulk strings. Replies come back as one of a
closed set of kinds and are decoded incrementally, so a reply split across
several socket reads is only produced once all of its bytes have arrived.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Iterator

from disque_client.errors import ProtocolError, ReplyError

CRLF = b"\r\n"

# Consumed bytes are dropped from the front of the buffer past this size
_COMPACT_THRESHOLD = 64 * 1024

Argument = str | bytes | bytearray | memoryview | int | float


class ReplyKind(StrEnum):
    """The reply variants a server can send."""

    STATUS = "status"
    INTEGER = "integer"
    BULK = "bulk"
    ERROR = "error"
    ARRAY = "array"


_TYPE_BYTES: dict[int, ReplyKind] = {
    ord("+"): ReplyKind.STATUS,
    ord("-"): ReplyKind.ERROR,
    ord(":"): ReplyKind.INTEGER,
    ord("$"): ReplyKind.BULK,
    ord("*"): ReplyKind.ARRAY,
}


@dataclass(frozen=True)
class Reply:
    """
    A single decoded reply.

    ``value`` depends on ``kind``:
    - STATUS / ERROR: ``str``
    - INTEGER: ``int``
    - BULK: ``bytes`` or ``None`` (null bulk)
    - ARRAY: ``list[Reply]`` or ``None`` (null array)
    """

    kind: ReplyKind
    value: Any

    @property
    def is_error(self) -> bool:
        return self.kind is ReplyKind.ERROR

    @property
    def is_null(self) -> bool:
        return self.value is None

    def to_python(self, encoding: str | None = "utf-8") -> Any:
        """
        Convert the reply into plain Python values, recursively.

        Args:
            encoding: Text encoding for bulk strings. ``None`` keeps bytes.

        Returns:
            ``str``/``bytes``, ``int``, ``None`` or ``list``. Error elements
            nested inside arrays become ``ReplyError`` instances.
        """
        if self.kind is ReplyKind.BULK:
            if self.value is None or encoding is None:
                return self.value
            return self.value.decode(encoding)
        if self.kind is ReplyKind.ARRAY:
            if self.value is None:
                return None
            return [item.to_python(encoding) for item in self.value]
        if self.kind is ReplyKind.ERROR:
            return ReplyError(self.value)
        return self.value


def _to_bytes(value: Argument) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, bool):
        raise TypeError("Boolean arguments are ambiguous; pass a flag name instead")
    if isinstance(value, int):
        return str(value).encode("ascii")
    if isinstance(value, float):
        return repr(value).encode("ascii")
    raise TypeError(f"Cannot encode argument of type {type(value).__name__}")


def encode_command(name: str, *args: Argument) -> bytes:
    """
    Encode a command and its arguments as a RESP array of bulk strings.

    Args:
        name: Command name, e.g. ``ADDJOB``.
        *args: Ordered command arguments.

    Returns:
        The bytes to write to the socket.
    """
    parts = [name, *args]
    out = [b"*%d\r\n" % len(parts)]
    for part in parts:
        data = _to_bytes(part)
        out.append(b"$%d\r\n" % len(data))
        out.append(data)
        out.append(CRLF)
    return b"".join(out)


def _parse_int(header: bytes) -> int:
    try:
        return int(header)
    except ValueError:
        raise ProtocolError(f"Invalid length or integer: {header!r}") from None


class ReplyParser:
    """
    Incremental reply decoder.

    Feed it raw socket bytes and pull complete replies out; a partially
    received reply stays buffered until the rest arrives.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._pos = 0

    def feed(self, data: bytes) -> None:
        """Append bytes read from the socket."""
        self._buffer.extend(data)

    @property
    def pending_bytes(self) -> int:
        """Number of buffered bytes not yet consumed by a reply."""
        return len(self._buffer) - self._pos

    def parse_one(self) -> Reply | None:
        """
        Decode the next complete reply.

        Returns:
            The reply, or None if more bytes are needed.

        Raises:
            ProtocolError: If the buffered bytes are not valid RESP.
        """
        result = self._parse(self._pos)
        if result is None:
            return None

        reply, self._pos = result
        if self._pos >= _COMPACT_THRESHOLD:
            del self._buffer[: self._pos]
            self._pos = 0
        return reply

    def __iter__(self) -> Iterator[Reply]:
        while (reply := self.parse_one()) is not None:
            yield reply

    def _read_line(self, pos: int) -> tuple[bytes, int] | None:
        end = self._buffer.find(CRLF, pos)
        if end == -1:
            return None
        return bytes(self._buffer[pos:end]), end + 2

    def _parse(self, pos: int) -> tuple[Reply, int] | None:
        if pos >= len(self._buffer):
            return None

        type_byte = self._buffer[pos]
        kind = _TYPE_BYTES.get(type_byte)
        if kind is None:
            raise ProtocolError(f"Unknown reply type byte: {bytes([type_byte])!r}")

        line = self._read_line(pos + 1)
        if line is None:
            return None
        header, pos = line

        if kind is ReplyKind.STATUS or kind is ReplyKind.ERROR:
            return Reply(kind, header.decode("utf-8", errors="replace")), pos

        number = _parse_int(header)
        if kind is ReplyKind.INTEGER:
            return Reply(kind, number), pos

        if number < -1:
            raise ProtocolError(f"Negative {kind} length: {number}")
        if number == -1:
            return Reply(kind, None), pos

        if kind is ReplyKind.BULK:
            end = pos + number
            if len(self._buffer) < end + 2:
                return None
            if self._buffer[end : end + 2] != CRLF:
                raise ProtocolError("Bulk string is not terminated by CRLF")
            return Reply(kind, bytes(self._buffer[pos:end])), end + 2

        items: list[Reply] = []
        for _ in range(number):
            result = self._parse(pos)
            if result is None:
                return None
            item, pos = result
            items.append(item)
        return Reply(kind, items), pos
