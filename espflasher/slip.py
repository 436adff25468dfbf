"""SLIP framing of packets exchanged with the target."""

from .errors import InvalidParamError, InvalidResponseError

DELIMITER = 0xC0
ESCAPE = 0xDB
_ESCAPED_DELIMITER = b"\xdb\xdc"
_ESCAPED_ESCAPE = b"\xdb\xdd"
_UNESCAPE = {0xDC: DELIMITER, 0xDD: ESCAPE}


def encode(data):
    """Escape delimiter and escape bytes in ``data``; no framing is added."""
    return (
        bytes(data)
        .replace(b"\xdb", _ESCAPED_ESCAPE)
        .replace(b"\xc0", _ESCAPED_DELIMITER)
    )


def send(port, data):
    """Write ``data`` SLIP-escaped to ``port``."""
    encoded = encode(data)
    if encoded:
        port.write(encoded, port.remaining_time())


def send_delimiter(port):
    """Write a single frame delimiter."""
    port.write(bytes([DELIMITER]), port.remaining_time())


def _read_byte(port):
    return port.read(1, port.remaining_time())[0]


def receive_data(port, size):
    """Read and unescape ``size`` bytes of packet body."""
    decoded = bytearray()
    for _ in range(size):
        value = _read_byte(port)
        if value == ESCAPE:
            escaped = _read_byte(port)
            try:
                value = _UNESCAPE[escaped]
            except KeyError:
                raise InvalidResponseError(
                    f"invalid SLIP escape sequence 0xdb 0x{escaped:02x}"
                ) from None
        decoded.append(value)
    return bytes(decoded)


def receive_packet(port, size):
    """Read one framed packet and return its first ``size`` decoded bytes.

    Anything before the opening delimiter is skipped, as are repeated
    delimiters; bytes after ``size`` up to the closing delimiter are dropped.
    """
    if size < 1:
        raise InvalidParamError("packet size must be at least one byte")

    while _read_byte(port) != DELIMITER:
        pass

    # The loader may send extra delimiters after a baud rate change.
    first = _read_byte(port)
    while first == DELIMITER:
        first = _read_byte(port)

    body = receive_data(port, size - 1)

    while _read_byte(port) != DELIMITER:
        pass

    return bytes([first]) + body