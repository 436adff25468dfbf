import io

import pytest

from espflasher import slip
from espflasher.errors import InvalidParamError, InvalidResponseError, LoaderTimeout
from espflasher.port import LoaderPort

TEST_SLIP_PACKET = bytes([0xDB]) + b"abc" + bytes([0xC0, 0xDB]) + b"de" + bytes([0xC0]) + b"f" + bytes([0xDB])
SLIP_ENCODED_PACKET = (
    bytes([0xDB, 0xDD]) + b"abc" + bytes([0xDB, 0xDC, 0xDB, 0xDD]) + b"de"
    + bytes([0xDB, 0xDC]) + b"f" + bytes([0xDB, 0xDD])
)


class DuplexStream:
    def __init__(self, incoming=b""):
        self.incoming = io.BytesIO(incoming)
        self.written = bytearray()

    def read(self, size):
        return self.incoming.read(size)

    def write(self, data):
        self.written += data
        return len(data)


def make_port(incoming=b""):
    stream = DuplexStream(incoming)
    port = LoaderPort(stream)
    port.start_timer(0)
    return port, stream


def frame(data):
    return b"\xc0" + slip.encode(data) + b"\xc0"


def read_reg_response(value):
    return bytes([0x01, 0x0A, 0x02, 0x00]) + value.to_bytes(4, "little") + bytes(2)


def test_encode_matches_reference_packet():
    assert slip.encode(TEST_SLIP_PACKET) == SLIP_ENCODED_PACKET


def test_encode_leaves_plain_bytes_alone():
    assert slip.encode(b"hello") == b"hello"


def test_send_writes_encoded_bytes():
    port, stream = make_port()
    slip.send(port, TEST_SLIP_PACKET)
    assert bytes(stream.written) == SLIP_ENCODED_PACKET


def test_send_empty_writes_nothing():
    port, stream = make_port()
    slip.send(port, b"")
    assert bytes(stream.written) == b""


def test_framed_send_matches_reference():
    port, stream = make_port()
    slip.send_delimiter(port)
    slip.send(port, TEST_SLIP_PACKET)
    slip.send_delimiter(port)
    assert bytes(stream.written) == b"\xc0" + SLIP_ENCODED_PACKET + b"\xc0"


def test_receive_data_decodes_reference_packet():
    port, _ = make_port(SLIP_ENCODED_PACKET)
    assert slip.receive_data(port, len(TEST_SLIP_PACKET)) == TEST_SLIP_PACKET


def test_receive_packet_decodes_escaped_register_value():
    packet = read_reg_response(0xC0BD)
    port, _ = make_port(frame(packet))
    received = slip.receive_packet(port, len(packet))
    assert received == packet
    assert int.from_bytes(received[4:8], "little") == 0xC0BD


def test_receive_packet_skips_noise_and_extra_delimiters():
    packet = read_reg_response(55)
    port, _ = make_port(b"xyz\xc0\xc0\xc0" + slip.encode(packet) + b"\xc0")
    assert slip.receive_packet(port, len(packet)) == packet


def test_receive_packet_drops_bytes_past_size():
    packet = read_reg_response(55)
    port, _ = make_port(frame(packet + b"extra"))
    assert slip.receive_packet(port, len(packet)) == packet


def test_consecutive_packets():
    first = read_reg_response(1)
    second = read_reg_response(2)
    port, _ = make_port(frame(first) + frame(second))
    assert slip.receive_packet(port, len(first)) == first
    assert slip.receive_packet(port, len(second)) == second


def test_invalid_escape_is_rejected():
    port, _ = make_port(b"\xdb\x01")
    with pytest.raises(InvalidResponseError):
        slip.receive_data(port, 1)


def test_missing_data_times_out():
    port, _ = make_port(b"\xc0\x01\x02")
    with pytest.raises(LoaderTimeout):
        slip.receive_packet(port, 8)


def test_zero_size_packet_is_rejected():
    port, _ = make_port(frame(b"\x01"))
    with pytest.raises(InvalidParamError):
        slip.receive_packet(port, 0)


@pytest.mark.parametrize(
    "payload",
    [b"\x01", b"\x01\xc0\xdb\xc0", b"\x01" + bytes(range(256)), b"\x01\xdb\xdc\xdd"],
)
def test_round_trip(payload):
    port, stream = make_port()
    slip.send_delimiter(port)
    slip.send(port, payload)
    slip.send_delimiter(port)
    reader, _ = make_port(bytes(stream.written))
    assert slip.receive_packet(reader, len(payload)) == payload