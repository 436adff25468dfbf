import io
import logging

import pytest

from espflasher.errors import LoaderFailure, LoaderTimeout
from espflasher.port import LoaderPort


class DuplexStream:
    """Reads come from one buffer, writes go into another."""

    def __init__(self, incoming=b""):
        self.incoming = io.BytesIO(incoming)
        self.written = bytearray()

    def read(self, size):
        return self.incoming.read(size)

    def write(self, data):
        self.written += data
        return len(data)


class ShortWriteStream(DuplexStream):
    def write(self, data):
        self.written += data[:1]
        return 1


class BaudStream(DuplexStream):
    baudrate = 115200


FRAME = bytes([0xC0, 5, 0, 0, 0, 0xC0])


def test_read_whole_buffer():
    port = LoaderPort(DuplexStream(FRAME))
    assert port.read(len(FRAME), 0) == FRAME


def test_read_in_smaller_chunks():
    port = LoaderPort(DuplexStream(FRAME))
    assert port.read(3, 0) + port.read(3, 0) == FRAME


def test_read_more_than_available_times_out():
    port = LoaderPort(DuplexStream(FRAME))
    with pytest.raises(LoaderTimeout):
        port.read(len(FRAME) + 1, 0)


def test_read_accepts_stream_returning_none():
    class Quiet(DuplexStream):
        def read(self, size):
            return None

    port = LoaderPort(Quiet())
    with pytest.raises(LoaderTimeout):
        port.read(1, 0)


def test_write_passes_bytes_through():
    stream = DuplexStream()
    port = LoaderPort(stream)
    port.write(b"abc", 100)
    port.write(bytearray(b"\xc0"), 100)
    assert bytes(stream.written) == b"abc\xc0"


def test_short_write_raises_timeout():
    port = LoaderPort(ShortWriteStream())
    with pytest.raises(LoaderTimeout):
        port.write(b"abcd", 100)


def test_timer_counts_down():
    port = LoaderPort(DuplexStream())
    port.start_timer(1000)
    remaining = port.remaining_time()
    assert 0 < remaining <= 1000


def test_expired_timer_reports_zero():
    port = LoaderPort(DuplexStream())
    port.start_timer(0)
    assert port.remaining_time() == 0


def test_enter_bootloader_pin_sequence():
    events = []
    port = LoaderPort(
        DuplexStream(),
        set_boot_pin=lambda level: events.append(("boot", level)),
        set_reset_pin=lambda level: events.append(("reset", level)),
        reset_hold_ms=0,
        boot_hold_ms=0,
    )
    port.enter_bootloader()
    assert events == [
        ("boot", False),
        ("reset", False),
        ("reset", True),
        ("boot", True),
    ]


def test_reset_target_pulses_reset_pin():
    events = []
    port = LoaderPort(
        DuplexStream(),
        set_reset_pin=events.append,
        reset_hold_ms=0,
    )
    port.reset_target()
    assert events == [False, True]


def test_change_transmission_rate_uses_callback():
    rates = []
    port = LoaderPort(DuplexStream(), set_transmission_rate=rates.append)
    port.change_transmission_rate(921600)
    assert rates == [921600]


def test_change_transmission_rate_sets_stream_baudrate():
    stream = BaudStream()
    port = LoaderPort(stream)
    port.change_transmission_rate(460800)
    assert stream.baudrate == 460800


def test_change_transmission_rate_unsupported_stream():
    port = LoaderPort(DuplexStream())
    with pytest.raises(LoaderFailure):
        port.change_transmission_rate(460800)


def test_debug_print_logs_message(caplog):
    port = LoaderPort(DuplexStream())
    with caplog.at_level(logging.DEBUG, logger="espflasher.port"):
        port.debug_print("Flash size detection failed")
    assert "Flash size detection failed" in caplog.text