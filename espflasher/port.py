"""Byte transport and board control used to reach the target."""

import logging
import time

from .errors import LoaderFailure, LoaderTimeout

_log = logging.getLogger(__name__)


class LoaderPort:
    """A transport over a binary stream with optional boot and reset pin control.

    ``stream`` needs ``read(n)`` and ``write(data)``; ``read`` may return fewer
    bytes than asked for, or nothing, while data is still on its way.
    ``set_boot_pin`` and ``set_reset_pin`` take the pin level as a bool.
    ``set_transmission_rate`` takes the new baud rate; without it the stream's
    ``baudrate`` attribute is set, when it has one.
    """

    def __init__(
        self,
        stream,
        *,
        set_boot_pin=None,
        set_reset_pin=None,
        set_transmission_rate=None,
        reset_hold_ms=100,
        boot_hold_ms=50,
        poll_interval=0.001,
    ):
        self._stream = stream
        self._set_boot_pin = set_boot_pin
        self._set_reset_pin = set_reset_pin
        self._set_transmission_rate = set_transmission_rate
        self._reset_hold_ms = reset_hold_ms
        self._boot_hold_ms = boot_hold_ms
        self._poll_interval = poll_interval
        self._deadline = time.monotonic()

    def write(self, data, timeout):
        """Write all of ``data``; raise LoaderTimeout if the stream takes less."""
        payload = bytes(data)
        written = self._stream.write(payload)
        flush = getattr(self._stream, "flush", None)
        if flush is not None:
            flush()
        if written is not None and written < len(payload):
            raise LoaderTimeout(
                f"wrote {written} of {len(payload)} bytes within {timeout} ms"
            )

    def read(self, size, timeout):
        """Read exactly ``size`` bytes within ``timeout`` milliseconds."""
        deadline = time.monotonic() + timeout / 1000
        received = bytearray()
        while len(received) < size:
            chunk = self._stream.read(size - len(received))
            if chunk:
                received += chunk
                continue
            if time.monotonic() >= deadline:
                raise LoaderTimeout(
                    f"received {len(received)} of {size} bytes within {timeout} ms"
                )
            time.sleep(self._poll_interval)
        return bytes(received)

    def delay_ms(self, ms):
        """Block for ``ms`` milliseconds."""
        if ms > 0:
            time.sleep(ms / 1000)

    def start_timer(self, ms):
        """Start the operation timer, expiring after ``ms`` milliseconds."""
        self._deadline = time.monotonic() + ms / 1000

    def remaining_time(self):
        """Milliseconds left on the operation timer, 0 once it has expired."""
        remaining = int((self._deadline - time.monotonic()) * 1000)
        return max(remaining, 0)

    def enter_bootloader(self):
        """Hold the boot pin low across a reset so the target enters its loader."""
        self._drive(self._set_boot_pin, False)
        self.reset_target()
        self.delay_ms(self._boot_hold_ms)
        self._drive(self._set_boot_pin, True)

    def reset_target(self):
        """Pulse the reset pin low."""
        self._drive(self._set_reset_pin, False)
        self.delay_ms(self._reset_hold_ms)
        self._drive(self._set_reset_pin, True)

    def change_transmission_rate(self, transmission_rate):
        """Switch the host side of the link to ``transmission_rate``."""
        if self._set_transmission_rate is not None:
            self._set_transmission_rate(transmission_rate)
        elif hasattr(self._stream, "baudrate"):
            self._stream.baudrate = transmission_rate
        else:
            raise LoaderFailure("the port cannot change its transmission rate")

    def debug_print(self, text):
        """Emit a debug message."""
        _log.debug("DEBUG: %s", text)

    @staticmethod
    def _drive(pin, level):
        if pin is not None:
            pin(level)