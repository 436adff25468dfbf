"""Commands of the serial bootloader protocol and their responses."""

import functools
import operator
import struct
from enum import IntEnum

from . import slip
from .errors import InvalidResponseError


class Command(IntEnum):
    """Operation codes understood by the target's bootloader."""

    FLASH_BEGIN = 0x02
    FLASH_DATA = 0x03
    FLASH_END = 0x04
    MEM_BEGIN = 0x05
    MEM_END = 0x06
    MEM_DATA = 0x07
    SYNC = 0x08
    WRITE_REG = 0x09
    READ_REG = 0x0A
    SPI_SET_PARAMS = 0x0B
    SPI_ATTACH = 0x0D
    CHANGE_BAUDRATE = 0x0F
    FLASH_DEFL_BEGIN = 0x10
    FLASH_DEFL_DATA = 0x11
    FLASH_DEFL_END = 0x12
    SPI_FLASH_MD5 = 0x13


class _ErrorCode(IntEnum):
    INVALID_CRC = 0x05
    INVALID_COMMAND = 0x06
    COMMAND_FAILED = 0x07
    FLASH_WRITE_ERR = 0x08
    FLASH_READ_ERR = 0x09
    READ_LENGTH_ERR = 0x0A
    DEFLATE_ERROR = 0x0B


MD5_SIZE = 32

_WRITE_DIRECTION = 0
_READ_DIRECTION = 1
_HEADER = struct.Struct("<BBHI")
_STATUS_SIZE = 2
_RESPONSE_SIZE = _HEADER.size + _STATUS_SIZE
_MD5_RESPONSE_SIZE = _HEADER.size + MD5_SIZE + _STATUS_SIZE
_SYNC_RESPONSES = 8
_SYNC_SEQUENCE = bytes([0x07, 0x07, 0x12, 0x20]) + b"\x55" * 32


def compute_checksum(data):
    """XOR checksum of ``data`` seeded with 0xEF, as the bootloader expects."""
    return functools.reduce(operator.xor, bytes(data), 0xEF)


class Protocol:
    """Builds bootloader commands, sends them over a port and checks replies."""

    def __init__(self, port):
        self._port = port
        self._sequence_number = 0

    # -- framing -----------------------------------------------------------

    @staticmethod
    def _header(command, size, checksum=0):
        return _HEADER.pack(_WRITE_DIRECTION, command, size, checksum)

    def _send_frame(self, *parts):
        slip.send_delimiter(self._port)
        for part in parts:
            slip.send(self._port, part)
        slip.send_delimiter(self._port)

    def _log_internal_error(self, error):
        self._port.debug_print("Error: ")
        try:
            name = _ErrorCode(error).name
        except ValueError:
            name = "UNKNOWN ERROR"
        self._port.debug_print(name)
        self._port.debug_print("\n")

    def _check_response(self, command, size):
        """Wait for the response to ``command`` and return its raw bytes."""
        while True:
            response = slip.receive_packet(self._port, size)
            direction, received_command = response[0], response[1]
            if direction == _READ_DIRECTION and received_command == command:
                break

        failed, error = response[-_STATUS_SIZE], response[-_STATUS_SIZE + 1]
        if failed:
            self._log_internal_error(error)
            raise InvalidResponseError(
                f"command 0x{int(command):02x} failed with error 0x{error:02x}"
            )
        return response

    @staticmethod
    def _value_of(response):
        return _HEADER.unpack_from(response)[3]

    def _send_command(self, command, body, size=None):
        """Send a command without payload and return the value of its reply."""
        if size is None:
            size = len(body)
        self._send_frame(self._header(command, size) + body)
        expected = _SYNC_RESPONSES if command == Command.SYNC else 1
        response = b""
        for _ in range(expected):
            response = self._check_response(command, _RESPONSE_SIZE)
        return self._value_of(response)

    def _send_data(self, command, data):
        data = bytes(data)
        body = struct.pack("<4I", len(data), self._sequence_number, 0, 0)
        self._sequence_number += 1
        header = self._header(command, len(body) + len(data), compute_checksum(data))
        self._send_frame(header + body, data)
        self._check_response(command, _RESPONSE_SIZE)

    def _begin(self, command, offset, size, block_size, blocks_to_write, encryption):
        body = struct.pack("<5I", size, blocks_to_write, block_size, offset, 0)
        if encryption:
            body = body[:-4]
        self._sequence_number = 0
        self._send_command(command, body)

    # -- commands ----------------------------------------------------------

    def flash_begin(self, offset, erase_size, block_size, blocks_to_write, encryption):
        """Start writing to flash; resets the data sequence number."""
        self._begin(
            Command.FLASH_BEGIN, offset, erase_size, block_size, blocks_to_write, encryption
        )

    def flash_defl_begin(
        self, offset, uncompressed_size, block_size, blocks_to_write, encryption
    ):
        """Start writing compressed data to flash; resets the sequence number."""
        self._begin(
            Command.FLASH_DEFL_BEGIN,
            offset,
            uncompressed_size,
            block_size,
            blocks_to_write,
            encryption,
        )

    def flash_data(self, data):
        """Send one block of flash data."""
        self._send_data(Command.FLASH_DATA, data)

    def flash_defl_data(self, data):
        """Send one block of compressed flash data."""
        self._send_data(Command.FLASH_DEFL_DATA, data)

    def flash_end(self, stay_in_loader):
        """Finish writing to flash."""
        self._send_command(Command.FLASH_END, struct.pack("<I", int(bool(stay_in_loader))))

    def flash_defl_end(self, stay_in_loader):
        """Finish writing compressed data to flash."""
        self._send_command(
            Command.FLASH_DEFL_END, struct.pack("<I", int(bool(stay_in_loader)))
        )

    def mem_begin(self, offset, size, blocks_to_write, block_size):
        """Start loading a program into RAM; resets the sequence number."""
        body = struct.pack("<4I", size, blocks_to_write, block_size, offset)
        self._sequence_number = 0
        self._send_command(Command.MEM_BEGIN, body)

    def mem_data(self, data):
        """Send one block of RAM data."""
        self._send_data(Command.MEM_DATA, data)

    def mem_end(self, entrypoint):
        """Finish loading into RAM and jump to ``entrypoint`` unless it is 0."""
        body = struct.pack("<2I", int(entrypoint == 0), entrypoint)
        self._send_command(Command.MEM_END, body)

    def sync(self):
        """Send the sync sequence and collect all of its responses."""
        self._send_command(Command.SYNC, _SYNC_SEQUENCE)

    def write_reg(self, address, value, mask, delay_us):
        """Write ``value`` under ``mask`` to the register at ``address``."""
        body = struct.pack("<4I", address, value, mask, delay_us)
        self._send_command(Command.WRITE_REG, body)

    def read_reg(self, address):
        """Return the value of the register at ``address``."""
        return self._send_command(Command.READ_REG, struct.pack("<I", address))

    def spi_attach(self, config):
        """Attach the SPI flash using the given pin configuration."""
        self._send_command(Command.SPI_ATTACH, struct.pack("<2I", config, 0))

    def change_baudrate(self, baudrate):
        """Ask the target to switch to ``baudrate``."""
        self._send_command(Command.CHANGE_BAUDRATE, struct.pack("<2I", baudrate, 0))

    def md5(self, address, size):
        """Return the target's MD5 of a flash region as 32 hex characters."""
        body = struct.pack("<4I", address, size, 0, 0)
        self._send_frame(self._header(Command.SPI_FLASH_MD5, len(body)) + body)
        response = self._check_response(Command.SPI_FLASH_MD5, _MD5_RESPONSE_SIZE)
        return bytes(response[_HEADER.size:_HEADER.size + MD5_SIZE])

    def spi_parameters(self, total_size):
        """Tell the target the geometry of its SPI flash."""
        body = struct.pack("<6I", 0, total_size, 64 * 1024, 4 * 1024, 0x100, 0xFFFF)
        self._send_command(Command.SPI_SET_PARAMS, body, size=24)