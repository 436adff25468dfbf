"""High level operations on an attached target: connect, flash, load RAM, verify."""

import hashlib
import struct

from .errors import (
    ConnectArgs,
    ImageSizeError,
    InvalidMD5Error,
    InvalidParamError,
    InvalidTargetError,
    LoaderError,
    LoaderTimeout,
    TargetChip,
    UnsupportedChipError,
    UnsupportedFuncError,
)
from .protocol import Protocol
from .targets import detect_chip, encryption_in_begin_flash_cmd, read_spi_config

DEFAULT_TIMEOUT = 1000
DEFAULT_FLASH_TIMEOUT = 3000
ERASE_REGION_TIMEOUT_PER_MB = 10000
LOAD_RAM_TIMEOUT_PER_MB = 2000000
MD5_TIMEOUT_PER_MB = 8000
PADDING_PATTERN = 0xFF

_SPI_FLASH_READ_ID = 0x9F
_SPI_USR_CMD = 1 << 31
_SPI_USR_MISO = 1 << 28
_SPI_USR_MOSI = 1 << 27
_SPI_CMD_USR = 1 << 18
_CMD_LEN_SHIFT = 28
_SPI_CMD_POLL_TRIALS = 10
_MIN_FLASH_SIZE_ID = 0x12
_MAX_FLASH_SIZE_ID = 0x18
_SIZE_FALLBACK_MESSAGE = "Flash size detection failed, falling back to default"


def _timeout_per_mb(size_bytes, time_per_mb):
    return max(time_per_mb * (size_bytes // 1_000_000), DEFAULT_FLASH_TIMEOUT)


def _block_count(size, block_size):
    if block_size <= 0:
        raise InvalidParamError("block size must be positive")
    return -(-size // block_size)


def _new_md5():
    return hashlib.md5(usedforsecurity=False)


class EspLoader:
    """Drives the serial bootloader of a target reached through ``port``."""

    def __init__(self, port):
        self._port = port
        self._protocol = Protocol(port)
        self._target = TargetChip.UNKNOWN
        self._regs = None
        self._flash_write_size = 0
        self._md5 = _new_md5()
        self._start_address = 0
        self._image_size = 0

    # -- connection --------------------------------------------------------

    def connect(self, connect_args=None):
        """Put the target into its bootloader, sync, detect it and attach its flash."""
        args = connect_args if connect_args is not None else ConnectArgs()
        trials = args.trials

        self._port.enter_bootloader()

        while True:
            self._port.start_timer(args.sync_timeout)
            try:
                self._protocol.sync()
            except LoaderTimeout:
                trials -= 1
                if trials == 0:
                    raise
                self._port.delay_ms(100)
            else:
                break

        self._target, self._regs = detect_chip(self.read_register)

        if self._target == TargetChip.ESP8266:
            self._protocol.flash_begin(0, 0, 0, 0, False)
        else:
            spi_config = read_spi_config(self._target, self.read_register)
            self._port.start_timer(DEFAULT_TIMEOUT)
            self._protocol.spi_attach(spi_config)

    def target(self):
        """The chip found by the last successful connect."""
        return self._target

    # -- SPI flash access through registers ---------------------------------

    def _require_regs(self):
        if self._regs is None:
            raise InvalidTargetError("no target connected")
        return self._regs

    def _spi_set_data_lengths(self, mosi_bits, miso_bits):
        regs = self._regs
        if self._target == TargetChip.ESP8266:
            mosi_mask = mosi_bits - 1 if mosi_bits else 0
            miso_mask = miso_bits - 1 if miso_bits else 0
            self.write_register(regs.usr1, (miso_mask << 8) | (mosi_mask << 17))
            return
        if mosi_bits > 0:
            self.write_register(regs.mosi_dlen, mosi_bits - 1)
        if miso_bits > 0:
            self.write_register(regs.miso_dlen, miso_bits - 1)

    def _spi_flash_command(self, command, data_tx, tx_bits, rx_bits):
        if rx_bits > 32:
            raise InvalidParamError("at most 32 bits can be read back from the flash")
        if tx_bits > 64:
            raise InvalidParamError("at most 64 bits can be sent with one flash command")
        regs = self._require_regs()

        old_usr = self.read_register(regs.usr)
        old_usr2 = self.read_register(regs.usr2)

        self._spi_set_data_lengths(tx_bits, rx_bits)

        usr_reg_2 = (7 << _CMD_LEN_SHIFT) | command
        usr_reg = _SPI_USR_CMD
        if rx_bits > 0:
            usr_reg |= _SPI_USR_MISO
        if tx_bits > 0:
            usr_reg |= _SPI_USR_MOSI

        self.write_register(regs.usr, usr_reg)
        self.write_register(regs.usr2, usr_reg_2)

        if tx_bits == 0:
            # Clear the data register before reading it back.
            self.write_register(regs.w0, 0)
        else:
            words = (tx_bits + 31) // 32
            padded = bytes(data_tx).ljust(words * 4, b"\x00")
            for index, (word,) in enumerate(struct.iter_unpack("<I", padded[: words * 4])):
                self.write_register(regs.w0 + 4 * index, word)

        self.write_register(regs.cmd, _SPI_CMD_USR)

        for _ in range(_SPI_CMD_POLL_TRIALS):
            if self.read_register(regs.cmd) & _SPI_CMD_USR == 0:
                break
        else:
            raise LoaderTimeout("SPI flash command did not complete")

        value = self.read_register(regs.w0)

        self.write_register(regs.usr, old_usr)
        self.write_register(regs.usr2, old_usr2)
        return value

    def _detect_flash_size(self):
        flash_id = self._spi_flash_command(_SPI_FLASH_READ_ID, b"", 0, 24)
        size_id = flash_id >> 16
        if not _MIN_FLASH_SIZE_ID <= size_id <= _MAX_FLASH_SIZE_ID:
            raise UnsupportedChipError(f"unsupported flash size id 0x{size_id:02x}")
        return 1 << size_id

    def _try_detect_flash_size(self):
        try:
            return self._detect_flash_size()
        except LoaderError:
            return None

    def _init_md5(self, address, size):
        self._start_address = address
        self._image_size = size
        self._md5 = _new_md5()

    # -- flash -------------------------------------------------------------

    def flash_start(self, offset, image_size, block_size):
        """Begin writing ``image_size`` bytes at ``offset`` in blocks of ``block_size``."""
        blocks_to_write = _block_count(image_size, block_size)
        erase_size = block_size * blocks_to_write
        self._flash_write_size = block_size

        flash_size = self._try_detect_flash_size()
        if flash_size is not None:
            if image_size + offset > flash_size:
                raise ImageSizeError(
                    f"image of {image_size} bytes at 0x{offset:x} exceeds "
                    f"flash of {flash_size} bytes"
                )
            self._port.start_timer(DEFAULT_TIMEOUT)
            self._protocol.spi_parameters(flash_size)
        else:
            self._port.debug_print(_SIZE_FALLBACK_MESSAGE)

        self._init_md5(offset, image_size)
        encryption = encryption_in_begin_flash_cmd(self._target)

        self._port.start_timer(_timeout_per_mb(erase_size, ERASE_REGION_TIMEOUT_PER_MB))
        self._protocol.flash_begin(
            offset, erase_size, block_size, blocks_to_write, encryption
        )

    def flash_defl_start(self, offset, image_size, compressed_size, block_size):
        """Begin writing a compressed image that inflates to ``image_size`` bytes."""
        blocks_to_write = _block_count(compressed_size, block_size)
        # Only the ROM loader is supported: the uncompressed size covers whole blocks.
        erase_size = block_size * _block_count(image_size, block_size)
        self._flash_write_size = block_size

        self._port.delay_ms(20)
        flash_size = self._try_detect_flash_size()
        if flash_size is not None:
            self._port.delay_ms(20)
            if image_size + offset > flash_size:
                raise ImageSizeError(
                    f"image of {image_size} bytes at 0x{offset:x} exceeds "
                    f"flash of {flash_size} bytes"
                )
            self._port.start_timer(DEFAULT_TIMEOUT)
            self._protocol.spi_parameters(flash_size)
            self._port.delay_ms(20)
        else:
            self._port.debug_print(_SIZE_FALLBACK_MESSAGE)

        self._port.delay_ms(10)
        self._init_md5(offset, image_size)

        self._port.delay_ms(10)
        encryption = encryption_in_begin_flash_cmd(self._target)

        self._port.delay_ms(10)
        self._port.start_timer(_timeout_per_mb(erase_size, ERASE_REGION_TIMEOUT_PER_MB))
        self._protocol.flash_defl_begin(
            offset, erase_size, block_size, blocks_to_write, encryption
        )

    def flash_write(self, payload):
        """Write one block; a short block is padded with 0xFF to the block size."""
        data = bytes(payload)
        if len(data) > self._flash_write_size:
            raise InvalidParamError(
                f"block of {len(data)} bytes exceeds block size {self._flash_write_size}"
            )
        padded = data.ljust(self._flash_write_size, bytes([PADDING_PATTERN]))
        self._md5.update(padded[: (len(data) + 3) & ~3])

        self._port.start_timer(DEFAULT_TIMEOUT)
        self._protocol.flash_data(padded)

    def flash_defl_write(self, payload):
        """Write one block of compressed data."""
        data = bytes(payload)
        if len(data) > self._flash_write_size:
            raise InvalidParamError(
                f"block of {len(data)} bytes exceeds block size {self._flash_write_size}"
            )
        self._md5.update(data)

        # One compressed block may expand into a large flash write.
        self._port.start_timer(DEFAULT_TIMEOUT * 50)
        self._protocol.flash_defl_data(data)

    def flash_finish(self, reboot):
        """End the flash operation, rebooting the target if ``reboot`` is true."""
        self._port.start_timer(DEFAULT_TIMEOUT)
        self._protocol.flash_end(not reboot)

    def flash_defl_finish(self, reboot):
        """End the compressed flash operation, rebooting if ``reboot`` is true."""
        self._port.start_timer(DEFAULT_TIMEOUT)
        self._protocol.flash_defl_end(not reboot)

    # -- RAM ---------------------------------------------------------------

    def mem_start(self, offset, size, block_size):
        """Begin loading ``size`` bytes into RAM at ``offset``."""
        blocks_to_write = _block_count(size, block_size)
        self._port.start_timer(_timeout_per_mb(size, LOAD_RAM_TIMEOUT_PER_MB))
        self._protocol.mem_begin(offset, size, blocks_to_write, block_size)

    def mem_write(self, payload):
        """Load one block into RAM."""
        data = bytes(payload)
        self._port.start_timer(_timeout_per_mb(len(data), LOAD_RAM_TIMEOUT_PER_MB))
        self._protocol.mem_data(data)

    def mem_finish(self, entrypoint):
        """Finish loading into RAM and start the program at ``entrypoint``."""
        self._port.start_timer(DEFAULT_TIMEOUT)
        self._protocol.mem_end(entrypoint)

    # -- registers and link ------------------------------------------------

    def read_register(self, address):
        """Return the value of the register at ``address``."""
        self._port.start_timer(DEFAULT_TIMEOUT)
        return self._protocol.read_reg(address)

    def write_register(self, address, value):
        """Write ``value`` to the register at ``address``."""
        self._port.start_timer(DEFAULT_TIMEOUT)
        self._protocol.write_reg(address, value, 0xFFFFFFFF, 0)

    def change_transmission_rate(self, transmission_rate):
        """Ask the target to change its baud rate; the host side is not changed."""
        if self._target == TargetChip.ESP8266:
            raise UnsupportedFuncError("ESP8266 cannot change its transmission rate")
        self._port.start_timer(DEFAULT_TIMEOUT)
        self._protocol.change_baudrate(transmission_rate)

    # -- verification ------------------------------------------------------

    def flash_verify(self):
        """Compare the MD5 of the data written since flash_start with the target's."""
        if self._target == TargetChip.ESP8266:
            raise UnsupportedFuncError("ESP8266 cannot compute a flash MD5")

        expected = self._md5.hexdigest().encode("ascii")
        self._md5 = _new_md5()

        self._port.start_timer(_timeout_per_mb(self._image_size, MD5_TIMEOUT_PER_MB))
        received = self._protocol.md5(self._start_address, self._image_size)

        if received != expected:
            self._port.debug_print("Error: MD5 checksum does not match:\n")
            self._port.debug_print("Expected:\n")
            self._port.debug_print(received.decode("ascii", "replace") + "\n")
            self._port.debug_print("Actual:\n")
            self._port.debug_print(expected.decode("ascii") + "\n")
            raise InvalidMD5Error(
                f"MD5 mismatch: target {received!r}, computed {expected!r}"
            )

    def get_md5_hex(self, start_address, length):
        """Return the target's MD5 of a flash region as 32 hex characters."""
        flash_size = self._try_detect_flash_size()
        if flash_size is not None:
            self._port.start_timer(DEFAULT_TIMEOUT)
            self._protocol.spi_parameters(flash_size)

        self._port.start_timer(_timeout_per_mb(length, MD5_TIMEOUT_PER_MB))
        return self._protocol.md5(start_address, length).decode("ascii")

    def reset_target(self):
        """Toggle the target's reset pin."""
        self._port.reset_target()