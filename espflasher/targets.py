"""Register layout of supported chips and detection of the attached one."""

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .errors import InvalidTargetError, TargetChip, UnsupportedFuncError

# This ROM address holds a different value on each chip model.
CHIP_DETECT_MAGIC_REG_ADDR = 0x40001000

_ESP8266_SPI_REG_BASE = 0x60000200
_ESP32S2_SPI_REG_BASE = 0x3F402000
_ESP32XX_SPI_REG_BASE = 0x60002000
_ESP32_SPI_REG_BASE = 0x3FF42000


@dataclass(frozen=True)
class TargetRegisters:
    """Addresses of the SPI registers used to talk to the flash."""

    cmd: int
    usr: int
    usr1: int
    usr2: int
    w0: int
    mosi_dlen: int
    miso_dlen: int


@dataclass(frozen=True)
class Target:
    """Description of one chip model."""

    regs: TargetRegisters
    efuse_base: int
    magic_values: Tuple[int, ...]
    spi_config_reader: Optional[Callable[[int, Callable[[int], int]], int]]


def _efuse_word_addr(efuse_base, n):
    return efuse_base + n * 4


def _adjust_pin_number(num):
    # 30 -> GPIO32, 31 -> GPIO33
    return num + 2 if num >= 30 else num


def _spi_config_esp32(efuse_base, read_register):
    reg5 = read_register(_efuse_word_addr(efuse_base, 5))
    reg3 = read_register(_efuse_word_addr(efuse_base, 3))

    pins = reg5 & 0xFFFFF
    if pins in (0, 0xFFFFF):
        return 0

    clk = _adjust_pin_number(pins & 0x1F)
    q = _adjust_pin_number((pins >> 5) & 0x1F)
    d = _adjust_pin_number((pins >> 10) & 0x1F)
    cs = _adjust_pin_number((pins >> 15) & 0x1F)
    hd = _adjust_pin_number((reg3 >> 4) & 0x1F)

    if clk in (cs, d, q) or q in (cs, d):
        return 0

    return (hd << 24) | (cs << 18) | (d << 12) | (q << 6) | clk


def _spi_config_esp32xx(efuse_base, read_register):
    reg1 = read_register(_efuse_word_addr(efuse_base, 18))
    reg2 = read_register(_efuse_word_addr(efuse_base, 19))

    pins = ((reg1 >> 16) | ((reg2 & 0xFFFFF) << 16)) & 0x3FFFFFFF
    if pins in (0, 0xFFFFFFFF):
        return 0
    return pins


def _regs(base, usr, w0, mosi_dlen, miso_dlen):
    return TargetRegisters(
        cmd=base,
        usr=base + usr,
        usr1=base + usr + 0x4,
        usr2=base + usr + 0x8,
        w0=base + w0,
        mosi_dlen=base + mosi_dlen if mosi_dlen is not None else 0,
        miso_dlen=base + miso_dlen if miso_dlen is not None else 0,
    )


_ESP32XX_REGS = _regs(_ESP32XX_SPI_REG_BASE, 0x18, 0x58, 0x24, 0x28)

_TARGETS = {
    TargetChip.ESP8266: Target(
        regs=_regs(_ESP8266_SPI_REG_BASE, 0x1C, 0x40, None, None),
        efuse_base=0,
        magic_values=(0xFFF0C101,),
        spi_config_reader=None,
    ),
    TargetChip.ESP32: Target(
        regs=_regs(_ESP32_SPI_REG_BASE, 0x1C, 0x80, 0x28, 0x2C),
        efuse_base=0x3FF5A000,
        magic_values=(0x00F01D83,),
        spi_config_reader=_spi_config_esp32,
    ),
    TargetChip.ESP32S2: Target(
        regs=_regs(_ESP32S2_SPI_REG_BASE, 0x18, 0x58, 0x24, 0x28),
        efuse_base=0x3F41A000,
        magic_values=(0x000007C6,),
        spi_config_reader=_spi_config_esp32xx,
    ),
    TargetChip.ESP32C3: Target(
        regs=_ESP32XX_REGS,
        efuse_base=0x60008800,
        magic_values=(0x6921506F, 0x1B31506F),
        spi_config_reader=_spi_config_esp32xx,
    ),
    TargetChip.ESP32S3: Target(
        regs=_ESP32XX_REGS,
        efuse_base=0x60007000,
        magic_values=(0x00000009,),
        spi_config_reader=_spi_config_esp32xx,
    ),
    TargetChip.ESP32C2: Target(
        regs=_ESP32XX_REGS,
        efuse_base=0x60008800,
        magic_values=(0x6F51306F,),
        spi_config_reader=_spi_config_esp32xx,
    ),
    TargetChip.ESP32H4: Target(
        regs=_ESP32XX_REGS,
        efuse_base=0x6001A000,
        magic_values=(0xCA26CC22, 0x6881B06F),
        spi_config_reader=_spi_config_esp32xx,
    ),
}


def detect_chip(read_register):
    """Identify the attached chip from its magic register.

    ``read_register`` takes an address and returns the register value.
    Returns the chip and its SPI register layout.
    """
    magic_value = read_register(CHIP_DETECT_MAGIC_REG_ADDR)
    for chip, target in _TARGETS.items():
        if magic_value in target.magic_values:
            return chip, target.regs
    raise InvalidTargetError(f"unknown chip magic value 0x{magic_value:08x}")


def read_spi_config(chip, read_register):
    """Read the SPI flash pin configuration from the chip's eFuses."""
    try:
        target = _TARGETS[TargetChip(chip)]
    except (KeyError, ValueError):
        raise InvalidTargetError(f"unsupported chip {chip!r}") from None
    if target.spi_config_reader is None:
        raise UnsupportedFuncError(f"{TargetChip(chip).name} has no SPI pin configuration")
    return target.spi_config_reader(target.efuse_base, read_register)


def encryption_in_begin_flash_cmd(chip):
    """Whether the flash begin command of ``chip`` omits the encryption field."""
    return chip in (TargetChip.ESP32, TargetChip.ESP8266)