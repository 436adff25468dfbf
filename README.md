# espflasher

`espflasher` talks to the ROM serial bootloader of Espressif chips. It supports the ESP8266, ESP32, ESP32-S2, ESP32-S3, ESP32-C2, ESP32-C3 and ESP32-H4. With it a host can:

- connect to a chip and find out which model is attached
- write images to flash, either plain or deflate-compressed
- load a program into RAM and start it
- read and write registers
- ask the chip to change its baud rate
- check what was flashed against the chip's own MD5

The SLIP-framed wire protocol is implemented in pure Python. The package needs nothing outside the standard library.

## Installation

```
pip install espflasher
```

To run the tests as well:

```
pip install "espflasher[test]"
pytest
```

## Providing a port

`espflasher` does not open serial devices itself. Instead you wrap a stream you have already opened in an `espflasher.port.LoaderPort`:

```python
from espflasher.port import LoaderPort

port = LoaderPort(
    stream,                       # needs read(n) and write(data)
    set_boot_pin=set_gpio0,       # optional: callable taking the pin level as a bool
    set_reset_pin=set_reset,      # optional: callable taking the pin level as a bool
    set_transmission_rate=None,   # optional: callable taking the new baud rate
    reset_hold_ms=100,
    boot_hold_ms=50,
)
```

The stream's `read(n)` may return fewer bytes than requested, or none at all, while data is still arriving. `LoaderPort` keeps polling until it has all the bytes it needs or the timeout runs out, and then raises `LoaderTimeout`.

`LoaderPort` offers these operations:

- `write(data, timeout)` writes `data` and flushes the stream if the stream has a `flush` method. It raises `LoaderTimeout` if the stream reports that it wrote fewer bytes than it was given.
- `read(size, timeout)` returns exactly `size` bytes. The timeout is in milliseconds.
- `start_timer(ms)` starts the timer for the current operation, and `remaining_time()` returns how many milliseconds of it are left.
- `delay_ms(ms)` sleeps for the given number of milliseconds.
- `enter_bootloader()` holds the boot pin low across a reset. `reset_target()` pulses the reset pin low. If you did not supply pin callables, these only wait.
- `change_transmission_rate(rate)` changes the host side of the link. It calls `set_transmission_rate` if you gave one. Otherwise it sets the stream's `baudrate` attribute. If neither is available, it raises `LoaderFailure`.
- `debug_print(text)` sends diagnostics to the `espflasher.port` logger at DEBUG level.

If your transport needs different behaviour, subclass `LoaderPort` and override these methods.

## Flashing an image

```python
from espflasher.errors import ConnectArgs, TargetChip
from espflasher.loader import EspLoader

loader = EspLoader(port)
loader.connect(ConnectArgs())           # sync_timeout=100 ms, trials=10
print(loader.target())                  # e.g. TargetChip.ESP32

with open("app.bin", "rb") as f:
    image = f.read()

block = 1024
loader.flash_start(0x10000, len(image), block)
for start in range(0, len(image), block):
    loader.flash_write(image[start:start + block])
loader.flash_verify()                   # raises InvalidMD5Error on mismatch
loader.flash_finish(reboot=True)
```

What `connect` does:

1. It enters the bootloader.
2. It syncs, making up to `trials` attempts with a 100 ms pause after each failed attempt.
3. It identifies the chip.
4. It attaches the SPI flash. On ESP8266 it sends an empty flash-begin instead.

When `flash_start` (and `flash_defl_start`) begins, it tries to read the flash size from the chip. Then:

- If the image does not fit in the flash, it raises `ImageSizeError`.
- If detection fails, it logs a debug message and continues without a size check.

`flash_write` pads a short final block with `0xFF` up to the block size. If a block is larger than the block size given to `flash_start`, it raises `InvalidParamError`.

`flash_verify` compares the MD5 of the data written since the last `flash_start` with the MD5 the chip computes over the same range. It is not available on ESP8266 and raises `UnsupportedFuncError` there.

## Other operations on `EspLoader`

- **Compressed images:** `flash_defl_start(offset, image_size, compressed_size, block_size)`, `flash_defl_write(payload)` and `flash_defl_finish(reboot)`.
- **RAM loading:** `mem_start(offset, size, block_size)`, `mem_write(payload)` and `mem_finish(entrypoint)`. If `entrypoint` is 0, the chip stays in the loader.
- **Registers:** `read_register(address)` returns the value as an int. `write_register(address, value)` writes one.
- **Baud rate:** `change_transmission_rate(rate)` asks the chip to switch rate. It does not change the host side. For that, call `port.change_transmission_rate(rate)` afterwards. This operation is not supported on ESP8266.
- **MD5 of a flash range:** `get_md5_hex(start_address, length)` returns the chip's 32-character hex digest as a string.
- **Restart:** `reset_target()` toggles the reset pin.

## Errors

Every failure raises a subclass of `espflasher.errors.LoaderError`.

| Error | Raised when |
| --- | --- |
| `LoaderFailure` | the port cannot change its transmission rate |
| `LoaderTimeout` | data does not arrive in time, a sync fails on every trial, or an SPI flash command does not complete |
| `ImageSizeError` | the image does not fit in the detected flash |
| `InvalidMD5Error` | the MD5 check in `flash_verify` fails |
| `InvalidParamError` | a block is larger than the block size, the block size is not positive, or a packet size is below one byte |
| `InvalidTargetError` | the chip's magic value is unknown |
| `UnsupportedChipError` | the flash reports a size id outside the supported range; the loader handles this itself by skipping the size check |
| `UnsupportedFuncError` | the attached chip does not support the operation |
| `InvalidResponseError` | the bootloader reports a failed command, or sends an invalid SLIP escape |

## Lower layers

You can also use the layers beneath `EspLoader` directly:

- `espflasher.protocol.Protocol(port)` issues the individual bootloader commands, such as `sync`, `read_reg`, `write_reg`, `flash_begin`, `flash_data`, `md5` and `spi_parameters`. `compute_checksum(data)` gives the payload checksum.
- `espflasher.slip` provides `encode`, `send`, `send_delimiter`, `receive_data` and `receive_packet`.
- `espflasher.targets` provides `detect_chip(read_register)`, `read_spi_config(chip, read_register)` and `encryption_in_begin_flash_cmd(chip)`, together with the per-chip `TargetRegisters`.

## What it does not do

`espflasher` is a library only:

- It has no command-line tool.
- It does not find or open serial devices.
- It does not drive GPIO pins itself.

The opened stream and the pin callables must come from your own code.