"""Errors raised by the loader, supported chips and connection settings."""

from dataclasses import dataclass
from enum import IntEnum


class LoaderError(Exception):
    """Base class for every failure reported by the loader."""


class LoaderFailure(LoaderError):
    """Unspecified error."""


class LoaderTimeout(LoaderError):
    """The operation did not complete before its timeout elapsed."""


class ImageSizeError(LoaderError):
    """The image to flash is larger than the flash."""


class InvalidMD5Error(LoaderError):
    """The computed MD5 does not match the one reported by the target."""


class InvalidParamError(LoaderError):
    """An invalid parameter was passed to a loader function."""


class InvalidTargetError(LoaderError):
    """The connected target could not be identified."""


class UnsupportedChipError(LoaderError):
    """The attached chip is not supported."""


class UnsupportedFuncError(LoaderError):
    """The requested function is not supported on the attached target."""


class InvalidResponseError(LoaderError):
    """The target sent a malformed or failing response."""


class TargetChip(IntEnum):
    """Chips the loader knows how to talk to."""

    ESP8266 = 0
    ESP32 = 1
    ESP32S2 = 2
    ESP32C3 = 3
    ESP32S3 = 4
    ESP32C2 = 5
    ESP32H4 = 6
    UNKNOWN = 7


@dataclass(frozen=True)
class ConnectArgs:
    """Timing used while connecting to a target.

    ``sync_timeout`` is the time in milliseconds to wait for a sync response;
    ``trials`` is how many sync attempts are made, with a 100 ms pause
    between failed attempts.
    """

    sync_timeout: int = 100
    trials: int = 10