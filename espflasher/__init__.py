"""Host-side library for flashing ESP chips through their ROM serial bootloader."""

__version__ = "0.1.0"

__all__ = ["errors", "port", "slip", "protocol", "targets", "loader"]