"""USB backend layer for relay board communication."""

from .base import UsbBackend, UsbDevice

__all__ = ["UsbBackend", "UsbDevice"]
