"""Error taxonomy for the USB relay controller."""
from __future__ import annotations

from typing import Optional


class RelayError(Exception):
    """Base error for usbrelay."""


class TransportInitError(RelayError):
    """Raised when the USB backend (libusb) cannot be initialised."""


class UsbIOError(RelayError):
    """Raised when a USB backend primitive fails.

    Attributes:
        error_code: Backend error code (libusb code or errno), if known.
        device_removed: True if the backend reported the device is gone.
    """

    def __init__(self, message: str,
                 error_code: Optional[int] = None,
                 device_removed: bool = False):
        super().__init__(message)
        self.error_code = error_code
        self.device_removed = device_removed


class TransferError(UsbIOError):
    """Raised when a control transfer fails or moves fewer bytes than requested."""

    def __init__(self, message: str,
                 expected: int = 0,
                 transferred: Optional[int] = None,
                 error_code: Optional[int] = None,
                 device_removed: bool = False):
        super().__init__(message, error_code=error_code, device_removed=device_removed)
        self.expected = expected
        self.transferred = transferred


class DeviceNotFoundError(RelayError):
    """Raised when no acceptable relay board could be claimed."""


class ClaimError(RelayError):
    """Raised when a candidate device is rejected during claim."""


class ValidationError(RelayError):
    """Raised when a caller request is invalid (bad channel, serial, not attached)."""


class DesyncError(RelayError):
    """Raised when the board reports a state different from the one commanded."""
