"""USB HID relay board controller - discovery, polling and thread-safe switching."""

from .board import RelayController
from .errors import (
    RelayError,
    TransportInitError,
    UsbIOError,
    TransferError,
    DeviceNotFoundError,
    ClaimError,
    ValidationError,
    DesyncError,
)
from .models import (
    ALL,
    AllChannels,
    Channel,
    Selector,
    DeviceIdentity,
    RelayState,
    ControllerState,
    EventKind,
    RelayEvent,
)

__all__ = [
    "RelayController",
    "RelayError",
    "TransportInitError",
    "UsbIOError",
    "TransferError",
    "DeviceNotFoundError",
    "ClaimError",
    "ValidationError",
    "DesyncError",
    "ALL",
    "AllChannels",
    "Channel",
    "Selector",
    "DeviceIdentity",
    "RelayState",
    "ControllerState",
    "EventKind",
    "RelayEvent",
]
