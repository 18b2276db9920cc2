"""Immutable data models for relay board identity, state and events.

All models are frozen dataclasses so snapshots handed to callers can never
be mutated behind the controller's lock.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

RELAY_VENDOR_ID = 0x16C0
RELAY_PRODUCT_ID = 0x05DF

# Valid product names are USBRelay1, USBRelay2, USBRelay4 and USBRelay8
BASE_PRODUCT_NAME = "USBRelay"
CHANNEL_COUNTS = (1, 2, 4, 8)


@dataclass(frozen=True)
class AllChannels:
    """Selector addressing every relay on the board."""

    def __str__(self) -> str:
        return "all"


@dataclass(frozen=True)
class Channel:
    """Selector addressing one relay.

    Attributes:
        number: 1-based relay number
    """
    number: int

    def __post_init__(self):
        if self.number < 1:
            raise ValueError(f"Relay number must be >= 1, got {self.number}")

    def __str__(self) -> str:
        return str(self.number)


ALL = AllChannels()

Selector = Union[AllChannels, Channel]


@dataclass(frozen=True)
class DeviceIdentity:
    """Identity of a claimed relay board.

    Attributes:
        vendor_id: USB Vendor ID
        product_id: USB Product ID
        bus: USB bus number (diagnostic only)
        address: USB device address (diagnostic only)
        manufacturer: Manufacturer string descriptor
        product: Product string descriptor (e.g. 'USBRelay4')
        channel_count: Number of relays parsed from the product name
        serial: 5-character serial stored in the board
    """
    vendor_id: int
    product_id: int
    bus: int
    address: int
    manufacturer: str
    product: str
    channel_count: int
    serial: str

    @property
    def location(self) -> str:
        return f"{self.bus:03d}/{self.address:03d}"


@dataclass(frozen=True)
class RelayState:
    """Snapshot of relay states.

    Bits at or above ``count`` are dropped on construction, so a snapshot
    never reports a relay the board does not have.

    Attributes:
        mask: Bitmask, bit i is relay i+1
        count: Number of relays on the board
    """
    mask: int = 0
    count: int = 0

    def __post_init__(self):
        object.__setattr__(self, "mask", self.mask & ((1 << self.count) - 1))

    @property
    def states(self) -> Tuple[bool, ...]:
        return tuple(bool(self.mask & (1 << i)) for i in range(self.count))

    def is_on(self, number: int) -> bool:
        """Return True if relay ``number`` (1-based) is on."""
        if not 1 <= number <= self.count:
            raise IndexError(f"Relay number {number} out of range [1..{self.count}]")
        return bool(self.mask & (1 << (number - 1)))

    def with_mask(self, mask: int) -> RelayState:
        return RelayState(mask=mask, count=self.count)


class ControllerState(Enum):
    """Lifecycle state of the controller worker."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ATTACHED = "attached"


class EventKind(Enum):
    """Kinds of notifications published to the host application."""
    ATTACHED = "attached"
    DETACHED = "detached"
    CHANGED = "changed"
    FAIL_CHANGE = "fail_change"


@dataclass(frozen=True)
class RelayEvent:
    """A notification published by the controller.

    Attributes:
        kind: Event kind
        selector: Relay selector for CHANGED / FAIL_CHANGE, None otherwise
        message: Error description for FAIL_CHANGE, None otherwise
    """
    kind: EventKind
    selector: Optional[Selector] = None
    message: Optional[str] = None
