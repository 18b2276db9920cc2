"""Board layer for the USB HID relay board.

This module provides:
- Discovery and claim of the board (claim_relay, find_relays)
- The claimed session and its error counter (RelayConnection, ContinuousErrors)
- Event fan-out to host subscribers (EventDispatcher)
- The attach/poll/detach controller (RelayController)
"""

from .connection import ContinuousErrors, RelayConnection
from .controller import RelayController, backoff_interval
from .events import EventDispatcher
from .finder import claim_relay, find_relays, is_relay_device, parse_channel_count

__all__ = [
    # Connection
    'ContinuousErrors',
    'RelayConnection',

    # Controller
    'RelayController',
    'backoff_interval',

    # Events
    'EventDispatcher',

    # Finder
    'claim_relay',
    'find_relays',
    'is_relay_device',
    'parse_channel_count',
]
