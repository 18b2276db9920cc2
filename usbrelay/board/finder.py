"""Discovery and claim of the USB relay board.

Scans all attached USB devices, keeps those with the relay vendor/product
ids and validates each candidate until one is accepted. A matching id pair
never ends the scan on its own: a candidate with a bad product name, a bad
serial or a serial different from the attach filter is released and the
next candidate is tried.
"""
from __future__ import annotations

import logging
import threading
from typing import List, Optional, Tuple

from ..errors import ClaimError, DeviceNotFoundError, UsbIOError
from ..models import (
    BASE_PRODUCT_NAME,
    CHANNEL_COUNTS,
    RELAY_PRODUCT_ID,
    RELAY_VENDOR_ID,
    DeviceIdentity,
    RelayState,
)
from ..transport import UsbBackend, UsbDevice
from .connection import RelayConnection

logger = logging.getLogger(__name__)


def is_relay_device(device: UsbDevice) -> bool:
    """Check the fixed vendor/product id pair."""
    return device.vendor_id == RELAY_VENDOR_ID and device.product_id == RELAY_PRODUCT_ID


def find_relays(backend: UsbBackend) -> List[UsbDevice]:
    """List attached devices with the relay vendor/product ids.

    Devices are not opened, so boards in use by another process are listed
    too.
    """
    return [device for device in backend.devices() if is_relay_device(device)]


def parse_channel_count(product: str) -> int:
    """Parse the relay count from a product name.

    The name must be BASE_PRODUCT_NAME followed by exactly one digit from
    CHANNEL_COUNTS.

    Examples:
        >>> parse_channel_count("USBRelay4")
        4

    Raises:
        ClaimError: if the name does not follow that pattern
    """
    if not product.startswith(BASE_PRODUCT_NAME):
        raise ClaimError(f"The base name of product must be {BASE_PRODUCT_NAME}")
    if len(product) != len(BASE_PRODUCT_NAME) + 1:
        raise ClaimError("The base product name does not contain a product index")

    digit = product[-1]
    count = int(digit) if digit.isdigit() else -1
    if count not in CHANNEL_COUNTS:
        raise ClaimError(
            f"The number of relays must be one of values {list(CHANNEL_COUNTS)}. "
            f"Current value {digit!r}")
    return count


def _claim_candidate(device: UsbDevice,
                     attach_serial: Optional[str]) -> Tuple[DeviceIdentity, RelayConnection, RelayState]:
    """Open and validate one candidate.

    On any failure the device is closed before the error propagates.
    """
    device.open()
    logger.debug("USB device is open")
    connection = RelayConnection(device)
    try:
        manufacturer = device.manufacturer()
        logger.debug(f"USB manufacturer: {manufacturer}")
        product = device.product()
        logger.debug(f"USB product: {product}")

        count = parse_channel_count(product)
        logger.debug(f"USB relay count: {count}")

        report = connection.read_report()
        if not report.serial_valid:
            raise ClaimError(f"Incorrect USB relay serial: {report.serial_bytes!r}")
        if not report.terminated:
            raise ClaimError("Bad USB relay serial string")
        serial = report.serial
        logger.debug(f"USB relay serial: {serial}")

        if attach_serial and attach_serial != serial:
            raise ClaimError(
                f"USB relay serial ({serial}) not match attach-serial ({attach_serial})")

        try:
            connection.claim()
        except UsbIOError as e:
            raise ClaimError(
                f"{e}. Perhaps need to create a UDEV rule to access the device") from e
    except Exception:
        connection.release()
        raise

    identity = DeviceIdentity(
        vendor_id=device.vendor_id,
        product_id=device.product_id,
        bus=device.bus,
        address=device.address,
        manufacturer=manufacturer,
        product=product,
        channel_count=count,
        serial=serial,
    )
    return identity, connection, RelayState(mask=report.mask, count=count)


def claim_relay(backend: UsbBackend,
                attach_serial: Optional[str] = None,
                stop_event: Optional[threading.Event] = None,
                ) -> Tuple[DeviceIdentity, RelayConnection, RelayState]:
    """Find, validate and claim one relay board.

    Args:
        backend: USB backend to enumerate
        attach_serial: Accept only a board with this serial, if set
        stop_event: Abort the scan between candidates when set

    Returns:
        (identity, claimed connection, current relay state)

    Raises:
        DeviceNotFoundError: if no candidate was accepted
    """
    device_found = False
    try:
        devices = list(backend.devices())
    except UsbIOError as e:
        raise DeviceNotFoundError(f"Failed get USB device list: {e}") from e

    for device in devices:
        if stop_event is not None and stop_event.is_set():
            raise DeviceNotFoundError("Device search interrupted")
        if not is_relay_device(device):
            continue

        device_found = True
        logger.info(f"USB device found on bus {device.bus:03d}/{device.address:03d}")
        try:
            identity, connection, state = _claim_candidate(device, attach_serial)
        except (ClaimError, UsbIOError) as e:
            logger.warning(f"{e}. USB device will be closed")
            continue

        logger.debug(f"USB relay states: {list(state.states)}")
        return identity, connection, state

    if device_found:
        raise DeviceNotFoundError("Device failed initialize")
    raise DeviceNotFoundError("Device not found")
