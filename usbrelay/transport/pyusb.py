"""pyusb (libusb1) implementation of the USB backend.

Requires: ``pip install pyusb`` + ``apt install libusb-1.0-0``.
Without a udev rule the board can only be claimed as root.
"""
from __future__ import annotations

import errno
import logging
from typing import Iterator, Union

import usb.backend.libusb1
import usb.core
import usb.util

from ..errors import TransportInitError, UsbIOError
from .base import UsbBackend, UsbDevice

logger = logging.getLogger(__name__)

LIBUSB_ERROR_NO_DEVICE = -4


def _to_io_error(message: str, error: Exception) -> UsbIOError:
    """Convert a pyusb exception into UsbIOError.

    pyusb reports libusb failures as USBError carrying both the libusb code
    (``backend_error_code``) and the mapped ``errno``.
    """
    backend_code = getattr(error, "backend_error_code", None)
    err_no = getattr(error, "errno", None)
    removed = backend_code == LIBUSB_ERROR_NO_DEVICE or err_no == errno.ENODEV
    code = backend_code if backend_code is not None else err_no
    return UsbIOError(f"{message}: {error}", error_code=code, device_removed=removed)


class PyUsbDevice(UsbDevice):
    """UsbDevice wrapping a ``usb.core.Device``."""

    def __init__(self, device: usb.core.Device):
        self._device = device

    @property
    def vendor_id(self) -> int:
        return self._device.idVendor

    @property
    def product_id(self) -> int:
        return self._device.idProduct

    @property
    def bus(self) -> int:
        return self._device.bus or 0

    @property
    def address(self) -> int:
        return self._device.address or 0

    def open(self) -> None:
        # pyusb opens the handle lazily; reading the active configuration
        # forces the open and fails if the device is unconfigured.
        try:
            self._device.get_active_configuration()
        except usb.core.USBError as e:
            raise _to_io_error("Failed open USB device", e) from e

    def close(self) -> None:
        try:
            usb.util.dispose_resources(self._device)
        except usb.core.USBError as e:
            logger.debug(f"Error disposing USB resources: {e}")

    def _string(self, index: int, what: str) -> str:
        if not index:
            return ""
        try:
            return usb.util.get_string(self._device, index) or ""
        except (usb.core.USBError, ValueError) as e:
            raise _to_io_error(f"Failed get {what} description", e) from e

    def manufacturer(self) -> str:
        return self._string(self._device.iManufacturer, "manufacturer")

    def product(self) -> str:
        return self._string(self._device.iProduct, "product")

    def detach_kernel_driver(self, interface: int) -> bool:
        try:
            if self._device.is_kernel_driver_active(interface):
                self._device.detach_kernel_driver(interface)
                logger.debug(f"Kernel driver detached from interface {interface}")
                return True
        except NotImplementedError:
            # Not supported on this platform (e.g. Windows, macOS)
            pass
        except usb.core.USBError as e:
            raise _to_io_error("Failed detach kernel driver", e) from e
        return False

    def attach_kernel_driver(self, interface: int) -> None:
        try:
            self._device.attach_kernel_driver(interface)
            logger.debug(f"Kernel driver re-attached to interface {interface}")
        except NotImplementedError:
            pass
        except usb.core.USBError as e:
            raise _to_io_error("Failed attach kernel driver", e) from e

    def claim_interface(self, interface: int) -> None:
        try:
            usb.util.claim_interface(self._device, interface)
        except usb.core.USBError as e:
            raise _to_io_error(f"Failed claim USB interface {interface}", e) from e

    def release_interface(self, interface: int) -> None:
        try:
            usb.util.release_interface(self._device, interface)
        except usb.core.USBError as e:
            raise _to_io_error(f"Failed release USB interface {interface}", e) from e

    def control_transfer(self,
                         request_type: int,
                         request: int,
                         value: int,
                         index: int,
                         data_or_length: Union[bytes, int],
                         timeout: int) -> Union[bytes, int]:
        try:
            result = self._device.ctrl_transfer(
                request_type, request, value, index, data_or_length, timeout)
        except usb.core.USBError as e:
            raise _to_io_error("Failed control transfer", e) from e
        if isinstance(result, int):
            return result
        return bytes(result)


class PyUsbBackend(UsbBackend):
    """UsbBackend enumerating devices through the libusb1 pyusb backend."""

    def __init__(self, backend=None):
        """Initialize the libusb1 backend.

        Args:
            backend: Preconfigured pyusb backend, or None to load libusb1

        Raises:
            TransportInitError: if libusb1 cannot be loaded
        """
        self._backend = backend or usb.backend.libusb1.get_backend()
        if self._backend is None:
            raise TransportInitError(
                "Failed libusb init. Install libusb: apt install libusb-1.0-0")

    def devices(self) -> Iterator[PyUsbDevice]:
        try:
            found = list(usb.core.find(find_all=True, backend=self._backend))
        except usb.core.USBError as e:
            raise _to_io_error("Failed get USB device list", e) from e
        for device in found:
            yield PyUsbDevice(device)

