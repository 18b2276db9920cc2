"""Abstract USB backend consumed by the relay controller.

The backend interface is a thin seam over the USB primitives the controller
needs, so the board logic can be driven by pyusb in production and by a
fake in tests.

Key principles:
- Backend failures raise UsbIOError (never backend specific exceptions)
- Control transfers mirror pyusb: IN returns the bytes read, OUT returns
  the number of bytes written
- The caller decides what a short transfer means
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Union


class UsbDevice(ABC):
    """One enumerated USB device."""

    @property
    @abstractmethod
    def vendor_id(self) -> int:
        pass

    @property
    @abstractmethod
    def product_id(self) -> int:
        pass

    @property
    @abstractmethod
    def bus(self) -> int:
        pass

    @property
    @abstractmethod
    def address(self) -> int:
        pass

    @abstractmethod
    def open(self) -> None:
        """Open the device handle.

        Raises:
            UsbIOError: if the device cannot be opened
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the device handle. Safe to call multiple times."""
        pass

    @abstractmethod
    def manufacturer(self) -> str:
        """Read the manufacturer string descriptor."""
        pass

    @abstractmethod
    def product(self) -> str:
        """Read the product string descriptor."""
        pass

    @abstractmethod
    def detach_kernel_driver(self, interface: int) -> bool:
        """Detach a kernel driver bound to ``interface``, if any.

        Returns:
            True if a driver was bound and has been detached
        """
        pass

    @abstractmethod
    def attach_kernel_driver(self, interface: int) -> None:
        """Re-attach the kernel driver detached from ``interface``."""
        pass

    @abstractmethod
    def claim_interface(self, interface: int) -> None:
        pass

    @abstractmethod
    def release_interface(self, interface: int) -> None:
        pass

    @abstractmethod
    def control_transfer(self,
                         request_type: int,
                         request: int,
                         value: int,
                         index: int,
                         data_or_length: Union[bytes, int],
                         timeout: int) -> Union[bytes, int]:
        """Perform a synchronous control transfer.

        Args:
            request_type: bmRequestType
            request: bRequest
            value: wValue
            index: wIndex
            data_or_length: Payload for OUT transfers, length for IN transfers
            timeout: Timeout in milliseconds

        Returns:
            Bytes read for IN transfers, number of bytes written for OUT

        Raises:
            UsbIOError: on a backend error
        """
        pass


class UsbBackend(ABC):
    """Source of enumerated USB devices."""

    @abstractmethod
    def devices(self) -> Iterable[UsbDevice]:
        """Enumerate currently attached devices.

        Raises:
            UsbIOError: if enumeration fails
        """
        pass

    def close(self) -> None:
        """Release backend resources."""
        pass

    def __enter__(self) -> UsbBackend:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
