"""Session with a claimed relay board.

A RelayConnection owns one open USB device and performs the 8-byte report
exchanges. Every exchange is recorded in a single ContinuousErrors counter
shared by poll reads, toggles and serial writes, which the controller
consults to decide when the board is gone.

Note: RelayConnection is not thread-safe. The controller serialises all
      exchanges under its lock.
"""
from __future__ import annotations

import logging
from typing import Optional

from ..errors import TransferError, UsbIOError
from ..protocol import ReportParser, StatusReport
from ..protocol.report import (
    REPORT_SIZE,
    REPORT_REQUEST_TIMEOUT_MS,
    REQUEST_TYPE_CLASS_IN,
    REQUEST_TYPE_CLASS_OUT,
    USBRQ_HID_GET_REPORT,
    USBRQ_HID_SET_REPORT,
)
from ..transport import UsbDevice

logger = logging.getLogger(__name__)

RELAY_INTERFACE = 0

# Consecutive failures before a device-removed error forces detach
CONTINUOUS_ERRORS_REMOVED = 3
# Consecutive failures before detach regardless of the error kind
CONTINUOUS_ERRORS_MAX = 5


class ContinuousErrors:
    """Consecutive failed exchange counter for one session.

    Attributes:
        count: Failed exchanges since the last success
        last_error_code: Transport error code of the last failure, if any
        device_removed: True if the last failure reported device removal
    """

    def __init__(self):
        self.count = 0
        self.last_error_code: Optional[int] = None
        self.device_removed = False

    def record_failure(self, error: UsbIOError) -> None:
        self.count += 1
        if error.error_code is not None:
            self.last_error_code = error.error_code
            self.device_removed = error.device_removed

    def record_success(self) -> None:
        if self.count:
            logger.debug(f"USB continuous errors: {self.count}")
        self.reset()

    def reset(self) -> None:
        self.count = 0
        self.last_error_code = None
        self.device_removed = False

    def should_detach(self) -> bool:
        """Check whether the session must be torn down.

        Returns:
            True after CONTINUOUS_ERRORS_REMOVED failures ending with a
            device removal, or after CONTINUOUS_ERRORS_MAX failures of any kind
        """
        if self.count >= CONTINUOUS_ERRORS_REMOVED and self.device_removed:
            return True
        return self.count >= CONTINUOUS_ERRORS_MAX


class RelayConnection:
    """Report exchanges with one open relay board."""

    def __init__(self, device: UsbDevice, timeout: int = REPORT_REQUEST_TIMEOUT_MS):
        """Wrap an open device.

        Args:
            device: Opened UsbDevice
            timeout: Exchange timeout in milliseconds
        """
        self._device = device
        self._timeout = timeout
        self._claimed = False
        self._driver_detached = False
        self.errors = ContinuousErrors()

    @property
    def device(self) -> UsbDevice:
        return self._device

    @property
    def claimed(self) -> bool:
        return self._claimed

    def read_report(self) -> StatusReport:
        """Read the 8-byte status report.

        Raises:
            TransferError: on a failed or short transfer
        """
        try:
            data = self._device.control_transfer(
                REQUEST_TYPE_CLASS_IN, USBRQ_HID_GET_REPORT, 0, 0,
                REPORT_SIZE, self._timeout)
        except UsbIOError as e:
            raise self._failure(TransferError(
                f"Failed read USB relay report. Error code: {e.error_code}",
                expected=REPORT_SIZE,
                error_code=e.error_code,
                device_removed=e.device_removed)) from e

        data = bytes(data)
        if len(data) != REPORT_SIZE:
            raise self._failure(TransferError(
                f"Failed read USB relay report. Transferred {len(data)} of {REPORT_SIZE} bytes",
                expected=REPORT_SIZE,
                transferred=len(data)))

        self.errors.record_success()
        return ReportParser.parse(data)

    def write_report(self, report: bytes) -> None:
        """Send an 8-byte command report.

        Raises:
            TransferError: on a failed or short transfer
        """
        if len(report) != REPORT_SIZE:
            raise ValueError(f"Command report must be {REPORT_SIZE} bytes, got {len(report)}")
        try:
            written = self._device.control_transfer(
                REQUEST_TYPE_CLASS_OUT, USBRQ_HID_SET_REPORT, 0, 0,
                bytes(report), self._timeout)
        except UsbIOError as e:
            raise self._failure(TransferError(
                f"Failed send message to USB interface. Error code: {e.error_code}",
                expected=REPORT_SIZE,
                error_code=e.error_code,
                device_removed=e.device_removed)) from e

        if written != REPORT_SIZE:
            raise self._failure(TransferError(
                f"Failed send message to USB interface. Transferred {written} of {REPORT_SIZE} bytes",
                expected=REPORT_SIZE,
                transferred=written))

        self.errors.record_success()

    def claim(self) -> None:
        """Detach any kernel driver and claim the relay interface.

        A detached driver is re-attached by release(), also when the claim
        itself fails.

        Raises:
            UsbIOError: if the interface cannot be claimed
        """
        self._driver_detached = self._device.detach_kernel_driver(RELAY_INTERFACE)
        self._device.claim_interface(RELAY_INTERFACE)
        self._claimed = True
        logger.debug(f"USB interface {RELAY_INTERFACE} claimed")

    def release(self, device_removed: bool = False) -> None:
        """Release the interface, give it back to the kernel driver and
        close the device.

        Args:
            device_removed: Skip the interface release and the driver
                re-attach, the handle is already invalid when the board
                was unplugged
        """
        if self._claimed and not device_removed:
            try:
                self._device.release_interface(RELAY_INTERFACE)
                logger.debug(f"USB interface {RELAY_INTERFACE} released")
            except UsbIOError as e:
                logger.error(f"Failed release USB interface {RELAY_INTERFACE}. {e}")
        if self._driver_detached and not device_removed:
            try:
                self._device.attach_kernel_driver(RELAY_INTERFACE)
            except UsbIOError as e:
                logger.error(f"Failed re-attach kernel driver to interface {RELAY_INTERFACE}. {e}")
        self._driver_detached = False
        self._claimed = False
        self._device.close()
        self.errors.reset()
        logger.debug("USB device closed")

    def _failure(self, error: TransferError) -> TransferError:
        self.errors.record_failure(error)
        return error
