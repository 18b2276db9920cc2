"""Unit tests for RelayConnection and the continuous error counter."""

import unittest
from unittest.mock import MagicMock

from usbrelay.board.connection import (
    CONTINUOUS_ERRORS_MAX,
    CONTINUOUS_ERRORS_REMOVED,
    ContinuousErrors,
    RelayConnection,
)
from usbrelay.errors import TransferError, UsbIOError
from usbrelay.protocol import ReportSerializer
from usbrelay.protocol.report import (
    REPORT_REQUEST_TIMEOUT_MS,
    REQUEST_TYPE_CLASS_IN,
    REQUEST_TYPE_CLASS_OUT,
    USBRQ_HID_GET_REPORT,
    USBRQ_HID_SET_REPORT,
)

from tests.fakes import FakeRelayDevice, LIBUSB_ERROR_IO, LIBUSB_ERROR_NO_DEVICE


def io_error(removed=False):
    code = LIBUSB_ERROR_NO_DEVICE if removed else LIBUSB_ERROR_IO
    return UsbIOError("transfer failed", error_code=code, device_removed=removed)


class TestContinuousErrors(unittest.TestCase):
    """Tests for detach thresholds."""

    def setUp(self):
        self.errors = ContinuousErrors()

    def test_initial(self):
        self.assertEqual(self.errors.count, 0)
        self.assertIsNone(self.errors.last_error_code)
        self.assertFalse(self.errors.should_detach())

    def test_generic_errors_need_high_threshold(self):
        for _ in range(CONTINUOUS_ERRORS_MAX - 1):
            self.errors.record_failure(io_error())
            self.assertFalse(self.errors.should_detach())
        self.errors.record_failure(io_error())
        self.assertTrue(self.errors.should_detach())

    def test_removed_errors_use_low_threshold(self):
        for _ in range(CONTINUOUS_ERRORS_REMOVED - 1):
            self.errors.record_failure(io_error(removed=True))
        self.assertFalse(self.errors.should_detach())
        self.errors.record_failure(io_error(removed=True))
        self.assertTrue(self.errors.should_detach())
        self.assertEqual(self.errors.last_error_code, LIBUSB_ERROR_NO_DEVICE)

    def test_last_error_kind_decides(self):
        self.errors.record_failure(io_error(removed=True))
        self.errors.record_failure(io_error(removed=True))
        self.errors.record_failure(io_error())
        self.assertFalse(self.errors.should_detach())

    def test_short_transfer_keeps_last_code(self):
        self.errors.record_failure(io_error(removed=True))
        self.errors.record_failure(io_error(removed=True))
        self.errors.record_failure(TransferError("short", expected=8, transferred=4))
        self.assertTrue(self.errors.device_removed)
        self.assertTrue(self.errors.should_detach())

    def test_success_resets(self):
        for _ in range(4):
            self.errors.record_failure(io_error())
        self.errors.record_success()
        self.assertEqual(self.errors.count, 0)
        self.assertIsNone(self.errors.last_error_code)


class TestRelayConnection(unittest.TestCase):
    """Tests for report exchanges."""

    def setUp(self):
        self.device = FakeRelayDevice(product="USBRelay8", serial=b"ABCDE", mask=0x81)
        self.device.open()
        self.connection = RelayConnection(self.device)

    def test_read_report(self):
        report = self.connection.read_report()
        self.assertEqual(report.mask, 0x81)
        self.assertEqual(report.serial, "ABCDE")

    def test_read_uses_get_report(self):
        device = MagicMock()
        device.control_transfer.return_value = b"ABCDE\x00\x00\x01"
        RelayConnection(device).read_report()
        device.control_transfer.assert_called_once_with(
            REQUEST_TYPE_CLASS_IN, USBRQ_HID_GET_REPORT, 0, 0, 8, REPORT_REQUEST_TIMEOUT_MS)

    def test_write_uses_set_report(self):
        device = MagicMock()
        device.control_transfer.return_value = 8
        command = ReportSerializer.all_channels(True)
        RelayConnection(device).write_report(command)
        device.control_transfer.assert_called_once_with(
            REQUEST_TYPE_CLASS_OUT, USBRQ_HID_SET_REPORT, 0, 0, command, REPORT_REQUEST_TIMEOUT_MS)

    def test_write_report_applies_command(self):
        self.connection.write_report(ReportSerializer.all_channels(False))
        self.assertEqual(self.device.mask, 0)

    def test_write_wrong_size(self):
        with self.assertRaises(ValueError):
            self.connection.write_report(b"\xfe")
        self.assertEqual(self.connection.errors.count, 0)

    def test_short_read_counts(self):
        self.device.short_transfers = 1
        with self.assertRaises(TransferError) as ctx:
            self.connection.read_report()
        self.assertEqual(ctx.exception.transferred, 4)
        self.assertEqual(self.connection.errors.count, 1)
        self.assertIsNone(self.connection.errors.last_error_code)

    def test_short_write_counts(self):
        self.device.short_transfers = 1
        with self.assertRaises(TransferError):
            self.connection.write_report(ReportSerializer.channel(1, True))
        self.assertEqual(self.connection.errors.count, 1)

    def test_backend_error_classified(self):
        self.device.removed = True
        with self.assertRaises(TransferError) as ctx:
            self.connection.read_report()
        self.assertTrue(ctx.exception.device_removed)
        self.assertEqual(ctx.exception.error_code, LIBUSB_ERROR_NO_DEVICE)
        self.assertTrue(self.connection.errors.device_removed)

    def test_success_resets_counter(self):
        self.device.short_transfers = 2
        for _ in range(2):
            with self.assertRaises(TransferError):
                self.connection.read_report()
        self.connection.write_report(ReportSerializer.all_channels(True))
        self.assertEqual(self.connection.errors.count, 0)

    def test_claim_and_release(self):
        self.connection.claim()
        self.assertTrue(self.connection.claimed)
        self.assertTrue(self.device.claimed)

        self.connection.release()
        self.assertEqual(self.device.released, 1)
        self.assertFalse(self.device.is_open)
        self.assertFalse(self.connection.claimed)

    def test_release_after_removal_skips_interface(self):
        self.connection.claim()
        self.connection.release(device_removed=True)
        self.assertEqual(self.device.released, 0)
        self.assertFalse(self.device.is_open)

    def test_release_reattaches_kernel_driver(self):
        self.connection.claim()
        self.assertFalse(self.device.kernel_driver_bound)

        self.connection.release()

        self.assertTrue(self.device.kernel_driver_bound)
        self.assertEqual(self.device.kernel_driver_attached, 1)

    def test_release_without_bound_driver(self):
        self.device.kernel_driver_bound = False
        self.connection.claim()
        self.connection.release()
        self.assertEqual(self.device.kernel_driver_attached, 0)

    def test_failed_claim_reattaches_kernel_driver(self):
        self.device.claim_error = UsbIOError("Resource busy", error_code=-6)
        with self.assertRaises(UsbIOError):
            self.connection.claim()

        self.connection.release()

        self.assertEqual(self.device.released, 0)
        self.assertTrue(self.device.kernel_driver_bound)

    def test_removed_device_keeps_driver_detached(self):
        self.connection.claim()
        self.connection.release(device_removed=True)
        self.assertEqual(self.device.kernel_driver_attached, 0)

    def test_release_twice_reattaches_once(self):
        self.connection.claim()
        self.connection.release()
        self.connection.release()
        self.assertEqual(self.device.kernel_driver_attached, 1)

    def test_release_unclaimed(self):
        self.connection.release()
        self.assertEqual(self.device.released, 0)
        self.assertFalse(self.device.is_open)


if __name__ == '__main__':
    unittest.main()
