"""Unit tests for the pyusb backend with mocked usb.core."""

import errno
import unittest
from unittest.mock import MagicMock, patch

import usb.core

from usbrelay.board.connection import RelayConnection
from usbrelay.errors import TransportInitError, UsbIOError
from usbrelay.transport.pyusb import PyUsbBackend, PyUsbDevice, _to_io_error


def usb_error(message="failed", errno_=None, backend_code=None):
    return usb.core.USBError(message, error_code=backend_code, errno=errno_)


class TestErrorMapping(unittest.TestCase):

    def test_libusb_no_device(self):
        error = _to_io_error("Failed control transfer", usb_error(backend_code=-4))
        self.assertTrue(error.device_removed)
        self.assertEqual(error.error_code, -4)
        self.assertIn("Failed control transfer", str(error))

    def test_enodev(self):
        error = _to_io_error("Failed", usb_error(errno_=errno.ENODEV))
        self.assertTrue(error.device_removed)
        self.assertEqual(error.error_code, errno.ENODEV)

    def test_generic_io(self):
        error = _to_io_error("Failed", usb_error(errno_=errno.EIO, backend_code=-1))
        self.assertFalse(error.device_removed)
        self.assertEqual(error.error_code, -1)

    def test_timeout_without_code(self):
        error = _to_io_error("Failed", usb.core.USBTimeoutError("timeout"))
        self.assertFalse(error.device_removed)


class TestPyUsbDevice(unittest.TestCase):
    """Tests for the usb.core.Device wrapper."""

    def setUp(self):
        self.raw = MagicMock()
        self.raw.idVendor = 0x16C0
        self.raw.idProduct = 0x05DF
        self.raw.bus = 3
        self.raw.address = 12
        self.device = PyUsbDevice(self.raw)

    def test_ids(self):
        self.assertEqual(self.device.vendor_id, 0x16C0)
        self.assertEqual(self.device.product_id, 0x05DF)
        self.assertEqual(self.device.bus, 3)
        self.assertEqual(self.device.address, 12)

    def test_in_transfer_returns_bytes(self):
        self.raw.ctrl_transfer.return_value = bytearray(b"ABCDE\x00\x00\x03")
        result = self.device.control_transfer(0xA0, 0x01, 0, 0, 8, 2000)
        self.assertEqual(result, b"ABCDE\x00\x00\x03")
        self.assertIsInstance(result, bytes)
        self.raw.ctrl_transfer.assert_called_once_with(0xA0, 0x01, 0, 0, 8, 2000)

    def test_out_transfer_returns_count(self):
        self.raw.ctrl_transfer.return_value = 8
        self.assertEqual(self.device.control_transfer(0x20, 0x09, 0, 0, b"\xfe" + bytes(7), 2000), 8)

    def test_transfer_error_mapped(self):
        self.raw.ctrl_transfer.side_effect = usb_error(errno_=errno.ENODEV, backend_code=-4)
        with self.assertRaises(UsbIOError) as ctx:
            self.device.control_transfer(0xA0, 0x01, 0, 0, 8, 2000)
        self.assertTrue(ctx.exception.device_removed)

    def test_open_error_mapped(self):
        self.raw.get_active_configuration.side_effect = usb_error(backend_code=-3)
        with self.assertRaises(UsbIOError):
            self.device.open()

    @patch('usbrelay.transport.pyusb.usb.util.get_string')
    def test_strings(self, mock_get_string):
        mock_get_string.return_value = "USBRelay2"
        self.raw.iProduct = 2
        self.raw.iManufacturer = 0
        self.assertEqual(self.device.product(), "USBRelay2")
        self.assertEqual(self.device.manufacturer(), "")

    def test_kernel_driver_detached_when_active(self):
        self.raw.is_kernel_driver_active.return_value = True
        self.assertTrue(self.device.detach_kernel_driver(0))
        self.raw.detach_kernel_driver.assert_called_once_with(0)

    def test_kernel_driver_not_active(self):
        self.raw.is_kernel_driver_active.return_value = False
        self.assertFalse(self.device.detach_kernel_driver(0))
        self.raw.detach_kernel_driver.assert_not_called()

    def test_kernel_driver_unsupported(self):
        self.raw.is_kernel_driver_active.side_effect = NotImplementedError
        self.assertFalse(self.device.detach_kernel_driver(0))
        self.raw.detach_kernel_driver.assert_not_called()

    def test_attach_kernel_driver_error_mapped(self):
        self.raw.attach_kernel_driver.side_effect = usb_error(errno_=errno.ENODEV, backend_code=-4)
        with self.assertRaises(UsbIOError) as ctx:
            self.device.attach_kernel_driver(0)
        self.assertTrue(ctx.exception.device_removed)

    def test_attach_kernel_driver_unsupported(self):
        self.raw.attach_kernel_driver.side_effect = NotImplementedError
        self.device.attach_kernel_driver(0)

    @patch('usbrelay.transport.pyusb.usb.util.dispose_resources')
    @patch('usbrelay.transport.pyusb.usb.util.release_interface')
    @patch('usbrelay.transport.pyusb.usb.util.claim_interface')
    def test_connection_gives_interface_back_to_kernel(self, mock_claim, mock_release, mock_dispose):
        self.raw.is_kernel_driver_active.return_value = True
        connection = RelayConnection(self.device)

        connection.claim()
        connection.release()

        self.raw.detach_kernel_driver.assert_called_once_with(0)
        mock_release.assert_called_once_with(self.raw, 0)
        self.raw.attach_kernel_driver.assert_called_once_with(0)

    @patch('usbrelay.transport.pyusb.usb.util.claim_interface')
    def test_claim_error_mapped(self, mock_claim):
        mock_claim.side_effect = usb_error(errno_=errno.EBUSY, backend_code=-6)
        with self.assertRaises(UsbIOError) as ctx:
            self.device.claim_interface(0)
        self.assertEqual(ctx.exception.error_code, -6)


class TestPyUsbBackend(unittest.TestCase):

    @patch('usbrelay.transport.pyusb.usb.backend.libusb1.get_backend')
    def test_missing_libusb(self, mock_get_backend):
        mock_get_backend.return_value = None
        with self.assertRaises(TransportInitError):
            PyUsbBackend()

    @patch('usbrelay.transport.pyusb.usb.core.find')
    def test_devices_wrapped(self, mock_find):
        backend_impl = MagicMock()
        first, second = MagicMock(), MagicMock()
        mock_find.return_value = iter([first, second])

        devices = list(PyUsbBackend(backend_impl).devices())

        self.assertEqual(len(devices), 2)
        self.assertTrue(all(isinstance(d, PyUsbDevice) for d in devices))
        mock_find.assert_called_once_with(find_all=True, backend=backend_impl)

    @patch('usbrelay.transport.pyusb.usb.core.find')
    def test_enumeration_error(self, mock_find):
        mock_find.side_effect = usb_error(backend_code=-1)
        with self.assertRaises(UsbIOError):
            list(PyUsbBackend(MagicMock()).devices())


if __name__ == '__main__':
    unittest.main()
