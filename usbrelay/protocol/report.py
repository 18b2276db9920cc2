"""HID report layout of the USB relay board.

The board exchanges fixed 8-byte feature reports over control transfers on
endpoint 0:

    GET_REPORT (class, IN):   [serial0..serial4, ?, terminator, state_mask]
    SET_REPORT (class, OUT):  [opcode, arg0, arg1, ...] zero padded

The layout, opcodes and timeout are a hardware contract.
"""
from __future__ import annotations

REPORT_SIZE = 8

USBRQ_HID_GET_REPORT = 0x01
USBRQ_HID_SET_REPORT = 0x09

# bmRequestType: CLASS | DEVICE recipient, direction bit 7
REQUEST_TYPE_CLASS_IN = 0xA0
REQUEST_TYPE_CLASS_OUT = 0x20

REPORT_REQUEST_TIMEOUT_MS = 2 * 1000

CMD_ALL_ON = 0xFE
CMD_ALL_OFF = 0xFC
CMD_CHANNEL_ON = 0xFF
CMD_CHANNEL_OFF = 0xFD
CMD_SET_SERIAL = 0xFA

SERIAL_LENGTH = 5
SERIAL_PAD = b"0"
# Serial bytes must lie strictly between these two codes
SERIAL_MIN_EXCLUSIVE = 0x20
SERIAL_MAX_EXCLUSIVE = 0x7F

SERIAL_TERMINATOR_OFFSET = SERIAL_LENGTH + 1
STATE_OFFSET = 7
