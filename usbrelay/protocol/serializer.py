"""Report serializer for relay board commands.

Converts toggle and serial requests to 8-byte SET_REPORT payloads.
Pure functions with no side effects.
"""
from __future__ import annotations

from ..errors import ValidationError
from ..models import AllChannels, Channel, Selector
from .report import (
    REPORT_SIZE,
    CMD_ALL_ON,
    CMD_ALL_OFF,
    CMD_CHANNEL_ON,
    CMD_CHANNEL_OFF,
    CMD_SET_SERIAL,
    SERIAL_LENGTH,
    SERIAL_PAD,
    SERIAL_MIN_EXCLUSIVE,
    SERIAL_MAX_EXCLUSIVE,
)


class ReportSerializer:
    """Serializer for the relay board command reports.

    Every method returns exactly REPORT_SIZE bytes, zero padded.
    """

    @staticmethod
    def _report(*payload: int) -> bytes:
        buff = bytearray(REPORT_SIZE)
        buff[:len(payload)] = bytes(payload)
        return bytes(buff)

    @staticmethod
    def all_channels(value: bool) -> bytes:
        """Build the all-on / all-off command.

        Examples:
            >>> ReportSerializer.all_channels(True)
            b'\\xfe\\x00\\x00\\x00\\x00\\x00\\x00\\x00'
        """
        return ReportSerializer._report(CMD_ALL_ON if value else CMD_ALL_OFF)

    @staticmethod
    def channel(number: int, value: bool) -> bytes:
        """Build the single relay on/off command.

        Args:
            number: 1-based relay number
            value: True to switch on, False to switch off
        """
        if not 1 <= number <= 0xFF:
            raise ValidationError(f"Relay number {number} cannot be encoded")
        opcode = CMD_CHANNEL_ON if value else CMD_CHANNEL_OFF
        return ReportSerializer._report(opcode, number)

    @staticmethod
    def toggle(selector: Selector, value: bool) -> bytes:
        """Build the command for a relay selector."""
        if isinstance(selector, AllChannels):
            return ReportSerializer.all_channels(value)
        elif isinstance(selector, Channel):
            return ReportSerializer.channel(selector.number, value)
        else:
            raise ValueError(f"Unknown selector type: {type(selector)}")

    @staticmethod
    def expected_mask(selector: Selector, value: bool, current: int, count: int) -> int:
        """Compute the state mask the board should report after a toggle.

        The board only reports the resulting snapshot, so for a single relay
        ``current`` must be the mask read immediately before the command.

        Args:
            selector: ALL or Channel(n)
            value: Requested relay state
            current: Mask read before the command (ignored for ALL)
            count: Number of relays on the board
        """
        full = (1 << count) - 1
        if isinstance(selector, AllChannels):
            return full if value else 0

        bit = 1 << (selector.number - 1)
        if value:
            return (current | bit) & full
        return (current & ~bit) & full

    @staticmethod
    def normalize_serial(value: str) -> bytes:
        """Encode a serial to exactly SERIAL_LENGTH bytes.

        Longer values are truncated, shorter values are right padded with '0'.

        Examples:
            >>> ReportSerializer.normalize_serial("AB")
            b'AB000'
            >>> ReportSerializer.normalize_serial("ABCDEFG")
            b'ABCDE'
        """
        raw = value.encode("utf-8")[:SERIAL_LENGTH]
        return raw.ljust(SERIAL_LENGTH, SERIAL_PAD)

    @staticmethod
    def validate_serial(raw: bytes) -> None:
        """Check every serial byte is printable ASCII without space.

        Raises:
            ValidationError: on wrong length or an out of range byte
        """
        if len(raw) != SERIAL_LENGTH:
            raise ValidationError(
                f"Serial must be {SERIAL_LENGTH} bytes, got {len(raw)}")
        for index, code in enumerate(raw):
            if code <= SERIAL_MIN_EXCLUSIVE or code >= SERIAL_MAX_EXCLUSIVE:
                raise ValidationError(
                    f"Incorrect USB relay serial. Symbol index: {index}; code: {code}")

    @staticmethod
    def set_serial(raw: bytes) -> bytes:
        """Build the set-serial command from validated serial bytes."""
        ReportSerializer.validate_serial(raw)
        return ReportSerializer._report(CMD_SET_SERIAL, *raw)
