"""Report parser for relay board status reports.

Parses the 8-byte GET_REPORT payload into serial and relay state.
Pure functions with no side effects.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List

from .report import (
    REPORT_SIZE,
    SERIAL_LENGTH,
    SERIAL_MIN_EXCLUSIVE,
    SERIAL_MAX_EXCLUSIVE,
    SERIAL_TERMINATOR_OFFSET,
    STATE_OFFSET,
)


@dataclass(frozen=True)
class StatusReport:
    """A decoded status report.

    Attributes:
        serial_bytes: Raw serial field
        terminator: Byte following the serial field, zero on a sane board
        mask: Relay state bitmask (bit 0 is relay 1)
    """
    serial_bytes: bytes
    terminator: int
    mask: int

    @property
    def serial(self) -> str:
        return self.serial_bytes.decode("latin-1")

    @property
    def serial_valid(self) -> bool:
        """True if every serial byte is printable ASCII without space."""
        return all(SERIAL_MIN_EXCLUSIVE < code < SERIAL_MAX_EXCLUSIVE
                   for code in self.serial_bytes)

    @property
    def terminated(self) -> bool:
        return self.terminator == 0


class ReportParser:
    """Parser for the relay board status report."""

    @staticmethod
    def parse(report: bytes) -> StatusReport:
        """Decode an 8-byte status report.

        Args:
            report: Bytes read with GET_REPORT

        Returns:
            StatusReport

        Raises:
            ValueError: if the report is not REPORT_SIZE bytes long
        """
        report = bytes(report)
        if len(report) != REPORT_SIZE:
            raise ValueError(
                f"Status report must be {REPORT_SIZE} bytes, got {len(report)}")
        return StatusReport(
            serial_bytes=report[:SERIAL_LENGTH],
            terminator=report[SERIAL_TERMINATOR_OFFSET],
            mask=report[STATE_OFFSET],
        )

    @staticmethod
    def decode_states(mask: int, count: int) -> List[bool]:
        """Expand a bitmask into per-relay states.

        Examples:
            >>> ReportParser.decode_states(0b0101, 4)
            [True, False, True, False]
        """
        return [bool(mask & (1 << i)) for i in range(count)]
