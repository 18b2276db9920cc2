"""Protocol layer for the relay board 8-byte HID report."""

from .parser import ReportParser, StatusReport
from .serializer import ReportSerializer
from . import report

__all__ = [
    "ReportParser",
    "StatusReport",
    "ReportSerializer",
    "report",
]
