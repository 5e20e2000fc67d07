"""List listening TCP/UDP ports on Linux and kill the processes behind them."""

__version__ = "1.0.0"

from .killer import (
    InvalidTargetError,
    PermissionDeniedError,
    TerminationError,
    TerminationReport,
    terminate,
    terminate_all,
    terminate_listeners,
    terminate_port,
)
from .models import PortRecord, Protocol, ProtocolFilter
from .scanner import filter_records, get_page, merge_records, scan_open_ports, total_pages

scan = scan_open_ports

__all__ = [
    "InvalidTargetError",
    "PermissionDeniedError",
    "PortRecord",
    "Protocol",
    "ProtocolFilter",
    "TerminationError",
    "TerminationReport",
    "filter_records",
    "get_page",
    "merge_records",
    "scan",
    "scan_open_ports",
    "terminate",
    "terminate_all",
    "terminate_listeners",
    "terminate_port",
    "total_pages",
]
