"""Merging of the ``ss`` and ``/proc/net`` views into one port list."""

import logging
from typing import Dict, Iterable, List, Sequence, Tuple

from .models import PortRecord, Protocol, ProtocolFilter
from .procnet import PROC_ROOT, PathLike, scan_proc_net
from .ss import scan_ss

logger = logging.getLogger(__name__)


def merge_records(primary: Iterable[PortRecord], secondary: Iterable[PortRecord]) -> List[PortRecord]:
    """Combine two record sets into one list with a single entry per (protocol, port).

    Within ``primary`` a record with a known owner replaces one without.
    ``secondary`` only fills keys ``primary`` does not have. The result is
    sorted by (port, protocol) so it does not depend on input order.
    """
    merged: Dict[Tuple[Protocol, int], PortRecord] = {}
    for record in primary:
        existing = merged.get(record.key)
        if existing is None or (record.has_known_owner and not existing.has_known_owner):
            merged[record.key] = record
    for record in secondary:
        merged.setdefault(record.key, record)
    return sorted(merged.values(), key=lambda r: (r.port, r.protocol.value))


def scan_open_ports(proc_root: PathLike = PROC_ROOT) -> List[PortRecord]:
    """Scan both sources; never raises, an empty list means nothing was found."""
    from_ss = scan_ss()
    from_proc = scan_proc_net(proc_root)
    records = merge_records(from_ss, from_proc)
    logger.info(
        "scan complete: %d ports (%d from ss, %d from /proc/net)",
        len(records), len(from_ss), len(from_proc),
    )
    return records


def filter_records(records: Sequence[PortRecord], protocol_filter: ProtocolFilter) -> List[PortRecord]:
    return [r for r in records if protocol_filter.matches(r.protocol)]


def total_pages(total_items: int, page_size: int) -> int:
    if total_items <= 0 or page_size <= 0:
        return 1
    return -(-total_items // page_size)


def get_page(records: Sequence[PortRecord], page: int, page_size: int) -> List[PortRecord]:
    if page_size <= 0 or page < 0:
        return []
    start = page * page_size
    return list(records[start:start + page_size])
