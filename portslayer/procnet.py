"""Listening sockets read straight from the kernel's ``/proc/net`` tables.

This source sees every socket regardless of who owns it (containers
included); ownership comes from matching socket inodes against the file
descriptors of every process we are allowed to inspect.
"""

import logging
import os
import re
import socket
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .models import UNKNOWN_NAME, UNKNOWN_PID, PortRecord, Protocol

logger = logging.getLogger(__name__)

PROC_ROOT = Path("/proc")
PROC_NET_FILES: Tuple[Tuple[str, Protocol], ...] = (
    ("net/tcp", Protocol.TCP),
    ("net/tcp6", Protocol.TCP),
    ("net/udp", Protocol.UDP),
    ("net/udp6", Protocol.UDP),
)

LISTEN_STATE = "0A"
UDP_OPEN_STATE = "07"
ACCEPTED_STATES = {Protocol.TCP: LISTEN_STATE, Protocol.UDP: UDP_OPEN_STATE}

IPV6_ANY = "0" * 32
IPV6_LOOPBACK = "00000000000000000000000001000000"

SOCKET_RE = re.compile(r"socket:\[([0-9]+)\]")

InodeOwnerMap = Dict[int, Tuple[int, str]]
PathLike = Union[str, Path]


def parse_hex_address(hex_addr: str) -> Optional[Tuple[str, int]]:
    """Decode ``HEXADDR:HEXPORT`` from a ``/proc/net`` table.

    IPv4 addresses are stored in host byte order (little endian). IPv6
    addresses other than ``::`` and ``::1`` are shown abbreviated.
    """
    parts = hex_addr.split(":")
    if len(parts) != 2:
        return None
    ip_hex, port_hex = parts
    try:
        port = int(port_hex, 16)
    except ValueError:
        return None
    if not 0 <= port <= 0xFFFF:
        return None

    if len(ip_hex) == 8:
        try:
            ip = socket.inet_ntoa(bytes.fromhex(ip_hex)[::-1])
        except ValueError:
            return None
    elif len(ip_hex) == 32:
        if ip_hex == IPV6_ANY:
            ip = "[::]"
        elif ip_hex.upper() == IPV6_LOOPBACK:
            ip = "[::1]"
        else:
            ip = f"[{ip_hex[:4]}...{ip_hex[28:]}]"
    else:
        return None
    return ip, port


def parse_proc_net_line(line: str, protocol: Protocol, inode_map: InodeOwnerMap) -> Optional[PortRecord]:
    parts = line.split()
    if len(parts) < 10:
        return None
    if parts[3].upper() != ACCEPTED_STATES[protocol]:
        return None

    decoded = parse_hex_address(parts[1])
    if decoded is None:
        return None
    address, port = decoded
    if port == 0:
        return None

    try:
        inode = int(parts[9])
    except ValueError:
        inode = 0
    pid, name = inode_map.get(inode, (UNKNOWN_PID, UNKNOWN_NAME)) if inode > 0 else (UNKNOWN_PID, UNKNOWN_NAME)

    return PortRecord(
        protocol=protocol,
        port=port,
        local_address=address,
        pid=pid,
        process_name=name,
    )


def parse_proc_net(content: str, protocol: Protocol, inode_map: InodeOwnerMap) -> List[PortRecord]:
    records = []
    for line in content.splitlines()[1:]:
        record = parse_proc_net_line(line, protocol, inode_map)
        if record is not None:
            records.append(record)
    return records


def read_proc_net_tables(proc_root: PathLike = PROC_ROOT) -> List[Tuple[str, Protocol]]:
    tables: List[Tuple[str, Protocol]] = []
    for rel, protocol in PROC_NET_FILES:
        path = Path(proc_root) / rel
        try:
            tables.append((path.read_text(encoding="utf-8"), protocol))
        except OSError as exc:
            logger.debug("skipping %s: %s", path, exc)
    return tables


def extract_socket_inode(link: str) -> Optional[int]:
    m = SOCKET_RE.fullmatch(link)
    return int(m.group(1)) if m else None


def read_process_name(pid: int, proc_root: PathLike = PROC_ROOT) -> str:
    try:
        return (Path(proc_root) / str(pid) / "comm").read_text().strip() or UNKNOWN_NAME
    except (OSError, UnicodeDecodeError):
        return UNKNOWN_NAME


def build_inode_owner_map(proc_root: PathLike = PROC_ROOT) -> InodeOwnerMap:
    """Map every visible socket inode to the ``(pid, comm)`` holding it.

    This is a snapshot of a live system: processes that exit or cannot be
    inspected mid-scan are skipped. When several processes share a socket
    (forked workers), the lowest pid wins.
    """
    inode_owner: InodeOwnerMap = {}
    try:
        entries = os.listdir(proc_root)
    except OSError as exc:
        logger.debug("cannot list %s: %s", proc_root, exc)
        return inode_owner

    for pid in sorted(int(e) for e in entries if e.isdigit()):
        fd_dir = os.path.join(proc_root, str(pid), "fd")
        try:
            fds = os.listdir(fd_dir)
        except OSError:
            continue
        name = None
        for fd in fds:
            try:
                link = os.readlink(os.path.join(fd_dir, fd))
            except OSError:
                continue
            inode = extract_socket_inode(link)
            if inode is None or inode in inode_owner:
                continue
            if name is None:
                name = read_process_name(pid, proc_root)
            inode_owner[inode] = (pid, name)
    return inode_owner


def scan_proc_net(proc_root: PathLike = PROC_ROOT) -> List[PortRecord]:
    """Parse all four kernel socket tables against a fresh inode map."""
    inode_map = build_inode_owner_map(proc_root)
    records: List[PortRecord] = []
    for content, protocol in read_proc_net_tables(proc_root):
        records.extend(parse_proc_net(content, protocol, inode_map))
    return records
