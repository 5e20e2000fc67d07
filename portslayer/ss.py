"""Listening sockets as reported by the ``ss`` socket-statistics utility.

``ss`` only shows the owning process of sockets the caller may inspect, so
it is first run through ``sudo -n`` (never prompts) and, when that is not
possible, run again as the current user with reduced visibility.
"""

import logging
import re
import subprocess
from typing import List, Optional, Tuple

from .models import UNKNOWN_NAME, UNKNOWN_PID, PortRecord, Protocol

logger = logging.getLogger(__name__)

SS_BINARY = "ss"
SUDO_BINARY = "sudo"
COMMAND_TIMEOUT = 5

# listening TCP and UDP sockets, numeric, with processes, no header
SS_QUERIES: Tuple[Tuple[str, Protocol], ...] = (
    ("-tlnpH", Protocol.TCP),
    ("-ulnpH", Protocol.UDP),
)

USERS_MARKER = "users:(("
PORT_RE = re.compile(r"[0-9]+")
PID_RE = re.compile(r"pid=([0-9]*)")
MAX_PORT = 65535

_degraded_warned = False


def _run(cmd: List[str]) -> Optional[subprocess.CompletedProcess]:
    try:
        return subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            errors="replace",
            timeout=COMMAND_TIMEOUT,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("%s failed: %s", " ".join(cmd), exc)
        return None


def run_ss(flags: str) -> Optional[str]:
    """Return the raw output of ``ss <flags>``, or None if it could not run."""
    elevated = _run([SUDO_BINARY, "-n", SS_BINARY, flags])
    if elevated is not None and elevated.returncode == 0:
        return elevated.stdout

    global _degraded_warned
    if _degraded_warned:
        logger.debug("running %s without sudo", SS_BINARY)
    else:
        logger.warning("running %s without sudo, some processes will not be visible", SS_BINARY)
        _degraded_warned = True
    fallback = _run([SS_BINARY, flags])
    if fallback is None:
        return None
    return fallback.stdout


def clean_address(addr: str) -> str:
    cleaned = addr.lstrip("[").rstrip("]")
    if "%" in cleaned:
        return cleaned.split("%", 1)[0]
    if cleaned == "*":
        return "0.0.0.0"
    return cleaned


def _looks_like_address(field: str) -> bool:
    return "." in field or "[" in field or "::" in field or field.startswith("*")


def extract_address_and_port(line: str) -> Optional[Tuple[str, int]]:
    """Find the local ``address:port`` field of an ``ss`` line.

    ss prints ``State Recv-Q Send-Q Local Peer [Process]``; the first field
    that looks like a socket address and ends in a numeric port is the local
    one. The peer field of a listener always ends in ``:*``.
    """
    for field in line.split():
        if not _looks_like_address(field):
            continue
        addr, sep, port_str = field.rpartition(":")
        if not sep or port_str == "*":
            continue
        if not PORT_RE.fullmatch(port_str):
            continue
        port = int(port_str)
        if 0 < port <= MAX_PORT:
            return clean_address(addr), port
    return None


def extract_owner(line: str) -> Optional[Tuple[int, str]]:
    """Parse ``users:(("name",pid=N,fd=K))`` into ``(N, name)``."""
    start = line.find(USERS_MARKER)
    if start == -1:
        return None
    section = line[start:]

    name_start = section.find('(("')
    if name_start == -1:
        return None
    name_start += 3
    name_end = section.find('"', name_start)
    if name_end == -1:
        return None
    name = section[name_start:name_end]

    m = PID_RE.search(section)
    if not m or not m.group(1):
        return None
    return int(m.group(1)), name


def parse_ss_line(line: str, protocol: Protocol) -> Optional[PortRecord]:
    line = line.strip()
    if not line:
        return None
    found = extract_address_and_port(line)
    if found is None:
        return None
    address, port = found
    pid, name = extract_owner(line) or (UNKNOWN_PID, UNKNOWN_NAME)
    return PortRecord(
        protocol=protocol,
        port=port,
        local_address=address,
        pid=pid,
        process_name=name,
    )


def parse_ss_output(output: str, protocol: Protocol) -> List[PortRecord]:
    records = []
    for line in output.splitlines():
        record = parse_ss_line(line, protocol)
        if record is not None:
            records.append(record)
    return records


def scan_ss() -> List[PortRecord]:
    """Run every ``ss`` query and parse what came back."""
    records: List[PortRecord] = []
    for flags, protocol in SS_QUERIES:
        output = run_ss(flags)
        if output is None:
            continue
        records.extend(parse_ss_output(output, protocol))
    return records
