"""Terminating the processes behind listening ports.

Every kill is tried as the current user first and retried once through
``pkexec``, which may show a graphical password prompt.
"""

import logging
import subprocess
from dataclasses import dataclass, field
from typing import Iterable, List

from .models import UNKNOWN_PID, Protocol, ProtocolFilter
from .procnet import PROC_ROOT, PathLike
from .scanner import filter_records, scan_open_ports

logger = logging.getLogger(__name__)

KILL_BINARY = "kill"
FUSER_BINARY = "fuser"
ESCALATION_BINARY = "pkexec"
KILL_TIMEOUT = 120


class TerminationError(Exception):
    pass


class InvalidTargetError(TerminationError):
    pass


class PermissionDeniedError(TerminationError):
    pass


@dataclass
class TerminationReport:
    killed: int = 0
    failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def partial(self) -> bool:
        return self.killed > 0 and bool(self.failures)

    @property
    def error_text(self) -> str:
        return "; ".join(self.failures)


def _run(cmd: List[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        errors="replace",
        timeout=KILL_TIMEOUT,
        check=False,
    )


def _run_with_escalation(cmd: List[str], target: str) -> None:
    try:
        if _run(cmd).returncode == 0:
            return
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("%s failed: %s", " ".join(cmd), exc)

    logger.warning("unprivileged kill of %s failed, retrying with %s", target, ESCALATION_BINARY)
    try:
        elevated = _run([ESCALATION_BINARY] + cmd)
    except (OSError, subprocess.SubprocessError) as exc:
        raise PermissionDeniedError(f"could not kill {target}: {exc}") from exc
    if elevated.returncode != 0:
        raise PermissionDeniedError(f"could not kill {target}: {elevated.stderr.strip()}")


def terminate(pid: int) -> None:
    """Send SIGKILL to ``pid``.

    Raises InvalidTargetError for pid 0 (unknown owner) without running
    anything, and PermissionDeniedError when the escalated retry fails too.
    """
    if pid <= UNKNOWN_PID:
        raise InvalidTargetError(f"refusing to kill process with unknown PID ({pid})")
    logger.info("killing process %d", pid)
    _run_with_escalation([KILL_BINARY, "-9", str(pid)], f"process {pid}")
    logger.info("process %d terminated", pid)


def terminate_port(port: int, protocol: Protocol) -> None:
    """Free a port whose owner is unknown by killing whatever holds it."""
    if port <= 0:
        raise InvalidTargetError(f"invalid port {port}")
    logger.info("killing holders of %s/%d", protocol.value, port)
    _run_with_escalation(
        [FUSER_BINARY, "-k", "-n", protocol.value, str(port)],
        f"{protocol.value} port {port}",
    )


def terminate_all(pids: Iterable[int]) -> TerminationReport:
    """Kill each distinct pid in ascending order, one at a time.

    Failures are collected, not raised: killing some of the processes is a
    valid outcome.
    """
    report = TerminationReport()
    for pid in sorted(set(pids)):
        try:
            terminate(pid)
        except TerminationError as exc:
            report.failures.append(str(exc))
        else:
            report.killed += 1
    if report.partial:
        logger.warning("killed %d processes, with errors: %s", report.killed, report.error_text)
    elif not report.ok:
        logger.error("no process killed: %s", report.error_text)
    return report


def terminate_listeners(
    proc_root: PathLike = PROC_ROOT, protocol_filter: ProtocolFilter = ProtocolFilter.ALL
) -> TerminationReport:
    """Scan now and kill every listener of the selected protocols whose owning process is known."""
    records = filter_records(scan_open_ports(proc_root), protocol_filter)
    pids = {r.pid for r in records if r.has_known_owner}
    if not pids:
        if not records:
            return TerminationReport()
        return TerminationReport(failures=["no listening process with a known PID"])
    return terminate_all(pids)
