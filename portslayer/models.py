"""Port records shared by every scanning source."""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Sequence, Tuple

UNKNOWN_PID = 0
UNKNOWN_NAME = "unknown"


class Protocol(str, Enum):
    TCP = "tcp"
    UDP = "udp"

    def __str__(self) -> str:
        return self.value


class ProtocolFilter(Enum):
    ALL = "all"
    TCP = "tcp"
    UDP = "udp"

    @property
    def label(self) -> str:
        return "All" if self is ProtocolFilter.ALL else self.value.upper()

    def matches(self, protocol: Protocol) -> bool:
        return self is ProtocolFilter.ALL or self.value == protocol.value


@dataclass(frozen=True)
class PortRecord:
    protocol: Protocol
    port: int
    local_address: str
    pid: int = UNKNOWN_PID
    process_name: str = UNKNOWN_NAME

    @property
    def owner(self) -> Tuple[int, str]:
        return self.pid, self.process_name

    @property
    def has_known_owner(self) -> bool:
        return self.pid > UNKNOWN_PID

    @property
    def key(self) -> Tuple[Protocol, int]:
        """Identity used when merging sources: one record per (protocol, port)."""
        return self.protocol, self.port

    def __str__(self) -> str:
        text = f"{self.protocol.value.upper()} {self.port} ({self.local_address}) → {self.process_name}"
        if self.has_known_owner:
            text += f" [PID {self.pid}]"
        return text

    def to_table_row(self) -> Sequence[str]:
        return [
            self.protocol.value,
            str(self.port),
            self.local_address,
            str(self.pid) if self.has_known_owner else "—",
            self.process_name,
        ]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["protocol"] = self.protocol.value
        return data
