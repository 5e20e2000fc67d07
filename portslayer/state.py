"""Published port list and the thread that keeps it fresh.

The scanner builds a new immutable snapshot and swaps it in; readers take
whatever snapshot is current and never see a half-updated list.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Tuple

from .models import PortRecord
from .scanner import scan_open_ports

logger = logging.getLogger(__name__)

REFRESH_INTERVAL = 10.0


@dataclass(frozen=True)
class PortSnapshot:
    version: int
    records: Tuple[PortRecord, ...]
    taken_at: float


class SnapshotStore:
    def __init__(self, records: Iterable[PortRecord] = ()) -> None:
        self._lock = threading.Lock()
        self._snapshot = PortSnapshot(0, tuple(records), time.time())

    def current(self) -> PortSnapshot:
        with self._lock:
            return self._snapshot

    def publish(self, records: Iterable[PortRecord]) -> PortSnapshot:
        frozen = tuple(records)
        with self._lock:
            self._snapshot = PortSnapshot(self._snapshot.version + 1, frozen, time.time())
            snapshot = self._snapshot
        logger.debug("published snapshot %d with %d ports", snapshot.version, len(frozen))
        return snapshot


class BackgroundScanner(threading.Thread):
    """Rescan every ``interval`` seconds and publish into ``store``.

    ``stop()`` takes effect between scans; a scan that has started runs to
    completion.
    """

    def __init__(
        self,
        store: SnapshotStore,
        interval: float = REFRESH_INTERVAL,
        scan: Callable[[], Iterable[PortRecord]] = scan_open_ports,
        on_publish: Optional[Callable[[PortSnapshot], None]] = None,
    ) -> None:
        super().__init__(name="portslayer-scanner", daemon=True)
        self.store = store
        self.interval = interval
        self._scan = scan
        self._on_publish = on_publish
        self._stopped = threading.Event()

    def run(self) -> None:
        while not self._stopped.wait(self.interval):
            try:
                snapshot = self.store.publish(self._scan())
                if self._on_publish is not None:
                    self._on_publish(snapshot)
            except Exception:
                logger.exception("background scan failed, retrying in %gs", self.interval)

    def stop(self) -> None:
        self._stopped.set()
