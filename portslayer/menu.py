"""Menu state machine for the port list.

User input becomes one of a small set of actions. ``transition`` is the
only place view state changes; ``MenuController.dispatch`` performs the
side effects (scans, kills) around it. ``build_menu`` turns the current
state into a list of items a front end can show.
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

from . import killer
from .models import PortRecord, Protocol, ProtocolFilter
from .scanner import filter_records, get_page, scan_open_ports, total_pages
from .state import SnapshotStore

logger = logging.getLogger(__name__)

PAGE_SIZES = (5, 10)
DEFAULT_PAGE_SIZE = 10


@dataclass(frozen=True)
class Refresh:
    pass


@dataclass(frozen=True)
class SetFilter:
    protocol_filter: ProtocolFilter


@dataclass(frozen=True)
class SetPageSize:
    size: int


@dataclass(frozen=True)
class KillOne:
    pid: int
    # used to free the port by number when the owner is unknown
    port: int = 0
    protocol: Optional[Protocol] = None


@dataclass(frozen=True)
class KillAll:
    pass


@dataclass(frozen=True)
class PrevPage:
    pass


@dataclass(frozen=True)
class NextPage:
    pass


@dataclass(frozen=True)
class Exit:
    pass


Action = Union[Refresh, SetFilter, SetPageSize, KillOne, KillAll, PrevPage, NextPage, Exit]


@dataclass(frozen=True)
class ViewState:
    protocol_filter: ProtocolFilter = ProtocolFilter.ALL
    page: int = 0
    page_size: int = DEFAULT_PAGE_SIZE


def transition(view: ViewState, action: Action, pages: int) -> ViewState:
    """Next view state after ``action`` when the filtered list has ``pages`` pages."""
    if isinstance(action, (Refresh, KillOne, KillAll)):
        return replace(view, page=0)
    if isinstance(action, SetFilter):
        return replace(view, protocol_filter=action.protocol_filter, page=0)
    if isinstance(action, SetPageSize):
        if action.size <= 0:
            return view
        return replace(view, page_size=action.size, page=0)
    if isinstance(action, PrevPage):
        return replace(view, page=max(view.page - 1, 0))
    if isinstance(action, NextPage):
        return replace(view, page=min(view.page + 1, max(pages - 1, 0)))
    return view


@dataclass(frozen=True)
class MenuItem:
    label: str
    action: Optional[Action] = None
    enabled: bool = True
    children: Tuple["MenuItem", ...] = ()

    @property
    def is_separator(self) -> bool:
        return not self.label


SEPARATOR = MenuItem("", enabled=False)


def visible_page(view: ViewState, records: Sequence[PortRecord]) -> Tuple[List[PortRecord], int, int]:
    """Return the filtered records of the shown page, the clamped page index and the page count."""
    filtered = filter_records(records, view.protocol_filter)
    pages = total_pages(len(filtered), view.page_size)
    page = min(view.page, pages - 1)
    return get_page(filtered, page, view.page_size), page, pages


def _filter_submenu(current: ProtocolFilter) -> MenuItem:
    children = tuple(
        MenuItem(f"{'●' if f is current else '○'} {f.label}", SetFilter(f))
        for f in ProtocolFilter
    )
    return MenuItem(f"📊 Filter: {current.label}", children=children)


def _page_size_submenu(current: int) -> MenuItem:
    children = tuple(
        MenuItem(f"{'●' if size == current else '○'} {size} ports", SetPageSize(size))
        for size in PAGE_SIZES
    )
    return MenuItem(f"📋 Per page: {current}", children=children)


def _port_item(record: PortRecord) -> MenuItem:
    icon = "🔴" if record.has_known_owner else "🟡"
    return MenuItem(
        f"{icon} {record}",
        KillOne(record.pid, record.port, record.protocol),
    )


def build_menu(view: ViewState, records: Sequence[PortRecord]) -> List[MenuItem]:
    items = [MenuItem("🔄 Refresh", Refresh()), SEPARATOR]
    items.append(_filter_submenu(view.protocol_filter))
    items.append(_page_size_submenu(view.page_size))
    items.append(SEPARATOR)

    filtered_total = len(filter_records(records, view.protocol_filter))
    page_records, page, pages = visible_page(view, records)

    if filtered_total == 0:
        items.append(MenuItem("✅ No open ports", enabled=False))
    else:
        items.append(MenuItem(f"⚔️ Kill all ({filtered_total} ports)", KillAll()))
        items.append(SEPARATOR)
        suffix = "" if view.protocol_filter is ProtocolFilter.ALL else f" ({view.protocol_filter.label})"
        items.append(MenuItem(f"📡 {filtered_total} ports found{suffix}", enabled=False))
        items.extend(_port_item(r) for r in page_records)

    if pages > 1:
        items.append(SEPARATOR)
        items.append(MenuItem("◀ Previous", PrevPage(), enabled=page > 0))
        items.append(MenuItem(f"📄 Page {page + 1}/{pages}", enabled=False))
        items.append(MenuItem("▶ Next", NextPage(), enabled=page + 1 < pages))

    items.append(SEPARATOR)
    items.append(MenuItem("❌ Exit", Exit()))
    return items


@dataclass
class Outcome:
    message: str = ""
    error: bool = False
    exit: bool = False


class MenuController:
    """Owns the view state and executes actions against a snapshot store."""

    def __init__(
        self,
        store: SnapshotStore,
        scan: Callable[[], Iterable[PortRecord]] = scan_open_ports,
        view: Optional[ViewState] = None,
    ) -> None:
        self.store = store
        self.view = view or ViewState()
        self._scan = scan

    def records(self) -> Tuple[PortRecord, ...]:
        return self.store.current().records

    def menu(self) -> List[MenuItem]:
        return build_menu(self.view, self.records())

    def refresh(self) -> None:
        logger.info("refreshing port list")
        self.store.publish(self._scan())

    def dispatch(self, action: Action) -> Outcome:
        outcome = self._perform(action)
        _, _, pages = visible_page(self.view, self.records())
        self.view = transition(self.view, action, pages)
        return outcome

    def _perform(self, action: Action) -> Outcome:
        if isinstance(action, Exit):
            return Outcome("bye", exit=True)
        if isinstance(action, Refresh):
            self.refresh()
            return Outcome(f"{len(self.records())} ports")
        if isinstance(action, KillOne):
            outcome = self._kill_one(action)
            self.refresh()
            return outcome
        if isinstance(action, KillAll):
            outcome = self._kill_all()
            self.refresh()
            return outcome
        return Outcome()

    def _kill_one(self, action: KillOne) -> Outcome:
        try:
            if action.pid > 0 or action.protocol is None:
                killer.terminate(action.pid)
                return Outcome(f"process {action.pid} terminated")
            logger.warning("port %d has no known PID, killing by port", action.port)
            killer.terminate_port(action.port, action.protocol)
            return Outcome(f"{action.protocol.value} port {action.port} freed")
        except killer.TerminationError as exc:
            return Outcome(str(exc), error=True)

    def _kill_all(self) -> Outcome:
        visible = filter_records(self.records(), self.view.protocol_filter)
        pids = {r.pid for r in visible if r.has_known_owner}
        if not pids:
            return Outcome("no listening process with a known PID", error=True)
        report = killer.terminate_all(pids)
        message = f"{report.killed} processes terminated"
        if not report.ok:
            message += f" ({report.error_text})"
        return Outcome(message, error=report.killed == 0)
