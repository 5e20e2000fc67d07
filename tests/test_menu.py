import pytest

from portslayer import killer
from portslayer.menu import (
    Exit,
    KillAll,
    KillOne,
    MenuController,
    NextPage,
    PrevPage,
    Refresh,
    SetFilter,
    SetPageSize,
    ViewState,
    build_menu,
    transition,
)
from portslayer.models import PortRecord, Protocol, ProtocolFilter
from portslayer.state import SnapshotStore


def ports(n, protocol=Protocol.TCP):
    return [PortRecord(protocol, 1000 + i, "0.0.0.0", 100 + i, f"proc{i}") for i in range(n)]


def test_transition_paging_is_clamped():
    view = ViewState(page_size=10)
    view = transition(view, NextPage(), pages=3)
    view = transition(view, NextPage(), pages=3)
    view = transition(view, NextPage(), pages=3)
    assert view.page == 2
    view = transition(view, PrevPage(), pages=3)
    assert view.page == 1
    assert transition(ViewState(), PrevPage(), pages=1).page == 0
    assert transition(ViewState(), NextPage(), pages=1).page == 0


@pytest.mark.parametrize("action", [Refresh(), SetFilter(ProtocolFilter.UDP), SetPageSize(5), KillAll(), KillOne(9)])
def test_transition_resets_page(action):
    assert transition(ViewState(page=2), action, pages=3).page == 0


def test_transition_updates_filter_and_size():
    view = transition(ViewState(), SetFilter(ProtocolFilter.TCP), pages=1)
    assert view.protocol_filter is ProtocolFilter.TCP
    view = transition(view, SetPageSize(5), pages=1)
    assert view.page_size == 5
    assert transition(view, SetPageSize(0), pages=1) == view
    assert transition(view, Exit(), pages=1) == view


def test_menu_with_no_ports():
    labels = [item.label for item in build_menu(ViewState(), [])]
    assert "✅ No open ports" in labels
    assert not any("Kill all" in label for label in labels)
    assert not any("Page" in label for label in labels)
    assert labels[-1] == "❌ Exit"


def test_menu_lists_current_page_with_navigation():
    records = ports(12) + [PortRecord(Protocol.UDP, 53, "0.0.0.0")]
    items = build_menu(ViewState(protocol_filter=ProtocolFilter.TCP, page=1, page_size=5), records)
    labels = [item.label for item in items]

    assert "⚔️ Kill all (12 ports)" in labels
    assert "📡 12 ports found (TCP)" in labels
    assert "📄 Page 2/3" in labels
    port_items = [i for i in items if isinstance(i.action, KillOne)]
    assert [i.action.pid for i in port_items] == [105, 106, 107, 108, 109]
    nav = {i.label: i.enabled for i in items if isinstance(i.action, (PrevPage, NextPage))}
    assert nav == {"◀ Previous": True, "▶ Next": True}


def test_menu_clamps_page_past_the_end():
    items = build_menu(ViewState(page=7, page_size=5), ports(6))
    labels = [item.label for item in items]
    assert "📄 Page 2/2" in labels
    assert [i.action.pid for i in items if isinstance(i.action, KillOne)] == [105]


def test_menu_marks_unknown_owner():
    items = build_menu(ViewState(), [PortRecord(Protocol.TCP, 8069, "0.0.0.0")])
    item = next(i for i in items if isinstance(i.action, KillOne))
    assert item.label == "🟡 TCP 8069 (0.0.0.0) → unknown"
    assert item.action == KillOne(0, 8069, Protocol.TCP)


def test_filter_submenu_marks_active_choice():
    items = build_menu(ViewState(protocol_filter=ProtocolFilter.UDP), [])
    submenu = next(i for i in items if i.label.startswith("📊"))
    assert [c.label for c in submenu.children] == ["○ All", "○ TCP", "● UDP"]


class Recorder:
    def __init__(self):
        self.killed = []
        self.ports = []

    def terminate(self, pid):
        if pid == 0:
            raise killer.InvalidTargetError("unknown PID")
        self.killed.append(pid)

    def terminate_port(self, port, protocol):
        self.ports.append((port, protocol))

    def terminate_all(self, pids):
        self.killed.extend(sorted(pids))
        return killer.TerminationReport(killed=len(pids))


@pytest.fixture
def recorder(monkeypatch):
    rec = Recorder()
    monkeypatch.setattr(killer, "terminate", rec.terminate)
    monkeypatch.setattr(killer, "terminate_port", rec.terminate_port)
    monkeypatch.setattr(killer, "terminate_all", rec.terminate_all)
    return rec


def make_controller(records, scans=None):
    scans = scans if scans is not None else []

    def scan():
        scans.append(1)
        return records

    return MenuController(SnapshotStore(records), scan=scan)


def test_controller_refresh_publishes_new_snapshot():
    scans = []
    controller = make_controller(ports(3), scans)
    controller.view = ViewState(page=1, page_size=1)
    outcome = controller.dispatch(Refresh())
    assert scans == [1]
    assert controller.store.current().version == 1
    assert controller.view.page == 0
    assert outcome.message == "3 ports"


def test_controller_paging():
    controller = make_controller(ports(12))
    controller.dispatch(NextPage())
    controller.dispatch(NextPage())
    assert controller.view.page == 1
    controller.dispatch(SetPageSize(5))
    controller.dispatch(NextPage())
    controller.dispatch(NextPage())
    controller.dispatch(NextPage())
    assert controller.view.page == 2


def test_controller_kill_one(recorder):
    controller = make_controller(ports(2))
    outcome = controller.dispatch(KillOne(100, 1000, Protocol.TCP))
    assert recorder.killed == [100]
    assert not outcome.error
    assert controller.store.current().version == 1


def test_controller_kill_unknown_owner_by_port(recorder):
    controller = make_controller([])
    outcome = controller.dispatch(KillOne(0, 8069, Protocol.TCP))
    assert recorder.ports == [(8069, Protocol.TCP)]
    assert recorder.killed == []
    assert "8069" in outcome.message


def test_controller_kill_pid_zero_without_port_reports_error(recorder):
    outcome = make_controller([]).dispatch(KillOne(0))
    assert outcome.error


def test_controller_kill_all_respects_filter(recorder):
    records = ports(2) + [PortRecord(Protocol.UDP, 53, "0.0.0.0", 7, "dnsmasq"), PortRecord(Protocol.TCP, 9, "0.0.0.0")]
    controller = make_controller(records)
    controller.dispatch(SetFilter(ProtocolFilter.TCP))
    outcome = controller.dispatch(KillAll())
    assert recorder.killed == [100, 101]
    assert outcome.message == "2 processes terminated"


def test_controller_kill_all_without_known_owner(recorder):
    outcome = make_controller([PortRecord(Protocol.TCP, 9, "0.0.0.0")]).dispatch(KillAll())
    assert outcome.error
    assert recorder.killed == []


def test_controller_exit():
    assert make_controller([]).dispatch(Exit()).exit
