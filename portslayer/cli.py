"""
portslayer - find what is listening on this Linux box and kill it
========================================
* Merges ss output with the kernel's /proc/net tables
* Resolves owners even for sockets ss cannot attribute
* One-shot table, watch mode, interactive menu
* Kill by PID, by port, or everything at once
"""

import argparse
import csv
import io
import json
import logging
import sys
from datetime import datetime
from typing import List, Optional, Sequence, Set, Tuple

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from . import __version__, killer
from .menu import PAGE_SIZES, MenuController, MenuItem, ViewState
from .models import PortRecord, Protocol, ProtocolFilter
from .scanner import filter_records, get_page, scan_open_ports, total_pages
from .state import REFRESH_INTERVAL, BackgroundScanner, PortSnapshot, SnapshotStore

logger = logging.getLogger(__name__)

HEADERS = ["Proto", "Port", "Address", "PID", "Process"]


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
    )


def _print_table(entries: Sequence[PortRecord], color: bool, title: str = "⚔️  Listening ports") -> None:
    if color:
        console = Console()
        table = Table(show_header=True, header_style="bold cyan", title=title)
        for col in HEADERS:
            table.add_column(col)

        for e in entries:
            proto_style = "green" if e.protocol is Protocol.TCP else "magenta"
            owner_style = "red bold" if e.has_known_owner else "yellow"
            row = e.to_table_row()
            table.add_row(
                f"[{proto_style}]{row[0]}[/]",
                row[1],
                row[2],
                row[3],
                f"[{owner_style}]{row[4]}[/]",
            )
        console.print(table)

        known = sum(1 for e in entries if e.has_known_owner)
        summary = f"Total: {len(entries)} | Known owner: {known} | Unknown: {len(entries) - known}"
        if known < len(entries):
            summary += "\n💡 Tip: run with sudo available to attribute more ports"
        console.print(Panel(summary, title="Summary", style="blue"))
        return

    col_widths = [len(h) for h in HEADERS]
    rows = [e.to_table_row() for e in entries]
    for row in rows:
        for i, cell in enumerate(row):
            col_widths[i] = max(col_widths[i], len(cell))

    fmt = " ".join(f"{{:<{w}}}" for w in col_widths)
    print(fmt.format(*HEADERS))
    print(" ".join("-" * w for w in col_widths))
    for row in rows:
        print(fmt.format(*row))


def _to_json(entries: Sequence[PortRecord]) -> str:
    return json.dumps([e.to_dict() for e in entries], indent=2)


def _to_csv(entries: Sequence[PortRecord]) -> str:
    if not entries:
        return ""
    csvfile = io.StringIO()
    writer = csv.DictWriter(csvfile, fieldnames=list(entries[0].to_dict().keys()))
    writer.writeheader()
    for entry in entries:
        writer.writerow(entry.to_dict())
    return csvfile.getvalue()


def export_records(entries: Sequence[PortRecord], filepath: str) -> str:
    """Write ``entries`` as CSV for ``*.csv`` and JSON otherwise; return the path used."""
    if filepath.lower().endswith(".csv"):
        content = _to_csv(entries)
    else:
        content = _to_json(entries)
        if not filepath.lower().endswith(".json"):
            filepath += ".json"
    with open(filepath, "w", encoding="utf-8") as f:
        f.write(content)
    return filepath


def diff_snapshots(
    previous: Sequence[PortRecord], current: Sequence[PortRecord]
) -> Tuple[Set[Tuple[str, int, int]], Set[Tuple[str, int, int]]]:
    before = {(r.protocol.value, r.port, r.pid) for r in previous}
    after = {(r.protocol.value, r.port, r.pid) for r in current}
    return after - before, before - after


def watch(interval: float, protocol_filter: ProtocolFilter, color: bool) -> None:
    console = Console()
    store = SnapshotStore(filter_records(scan_open_ports(), protocol_filter))
    previous = store.current().records
    _print_table(previous, color)

    def report(snapshot: PortSnapshot) -> None:
        nonlocal previous
        current = tuple(filter_records(snapshot.records, protocol_filter))
        added, removed = diff_snapshots(previous, current)
        previous = current
        if not added and not removed:
            return
        timestamp = datetime.now().strftime("%H:%M:%S")
        console.print(f"\n[bold yellow]🔄 Changes detected at {timestamp}[/]")
        for proto, port, pid in sorted(added, key=lambda k: (k[1], k[0])):
            console.print(f"  [green]➕ {proto}:{port}[/] (PID {pid})")
        for proto, port, pid in sorted(removed, key=lambda k: (k[1], k[0])):
            console.print(f"  [red]➖ {proto}:{port}[/] (PID {pid})")

    scanner = BackgroundScanner(store, interval, on_publish=report)
    console.print(f"📡 Watching every {interval:g}s, press Ctrl+C to stop")
    scanner.start()
    try:
        scanner.join()
    finally:
        scanner.stop()


def _numbered(items: Sequence[MenuItem]) -> List[Tuple[Optional[int], int, MenuItem]]:
    """Flatten submenus; actionable entries get a selection number."""
    flat = []
    number = 1
    for item in items:
        entries = [(0, item)] + [(1, child) for child in item.children]
        for depth, entry in entries:
            if entry.action is not None and entry.enabled:
                flat.append((number, depth, entry))
                number += 1
            else:
                flat.append((None, depth, entry))
    return flat


def interactive(controller: MenuController) -> None:
    console = Console()
    while True:
        lines = _numbered(controller.menu())
        console.print()
        for number, depth, item in lines:
            if item.is_separator:
                console.rule(style="dim")
                continue
            indent = "    " * depth
            if number is None:
                console.print(f"     {indent}[dim]{item.label}[/]")
            else:
                console.print(f"[bold]{number:>3}[/]  {indent}{item.label}")

        choices = {str(n): item for n, _, item in lines if n is not None}
        choice = Prompt.ask("Select", choices=list(choices), show_choices=False)
        outcome = controller.dispatch(choices[choice].action)
        if outcome.message:
            console.print(f"[red]{outcome.message}[/]" if outcome.error else f"[green]{outcome.message}[/]")
        if outcome.exit:
            return


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="portslayer",
        description="portslayer – list listening TCP/UDP ports and kill their owners",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  portslayer                      # Scan and display listening ports
  portslayer --proto tcp          # Only TCP listeners
  portslayer --watch              # Report ports opening and closing
  portslayer --interactive        # Menu with filter, pages and kill actions
  portslayer --kill 1234          # Kill a process (pkexec if needed)
  portslayer --kill-port 8080     # Free a port whose owner is unknown
  portslayer --export ports.csv   # Export (.json or .csv)
        """,
    )
    parser.add_argument("--version", action="version", version=f"portslayer {__version__}")
    parser.add_argument("--proto", choices=["tcp", "udp"], help="Filter by protocol")
    parser.add_argument("--page", type=int, default=None, metavar="N", help="Show only page N (1-based)")
    parser.add_argument("--page-size", type=int, choices=PAGE_SIZES, default=10, help="Ports per page")
    parser.add_argument("--kill", type=int, action="append", metavar="PID", help="Kill a process (repeatable)")
    parser.add_argument("--kill-port", type=int, metavar="PORT", help="Kill whatever holds PORT (uses --proto, default tcp)")
    parser.add_argument("--kill-all", action="store_true", help="Kill every listener with a known owner (limited by --proto)")
    parser.add_argument("--watch", action="store_true", help="Rescan periodically and report changes")
    parser.add_argument("--interval", type=float, default=REFRESH_INTERVAL, help="Seconds between background scans (--watch, --interactive)")
    parser.add_argument("--interactive", action="store_true", help="Interactive menu")
    parser.add_argument("--export", metavar="FILE", help="Export to file (format auto-detected: .json, .csv)")
    parser.add_argument("--no-color", action="store_true", help="Disable colors")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--quiet", action="store_true", help="Only log errors")
    return parser.parse_args(argv)


def _report(report: killer.TerminationReport) -> int:
    print(f"✅ {report.killed} processes terminated")
    if not report.ok:
        print(f"❌ {report.error_text}")
    return 0 if report.ok else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose, args.quiet)
    protocol_filter = ProtocolFilter(args.proto) if args.proto else ProtocolFilter.ALL

    if args.kill:
        return _report(killer.terminate_all(args.kill))
    if args.kill_port is not None:
        protocol = Protocol(args.proto) if args.proto else Protocol.TCP
        try:
            killer.terminate_port(args.kill_port, protocol)
        except killer.TerminationError as e:
            print(f"❌ {e}")
            return 1
        print(f"✅ {protocol.value} port {args.kill_port} freed")
        return 0
    if args.kill_all:
        return _report(killer.terminate_listeners(protocol_filter=protocol_filter))

    if args.watch:
        watch(args.interval, protocol_filter, not args.no_color)
        return 0

    color = not args.no_color and not args.quiet
    if color:
        with Console().status("[bold green]Scanning ports...[/]", spinner="dots"):
            entries = scan_open_ports()
    else:
        entries = scan_open_ports()

    if args.interactive:
        view = ViewState(protocol_filter=protocol_filter, page_size=args.page_size)
        store = SnapshotStore(entries)
        scanner = BackgroundScanner(store, args.interval)
        scanner.start()
        try:
            interactive(MenuController(store, view=view))
        finally:
            scanner.stop()
        return 0

    entries = filter_records(entries, protocol_filter)

    if args.export:
        filepath = export_records(entries, args.export)
        print(f"✅ Exported {len(entries)} entries to {filepath}")
        return 0

    if args.page is not None:
        pages = total_pages(len(entries), args.page_size)
        page_entries = get_page(entries, args.page - 1, args.page_size)
        _print_table(page_entries, color, title=f"⚔️  Listening ports, page {args.page}/{pages}")
        return 0

    _print_table(entries, color)
    return 0


def run() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as e:
        logger.debug("unhandled error", exc_info=True)
        print(f"❌ Error: {e}")
        sys.exit(1)
