"""Live status and session listing rendered with rich."""
from typing import Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from zzharness.models import SessionInfo, SessionState, SnapshotRecord

_STATE_STYLES = {
    SessionState.RUNNING: "green",
    SessionState.PAUSED: "yellow",
    SessionState.STOPPED: "red",
    SessionState.UNKNOWN: "dim",
}


def secs_to_human(seconds: int) -> str:
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours:02d}h{minutes:02d}m{secs:02d}s"
    if minutes > 0:
        return f"{minutes:02d}m{secs:02d}s"
    return f"{secs:02d}s"


def make_bar(count: int, max_val: int = 500, width: int = 20) -> str:
    filled = min(int(count / max_val * width), width) if max_val > 0 else 0
    return "█" * filled + "░" * (width - filled)


class StatusRenderer:
    """Redraws the fuzzing status panels from a snapshot"""

    def __init__(self, console: Optional[Console] = None, clear: bool = True):
        self.console = console or Console()
        self.clear = clear

    def status_table(self, record: SnapshotRecord) -> Table:
        counters = record.counters
        table = Table(show_header=True, header_style="bold magenta", border_style="cyan")
        table.add_column("Metric", style="cyan", no_wrap=True, width=25)
        table.add_column("Value", justify="right", style="green", min_width=20)
        table.add_column("Visual", style="blue", width=25)

        crashes = f"[red bold]{counters.crashes}[/red bold]" if counters.crashes else "0"
        hangs = f"[yellow bold]{counters.hangs}[/yellow bold]" if counters.hangs else "0"
        table.add_row("Session", record.run_tag, "")
        table.add_row("Samples Loaded", str(counters.total_samples), "")
        table.add_row("Total Mutants", str(counters.total_mutants), make_bar(counters.total_mutants, 10000))
        table.add_row("Crashes", crashes, make_bar(counters.crashes, 100))
        table.add_row("Hangs", hangs, make_bar(counters.hangs, 100))
        table.add_row("Runtime", secs_to_human(record.runtime_sec), "")
        table.add_row("Since Last Find", secs_to_human(record.since_last_discovery_sec), "")
        return table

    def codes_table(self, record: SnapshotRecord) -> Table:
        table = Table(show_header=True, header_style="bold yellow", border_style="yellow")
        table.add_column("Exit Code", justify="right", style="cyan", no_wrap=True, width=12)
        table.add_column("Count", justify="right", style="green", width=10)
        table.add_column("Kept", justify="right", style="green", width=10)
        table.add_column("Progress", style="blue", width=25)

        counters = record.counters
        for code in record.intentional_codes:
            count = counters.intentional_counts.get(code, 0)
            kept = counters.retained_intentional.get(code, 0)
            table.add_row(str(code), str(min(count, 9999)), str(kept), make_bar(count, 1000))
        return table

    def render(self, record: SnapshotRecord) -> None:
        if self.clear:
            self.console.clear()
        self.console.print(
            Panel(self.status_table(record), title="[bold cyan]Fuzzing Status[/bold cyan]", border_style="cyan")
        )
        self.console.print()
        self.console.print(
            Panel(
                self.codes_table(record),
                title="[bold yellow]Intentional Exit Codes[/bold yellow]",
                border_style="yellow",
            )
        )


def render_sessions(sessions: Iterable[SessionInfo], console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="Fuzzing Sessions", border_style="cyan", header_style="bold cyan")
    table.add_column("Session Name", style="cyan", no_wrap=True, min_width=30)
    table.add_column("State", min_width=10)

    found = False
    for info in sessions:
        style = _STATE_STYLES.get(info.display_state, "")
        table.add_row(info.name, f"[{style}]{info.display_state.value}[/{style}]")
        found = True
    if not found:
        table.add_row("No sessions found", "")
    console.print(table)
