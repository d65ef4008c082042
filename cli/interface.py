"""
Console interface for the task supervisor: status banners, usage-limit
countdown and the end-of-session summary.

Everything here renders to stderr; stdout carries the agent's own terminal
stream untouched.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from monitor.usage_limit import format_remaining
from session.state import Phase, SessionState

LEVEL_STYLES = {
    "info": "cyan",
    "warning": "yellow",
    "error": "red",
}

PHASE_STYLES = {
    Phase.COMPLETED: "green",
    Phase.ABORTED: "red",
    Phase.USER_INTERRUPTED: "yellow",
}


class SessionInterface:
    """Renders supervisor messages around the agent's live output"""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(stderr=True)
        self.live: Optional[Live] = None

    def banner(self, task_file: Path, command: str, progress: Tuple[int, int], max_continue: int):
        done, total = progress
        self.console.print(Panel.fit(
            f"Task file: {task_file}\n"
            f"Agent: {command}\n"
            f"Tasks checked: {done}/{total}\n"
            f"Continue budget: {max_continue}\n"
            "Press Ctrl+C to stop",
            title="CLAUDIA STATUS",
        ))

    def notify(self, message: str, level: str = "info"):
        style = LEVEL_STYLES.get(level, "white")
        # Leading newline keeps the message off the agent's current line
        self.console.print(f"\n[bold {style}]{escape('[CLAUDIA]')}[/bold {style}] {escape(message)}")

    # Usage-limit countdown

    def _countdown_panel(self, remaining: float, reset_at: datetime) -> Panel:
        return Panel.fit(
            f"Time remaining: [bold]{format_remaining(remaining)}[/bold]\n"
            f"Resuming at {reset_at.strftime('%Y-%m-%d %H:%M:%S %Z').strip()}",
            title="Usage limit",
            border_style="yellow",
        )

    def countdown_tick(self, remaining: float, reset_at: datetime):
        panel = self._countdown_panel(remaining, reset_at)
        if self.live is None:
            self.live = Live(panel, console=self.console, auto_refresh=False, transient=True)
            self.live.start()
        else:
            self.live.update(panel)
        self.live.refresh()

    def countdown_stop(self):
        if self.live is not None:
            self.live.stop()
            self.live = None

    # Session end

    def summary(self, state: SessionState, progress: Tuple[int, int], report_file: Optional[str] = None):
        done, total = progress
        table = Table(title="Session Summary")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="white")

        style = PHASE_STYLES.get(state.phase, "white")
        table.add_row("Final state", f"[{style}]{state.phase.value}[/{style}]")
        if state.abort_reason is not None:
            table.add_row("Abort reason", state.abort_reason.value)
        table.add_row("Duration", f"{state.duration:.1f}s")
        table.add_row("Continues sent", f"{state.continue_count}/{state.max_continue}")
        table.add_row("Usage limit waits", str(state.limit_waits))
        table.add_row("Loops detected", str(state.loops_detected))
        table.add_row("Permission prompts accepted", str(state.permission_prompts_accepted))
        table.add_row("Tasks checked", f"{done}/{total}")
        table.add_row("Exit code", str(int(state.exit_code)))
        if report_file:
            table.add_row("Report", report_file)

        self.console.print()
        self.console.print(table)

    def confirm_empty(self, task_file: Path) -> bool:
        self.console.print(
            f"[yellow]Warning: {escape(str(task_file))} has no list items, so there is nothing to check off.[/yellow]"
        )
        return Confirm.ask("Start the session anyway?", console=self.console, default=False)

    def error(self, message: str):
        self.console.print(f"[red]Error: {escape(message)}[/red]")
