"""Console output for sync plans and summaries."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from .core import ReconciliationTask, SyncSummary


class OutputFormatter:
    """Format run output for the console."""

    def __init__(self, console: Console):
        self.console = console

    def print_plan(self, tasks: list[ReconciliationTask], destination: Path):
        """Print the action chosen for every repository."""
        if not tasks:
            self.console.print("[dim]No repositories to sync[/]")
            return

        table = Table(title=f"Sync Plan: {destination}")
        table.add_column("Repository", style="cyan", no_wrap=True)
        table.add_column("Action", justify="center")
        table.add_column("Detail")

        for task in sorted(tasks, key=lambda t: t.name):
            table.add_row(task.name, *self._get_action_display(task))

        self.console.print(table)
        self.console.print()

    def _get_action_display(self, task: ReconciliationTask) -> tuple[str, str]:
        """Get (action, detail) cells for a task."""
        from .core import ActionKind

        action = task.action
        match action.kind:
            case ActionKind.CLONE:
                return "[green]clone[/]", task.descriptor.clone_url
            case ActionKind.UPDATE:
                branch = task.descriptor.default_branch
                if action.needs_stash:
                    return "[yellow]stash + update[/]", branch
                return "[blue]update[/]", branch
            case _:
                return "[dim]skip[/]", f"[dim]{action.reason}[/]"

    def print_summary(self, summary: SyncSummary, dry_run: bool = False):
        """Print a one-line summary of dispatched actions."""
        parts = [f"[bold]Total:[/] {summary.total}"]

        if summary.clone > 0:
            parts.append(f"[green]Clone:[/] {summary.clone}")
        if summary.update > 0:
            parts.append(f"[blue]Update:[/] {summary.update}")
        if summary.stash > 0:
            parts.append(f"[yellow]Stashed first:[/] {summary.stash}")
        if summary.skipped > 0:
            parts.append(f"[dim]Skipped:[/] {summary.skipped}")

        prefix = "[bold]Would sync (dry-run):[/] " if dry_run else ""
        self.console.print(prefix + " | ".join(parts))
