"""Per-node summary table."""
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from .models import RegistrySyncState, RunResult

STATUS_STYLES = {
    "success": "green",
    "failed": "red",
    "skipped": "yellow",
}


def build_summary_table(results: List[RunResult], dry_run: bool = False) -> Table:
    title = "Dry run summary" if dry_run else "Install summary"
    table = Table(title=title)
    table.add_column("Node", style="cyan")
    table.add_column("Role")
    table.add_column("Status")
    table.add_column("Error", overflow="fold")

    for result in results:
        style = STATUS_STYLES[result.status]
        table.add_row(
            result.ip,
            result.role,
            f"[{style}]{result.status}[/{style}]",
            str(result.error) if result.error else "",
        )
    return table


def print_summary(
    results: List[RunResult],
    dry_run: bool = False,
    console: Optional[Console] = None,
    sync_state: Optional[RegistrySyncState] = None,
) -> None:
    """Print the summary table, the registry mirror counts and one line per failed node."""
    if not results:
        return
    console = console or Console()
    console.print()
    console.print(build_summary_table(results, dry_run))
    if sync_state is not None and sync_state.done:
        console.print(
            f"📦 Registry: {len(sync_state.synced)} image(s) pushed, {len(sync_state.present)} already present"
        )
    failed = [r for r in results if not r.ok]
    for result in failed:
        console.print(f"[red]❌ {result.ip} ({result.role}): {result.error}[/red]")
    if not failed:
        console.print(f"[green]✅ All {len(results)} node(s) succeeded[/green]")


def exit_code(results: List[RunResult]) -> int:
    return 0 if all(r.ok for r in results) else 1
