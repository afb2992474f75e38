"""history command: display stored suggestions and their delivery outcome."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()

_DELIVERY_STYLE = {
    "sent": "green",
    "replaced": "yellow",
    "failed_lines_mismatch": "red",
    "failed": "red",
    "not_sent": "dim",
}


@click.command("history")
@click.option("--repo", required=True, help="Repository full name (owner/name).")
@click.option("--pr", "pr_number", type=int, default=None, help="Filter by PR number.")
@click.option("--limit", default=20, show_default=True, help="Maximum number of records to show.")
@click.pass_context
def history_cmd(ctx, repo: str, pr_number: int | None, limit: int):
    """Show stored suggestions for a repository.

    Reads from the configured store. Add 'store: sqlite' to .reviewrelay.yml
    to keep a history across restarts.
    """
    from reviewrelay_store.noop import NoOpStore

    store = ctx.obj.get("store") if ctx.obj else None
    if store is None or isinstance(store, NoOpStore):
        raise click.UsageError("No store configured. Add 'store: sqlite' to .reviewrelay.yml.")

    records = store.list_suggestions(repo, pr_number=pr_number)
    if not records:
        console.print("[yellow]No suggestions found.[/yellow]")
        return

    # Most recent first, capped at --limit.
    records = list(reversed(records))[:limit]

    table = Table(title=f"Suggestions for {repo}", show_header=True, header_style="bold cyan")
    table.add_column("PR", style="bold", width=6)
    table.add_column("File", max_width=40)
    table.add_column("Lines")
    table.add_column("Severity")
    table.add_column("Priority")
    table.add_column("Delivery")
    table.add_column("Saved At")

    for r in records:
        lines = f"{r.start_line}-{r.end_line}" if r.start_line != r.end_line else str(r.start_line)
        delivery = r.delivery_status or "-"
        style = _DELIVERY_STYLE.get(delivery, "white")
        table.add_row(
            f"#{r.pr_number}",
            r.file,
            lines,
            r.severity,
            r.priority_status or "-",
            f"[{style}]{delivery}[/{style}]",
            r.saved_at[:19].replace("T", " "),
        )

    console.print(table)
