"""stats command: aggregate delivery outcomes across stored suggestions."""

from __future__ import annotations

from collections import Counter

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.command("stats")
@click.option("--repo", required=True, help="Repository full name (owner/name).")
@click.option("--top", default=10, show_default=True, help="Number of top entries to show per category.")
@click.pass_context
def stats_cmd(ctx, repo: str, top: int):
    """Show aggregated delivery statistics for a repository.

    Reports the severity distribution, how suggestions were delivered, and
    which files attract the most suggestions.
    """
    from reviewrelay_store.noop import NoOpStore

    store = ctx.obj.get("store") if ctx.obj else None
    if store is None or isinstance(store, NoOpStore):
        raise click.UsageError("No store configured. Add 'store: sqlite' to .reviewrelay.yml.")

    records = store.list_suggestions(repo)
    if not records:
        console.print("[yellow]No suggestions found for this repository.[/yellow]")
        return

    total = len(records)
    pull_requests = {r.pr_number for r in records}
    severity_counter = Counter(r.severity for r in records)
    delivery_counter = Counter(r.delivery_status or "not_sent" for r in records)
    file_counter = Counter(r.file for r in records)

    console.print(f"\n[bold]Delivery stats for [cyan]{repo}[/cyan][/bold]")
    console.print(f"  Pull requests: {len(pull_requests)}")
    console.print(f"  Suggestions:   {total}")
    console.print(f"  Avg per PR:    {total / len(pull_requests):.1f}")

    sev_table = Table(title="Severity Breakdown", show_header=True)
    sev_table.add_column("Severity", style="bold")
    sev_table.add_column("Count", justify="right")
    sev_table.add_column("% of total", justify="right")
    _sev_style = {"critical": "red", "high": "yellow", "medium": "blue", "low": "dim"}
    for sev in ["critical", "high", "medium", "low"]:
        count = severity_counter.get(sev, 0)
        style = _sev_style[sev]
        sev_table.add_row(f"[{style}]{sev}[/{style}]", str(count), f"{count / total * 100:.1f}%")
    console.print(sev_table)

    delivery_table = Table(title="Delivery Outcome", show_header=True)
    delivery_table.add_column("Status", style="bold")
    delivery_table.add_column("Count", justify="right")
    for status, count in delivery_counter.most_common():
        delivery_table.add_row(status, str(count))
    console.print(delivery_table)

    file_table = Table(title=f"Top {top} Files", show_header=True)
    file_table.add_column("File")
    file_table.add_column("Suggestions", justify="right")
    for file_path, count in file_counter.most_common(top):
        file_table.add_row(file_path, str(count))
    console.print(file_table)
