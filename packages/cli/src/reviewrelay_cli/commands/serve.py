"""serve command: run the webhook HTTP server."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


@click.command("serve")
@click.option("--host", default="0.0.0.0", show_default=True, help="Interface to bind.")
@click.option("--port", default=8000, show_default=True, type=int, help="Port to listen on.")
@click.option(
    "--suggestions",
    "suggestions_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON file of suggestions to deliver on every triggered review.",
)
@click.pass_context
def serve_cmd(ctx, host: str, port: int, suggestions_path: str | None):
    """Receive webhooks at /<platform>/webhook and deliver reviews.

    Platforms without enough configuration (Azure Repos needs
    platform_urls.azure_repos) answer 404.
    """
    from reviewrelay_cli.cli import _build_dispatcher
    from reviewrelay_cli.server import run_http_server

    dispatcher = _build_dispatcher(ctx.obj["config"], ctx.obj["store"], ctx.obj["dedup_store"], suggestions_path)
    if not dispatcher.adapters:
        raise click.UsageError("No platform could be configured. Check platform_urls in .reviewrelay.yml.")

    console.print(
        f"[bold green]Listening on {host}:{port}[/bold green] for "
        + ", ".join(f"[cyan]{p}[/cyan]" for p in sorted(dispatcher.adapters))
    )
    run_http_server(dispatcher, host=host, port=port)
