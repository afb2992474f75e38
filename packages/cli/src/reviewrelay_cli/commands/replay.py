"""replay command: push a saved webhook payload through the dispatcher."""

from __future__ import annotations

import json

import click
from rich.console import Console

console = Console()

_OUTCOME_STYLE = {"ignored": "dim", "duplicate": "yellow", "saved": "blue", "triggered": "green"}


@click.command("replay")
@click.option("--platform", required=True, help="Platform identifier (github, gitlab, bitbucket, azure_repos, forgejo).")
@click.option("--event", "event_name", default=None, help="Value for the platform's event header.")
@click.argument("payload", type=click.File("r"))
@click.option(
    "--suggestions",
    "suggestions_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON file of suggestions to deliver if the review triggers.",
)
@click.option("--no-dedup", is_flag=True, default=False, help="Skip the duplicate-delivery check.")
@click.pass_context
def replay_cmd(ctx, platform: str, event_name: str | None, payload, suggestions_path: str | None, no_dedup: bool):
    """Dispatch PAYLOAD as if it had arrived from PLATFORM.

    Useful for reproducing a delivery locally from a webhook captured in the
    platform's delivery log.
    """
    from reviewrelay_cli.cli import _build_dispatcher
    from reviewrelay_core.platforms.base import WebhookRequest

    try:
        body = json.load(payload)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON: {e}", param_hint="PAYLOAD")
    if not isinstance(body, dict):
        raise click.BadParameter("Webhook payload must be a JSON object", param_hint="PAYLOAD")

    dedup_store = None if no_dedup else ctx.obj["dedup_store"]
    dispatcher = _build_dispatcher(ctx.obj["config"], ctx.obj["store"], dedup_store, suggestions_path)
    adapter = dispatcher.adapters.get(platform)
    if adapter is None:
        raise click.UsageError(f"Platform '{platform}' is not configured.")

    headers = {}
    if event_name and adapter.event_header:
        headers[adapter.event_header] = event_name

    outcome = dispatcher.dispatch(WebhookRequest(platform=platform, payload=body, headers=headers))
    style = _OUTCOME_STYLE.get(outcome.value, "white")
    console.print(f"Webhook [{style}]{outcome.value}[/{style}]")
