"""CLI entry point for reviewrelay.

Commands:
  serve    run the webhook server for every configured platform
  replay   feed a saved webhook payload through the dispatcher
  history  display stored suggestions and their delivery outcome
  stats    aggregate delivery outcomes across stored suggestions
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from reviewrelay_cli.commands.history import history_cmd
from reviewrelay_cli.commands.replay import replay_cmd
from reviewrelay_cli.commands.serve import serve_cmd
from reviewrelay_cli.commands.stats import stats_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the configured store from .reviewrelay.yml settings.

    Store selection hierarchy:
      store: sqlite → SQLiteStore (uses store_path or .reviewrelay.db)
      store: memory → MemoryStore (lost on restart)
      (default)     → NoOpStore  (no persistence, every update re-triggers)

    This factory lives in cli.py so neither reviewrelay_core nor
    reviewrelay_store know about the CLI config format.
    """
    from reviewrelay_store.noop import NoOpStore

    store_type = config.get("store", "noop")

    if store_type == "sqlite":
        from reviewrelay_store.sqlite import SQLiteStore

        return SQLiteStore(db_path=config.get("store_path", ".reviewrelay.db"))

    if store_type == "memory":
        from reviewrelay_store.memory import MemoryStore

        return MemoryStore()

    if store_type != "noop":
        console.print(f"[yellow]Unknown store '{store_type}'. Falling back to no store.[/yellow]")
    return NoOpStore()


def _build_dedup_store(config: dict):
    if config.get("dedup_store") == "sqlite":
        from reviewrelay_store.sqlite import SQLiteDedupStore

        return SQLiteDedupStore(db_path=config.get("store_path", ".reviewrelay.db"))

    from reviewrelay_store.memory import MemoryDedupStore

    return MemoryDedupStore()


def _build_dispatcher(config: dict, store, dedup_store, suggestions_path: str | None = None):
    """Wire adapters, the review runner and the dispatcher around one store."""
    from reviewrelay_core.pipeline.stages.collect import JsonFileSuggestionProvider
    from reviewrelay_core.platforms.registry import build_adapters
    from reviewrelay_core.runner import ReviewRunner
    from reviewrelay_core.webhooks.dispatcher import WebhookDispatcher
    from reviewrelay_store.noop import NoOpStore

    adapters = build_adapters(config)
    pull_requests = None if isinstance(store, NoOpStore) else store
    runner = ReviewRunner(
        adapters,
        config,
        suggestion_provider=JsonFileSuggestionProvider(suggestions_path) if suggestions_path else None,
        sink=store,
        pull_requests=pull_requests,
    )
    return WebhookDispatcher(adapters, dedup_store, pull_requests, runner, config)


@click.group()
@click.version_option(
    version=importlib.metadata.version("reviewrelay"),
    prog_name="reviewrelay",
)
@click.option(
    "--config",
    "config_path",
    default=".reviewrelay.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="REVIEWRELAY_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Deliver code review suggestions to GitHub, GitLab, Bitbucket, Azure Repos and Forgejo."""
    from reviewrelay_cli.auth import resolve_platform_token
    from reviewrelay_core.config import load_config

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )

    ctx.ensure_object(dict)

    config = load_config(config_path)

    # Resolve tokens early so all subcommands share the same resolution.
    tokens = config.setdefault("tokens", {})
    for platform in list(tokens):
        if not tokens.get(platform):
            tokens[platform] = resolve_platform_token(platform)

    store = _build_store(config)
    dedup_store = _build_dedup_store(config)
    ctx.obj["config"] = config
    ctx.obj["store"] = store
    ctx.obj["dedup_store"] = dedup_store
    ctx.call_on_close(store.close)
    ctx.call_on_close(dedup_store.close)


main.add_command(serve_cmd)
main.add_command(replay_cmd)
main.add_command(history_cmd)
main.add_command(stats_cmd)
