"""Click CLI for managing the update store and webhook registration."""

from __future__ import annotations

import asyncio
import json
import os

import click

from src.store.db import UpdateStore
from src.webhook.telegram import TelegramClient, TelegramError


@click.group()
@click.option(
    "--db",
    default=lambda: os.environ.get("DB_FILENAME", "db/database.sqlite3"),
    show_default="DB_FILENAME or db/database.sqlite3",
    help="Update store database path.",
)
@click.pass_context
def cli(ctx: click.Context, db: str) -> None:
    """Telegram webhook intake management CLI."""
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the update store schema if it does not exist."""
    store = UpdateStore(ctx.obj["db_path"])
    store.close()
    click.echo(f"Database ready: {ctx.obj['db_path']}")


@cli.group("updates")
def updates_group() -> None:
    """Inspect stored updates."""


@updates_group.command("list")
@click.option("--limit", default=20, show_default=True, help="Number of updates to show.")
@click.pass_context
def updates_list(ctx: click.Context, limit: int) -> None:
    """List the most recently stored updates."""
    store = UpdateStore(ctx.obj["db_path"])
    try:
        output = [
            u.model_dump(exclude={"raw_data"}) for u in store.recent(limit)
        ]
    finally:
        store.close()
    click.echo(json.dumps(output, indent=2, ensure_ascii=False))


@cli.group("webhook")
def webhook_group() -> None:
    """Manage the Bot API webhook registration."""


@webhook_group.command("set")
@click.argument("url")
@click.option("--token", envvar="TG_BOT_TOKEN", required=True, help="Bot API token.")
@click.option("--secret", envvar="TG_WEBHOOK_SECRET", required=True, help="Webhook secret.")
def webhook_set(url: str, token: str, secret: str) -> None:
    """Register URL as the bot's webhook with the secret header value."""
    client = TelegramClient(token)
    try:
        result = asyncio.run(client.set_webhook(url, secret))
    except TelegramError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(result.get("description", "Webhook set"))
