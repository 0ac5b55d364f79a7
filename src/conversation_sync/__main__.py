"""CLI entry point for conversation-sync diagnostics.

Allows inspecting the reconciled conversation list from the command line:
    python -m conversation_sync list
"""

import asyncio
import sys
from datetime import datetime
from pathlib import Path

import click

from conversation_sync.api import ChatApiClient
from conversation_sync.config import Config, load_config
from conversation_sync.logging import setup_logging
from conversation_sync.models import Conversation
from conversation_sync.session import ChatSyncSession
from conversation_sync.transport import LocalEventBus


def format_timestamp(ts: datetime) -> str:
    """Format timestamp for display in local time."""
    return ts.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def print_conversation(conv: Conversation, verbose: bool = False) -> None:
    """Print one conversation list entry."""
    unread = f" \033[1m({conv.unread_count} unread)\033[0m" if conv.unread_count else ""
    click.echo(f"\033[36m[{format_timestamp(conv.updated_at)}]\033[0m {conv.title}{unread}")
    click.echo(f"Type: \033[32m{conv.kind.value}\033[0m | Messages: {conv.total_messages}")
    if verbose:
        click.echo(f"ID: {conv.id}")
        if conv.peer is not None and conv.peer.email:
            click.echo(f"Email: {conv.peer.email}")
        if conv.group is not None and conv.group.description:
            click.echo(f"Description: {conv.group.description}")
    if conv.last_message is not None:
        preview = conv.last_message.content or f"[{conv.last_message.attachment_type or 'attachment'}]"
        click.echo(f"Last: {preview}")
    click.echo("-" * 40)


async def _load_conversations(config: Config) -> tuple[bool, tuple[Conversation, ...]]:
    client = ChatApiClient(config.api)
    session = ChatSyncSession.from_config(config, backend=client, transport=LocalEventBus())
    try:
        ok = await session.refresh()
    finally:
        await client.aclose()
    return ok, session.conversations


@click.group()
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Path to config.yaml")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """Inspect synchronized chat conversations."""
    config = load_config(config_path)
    setup_logging("cli", log_dir=config.log_dir)
    ctx.obj = config


@cli.command(name="list")
@click.option("--unread-only", is_flag=True, help="Only show conversations with unread messages")
@click.option("--limit", "-n", default=20, help="Number of conversations")
@click.option("--verbose", "-v", is_flag=True, help="Show more details")
@click.pass_obj
def list_conversations(config: Config, unread_only: bool, limit: int, verbose: bool) -> None:
    """Fetch and print the conversation list, most recent first."""
    ok, conversations = asyncio.run(_load_conversations(config))
    if not ok:
        click.echo("Error fetching conversations (see log for details)", err=True)
        sys.exit(1)

    if unread_only:
        conversations = tuple(c for c in conversations if c.unread_count)

    shown = conversations[:limit]
    click.echo(f"Found {len(conversations)} conversations (showing {len(shown)}):\n")
    for conv in shown:
        print_conversation(conv, verbose)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
