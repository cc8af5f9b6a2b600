"""CLI: skipper pending list|ack|clear, skipper respond, skipper status"""

import json
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

console = Console()


def _get_client():
    from skipper_chat.cli.main import _get_client
    return _get_client()


def _run(coro):
    from skipper_chat.cli.main import _run
    return _run(coro)


@click.group()
def pending():
    """Pending queue for the assistant."""


@pending.command("list")
@click.option("--json-output", "--json", is_flag=True)
def pending_list(json_output: bool):
    """List messages waiting for a response."""

    async def _list():
        client = _get_client()
        try:
            items = await client.api.pending()
        finally:
            await client.disconnect()
        if json_output:
            click.echo(json.dumps([p.to_wire() for p in items], indent=2))
            return
        table = Table(title=f"Pending ({len(items)})")
        table.add_column("ID", style="bold")
        table.add_column("Enqueued")
        table.add_column("Content")
        for p in items:
            table.add_row(p.id, p.enqueued_at, p.content)
        console.print(table)

    _run(_list())


@pending.command("ack")
@click.argument("message_id")
def pending_ack(message_id: str):
    """Remove one message from the pending queue."""

    async def _ack():
        client = _get_client()
        try:
            removed = await client.api.remove_pending(message_id)
        finally:
            await client.disconnect()
        if removed:
            console.print(f"[green]Removed {message_id}.[/green]")
        else:
            console.print(f"[yellow]{message_id} was not pending.[/yellow]")

    _run(_ack())


@pending.command("clear")
def pending_clear():
    """Remove every message from the pending queue."""

    async def _clear():
        client = _get_client()
        try:
            count = await client.api.clear_pending()
        finally:
            await client.disconnect()
        console.print(f"[green]Cleared {count} pending messages.[/green]")

    _run(_clear())


@click.command("respond")
@click.argument("message")
@click.option("--reply-to", default=None, help="Pending message id this answers")
def respond_cmd(message: str, reply_to: Optional[str]):
    """Post an assistant response."""

    async def _respond():
        client = _get_client()
        try:
            result = await client.api.respond(message, reply_to=reply_to)
        finally:
            await client.disconnect()
        console.print(f"[green]Response sent[/green] {result.id}")

    _run(_respond())


@click.command("status")
@click.argument("fields", nargs=-1)
def status_cmd(fields: tuple[str, ...]):
    """Broadcast an assistant status update, e.g. `state=working`."""
    status = {}
    for field in fields:
        key, sep, value = field.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {field!r}")
        status[key] = value

    async def _status():
        client = _get_client()
        try:
            recipients = await client.api.publish_status(status)
        finally:
            await client.disconnect()
        console.print(f"[green]Status sent to {recipients} session(s).[/green]")

    _run(_status())
