"""CLI: skipper history [clear]"""

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


@click.group(invoke_without_command=True)
@click.option("--limit", default=50, type=int)
@click.option("--before", default=None)
@click.option("--after", default=None)
@click.option("--json-output", "--json", is_flag=True)
@click.pass_context
def history(ctx, limit: int, before: Optional[str], after: Optional[str], json_output: bool):
    """Show chat history."""
    if ctx.invoked_subcommand is not None:
        return

    async def _history():
        client = _get_client()
        try:
            page = await client.history(limit=limit, before=before, after=after)
        finally:
            await client.disconnect()
        if json_output:
            click.echo(json.dumps(page.to_wire(), indent=2))
            return
        table = Table(title=f"History ({page.returned} of {page.total})")
        table.add_column("ID", style="bold")
        table.add_column("Role")
        table.add_column("Time")
        table.add_column("Content")
        for m in page.messages:
            table.add_row(m.id, m.role, m.timestamp, m.content)
        console.print(table)

    _run(_history())


@history.command("clear")
@click.confirmation_option(prompt="Delete all chat history?")
def history_clear():
    """Delete all chat history."""

    async def _clear():
        client = _get_client()
        try:
            with console.status("Clearing..."):
                count = await client.api.clear_history()
        finally:
            await client.disconnect()
        console.print(f"[green]Cleared {count} messages.[/green]")

    _run(_clear())
