"""CLI: skipper chat, skipper send"""

import asyncio
import json

import click
from rich.console import Console

from skipper_chat.client.connection import ConnectionStatus
from skipper_chat.client.reconciler import is_local_id
from skipper_chat.errors import ValidationError
from skipper_chat.models.message import DeliveryState, Message, Role

console = Console()

STATUS_MARKS = {
    DeliveryState.PENDING_LOCAL.value: "⏳",
    DeliveryState.SENT.value: "✓",
    DeliveryState.DELIVERED.value: "✓✓",
    DeliveryState.FAILED.value: "⚠",
}


def _get_client():
    from skipper_chat.cli.main import _get_client
    return _get_client()


def _run(coro):
    from skipper_chat.cli.main import _run
    return _run(coro)


def _print_message(msg: Message) -> None:
    if msg.role == Role.ASSISTANT:
        console.print(f"[green]Skipper:[/green] {msg.content}")
    else:
        mark = STATUS_MARKS.get(msg.status or "", "")
        console.print(f"[cyan]You:[/cyan] {msg.content} [dim]{mark}[/dim]")


@click.command("chat")
@click.option("--history-limit", default=20, type=int, help="Messages to show on start")
def chat_cmd(history_limit: int):
    """Interactive chat with Skipper."""

    async def _chat():
        client = _get_client()
        shown: set[str] = set()
        own: set[str] = set()

        def on_change(messages: list[Message]) -> None:
            for msg in messages:
                if is_local_id(msg.id):
                    own.add(msg.client_id or msg.id)
                    continue
                if msg.id in shown or msg.client_id in own:
                    continue
                shown.add(msg.id)
                _print_message(msg)

        def on_status(status: ConnectionStatus) -> None:
            if status == ConnectionStatus.CONNECTED:
                console.print("[dim]\\[live][/dim]")
            elif status == ConnectionStatus.ERROR:
                console.print("[yellow]\\[offline, polling][/yellow]")

        await client.reconciler.load_history(limit=history_limit)
        for msg in client.messages:
            shown.add(msg.id)
            _print_message(msg)
        client.on_change(on_change)
        client.on_connection_status(on_status)
        await client.connect(load_history=False)

        console.print("[cyan]Type your message (/retry to resend failures, Ctrl+C to exit)[/cyan]\n")
        try:
            while True:
                text = await asyncio.to_thread(click.prompt, "You", prompt_suffix=": ")
                if text.lower() in ("/quit", "/exit"):
                    break
                if text.lower() == "/retry":
                    for msg in client.messages:
                        if msg.status == DeliveryState.FAILED.value:
                            result = await client.retry(msg.id)
                            _print_message(result)
                    continue
                try:
                    result = await client.send(text)
                except ValidationError as e:
                    console.print(f"[red]{e}[/red]")
                    continue
                if result.status == DeliveryState.FAILED.value:
                    console.print(f"[red]Not delivered: {client.reconciler.last_error}. Type /retry.[/red]")
                else:
                    console.print(f"[dim]{STATUS_MARKS.get(result.status or '', '')} {result.id}[/dim]")
        except (KeyboardInterrupt, EOFError, click.Abort):
            pass
        finally:
            await client.disconnect()

    _run(_chat())


@click.command("send")
@click.argument("message")
@click.option("--json-output", "--json", is_flag=True)
def send_cmd(message: str, json_output: bool):
    """Send a one-shot message over REST."""

    async def _send():
        client = _get_client()
        try:
            result = await client.api.send(message)
        finally:
            await client.disconnect()
        if json_output:
            click.echo(json.dumps(result.to_wire()))
        else:
            console.print(f"[green]Sent[/green] {result.id}")

    try:
        _run(_send())
    except ValidationError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(2)
