"""
Skipper chat CLI: `skipper` command.

Commands:
  skipper serve                 Run the relay server
  skipper chat                  Interactive chat over the live session
  skipper send <message>        One-shot message
  skipper history [clear]       Show or clear chat history
  skipper pending list|ack|clear
  skipper respond <message>     Post an assistant response
  skipper status KEY=VALUE...   Broadcast an assistant status update
  skipper config show|set-url
"""

import asyncio
import logging

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install skipper-chat[cli]")

from skipper_chat import __version__
from skipper_chat.client.client import AsyncSkipperChat
from skipper_chat.config import Config, load_config, save_config

console = Console()


def _load_config() -> Config:
    return load_config()


def _save_config(cfg: Config) -> None:
    save_config(cfg)


def _get_client() -> AsyncSkipperChat:
    cfg = _load_config()
    return AsyncSkipperChat(config=cfg.client)


def _run(coro):
    return asyncio.run(coro)


def _setup_logging(verbose: bool, default_level: int = logging.WARNING) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else default_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


@click.group()
@click.version_option(__version__)
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool):
    """Skipper chat: relay messages between you and your assistant."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _setup_logging(verbose)


# Register subcommands from separate modules
from skipper_chat.cli.serve import serve_cmd
from skipper_chat.cli.chat import chat_cmd, send_cmd
from skipper_chat.cli.history import history
from skipper_chat.cli.pending import pending, respond_cmd, status_cmd
from skipper_chat.cli.config import config

main.add_command(serve_cmd)
main.add_command(chat_cmd)
main.add_command(send_cmd)
main.add_command(history)
main.add_command(pending)
main.add_command(respond_cmd)
main.add_command(status_cmd)
main.add_command(config)


if __name__ == "__main__":
    main()
