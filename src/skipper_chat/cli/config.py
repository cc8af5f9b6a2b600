"""CLI: skipper config show|set-url"""

import click
from rich.console import Console

console = Console()


def _load_config():
    from skipper_chat.cli.main import _load_config
    return _load_config()


def _save_config(cfg) -> None:
    from skipper_chat.cli.main import _save_config
    _save_config(cfg)


@click.group()
def config():
    """Configuration (~/.skipper/config.json)."""


@config.command("show")
def config_show():
    """Print the effective configuration."""
    console.print_json(_load_config().model_dump_json())


@config.command("set-url")
@click.argument("base_url")
def config_set_url(base_url: str):
    """Point the client at a relay server."""
    cfg = _load_config()
    cfg.client.base_url = base_url.rstrip("/")
    _save_config(cfg)
    console.print(f"[green]Client base URL set to {cfg.client.base_url}[/green]")
