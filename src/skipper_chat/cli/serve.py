"""CLI: skipper serve"""

import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

console = Console()


def _load_config():
    from skipper_chat.cli.main import _load_config
    return _load_config()


@click.command("serve")
@click.option("--host", default=None, help="Bind host")
@click.option("--port", default=None, type=int, help="Bind port")
@click.option("--data-dir", default=None, type=click.Path(file_okay=False, path_type=Path),
              help="Directory for chat history and the pending queue")
@click.pass_context
def serve_cmd(ctx: click.Context, host: Optional[str], port: Optional[int], data_dir: Optional[Path]):
    """Run the relay server (REST + Socket.IO)."""
    from skipper_chat.cli.main import _setup_logging
    from skipper_chat.server.app import run_server

    verbose = bool((ctx.obj or {}).get("verbose"))
    _setup_logging(verbose, default_level=logging.INFO)

    cfg = _load_config().server
    updates = {k: v for k, v in {"host": host, "port": port, "data_dir": data_dir}.items() if v is not None}
    if updates:
        cfg = cfg.model_copy(update=updates)

    console.print(f"[green]Skipper chat relay on http://{cfg.host}:{cfg.port}[/green]")
    console.print(f"[dim]Data: {cfg.data_dir}[/dim]")
    try:
        run_server(cfg, log_level="debug" if verbose else "info")
    except KeyboardInterrupt:
        pass
