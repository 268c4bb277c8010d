from __future__ import annotations

import json
import logging
import sys

import typer
from rich import print

from . import __version__
from .commands.maintenance_cmds import init_db_cmd, instructions_cmd, mcp_cmd, stats_cmd
from .commands.viewer_cmds import serve as serve_cmd
from .config import get_config_path, load_config, read_config_file, set_config_value
from .store import MindpmStore

app = typer.Typer(help="mindpm: persistent project memory for coding-assistant sessions")
config_app = typer.Typer(help="Inspect and edit mindpm configuration")
app.add_typer(config_app, name="config")


def _store(db_path: str | None) -> MindpmStore:
    return MindpmStore(db_path or load_config().db_path)


def _configure_logging(level: str) -> None:
    # stdout carries the MCP protocol, so logs go to stderr.
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        format="[mindpm] %(message)s",
    )


@app.callback()
def main(
    log_level: str = typer.Option(None, help="Logging level (defaults to MINDPM_LOG_LEVEL or INFO)"),
) -> None:
    _configure_logging(log_level or load_config().log_level)


@app.command()
def version() -> None:
    """Print the installed version."""

    print(__version__)


@app.command("init-db")
def init_db(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    init_db_cmd(store_from_path=_store, db_path=db_path)


@app.command()
def stats(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Show row counts and database size."""

    stats_cmd(store_from_path=_store, db_path=db_path)


@app.command()
def mcp(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Run the MCP server on stdio."""

    mcp_cmd(db_path=db_path)


@app.command()
def serve(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    host: str = typer.Option(None, help="Host to bind (defaults to config)"),
    port: int = typer.Option(None, help="Port to bind (defaults to config)"),
    open_browser: bool = typer.Option(False, "--open", help="Open the board in a browser"),
) -> None:
    """Run the kanban viewer in the foreground."""

    cfg = load_config()
    serve_cmd(
        db_path=db_path or cfg.db_path,
        host=host or cfg.viewer_host,
        port=port or cfg.viewer_port,
        open_browser=open_browser or cfg.open_browser,
    )


@app.command()
def instructions() -> None:
    """Print the recommended agent instructions."""

    instructions_cmd()


@config_app.command("path")
def config_path() -> None:
    """Print the config file location."""

    typer.echo(str(get_config_path()))


@config_app.command("show")
def config_show() -> None:
    """Print the effective configuration (file + environment)."""

    try:
        read_config_file()
    except ValueError as exc:
        print(f"[red]Config error: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    cfg = load_config()
    typer.echo(json.dumps(vars(cfg), indent=2))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Setting name, e.g. viewer_port"),
    value: str = typer.Argument(..., help="New value"),
) -> None:
    """Store one setting in the config file."""

    try:
        path = set_config_value(key, value)
    except ValueError as exc:
        print(f"[red]Config error: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    print(f"[green]Saved {key} to {path}[/green]")


if __name__ == "__main__":
    app()
